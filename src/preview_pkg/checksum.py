"""SHA-256 digests for package archives."""

from __future__ import annotations

import base64
import hashlib
import re
from pathlib import Path

_DIGEST_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def digest_file(path: Path) -> str:
    return digest(path.read_bytes())


def is_digest(value: object) -> bool:
    return isinstance(value, str) and bool(_DIGEST_PATTERN.match(value))


def digest_to_base64(hex_digest: str) -> str:
    """Encode a hex digest the way S3 expects `ChecksumSHA256` values."""
    return base64.b64encode(bytes.fromhex(hex_digest)).decode("ascii")


def digest_from_base64(value: str) -> str:
    return base64.b64decode(value.encode("ascii"), validate=True).hex()
