"""Write-once object storage for package tarballs (local + S3-compatible)."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Mapping, Protocol
from urllib.parse import urlparse

from ..checksum import digest_from_base64, digest_to_base64, is_digest
from ..errors import ChecksumValidationError

logger = logging.getLogger(__name__)

META_SUFFIX = ".meta.json"


@dataclass(frozen=True)
class ObjectHead:
    key: str
    checksum: str
    size_bytes: int
    metadata: Mapping[str, str] = field(default_factory=dict)


class ObjectStore(Protocol):
    def head(self, key: str) -> ObjectHead | None:
        ...

    def put_if_absent(self, key: str, data: bytes, *, checksum: str, metadata: Mapping[str, str]) -> ObjectHead:
        ...

    def get(self, key: str) -> tuple[bytes, ObjectHead] | None:
        ...


class LocalObjectStore:
    """Filesystem store; an object is visible once its checksum record exists."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _full_path(self, key: str) -> Path:
        return self.root / key

    def _meta_path(self, key: str) -> Path:
        return self.root / f"{key}{META_SUFFIX}"

    def head(self, key: str) -> ObjectHead | None:
        path = self._full_path(key)
        try:
            record = json.loads(self._meta_path(key).read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning("LocalObjectStore: unreadable checksum record (key=%s)", key)
            return None
        checksum = record.get("sha256") if isinstance(record, dict) else None
        if not is_digest(checksum) or not path.exists():
            return None
        metadata = record.get("metadata") or {}
        return ObjectHead(
            key=key,
            checksum=checksum,
            size_bytes=int(record.get("size_bytes") or path.stat().st_size),
            metadata={str(k): str(v) for k, v in metadata.items()},
        )

    def put_if_absent(self, key: str, data: bytes, *, checksum: str, metadata: Mapping[str, str]) -> ObjectHead:
        path = self._full_path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".upload-", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            # Hard link fails with FileExistsError when the key is taken.
            os.link(tmp_name, path)
        finally:
            os.unlink(tmp_name)

        head = ObjectHead(key=key, checksum=checksum, size_bytes=len(data), metadata=dict(metadata))
        record = {"sha256": checksum, "size_bytes": len(data), "metadata": dict(metadata)}
        meta_path = self._meta_path(key)
        tmp_meta = meta_path.with_suffix(meta_path.suffix + ".tmp")
        try:
            tmp_meta.write_text(json.dumps(record, sort_keys=True, ensure_ascii=True), encoding="utf-8")
            os.replace(tmp_meta, meta_path)
        except OSError:
            # Release the key so the upload can be retried.
            tmp_meta.unlink(missing_ok=True)
            path.unlink(missing_ok=True)
            raise
        return head

    def get(self, key: str) -> tuple[bytes, ObjectHead] | None:
        head = self.head(key)
        if head is None:
            return None
        try:
            data = self._full_path(key).read_bytes()
        except FileNotFoundError:
            return None
        return data, head


class S3ObjectStore:
    """S3/R2 store using conditional writes and server-verified SHA-256."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        endpoint_url: str | None = None,
        region_name: str | None = None,
        path_style: bool | None = None,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        if client is not None:
            self._client = client
            return
        import boto3
        from botocore.config import Config

        config = None
        if path_style:
            config = Config(s3={"addressing_style": "path"})
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region_name,
            config=config,
        )

    def _key(self, key: str) -> str:
        relative = key.lstrip("/")
        if not self.prefix:
            return relative
        return f"{self.prefix}/{relative}"

    def head(self, key: str) -> ObjectHead | None:
        from botocore.exceptions import ClientError

        try:
            response = self._client.head_object(Bucket=self.bucket, Key=self._key(key), ChecksumMode="ENABLED")
        except ClientError as exc:
            if _error_code(exc) in {"404", "NoSuchKey", "NotFound"}:
                return None
            raise
        return _head_from_response(key, response)

    def put_if_absent(self, key: str, data: bytes, *, checksum: str, metadata: Mapping[str, str]) -> ObjectHead:
        from botocore.exceptions import ClientError

        object_metadata = {**metadata, "sha256": checksum}
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=self._key(key),
                Body=data,
                ContentType="application/tar+gzip",
                ChecksumSHA256=digest_to_base64(checksum),
                Metadata=object_metadata,
                IfNoneMatch="*",
            )
        except ClientError as exc:
            error_code = _error_code(exc)
            if error_code in {"PreconditionFailed", "412", "ConditionalRequestConflict"}:
                raise FileExistsError(key) from exc
            if error_code in {"BadDigest", "InvalidDigest", "XAmzContentSHA256Mismatch"}:
                raise ChecksumValidationError(checksum, "rejected by object store") from exc
            raise
        return ObjectHead(key=key, checksum=checksum, size_bytes=len(data), metadata=dict(metadata))

    def get(self, key: str) -> tuple[bytes, ObjectHead] | None:
        from botocore.exceptions import ClientError

        try:
            response = self._client.get_object(Bucket=self.bucket, Key=self._key(key), ChecksumMode="ENABLED")
        except ClientError as exc:
            if _error_code(exc) in {"404", "NoSuchKey", "NotFound"}:
                return None
            raise
        head = _head_from_response(key, response)
        if head is None:
            return None
        return response["Body"].read(), head


def _error_code(exc: Any) -> str | None:
    return exc.response.get("Error", {}).get("Code")


def _head_from_response(key: str, response: Mapping[str, Any]) -> ObjectHead | None:
    metadata = {str(k): str(v) for k, v in (response.get("Metadata") or {}).items()}
    checksum: str | None = None
    encoded = response.get("ChecksumSHA256")
    if isinstance(encoded, str) and encoded and "-" not in encoded:
        checksum = digest_from_base64(encoded)
    if checksum is None:
        checksum = metadata.get("sha256")
    if not is_digest(checksum):
        return None
    metadata.pop("sha256", None)
    return ObjectHead(
        key=key,
        checksum=checksum,
        size_bytes=int(response.get("ContentLength") or 0),
        metadata=metadata,
    )


def build_object_store(
    root: str,
    s3_endpoint_url: str | None = None,
    s3_region: str | None = None,
    s3_path_style: bool | None = None,
) -> ObjectStore:
    if root.startswith("s3://"):
        parsed = urlparse(root)
        bucket = parsed.netloc
        prefix = parsed.path.lstrip("/")
        if not bucket:
            raise ValueError("S3 object_store_root missing bucket")
        endpoint = s3_endpoint_url or os.getenv("PREVIEW_PKG_S3_ENDPOINT_URL") or os.getenv("AWS_ENDPOINT_URL")
        region = s3_region or os.getenv("PREVIEW_PKG_S3_REGION") or os.getenv("AWS_DEFAULT_REGION")
        path_style_env = os.getenv("PREVIEW_PKG_S3_PATH_STYLE")
        path_style = s3_path_style if s3_path_style is not None else (path_style_env == "true")
        return S3ObjectStore(
            bucket=bucket,
            prefix=prefix,
            endpoint_url=endpoint,
            region_name=region,
            path_style=path_style,
        )
    return LocalObjectStore(Path(root))
