"""Content-addressed package store: existence check, checksum-gated write, retrieval."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Mapping

from ..checksum import digest
from ..errors import ChecksumValidationError
from .storage import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    key: str
    data: bytes
    checksum: str
    metadata: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PutResult:
    created: bool
    key: str
    checksum: str
    existing_checksum: str | None = None


class PackageStore:
    """Never overwrites a key once a checksum has been recorded for it."""

    def __init__(self, objects: ObjectStore) -> None:
        self.objects = objects

    def exists(self, key: str) -> str | None:
        head = self.objects.head(key)
        return head.checksum if head else None

    def put(self, key: str, data: bytes, expected_checksum: str, metadata: Mapping[str, str]) -> PutResult:
        actual = digest(data)
        existing = self.exists(key)
        if existing is not None:
            return PutResult(created=False, key=key, checksum=actual, existing_checksum=existing)
        if actual != expected_checksum:
            raise ChecksumValidationError(expected_checksum, actual)
        try:
            self.objects.put_if_absent(key, data, checksum=actual, metadata=metadata)
        except FileExistsError:
            existing = self.exists(key)
            logger.info("PackageStore: lost write race (key=%s, existing=%s)", key, existing)
            return PutResult(created=False, key=key, checksum=actual, existing_checksum=existing)
        logger.info("PackageStore: stored %s (%s bytes, sha256=%s)", key, len(data), actual)
        return PutResult(created=True, key=key, checksum=actual)

    def get(self, key: str) -> StoredObject | None:
        found = self.objects.get(key)
        if found is None:
            return None
        data, head = found
        return StoredObject(key=key, data=data, checksum=head.checksum, metadata=dict(head.metadata))
