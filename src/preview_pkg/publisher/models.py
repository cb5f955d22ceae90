"""Publish request, per-package outcome and run report models."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from .packer import PackerKind


class OutcomeStatus(str, Enum):
    PUBLISHED = "published"
    ALREADY_EXISTS = "already-exists"
    CHECKSUM_CONFLICT = "checksum-conflict"
    ERROR = "error"


SUCCESS_STATUSES = frozenset({OutcomeStatus.PUBLISHED, OutcomeStatus.ALREADY_EXISTS})


class PublishRequest(BaseModel):
    paths: list[str] = Field(default_factory=list)
    packer: PackerKind = PackerKind.PNPM
    version: Optional[str] = None
    identity: Optional[str] = None
    keep_archives: bool = False


@dataclass(frozen=True)
class SkippedCandidate:
    path: str
    reason_code: str
    detail: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"path": self.path, "reason_code": self.reason_code, "detail": self.detail}


@dataclass(frozen=True)
class PublishOutcome:
    package_name: str
    package_dir: str
    status: OutcomeStatus
    package_url: str | None = None
    reason_code: str | None = None
    detail: str | None = None
    sha256_expected: str | None = None
    sha256_got: str | None = None
    size_bytes: int | None = None

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES

    def as_dict(self) -> dict[str, Any]:
        return {
            "package_name": self.package_name,
            "package_dir": self.package_dir,
            "status": self.status.value,
            "package_url": self.package_url,
            "reason_code": self.reason_code,
            "detail": self.detail,
            "sha256_expected": self.sha256_expected,
            "sha256_got": self.sha256_got,
            "size_bytes": self.size_bytes,
        }


@dataclass(frozen=True)
class PublishReport:
    version: str
    identity: str
    outcomes: tuple[PublishOutcome, ...]
    skipped: tuple[SkippedCandidate, ...] = ()

    @property
    def ok(self) -> bool:
        return any(outcome.ok for outcome in self.outcomes)

    def as_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "version": self.version,
            "identity": self.identity,
            "outcomes": [outcome.as_dict() for outcome in self.outcomes],
            "skipped": [skip.as_dict() for skip in self.skipped],
        }
