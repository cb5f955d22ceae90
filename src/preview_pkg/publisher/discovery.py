"""Candidate discovery: path patterns -> publishable package manifests."""

from __future__ import annotations

from dataclasses import dataclass
import glob
import logging
import os
from pathlib import Path
from typing import Sequence

from ..coordinates import split_package_name, validate_segment
from ..errors import PreviewPkgError
from .manifest import ManifestDescriptor, read_manifest
from .models import SkippedCandidate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PackageCandidate:
    manifest: ManifestDescriptor
    owner: str | None
    bare_name: str

    @property
    def package_dir(self) -> Path:
        return self.manifest.package_dir

    @property
    def name(self) -> str:
        return self.manifest.name or ""

    @property
    def manifest_version(self) -> str:
        return self.manifest.version or ""


@dataclass(frozen=True)
class DiscoveryResult:
    candidates: tuple[PackageCandidate, ...]
    skipped: tuple[SkippedCandidate, ...]


def expand_paths(
    patterns: Sequence[str],
    *,
    cwd: Path | None = None,
) -> tuple[list[Path], list[SkippedCandidate]]:
    """Expand glob patterns into absolute paths, first occurrence wins."""
    base = (cwd or Path.cwd()).resolve()
    if not patterns:
        return [base], []
    ordered: list[Path] = []
    seen: set[Path] = set()
    unmatched: list[SkippedCandidate] = []
    for pattern in patterns:
        expanded = os.path.expanduser(pattern)
        if not os.path.isabs(expanded):
            expanded = str(base / expanded)
        matches = sorted(glob.glob(expanded, recursive=True))
        if not matches:
            unmatched.append(SkippedCandidate(path=pattern, reason_code="PATH_UNMATCHED"))
            continue
        for match in matches:
            path = Path(match).resolve()
            if path in seen:
                continue
            seen.add(path)
            ordered.append(path)
    return ordered, unmatched


def discover_packages(paths: Sequence[Path]) -> DiscoveryResult:
    candidates: list[PackageCandidate] = []
    skipped: list[SkippedCandidate] = []
    for path in paths:
        candidate, skip = _inspect(path)
        if skip is not None:
            logger.warning(
                "Discovery: skipping %s (%s%s)",
                skip.path,
                skip.reason_code,
                f": {skip.detail}" if skip.detail else "",
            )
            skipped.append(skip)
            continue
        assert candidate is not None
        candidates.append(candidate)
    return DiscoveryResult(candidates=tuple(candidates), skipped=tuple(skipped))


def _inspect(path: Path) -> tuple[PackageCandidate | None, SkippedCandidate | None]:
    label = str(path)
    try:
        manifest = read_manifest(path)
    except (FileNotFoundError, NotADirectoryError):
        return None, SkippedCandidate(path=label, reason_code="MANIFEST_MISSING", detail="package.json not found")
    except PreviewPkgError as exc:
        return None, SkippedCandidate(path=label, reason_code=exc.code, detail=exc.detail)
    if manifest.name is None:
        return None, SkippedCandidate(path=label, reason_code="NAME_MISSING", detail="package name not defined")
    if manifest.version is None:
        return None, SkippedCandidate(path=label, reason_code="VERSION_MISSING", detail="package version not defined")
    if manifest.private:
        return None, SkippedCandidate(path=label, reason_code="PACKAGE_PRIVATE", detail="package is private")
    owner, bare_name = split_package_name(manifest.name)
    try:
        if owner is not None:
            validate_segment(owner, what="owner")
        validate_segment(bare_name, what="name")
    except ValueError as exc:
        return None, SkippedCandidate(path=label, reason_code="COORDINATE_INVALID", detail=f"{manifest.name}: {exc}")
    return PackageCandidate(manifest=manifest, owner=owner, bare_name=bare_name), None
