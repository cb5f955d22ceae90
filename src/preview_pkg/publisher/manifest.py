"""package.json snapshots and the preview-URL dependency rewrite.

A manifest is captured byte-for-byte before it is touched. The rewrite swaps
the version range of every dependency that is being published in the same run
for that package's preview URL, and `rewritten_manifests` guarantees the
captured bytes are written back on every exit path.
"""

from __future__ import annotations

from contextlib import contextmanager
import copy
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Sequence

from ..coordinates import registry_url
from ..errors import ManifestRestoreError, PreviewPkgError

MANIFEST_FILENAME = "package.json"
REWRITTEN_DEPENDENCY_FIELDS = ("dependencies", "devDependencies", "optionalDependencies")

DependencyMap = Mapping[str, str]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ManifestDescriptor:
    path: Path
    original_bytes: bytes
    parsed_fields: Mapping[str, Any]

    @property
    def package_dir(self) -> Path:
        return self.path.parent

    @property
    def name(self) -> str | None:
        value = self.parsed_fields.get("name")
        return value if isinstance(value, str) and value else None

    @property
    def version(self) -> str | None:
        value = self.parsed_fields.get("version")
        return value if isinstance(value, str) and value else None

    @property
    def private(self) -> bool:
        return bool(self.parsed_fields.get("private"))


def read_manifest(package_dir: Path) -> ManifestDescriptor:
    """Snapshot `package_dir/package.json`; FileNotFoundError when absent."""
    path = package_dir / MANIFEST_FILENAME
    original = path.read_bytes()
    try:
        parsed = json.loads(original.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PreviewPkgError("MANIFEST_INVALID", f"{path}: {exc}") from exc
    if not isinstance(parsed, dict):
        raise PreviewPkgError("MANIFEST_INVALID", f"{path}: top level must be an object")
    return ManifestDescriptor(path=path, original_bytes=original, parsed_fields=parsed)


def build_dependency_map(
    packages: Iterable[ManifestDescriptor],
    *,
    identity: str,
    version: str,
    base_url: str,
) -> DependencyMap:
    """Map each package name to its preview URL.

    When two manifests share a name, the one discovered later wins.
    """
    urls: dict[str, str] = {}
    for descriptor in packages:
        name = descriptor.name
        if not name:
            continue
        if name in urls:
            logger.warning(
                "Rewriter: duplicate package name %s, using the later manifest (path=%s)",
                name,
                descriptor.path,
            )
        urls[name] = registry_url(base_url, identity, name, version)
    return MappingProxyType(urls)


def rewrite_fields(fields: Mapping[str, Any], dependency_map: DependencyMap) -> dict[str, Any]:
    rewritten = copy.deepcopy(dict(fields))
    for field_name in REWRITTEN_DEPENDENCY_FIELDS:
        dependencies = rewritten.get(field_name)
        if not isinstance(dependencies, dict):
            continue
        for dependency_name in dependencies:
            if dependency_name in dependency_map:
                dependencies[dependency_name] = dependency_map[dependency_name]
    return rewritten


def apply_rewrite(descriptor: ManifestDescriptor, dependency_map: DependencyMap) -> dict[str, Any]:
    rewritten = rewrite_fields(descriptor.parsed_fields, dependency_map)
    text = json.dumps(rewritten, indent=2, ensure_ascii=False)
    descriptor.path.write_bytes(text.encode("utf-8"))
    return rewritten


def revert(descriptor: ManifestDescriptor) -> None:
    descriptor.path.write_bytes(descriptor.original_bytes)


def restore_manifests(descriptors: Sequence[ManifestDescriptor]) -> None:
    failed: list[str] = []
    for descriptor in descriptors:
        try:
            revert(descriptor)
        except OSError as exc:
            logger.error("Rewriter: failed to restore manifest (path=%s, error=%s)", descriptor.path, exc)
            failed.append(str(descriptor.path))
    if failed:
        raise ManifestRestoreError(failed)
    logger.debug("Rewriter: restored %s manifests", len(descriptors))


@contextmanager
def rewritten_manifests(
    descriptors: Sequence[ManifestDescriptor],
    dependency_map: DependencyMap,
) -> Iterator[list[ManifestDescriptor]]:
    mutated: list[ManifestDescriptor] = []
    try:
        for descriptor in descriptors:
            # Tracked before the write so a half-written file is restored too.
            mutated.append(descriptor)
            apply_rewrite(descriptor, dependency_map)
        yield mutated
    finally:
        restore_manifests(mutated)
