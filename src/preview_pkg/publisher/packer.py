"""Packaging-tool adapters that turn a package directory into a tarball."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
import subprocess
import time
from types import MappingProxyType
from typing import Mapping

from ..checksum import digest
from ..errors import PackingFailed, PackingInvariantViolation

ARCHIVE_SUFFIX = ".tgz"

logger = logging.getLogger(__name__)


class PackerKind(str, Enum):
    PNPM = "pnpm"
    NPM = "npm"
    BUN = "bun"
    YARN = "yarn"


@dataclass(frozen=True)
class PackerAdapter:
    executable: str
    subcommand: tuple[str, ...]
    names_output: bool = False
    install_verb: str = "install"

    def command(self, archive_name: str) -> list[str]:
        command = [self.executable, *self.subcommand]
        if self.names_output:
            command.extend(["--filename", archive_filename(archive_name)])
        return command


PACKER_ADAPTERS: Mapping[PackerKind, PackerAdapter] = MappingProxyType(
    {
        PackerKind.PNPM: PackerAdapter("pnpm", ("pack",)),
        PackerKind.NPM: PackerAdapter("npm", ("pack",)),
        PackerKind.BUN: PackerAdapter("bun", ("pm", "pack")),
        PackerKind.YARN: PackerAdapter("yarn", ("pack",), names_output=True, install_verb="add"),
    }
)


@dataclass(frozen=True)
class PackResult:
    filename: str
    archive_bytes: bytes
    digest: str
    size_bytes: int
    tool_output: str
    duration_ms: int | None = None


def archive_name_for(package_name: str, version: str) -> str:
    """Tarball stem the tools derive from a manifest: `@a/b` 1.0.0 -> `a-b-1.0.0`."""
    stem = package_name.replace("@", "", 1).replace("/", "-", 1)
    return f"{stem}-{version}"


def archive_filename(archive_name: str) -> str:
    return f"{archive_name}{ARCHIVE_SUFFIX}"


def install_hint(tool: PackerKind | str, package_url: str) -> str:
    adapter = PACKER_ADAPTERS[PackerKind(tool)]
    return f"{adapter.executable} {adapter.install_verb} {package_url}"


def pack(
    tool: PackerKind | str,
    working_dir: Path,
    archive_name: str,
    *,
    keep_file: bool = False,
    timeout_seconds: int | None = None,
) -> PackResult:
    kind = PackerKind(tool)
    adapter = PACKER_ADAPTERS[kind]
    command = adapter.command(archive_name)
    logger.debug("Packer: invoking %s (cwd=%s)", " ".join(command), working_dir)

    started = time.monotonic()
    try:
        result = subprocess.run(
            command,
            cwd=working_dir,
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
        )
    except FileNotFoundError as exc:
        raise PackingFailed(kind.value, str(exc), code="PACK_TOOL_MISSING") from exc
    except subprocess.TimeoutExpired as exc:
        output = _text(exc.stdout) + _text(exc.stderr)
        raise PackingFailed(kind.value, output, code="PACK_TIMEOUT") from exc
    except OSError as exc:
        raise PackingFailed(kind.value, str(exc), code="PACK_TOOL_ERROR") from exc
    duration_ms = int((time.monotonic() - started) * 1000)

    output = (result.stdout or "") + (result.stderr or "")
    if result.returncode != 0:
        raise PackingFailed(kind.value, output, exit_code=result.returncode)

    archive_path = Path(working_dir) / archive_filename(archive_name)
    try:
        archive_bytes = archive_path.read_bytes()
        if not keep_file:
            archive_path.unlink()
    except FileNotFoundError as exc:
        raise PackingInvariantViolation(kind.value, str(archive_path)) from exc
    except OSError as exc:
        raise PackingFailed(kind.value, f"{archive_path}: {exc}", code="PACK_ARCHIVE_ERROR") from exc
    size_bytes = len(archive_bytes)

    return PackResult(
        filename=archive_path.name,
        archive_bytes=archive_bytes,
        digest=digest(archive_bytes),
        size_bytes=size_bytes,
        tool_output=output,
        duration_ms=duration_ms,
    )


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value
