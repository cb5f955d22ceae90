from __future__ import annotations

import gzip
from pathlib import Path
from typing import Callable

import pytest

from preview_pkg.checksum import digest
from preview_pkg.errors import PackingFailed, PackingInvariantViolation
from preview_pkg.publisher.packer import (
    PACKER_ADAPTERS,
    PackerKind,
    archive_name_for,
    install_hint,
    pack,
)


def test_archive_name_strips_scope_marker() -> None:
    assert archive_name_for("@acme/ui", "1.2.3") == "acme-ui-1.2.3"
    assert archive_name_for("left-pad", "0.0.1") == "left-pad-0.0.1"


def test_adapter_commands() -> None:
    assert PACKER_ADAPTERS[PackerKind.PNPM].command("x-1.0.0") == ["pnpm", "pack"]
    assert PACKER_ADAPTERS[PackerKind.NPM].command("x-1.0.0") == ["npm", "pack"]
    assert PACKER_ADAPTERS[PackerKind.BUN].command("x-1.0.0") == ["bun", "pm", "pack"]
    assert PACKER_ADAPTERS[PackerKind.YARN].command("x-1.0.0") == ["yarn", "pack", "--filename", "x-1.0.0.tgz"]


def test_install_hint_per_tool() -> None:
    url = "https://pkg.rx2.dev/octo/ui@abc1234"
    assert install_hint("pnpm", url) == f"pnpm install {url}"
    assert install_hint(PackerKind.YARN, url) == f"yarn add {url}"


@pytest.mark.parametrize("tool", [kind.value for kind in PackerKind])
def test_pack_captures_archive_and_removes_file(
    tool: str,
    stub_tools: Path,
    write_package: Callable[..., Path],
) -> None:
    package_dir = write_package("ui", {"name": "@acme/ui", "version": "1.0.0"})
    result = pack(tool, package_dir, "acme-ui-1.0.0")

    assert result.filename == "acme-ui-1.0.0.tgz"
    assert result.size_bytes == len(result.archive_bytes)
    assert result.digest == digest(result.archive_bytes)
    assert gzip.decompress(result.archive_bytes) == (package_dir / "package.json").read_bytes()
    assert "acme-ui-1.0.0.tgz" in result.tool_output
    assert not (package_dir / "acme-ui-1.0.0.tgz").exists()
    assert stub_tools.read_text(encoding="utf-8").splitlines()[-1].startswith(tool)


def test_pack_keeps_file_when_requested(stub_tools: Path, write_package: Callable[..., Path]) -> None:
    package_dir = write_package("ui", {"name": "ui", "version": "1.0.0"})
    result = pack(PackerKind.PNPM, package_dir, "ui-1.0.0", keep_file=True)
    assert (package_dir / "ui-1.0.0.tgz").read_bytes() == result.archive_bytes


def test_pack_is_deterministic_for_identical_content(stub_tools: Path, write_package: Callable[..., Path]) -> None:
    package_dir = write_package("ui", {"name": "ui", "version": "1.0.0"})
    first = pack("npm", package_dir, "ui-1.0.0")
    second = pack("npm", package_dir, "ui-1.0.0")
    assert first.digest == second.digest


def test_pack_nonzero_exit_raises_packing_failed(
    stub_tools: Path,
    write_package: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    package_dir = write_package("ui", {"name": "ui", "version": "1.0.0"})
    monkeypatch.setenv("STUB_PACK_FAIL", "ui")
    with pytest.raises(PackingFailed) as excinfo:
        pack("pnpm", package_dir, "ui-1.0.0")
    assert excinfo.value.code == "PACK_FAILED"
    assert excinfo.value.exit_code == 3
    assert "stub pack failure" in excinfo.value.output


def test_pack_missing_archive_is_invariant_violation(
    stub_tools: Path,
    write_package: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    package_dir = write_package("ui", {"name": "ui", "version": "1.0.0"})
    monkeypatch.setenv("STUB_PACK_SKIP_OUTPUT", "1")
    with pytest.raises(PackingInvariantViolation) as excinfo:
        pack("pnpm", package_dir, "ui-1.0.0")
    assert excinfo.value.code == "PACK_INVARIANT_VIOLATION"
    assert excinfo.value.expected_path.endswith("ui-1.0.0.tgz")


def test_pack_missing_tool(
    tmp_path: Path,
    write_package: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    package_dir = write_package("ui", {"name": "ui", "version": "1.0.0"})
    empty_bin = tmp_path / "empty-bin"
    empty_bin.mkdir()
    monkeypatch.setenv("PATH", str(empty_bin))
    with pytest.raises(PackingFailed) as excinfo:
        pack("bun", package_dir, "ui-1.0.0")
    assert excinfo.value.code == "PACK_TOOL_MISSING"


def test_pack_non_executable_tool_is_packing_failure(
    tmp_path: Path,
    stub_tools: Path,
    write_package: Callable[..., Path],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    package_dir = write_package("ui", {"name": "ui", "version": "1.0.0"})
    bin_dir = tmp_path / "bin"
    (bin_dir / "npm").chmod(0o644)
    monkeypatch.setenv("PATH", str(bin_dir))
    with pytest.raises(PackingFailed) as excinfo:
        pack("npm", package_dir, "ui-1.0.0")
    assert excinfo.value.code == "PACK_TOOL_ERROR"
