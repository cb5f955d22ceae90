from __future__ import annotations

from pathlib import Path
import sys

import pytest

from preview_pkg.errors import PreviewPkgError
from preview_pkg.publisher.versioning import resolve_publish_version


def _fake_git(tmp_path: Path, *, stdout: str = "", stderr: str = "", code: int = 0) -> tuple[str, ...]:
    script = tmp_path / "fake_git.py"
    script.write_text(
        "import sys\n"
        f"sys.stdout.write({stdout!r})\n"
        f"sys.stderr.write({stderr!r})\n"
        f"sys.exit({code})\n",
        encoding="utf-8",
    )
    return (sys.executable, str(script))


def test_explicit_version_wins(tmp_path: Path) -> None:
    git = _fake_git(tmp_path, code=1)
    assert resolve_publish_version("pr-42", git_command=git) == "pr-42"


def test_explicit_version_must_be_a_valid_coordinate() -> None:
    with pytest.raises(PreviewPkgError) as excinfo:
        resolve_publish_version("1.0.0")
    assert excinfo.value.code == "VERSION_INVALID"


def test_git_hash_truncated_to_seven(tmp_path: Path) -> None:
    git = _fake_git(tmp_path, stdout="0123456789abcdef0123456789abcdef01234567\n")
    assert resolve_publish_version(None, cwd=tmp_path, git_command=git) == "0123456"
    assert resolve_publish_version("", cwd=tmp_path, git_command=git) == "0123456"


def test_git_failure_is_fatal(tmp_path: Path) -> None:
    git = _fake_git(tmp_path, stderr="fatal: not a git repository", code=128)
    with pytest.raises(PreviewPkgError) as excinfo:
        resolve_publish_version(None, cwd=tmp_path, git_command=git)
    assert excinfo.value.code == "VERSION_UNRESOLVED"
    assert "not a git repository" in (excinfo.value.detail or "")


def test_missing_git_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(PreviewPkgError) as excinfo:
        resolve_publish_version(None, cwd=tmp_path, git_command=(str(tmp_path / "no-such-git"),))
    assert excinfo.value.code == "VERSION_UNRESOLVED"
