from __future__ import annotations

import io
import json
import os
from pathlib import Path
import stat
import sys
import textwrap
from typing import Any, Callable

import pytest
import werkzeug

from preview_pkg.errors import IdentityError
from preview_pkg.registry.config import RegistryProfile
from preview_pkg.registry.service import create_app
from preview_pkg.registry.storage import LocalObjectStore
from preview_pkg.registry.store import PackageStore

REGISTRY_URL = "http://registry.test"

if not hasattr(werkzeug, "__version__"):
    werkzeug.__version__ = "3"


class StubIdentityClient:
    """Token -> login table standing in for the GitHub `/user` endpoint."""

    def __init__(self, logins: dict[str, str]) -> None:
        self.logins = dict(logins)
        self.calls: list[str] = []

    def authenticated_login(self, token: str) -> str:
        self.calls.append(token)
        if token not in self.logins:
            raise IdentityError("IDENTITY_REJECTED", "http_401")
        return self.logins[token]


class _FlaskResponse:
    def __init__(self, response: Any) -> None:
        self._response = response
        self.status_code = response.status_code
        self.content = response.get_data()
        self.headers = response.headers

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        payload = self._response.get_json(silent=True)
        if payload is None:
            raise ValueError("response is not JSON")
        return payload


class FlaskSession:
    """requests-style session that routes calls into a Flask test client."""

    def __init__(self, app: Any, base_url: str = REGISTRY_URL) -> None:
        self.client = app.test_client()
        self.base_url = base_url.rstrip("/")
        self.requests: list[tuple[str, str]] = []
        self.before_request: Callable[[str, str], None] | None = None

    def _path(self, url: str) -> str:
        assert url.startswith(self.base_url), url
        return url[len(self.base_url):] or "/"

    def post(self, url: str, files: Any = None, data: Any = None, headers: Any = None, timeout: Any = None) -> Any:
        self.requests.append(("POST", url))
        if self.before_request is not None:
            self.before_request("POST", url)
        form: dict[str, Any] = dict(data or {})
        for name, (filename, content, content_type) in (files or {}).items():
            form[name] = (io.BytesIO(content), filename, content_type)
        response = self.client.post(
            self._path(url),
            data=form,
            headers=headers or {},
            content_type="multipart/form-data",
        )
        return _FlaskResponse(response)

    def get(self, url: str, headers: Any = None, timeout: Any = None) -> Any:
        self.requests.append(("GET", url))
        return _FlaskResponse(self.client.get(self._path(url), headers=headers or {}))


@pytest.fixture
def registry_store(tmp_path: Path) -> PackageStore:
    return PackageStore(LocalObjectStore(tmp_path / "objects"))


@pytest.fixture
def registry_identity() -> StubIdentityClient:
    return StubIdentityClient({"token-octo": "octo", "token-mona": "mona"})


@pytest.fixture
def registry_app(registry_store: PackageStore, registry_identity: StubIdentityClient) -> Any:
    profile = RegistryProfile(object_store_root="unused", max_tarball_bytes=4096)
    return create_app(profile=profile, identity_client=registry_identity, store=registry_store)


@pytest.fixture
def registry_session(registry_app: Any) -> FlaskSession:
    return FlaskSession(registry_app)


@pytest.fixture
def write_package(tmp_path: Path) -> Callable[..., Path]:
    def _write(relative: str, manifest: dict[str, Any] | str) -> Path:
        package_dir = tmp_path / "workspace" / relative
        package_dir.mkdir(parents=True, exist_ok=True)
        text = manifest if isinstance(manifest, str) else json.dumps(manifest, indent=4) + "\n"
        (package_dir / "package.json").write_text(text, encoding="utf-8")
        return package_dir

    return _write


# Stub packaging tool: gzips the manifest it sees (mtime=0, so the bytes are
# deterministic) into the tarball name the real tools would use.
_STUB_TOOL = """\
#!{python}
import gzip
import io
import json
import os
import sys

manifest_bytes = open("package.json", "rb").read()
manifest = json.loads(manifest_bytes)
failing = [item for item in os.environ.get("STUB_PACK_FAIL", "").split(",") if item]
if manifest["name"] in failing:
    print("stub pack failure for " + manifest["name"], file=sys.stderr)
    sys.exit(3)
if os.environ.get("STUB_PACK_SKIP_OUTPUT") == "1":
    sys.exit(0)
name = manifest["name"].replace("@", "", 1).replace("/", "-", 1) + "-" + manifest["version"]
args = sys.argv[1:]
if "--filename" in args:
    filename = args[args.index("--filename") + 1]
else:
    filename = name + ".tgz"
buffer = io.BytesIO()
with gzip.GzipFile(fileobj=buffer, mode="wb", mtime=0) as handle:
    handle.write(manifest_bytes)
with open(filename, "wb") as out:
    out.write(buffer.getvalue())
with open(os.environ.get("STUB_PACK_LOG", os.devnull), "a") as log:
    log.write(" ".join([os.path.basename(sys.argv[0])] + args) + "\\n")
print(filename)
"""


@pytest.fixture
def stub_tools(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Put stub pnpm/npm/bun/yarn executables first on PATH; returns the call log."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = textwrap.dedent(_STUB_TOOL).replace("{python}", sys.executable)
    for tool in ("pnpm", "npm", "bun", "yarn"):
        path = bin_dir / tool
        path.write_text(script, encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    log_path = tmp_path / "pack.log"
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("STUB_PACK_LOG", str(log_path))
    monkeypatch.delenv("STUB_PACK_FAIL", raising=False)
    monkeypatch.delenv("STUB_PACK_SKIP_OUTPUT", raising=False)
    return log_path


@pytest.fixture
def publisher_identity() -> StubIdentityClient:
    return StubIdentityClient({"token-octo": "octo", "token-mona": "mona"})
