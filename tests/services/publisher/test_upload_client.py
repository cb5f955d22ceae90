from __future__ import annotations

from typing import Any

import pytest
import requests

from preview_pkg.checksum import digest
from preview_pkg.coordinates import PackageCoordinate
from preview_pkg.errors import PreviewPkgError
from preview_pkg.publisher.models import OutcomeStatus
from preview_pkg.publisher.packer import PackResult
from preview_pkg.publisher.upload import RegistryClient, classify_upload_response

ARCHIVE = b"\x1f\x8barchive"
LOCAL = digest(ARCHIVE)


class _StubResponse:
    def __init__(
        self,
        status_code: int,
        body: Any = None,
        *,
        content: bytes = b"",
        headers: dict[str, str] | None = None,
    ) -> None:
        self.status_code = status_code
        self._body = body
        self.content = content
        self.headers = headers or {}
        self.text = ""

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json")
        return self._body


class _StubSession:
    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def _next(self, method: str, url: str, kwargs: dict[str, Any]) -> object:
        self.calls.append((method, url, kwargs))
        if not self._responses:
            raise AssertionError("no stub responses configured")
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url: str, **kwargs: Any) -> object:
        return self._next("POST", url, kwargs)

    def get(self, url: str, **kwargs: Any) -> object:
        return self._next("GET", url, kwargs)


def _pack_result() -> PackResult:
    return PackResult(
        filename="ui-1.0.0.tgz",
        archive_bytes=ARCHIVE,
        digest=LOCAL,
        size_bytes=len(ARCHIVE),
        tool_output="",
    )


def _client(session: _StubSession) -> RegistryClient:
    return RegistryClient(registry_url="https://pkg.rx2.dev", timeout_seconds=1.0, session=session)  # type: ignore[arg-type]


def test_upload_sends_multipart_with_bearer_token() -> None:
    session = _StubSession([_StubResponse(201, {"message": "Package created"})])
    result = _client(session).upload("https://pkg.rx2.dev/octo/ui@v1", _pack_result(), "gho_token")

    assert result.status is OutcomeStatus.PUBLISHED
    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://pkg.rx2.dev/octo/ui@v1")
    assert kwargs["headers"] == {"Authorization": "Bearer gho_token"}
    assert kwargs["data"] == {"sha256": LOCAL}
    assert kwargs["files"]["tarball"][0] == "ui-1.0.0.tgz"
    assert kwargs["files"]["tarball"][1] == ARCHIVE


def test_conflict_with_same_digest_is_already_exists() -> None:
    result = classify_upload_response(409, {"error": "Package ui@v1 already exists", "sha256": LOCAL}, LOCAL)
    assert result.status is OutcomeStatus.ALREADY_EXISTS
    assert result.reason_code is None


def test_conflict_with_other_digest_carries_both_values() -> None:
    stored = "f" * 64
    result = classify_upload_response(409, {"error": "Package ui@v1 already exists", "sha256": stored}, LOCAL)
    assert result.status is OutcomeStatus.CHECKSUM_CONFLICT
    assert (result.sha256_expected, result.sha256_got) == (stored, LOCAL)


def test_conflict_without_recorded_digest() -> None:
    result = classify_upload_response(409, {"error": "Package ui@v1 already exists"}, LOCAL)
    assert result.status is OutcomeStatus.ERROR
    assert result.reason_code == "CONFLICT_UNVERIFIED"


@pytest.mark.parametrize(
    "status_code,body",
    [
        (201, None),
        (201, ["not", "an", "object"]),
        (201, {"error": "weird"}),
        (500, {"message": 12}),
        (502, {}),
    ],
)
def test_unparseable_responses_are_response_invalid(status_code: int, body: Any) -> None:
    result = classify_upload_response(status_code, body, LOCAL)
    assert result.status is OutcomeStatus.ERROR
    assert result.reason_code == "RESPONSE_INVALID"


def test_rejections_surface_registry_error() -> None:
    result = classify_upload_response(401, {"error": "Unauthorized: invalid GitHub token"}, LOCAL)
    assert result.status is OutcomeStatus.ERROR
    assert result.reason_code == "UPLOAD_REJECTED"
    assert "invalid GitHub token" in (result.detail or "")


def test_transport_failure_is_per_package_error() -> None:
    session = _StubSession([requests.ConnectionError("connection refused")])
    result = _client(session).upload("https://pkg.rx2.dev/octo/ui@v1", _pack_result(), "t")
    assert result.status is OutcomeStatus.ERROR
    assert result.reason_code == "UPLOAD_TRANSPORT_ERROR"


def test_non_json_body_is_response_invalid() -> None:
    session = _StubSession([_StubResponse(502, None)])
    result = _client(session).upload("https://pkg.rx2.dev/octo/ui@v1", _pack_result(), "t")
    assert result.reason_code == "RESPONSE_INVALID"


def test_fetch_verifies_recorded_digest() -> None:
    coordinate = PackageCoordinate(owner="acme", name="ui", version="v1")
    session = _StubSession([_StubResponse(200, content=ARCHIVE, headers={"X-Checksum-Sha256": LOCAL})])
    fetched = _client(session).fetch("octo", coordinate)
    assert fetched.archive_bytes == ARCHIVE
    assert fetched.verified is True
    assert session.calls[0][1] == "https://pkg.rx2.dev/octo/@acme/ui@v1"


def test_fetch_rejects_tampered_bytes() -> None:
    coordinate = PackageCoordinate(name="ui", version="v1")
    session = _StubSession([_StubResponse(200, content=b"tampered", headers={"X-Checksum-Sha256": LOCAL})])
    with pytest.raises(PreviewPkgError) as excinfo:
        _client(session).fetch("octo", coordinate)
    assert excinfo.value.code == "FETCH_CHECKSUM_MISMATCH"


def test_fetch_not_found() -> None:
    coordinate = PackageCoordinate(name="ui", version="v1")
    session = _StubSession([_StubResponse(404, {"error": "Package not found"})])
    with pytest.raises(PreviewPkgError, match="PACKAGE_NOT_FOUND"):
        _client(session).fetch("octo", coordinate)
