"""Registry upload and fetch boundary client."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Mapping

import requests

from ..checksum import digest
from ..coordinates import PackageCoordinate, registry_url
from ..errors import PreviewPkgError
from .config import DEFAULT_REGISTRY_URL
from .models import OutcomeStatus
from .packer import PackResult

CHECKSUM_HEADER = "X-Checksum-Sha256"
TARBALL_CONTENT_TYPE = "application/tar+gzip"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadResult:
    status: OutcomeStatus
    http_status: int | None = None
    reason_code: str | None = None
    detail: str | None = None
    sha256_expected: str | None = None
    sha256_got: str | None = None


@dataclass(frozen=True)
class FetchedPackage:
    url: str
    archive_bytes: bytes
    digest: str
    verified: bool


@dataclass
class RegistryClient:
    registry_url: str = DEFAULT_REGISTRY_URL
    timeout_seconds: float = 60.0
    session: requests.Session | None = None

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()

    def package_url(self, identity: str, package_name: str, version: str) -> str:
        return registry_url(self.registry_url, identity, package_name, version)

    def upload(self, package_url: str, pack_result: PackResult, token: str) -> UploadResult:
        files = {"tarball": (pack_result.filename, pack_result.archive_bytes, TARBALL_CONTENT_TYPE)}
        data = {"sha256": pack_result.digest}
        headers = {"Authorization": f"Bearer {token}"}
        try:
            response = self._session.post(
                package_url,
                files=files,
                data=data,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            logger.warning("Upload: transport failure (url=%s, error=%s)", package_url, exc)
            return UploadResult(
                status=OutcomeStatus.ERROR,
                reason_code="UPLOAD_TRANSPORT_ERROR",
                detail=str(exc)[:256],
            )
        return classify_upload_response(response.status_code, _json_body(response), pack_result.digest)

    def fetch(self, identity: str, coordinate: PackageCoordinate) -> FetchedPackage:
        url = self.package_url(identity, coordinate.package_name, coordinate.version)
        try:
            response = self._session.get(url, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise PreviewPkgError("FETCH_TRANSPORT_ERROR", str(exc)[:256]) from exc
        if response.status_code == 404:
            raise PreviewPkgError("PACKAGE_NOT_FOUND", url)
        if response.status_code >= 400:
            body = _json_body(response)
            message = body.get("error") if isinstance(body, Mapping) else None
            detail = f"http_{response.status_code}"
            if isinstance(message, str):
                detail = f"{detail}: {message}"
            raise PreviewPkgError("FETCH_FAILED", detail)

        archive_bytes = response.content
        actual = digest(archive_bytes)
        recorded = (response.headers.get(CHECKSUM_HEADER) or "").strip().lower()
        if recorded and recorded != actual:
            raise PreviewPkgError(
                "FETCH_CHECKSUM_MISMATCH",
                f"expected={recorded} actual={actual}",
            )
        if not recorded:
            logger.debug("Upload: registry sent no checksum header (url=%s)", url)
        return FetchedPackage(url=url, archive_bytes=archive_bytes, digest=actual, verified=bool(recorded))


def classify_upload_response(status_code: int, body: Any, local_digest: str) -> UploadResult:
    """Turn a registry response into an upload result.

    Only a JSON object with a string `message` or string `error` counts as a
    registry answer; anything else is RESPONSE_INVALID.
    """
    if not isinstance(body, Mapping):
        return UploadResult(
            status=OutcomeStatus.ERROR,
            http_status=status_code,
            reason_code="RESPONSE_INVALID",
            detail=f"http_{status_code}: response is not a JSON object",
        )
    message = body.get("message")
    error = body.get("error")
    if 200 <= status_code < 300:
        if isinstance(message, str):
            return UploadResult(status=OutcomeStatus.PUBLISHED, http_status=status_code, detail=message)
        return UploadResult(
            status=OutcomeStatus.ERROR,
            http_status=status_code,
            reason_code="RESPONSE_INVALID",
            detail=f"http_{status_code}: message missing from response",
        )
    if not isinstance(error, str):
        return UploadResult(
            status=OutcomeStatus.ERROR,
            http_status=status_code,
            reason_code="RESPONSE_INVALID",
            detail=f"http_{status_code}: error missing from response",
        )
    if status_code == 409:
        stored = body.get("sha256")
        if not isinstance(stored, str) or not stored:
            # The registry has the key but no checksum record yet (upload in flight).
            return UploadResult(
                status=OutcomeStatus.ERROR,
                http_status=status_code,
                reason_code="CONFLICT_UNVERIFIED",
                detail=error,
            )
        if stored == local_digest:
            return UploadResult(
                status=OutcomeStatus.ALREADY_EXISTS,
                http_status=status_code,
                detail=error,
                sha256_expected=stored,
                sha256_got=local_digest,
            )
        return UploadResult(
            status=OutcomeStatus.CHECKSUM_CONFLICT,
            http_status=status_code,
            reason_code="CHECKSUM_CONFLICT",
            detail=error,
            sha256_expected=stored,
            sha256_got=local_digest,
        )
    return UploadResult(
        status=OutcomeStatus.ERROR,
        http_status=status_code,
        reason_code="UPLOAD_REJECTED",
        detail=f"http_{status_code}: {error}",
    )


def _json_body(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return None
