"""GitHub identity boundary and OAuth device flow (over requests)."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Callable, Mapping

import requests

from .coordinates import validate_identity
from .errors import IdentityError

GITHUB_API_URL = "https://api.github.com"
GITHUB_LOGIN_URL = "https://github.com"
DEFAULT_SCOPES = ("read:user", "user:email")
DEVICE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"
SLOW_DOWN_STEP_SECONDS = 5.0

logger = logging.getLogger(__name__)


def bearer_token(header_value: str | None) -> str | None:
    """Extract the credential from an `Authorization` header value."""
    text = str(header_value or "").strip()
    if not text:
        return None
    scheme, _, rest = text.partition(" ")
    if rest and scheme.lower() in {"bearer", "token"}:
        text = rest.strip()
    return text or None


@dataclass
class GithubIdentityClient:
    """Resolves a bearer token to the GitHub login it belongs to."""

    api_url: str = GITHUB_API_URL
    timeout_seconds: float = 30.0
    session: requests.Session | None = None

    def __post_init__(self) -> None:
        self._session = self.session or requests.Session()

    def authenticated_login(self, token: str) -> str:
        url = self.api_url.rstrip("/") + "/user"
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        }
        try:
            response = self._session.get(url, headers=headers, timeout=self.timeout_seconds)
        except requests.RequestException as exc:
            raise IdentityError("IDENTITY_UNAVAILABLE", str(exc)[:256]) from exc
        if response.status_code in {401, 403}:
            raise IdentityError("IDENTITY_REJECTED", f"http_{response.status_code}")
        if response.status_code >= 400:
            raise IdentityError("IDENTITY_UNAVAILABLE", f"http_{response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise IdentityError("IDENTITY_RESPONSE_INVALID", "response is not JSON") from exc
        login = body.get("login") if isinstance(body, Mapping) else None
        if not isinstance(login, str):
            raise IdentityError("IDENTITY_RESPONSE_INVALID", "login missing from response")
        try:
            return validate_identity(login)
        except ValueError as exc:
            raise IdentityError("IDENTITY_RESPONSE_INVALID", str(exc)) from exc


@dataclass(frozen=True)
class DeviceVerification:
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: float


@dataclass(frozen=True)
class DeviceFlowToken:
    client_id: str
    scopes: tuple[str, ...]
    token: str


@dataclass
class GithubDeviceFlow:
    """OAuth device authorization grant against github.com."""

    client_id: str
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    login_url: str = GITHUB_LOGIN_URL
    timeout_seconds: float = 30.0
    session: requests.Session | None = None
    sleep: Callable[[float], None] = field(default=time.sleep)
    clock: Callable[[], float] = field(default=time.monotonic)

    def __post_init__(self) -> None:
        if not self.client_id:
            raise IdentityError("GITHUB_CLIENT_ID_MISSING", "set github_client_id in the publisher profile")
        self._session = self.session or requests.Session()

    def request_code(self) -> DeviceVerification:
        body = self._post_form(
            "/login/device/code",
            {"client_id": self.client_id, "scope": " ".join(self.scopes)},
        )
        try:
            return DeviceVerification(
                device_code=str(body["device_code"]),
                user_code=str(body["user_code"]),
                verification_uri=str(body["verification_uri"]),
                expires_in=int(body.get("expires_in") or 900),
                interval=float(body.get("interval") or 5),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise IdentityError("DEVICE_FLOW_FAILED", f"unexpected device code response: {exc}") from exc

    def poll_token(self, verification: DeviceVerification) -> DeviceFlowToken:
        interval = verification.interval
        deadline = self.clock() + verification.expires_in
        while True:
            if self.clock() >= deadline:
                raise IdentityError("DEVICE_CODE_EXPIRED")
            self.sleep(interval)
            body = self._post_form(
                "/login/oauth/access_token",
                {
                    "client_id": self.client_id,
                    "device_code": verification.device_code,
                    "grant_type": DEVICE_GRANT_TYPE,
                },
            )
            error = body.get("error")
            if not error:
                token = body.get("access_token")
                if not isinstance(token, str) or not token:
                    raise IdentityError("DEVICE_FLOW_FAILED", "access_token missing from response")
                scope_text = str(body.get("scope") or "")
                scopes = tuple(item.strip() for item in scope_text.split(",") if item.strip())
                return DeviceFlowToken(client_id=self.client_id, scopes=scopes, token=token)
            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval = float(body.get("interval") or interval + SLOW_DOWN_STEP_SECONDS)
                logger.debug("GitHub: device flow asked to slow down (interval=%s)", interval)
                continue
            if error == "expired_token":
                raise IdentityError("DEVICE_CODE_EXPIRED")
            if error == "access_denied":
                raise IdentityError("DEVICE_ACCESS_DENIED")
            raise IdentityError("DEVICE_FLOW_FAILED", str(error))

    def _post_form(self, path: str, data: dict[str, str]) -> dict[str, Any]:
        url = self.login_url.rstrip("/") + path
        try:
            response = self._session.post(
                url,
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise IdentityError("DEVICE_FLOW_UNAVAILABLE", str(exc)[:256]) from exc
        if response.status_code >= 400:
            raise IdentityError("DEVICE_FLOW_UNAVAILABLE", f"http_{response.status_code}")
        try:
            body = response.json()
        except ValueError as exc:
            raise IdentityError("DEVICE_FLOW_FAILED", "response is not JSON") from exc
        if not isinstance(body, dict):
            raise IdentityError("DEVICE_FLOW_FAILED", "response is not an object")
        return body
