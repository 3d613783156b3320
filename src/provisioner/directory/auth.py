"""
Token acquisition for Microsoft Graph.

Supports the app-only client credentials grant and the interactive
device code grant against the Entra ID v2.0 endpoints.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol, Sequence

import requests

from provisioner.config import GRAPH_URL, LOGIN_URL, DirectoryConfig
from provisioner.errors import AuthError


logger = logging.getLogger(__name__)

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

# Delegated scopes per operation
SCOPES_REPORT = ("User.Read.All", "UserAuthenticationMethod.Read.All")
SCOPES_ENROLL = (
    "User.Read.All",
    "GroupMember.Read.All",
    "UserAuthenticationMethod.ReadWrite.All",
)
SCOPES_POLICY = (
    "Policy.Read.All",
    "Policy.ReadWrite.AuthenticationMethod",
    "Policy.ReadWrite.ConditionalAccess",
)


@dataclass
class AccessToken:
    """Bearer token with its expiry (monotonic seconds)."""

    value: str
    expires_at: float
    scopes: frozenset[str] = field(default_factory=frozenset)

    def is_expired(self, skew: float = 60.0) -> bool:
        """Check if the token expires within `skew` seconds."""
        return time.monotonic() + skew >= self.expires_at


class TokenProvider(Protocol):
    """Protocol for token sources to allow mocking."""

    def acquire(self, scopes: Sequence[str]) -> AccessToken:
        """Acquire a token covering the given Graph scopes."""
        ...


def qualify_scopes(scopes: Sequence[str], graph_url: str = GRAPH_URL) -> list[str]:
    """Prefix bare permission names with the Graph resource URL."""
    qualified = []
    for scope in scopes:
        if scope.startswith("http") or scope in ("offline_access", "openid", "profile"):
            qualified.append(scope)
        else:
            qualified.append(f"{graph_url}/{scope}")
    return qualified


class _EntraTokenClient:
    """Shared token endpoint handling for both grants."""

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        login_url: str = LOGIN_URL,
        graph_url: str = GRAPH_URL,
        timeout: float = 30.0,
        http: requests.Session | None = None,
    ) -> None:
        if not tenant_id:
            raise AuthError("tenant_id is required")
        if not client_id:
            raise AuthError("client_id is required")
        self.tenant_id = tenant_id
        self.client_id = client_id
        self.login_url = login_url.rstrip("/")
        self.graph_url = graph_url.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def authority(self) -> str:
        return f"{self.login_url}/{self.tenant_id}/oauth2/v2.0"

    def _post(self, path: str, data: dict[str, str]) -> tuple[int, dict]:
        try:
            response = self.http.post(
                f"{self.authority}/{path}",
                data=data,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise AuthError(f"Token endpoint unreachable: {e}") from e
        try:
            payload = response.json()
        except ValueError:
            payload = {"error": "invalid_response", "error_description": response.text}
        return response.status_code, payload

    def _to_token(self, payload: dict, scopes: Sequence[str]) -> AccessToken:
        if "access_token" not in payload:
            raise AuthError(f"Token response missing access_token: {payload}")
        return AccessToken(
            value=payload["access_token"],
            expires_at=time.monotonic() + int(payload.get("expires_in", 3600)),
            scopes=frozenset(scopes),
        )


class ClientCredentialsProvider(_EntraTokenClient):
    """
    App-only tokens using a client secret.

    Application permissions are granted in the tenant, so the requested
    scopes collapse to the `.default` scope.
    """

    def __init__(self, tenant_id: str, client_id: str, client_secret: str, **kwargs) -> None:
        super().__init__(tenant_id, client_id, **kwargs)
        if not client_secret:
            raise AuthError("client_secret is required for client credentials auth")
        self.client_secret = client_secret

    def acquire(self, scopes: Sequence[str]) -> AccessToken:
        status, payload = self._post("token", {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "scope": f"{self.graph_url}/.default",
        })
        if status != 200:
            raise AuthError(
                f"Client credentials grant failed: "
                f"{payload.get('error_description') or payload.get('error')}"
            )
        logger.debug("Acquired app-only token")
        return self._to_token(payload, scopes)


class DeviceCodeProvider(_EntraTokenClient):
    """
    Delegated tokens using the device code grant.

    The sign-in instructions are passed to `on_prompt`. A refresh token is
    kept so that a later request for more scopes can be satisfied without
    another device code sign-in when the tenant allows it.
    """

    def __init__(
        self,
        tenant_id: str,
        client_id: str,
        on_prompt: Callable[[str], None] = print,
        sleep: Callable[[float], None] = time.sleep,
        **kwargs,
    ) -> None:
        super().__init__(tenant_id, client_id, **kwargs)
        self.on_prompt = on_prompt
        self._sleep = sleep
        self._refresh_token: str | None = None

    def acquire(self, scopes: Sequence[str]) -> AccessToken:
        requested = qualify_scopes(scopes, self.graph_url) + ["offline_access"]

        if self._refresh_token:
            token = self._redeem_refresh_token(requested, scopes)
            if token is not None:
                return token

        return self._device_code_flow(requested, scopes)

    def _redeem_refresh_token(self, requested: list[str], scopes: Sequence[str]) -> AccessToken | None:
        status, payload = self._post("token", {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "refresh_token": self._refresh_token or "",
            "scope": " ".join(requested),
        })
        if status != 200:
            logger.debug("Refresh token not accepted (%s), starting device code sign-in",
                         payload.get("error"))
            self._refresh_token = None
            return None
        self._refresh_token = payload.get("refresh_token", self._refresh_token)
        return self._to_token(payload, scopes)

    def _device_code_flow(self, requested: list[str], scopes: Sequence[str]) -> AccessToken:
        status, flow = self._post("devicecode", {
            "client_id": self.client_id,
            "scope": " ".join(requested),
        })
        if status != 200 or "device_code" not in flow:
            raise AuthError(
                f"Could not start device code sign-in: "
                f"{flow.get('error_description') or flow.get('error')}"
            )

        self.on_prompt(
            flow.get("message")
            or f"Open {flow.get('verification_uri')} and enter code {flow.get('user_code')}"
        )

        interval = int(flow.get("interval", 5))
        deadline = time.monotonic() + int(flow.get("expires_in", 900))

        while time.monotonic() < deadline:
            self._sleep(interval)
            status, payload = self._post("token", {
                "grant_type": DEVICE_CODE_GRANT,
                "client_id": self.client_id,
                "device_code": flow["device_code"],
            })
            if status == 200:
                self._refresh_token = payload.get("refresh_token")
                logger.debug("Device code sign-in completed")
                return self._to_token(payload, scopes)

            error = payload.get("error")
            if error == "authorization_pending":
                continue
            if error == "slow_down":
                interval += 5
                continue
            raise AuthError(
                f"Device code sign-in failed: {payload.get('error_description') or error}"
            )

        raise AuthError("Device code sign-in expired before it was completed")


def create_token_provider(config: DirectoryConfig, on_prompt: Callable[[str], None] = print) -> TokenProvider:
    """
    Create the token provider selected by configuration.

    Args:
        config: Directory configuration
        on_prompt: Callback receiving device code sign-in instructions

    Returns:
        TokenProvider instance
    """
    common = {
        "login_url": config.login_url,
        "graph_url": config.graph_url,
        "timeout": config.timeout,
    }
    if config.auth_mode == "client_credentials":
        return ClientCredentialsProvider(
            config.tenant_id or "",
            config.client_id or "",
            config.client_secret or "",
            **common,
        )
    if config.auth_mode == "device_code":
        return DeviceCodeProvider(
            config.tenant_id or "",
            config.client_id or "",
            on_prompt=on_prompt,
            **common,
        )
    raise AuthError(f"Unsupported auth_mode: {config.auth_mode}")
