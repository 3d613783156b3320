"""
Microsoft Graph session and client.

DirectorySession owns the HTTP session and the bearer token: the token is
acquired on first use, re-acquired once when Graph rejects it, and
dropped on close. DirectoryClient exposes the Graph endpoints the
provisioner consumes on top of a session.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterator, Sequence, TypeVar
from urllib.parse import quote

import pydantic
import requests

from provisioner.config import GRAPH_URL
from provisioner.directory.auth import AccessToken, TokenProvider
from provisioner.directory.schemas import (
    AuthenticationMethod,
    CredentialCreationOptions,
    DirectoryGroup,
    DirectoryUser,
    Fido2Registration,
)
from provisioner.errors import AuthError, DirectoryError, ValidationError
from provisioner.policy.models import PolicyDocument


logger = logging.getLogger(__name__)

USER_SELECT = "id,userPrincipalName,displayName"

# UPN (name@domain) or a directory object id
_UPN_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_OBJECT_ID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)


def validate_identity(identity: str) -> str:
    """
    Validate a user identity (UPN or object id).

    Raises:
        ValidationError: If the identity is malformed
    """
    value = (identity or "").strip()
    if not (_UPN_PATTERN.match(value) or _OBJECT_ID_PATTERN.match(value)):
        raise ValidationError(f"Malformed identity: {identity!r}")
    return value


class DirectorySession:
    """
    Authenticated Microsoft Graph session.

    Use as a context manager so the session is torn down at the end of
    each top-level operation.
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        graph_url: str = GRAPH_URL,
        timeout: float = 30.0,
        scopes: Sequence[str] = (),
        http: requests.Session | None = None,
    ) -> None:
        """
        Initialize the session.

        Args:
            token_provider: Source of bearer tokens
            graph_url: Graph base URL
            timeout: Per-request timeout in seconds
            scopes: Initial scopes to request
            http: Pre-built requests session (tests)
        """
        self.token_provider = token_provider
        self.graph_url = graph_url.rstrip("/")
        self.timeout = timeout
        self._scopes: set[str] = set(scopes)
        self._http = http
        self._token: AccessToken | None = None

    def __enter__(self) -> DirectorySession:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @property
    def scopes(self) -> frozenset[str]:
        return frozenset(self._scopes)

    @property
    def http(self) -> requests.Session:
        if self._http is None:
            self._http = requests.Session()
            self._http.headers.update({"Accept": "application/json"})
        return self._http

    def require_scopes(self, *scopes: str) -> None:
        """
        Extend the session's scopes.

        A token acquired for fewer scopes is discarded so the next request
        asks for the union.
        """
        missing = set(scopes) - self._scopes
        if missing:
            logger.info("Requesting additional scopes: %s", ", ".join(sorted(missing)))
            self._scopes |= missing
            self._token = None

    def _access_token(self) -> str:
        if self._token is None or self._token.is_expired():
            self._token = self.token_provider.acquire(sorted(self._scopes))
        return self._token.value

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> requests.Response:
        """
        Send a request to Graph, re-authenticating once on 401.

        Args:
            method: HTTP method
            path: Path below the Graph URL, or an absolute continuation link
            params: Query parameters
            json: JSON body

        Returns:
            The response (any status other than 401)

        Raises:
            AuthError: If Graph rejects a freshly acquired token
            DirectoryError: On transport failure
        """
        url = path if path.startswith("http") else f"{self.graph_url}{path}"

        for attempt in range(2):
            headers = {"Authorization": f"Bearer {self._access_token()}"}
            try:
                response = self.http.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=self.timeout,
                )
            except requests.exceptions.RequestException as e:
                raise DirectoryError(f"{method} {path} failed: {e}") from e

            if response.status_code != 401:
                return response

            if attempt == 0:
                logger.info("Token rejected by Graph, re-authenticating")
                self._token = None

        raise AuthError(f"{method} {path} unauthorized: {response.text}")

    def get_json(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET a resource and return its JSON body."""
        response = self.request("GET", path, params=params)
        raise_for_status(response, f"GET {path}")
        return response.json()

    def paginate(self, path: str, params: dict[str, Any] | None = None) -> Iterator[dict[str, Any]]:
        """Yield every item of a collection, following @odata.nextLink."""
        next_url: str | None = path
        while next_url:
            page = self.get_json(next_url, params=params)
            yield from page.get("value", [])
            next_url = page.get("@odata.nextLink")
            params = None  # continuation link already carries the query

    def close(self) -> None:
        """Release the HTTP session and forget the token."""
        if self._http is not None:
            self._http.close()
            self._http = None
        self._token = None


ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


def parse_payload(model: type[ModelT], data: Any) -> ModelT:
    """Validate a Graph payload, raising DirectoryError when it is malformed."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise DirectoryError(
            f"Malformed {model.__name__} in Graph response: {e.error_count()} invalid field(s)",
            body=str(data),
        ) from e


def raise_for_status(response: requests.Response, context: str) -> None:
    """Raise DirectoryError for any non-2xx response."""
    if 200 <= response.status_code < 300:
        return
    if response.status_code == 403:
        message = f"{context}: access denied (missing permission?)"
    else:
        message = f"{context}: HTTP {response.status_code}"
    raise DirectoryError(message, status_code=response.status_code, body=response.text)


class DirectoryClient:
    """
    Graph endpoints used by the provisioner.

    Holds a DirectorySession; does not own its lifecycle.
    """

    def __init__(self, session: DirectorySession) -> None:
        self.session = session

    @staticmethod
    def _user_path(identity: str) -> str:
        return f"/v1.0/users/{quote(identity, safe='@')}"

    def get_user(self, identity: str) -> DirectoryUser:
        """Resolve a UPN or object id to a user."""
        identity = validate_identity(identity)
        data = self.session.get_json(self._user_path(identity), params={"$select": USER_SELECT})
        return parse_payload(DirectoryUser, data)

    def list_users(self) -> Iterator[DirectoryUser]:
        """Enumerate every user in the directory."""
        for item in self.session.paginate("/v1.0/users", params={"$select": USER_SELECT}):
            yield parse_payload(DirectoryUser, item)

    def find_group(self, display_name: str) -> DirectoryGroup:
        """
        Resolve a group by display name.

        Raises:
            ValidationError: If no group has that name
        """
        if not display_name or not display_name.strip():
            raise ValidationError("Group name must not be empty")
        escaped = display_name.strip().replace("'", "''")
        data = self.session.get_json(
            "/v1.0/groups",
            params={"$filter": f"displayName eq '{escaped}'", "$select": "id,displayName"},
        )
        groups = data.get("value", [])
        if not groups:
            raise ValidationError(f"Group not found: {display_name}")
        if len(groups) > 1:
            logger.warning("%d groups named '%s', using the first", len(groups), display_name)
        return parse_payload(DirectoryGroup, groups[0])

    def list_group_members(self, group_id: str) -> Iterator[DirectoryUser]:
        """Enumerate the user members of a group."""
        path = f"/v1.0/groups/{quote(group_id)}/members/microsoft.graph.user"
        for item in self.session.paginate(path, params={"$select": USER_SELECT}):
            yield parse_payload(DirectoryUser, item)

    def list_authentication_methods(self, identity: str) -> list[AuthenticationMethod]:
        """List a user's registered authentication methods, in response order."""
        path = f"{self._user_path(identity)}/authentication/methods"
        return [parse_payload(AuthenticationMethod, item) for item in self.session.paginate(path)]

    def list_fido2_methods(self, identity: str) -> list[AuthenticationMethod]:
        """List a user's FIDO2 credentials, in response order."""
        return [m for m in self.list_authentication_methods(identity) if m.is_fido2]

    def get_creation_options(self, identity: str, timeout_minutes: int = 5) -> CredentialCreationOptions:
        """
        Request a FIDO2 credential creation challenge for a user.

        Raises:
            DirectoryError: With status_code 400 if the user is unknown,
                the caller lacks permission or FIDO2 is not enabled
        """
        path = (
            f"/beta/users/{quote(identity, safe='@')}/authentication/fido2Methods/"
            f"creationOptions(challengeTimeoutInMinutes={int(timeout_minutes)})"
        )
        return parse_payload(CredentialCreationOptions, self.session.get_json(path))

    def register_fido2_method(self, identity: str, registration: Fido2Registration) -> dict[str, Any]:
        """Submit a created credential and its attestation."""
        path = f"/beta/users/{quote(identity, safe='@')}/authentication/fido2Methods"
        response = self.session.request("POST", path, json=registration.to_request())
        raise_for_status(response, f"Register FIDO2 method for {identity}")
        return response.json() if response.content else {}

    def apply_policy(self, document: PolicyDocument) -> dict[str, Any]:
        """Send a policy document (PATCH method config or POST strength policy)."""
        response = self.session.request(document.method, document.endpoint, json=document.body)
        raise_for_status(response, f"{document.method} {document.endpoint}")
        return response.json() if response.content else {}
