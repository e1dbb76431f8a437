from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from threading import RLock
from typing import Dict, FrozenSet, Mapping, Optional

from .errors import UnauthenticatedError

API_CLIENT_ROLE = "ROLE_API_CLIENT"
USER_ROLE = "ROLE_USER"
API_CLIENT_ID = "api-client"


@dataclass(frozen=True)
class Principal:
    id: str
    display_name: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_api_client(self) -> bool:
        return API_CLIENT_ROLE in self.roles


def api_client_principal() -> Principal:
    return Principal(id=API_CLIENT_ID, display_name="API client", roles=frozenset({API_CLIENT_ROLE}))


def user_principal(user_id: str, display_name: Optional[str] = None) -> Principal:
    return Principal(id=user_id, display_name=display_name or user_id, roles=frozenset({USER_ROLE}))


class IdentityContext:
    """Principal bound to one request, or nothing."""

    def __init__(self, principal: Optional[Principal] = None):
        self._principal = principal

    def get_current_user(self) -> Principal:
        if self._principal is None:
            raise UnauthenticatedError("Authentication required.")
        return self._principal

    def optional_user(self) -> Optional[Principal]:
        return self._principal


class TokenRegistry:
    def __init__(self) -> None:
        self._lock = RLock()
        self._tokens: Dict[str, Principal] = {}

    def register(self, token: str, principal: Principal) -> None:
        if not token:
            raise ValueError("token must be non-empty")
        with self._lock:
            self._tokens[token] = principal

    def revoke(self, token: str) -> None:
        with self._lock:
            self._tokens.pop(token, None)

    def lookup(self, token: str) -> Optional[Principal]:
        if not token:
            return None
        with self._lock:
            return self._tokens.get(token)


class IdentityResolver:
    """
    Turn request credentials into an IdentityContext.

    Accepted schemes:
    - `X-API-KEY: <key>` or `Authorization: ApiKey <key>` -> synthetic api-client principal
    - `Authorization: Bearer <token>` -> principal registered for the token
    Anything else resolves to an empty context.
    """

    def __init__(self, api_key: str, tokens: TokenRegistry):
        self._api_key = api_key or ""
        self._tokens = tokens

    def _api_key_matches(self, candidate: str) -> bool:
        if not self._api_key or not candidate:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), self._api_key.encode("utf-8"))

    def resolve(self, headers: Mapping[str, str]) -> IdentityContext:
        lowered = {str(k).lower(): str(v) for k, v in headers.items()}
        api_key = lowered.get("x-api-key", "").strip()
        authorization = lowered.get("authorization", "").strip()

        if not api_key and authorization.startswith("ApiKey "):
            api_key = authorization[len("ApiKey "):].strip()
        if api_key:
            if self._api_key_matches(api_key):
                return IdentityContext(api_client_principal())
            return IdentityContext(None)

        if authorization.startswith("Bearer "):
            token = authorization[len("Bearer "):].strip()
            return IdentityContext(self._tokens.lookup(token))

        return IdentityContext(None)
