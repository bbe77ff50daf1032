"""Email/password identity provider client (Firebase Identity Toolkit REST API)."""

import logging
from dataclasses import dataclass
from typing import Optional

from .errors import RemoteError
from .http import request_json

logger = logging.getLogger(__name__)

IDENTITY_BASE_URL = "https://identitytoolkit.googleapis.com/v1"

# Provider error codes mapped to messages fit for the login screen
_FRIENDLY_ERRORS = {
    "EMAIL_NOT_FOUND": "No account exists for this email.",
    "INVALID_PASSWORD": "The password is incorrect.",
    "INVALID_LOGIN_CREDENTIALS": "The email or password is incorrect.",
    "USER_DISABLED": "This account has been disabled.",
    "EMAIL_EXISTS": "An account already exists for this email.",
    "INVALID_EMAIL": "The email address is badly formatted.",
    "TOO_MANY_ATTEMPTS_TRY_LATER": "Too many attempts. Please try again later.",
}


def friendly_auth_error(code: str) -> str:
    """Map a provider error code such as 'WEAK_PASSWORD : Password should be...' to a message."""
    key = code.split(":", 1)[0].strip()
    if key in _FRIENDLY_ERRORS:
        return _FRIENDLY_ERRORS[key]
    if key == "WEAK_PASSWORD":
        return code.split(":", 1)[1].strip() if ":" in code else "The password is too weak."
    return code


@dataclass(frozen=True)
class AuthSession:
    """A signed-in user."""
    uid: str
    id_token: str
    email: str = ""
    refresh_token: Optional[str] = None


class IdentityClient:
    """Signs users in and up with email and password."""

    def __init__(self, api_key: str, base_url: str = IDENTITY_BASE_URL, timeout_seconds: float = 10.0):
        """Initialize identity client.

        Args:
            api_key: Web API key of the identity project
            base_url: Identity Toolkit base URL
            timeout_seconds: Per-request timeout
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

        logger.info("IdentityClient initialized")

    async def sign_in(self, email: str, password: str) -> AuthSession:
        return await self._account_call("accounts:signInWithPassword", email, password)

    async def sign_up(self, email: str, password: str) -> AuthSession:
        return await self._account_call("accounts:signUp", email, password)

    async def _account_call(self, endpoint: str, email: str, password: str) -> AuthSession:
        payload = {"email": email, "password": password, "returnSecureToken": True}
        try:
            data = await request_json(
                "POST",
                f"{self.base_url}/{endpoint}",
                json=payload,
                params={"key": self.api_key},
                timeout_seconds=self.timeout_seconds,
            )
        except RemoteError as e:
            raise RemoteError(friendly_auth_error(e.message), status=e.status) from e

        if not isinstance(data, dict) or not data.get("localId") or not data.get("idToken"):
            raise RemoteError("Identity provider returned an incomplete response")

        return AuthSession(
            uid=data["localId"],
            id_token=data["idToken"],
            email=data.get("email", email),
            refresh_token=data.get("refreshToken"),
        )
