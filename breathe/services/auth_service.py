"""Sign-in, sign-up and auth state observation."""

import asyncio
import logging
from typing import Callable, List, Optional

from ..models.result import ErrorKind, Result
from ..models.user import AuthState, UserProfile
from ..remote.errors import RemoteError
from ..remote.identity import AuthSession, IdentityClient
from ..remote.realtime_db import RealtimeDatabase

logger = logging.getLogger(__name__)

AuthListener = Callable[[bool], None]


class AuthService:
    """Holds the signed-in user and pushes logged-in changes to observers."""

    def __init__(self, identity: Optional[IdentityClient] = None, database: Optional[RealtimeDatabase] = None):
        self.identity = identity
        self.database = database
        self.state = AuthState.idle()
        self._session: Optional[AuthSession] = None
        self._listeners: List[AuthListener] = []

    @property
    def current_user(self) -> Optional[AuthSession]:
        return self._session

    @property
    def is_logged_in(self) -> bool:
        return self._session is not None

    def observe_auth_state(self, listener: AuthListener) -> Callable[[], None]:
        """Call listener now and on every login/logout. Returns an unsubscribe function."""
        self._listeners.append(listener)
        listener(self.is_logged_in)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_session(self, session: Optional[AuthSession]) -> None:
        was_logged_in = self.is_logged_in
        self._session = session
        if was_logged_in == self.is_logged_in:
            return
        for listener in list(self._listeners):
            try:
                listener(self.is_logged_in)
            except Exception:
                logger.exception("Auth state listener failed")

    async def sign_in(self, email: str, password: str) -> Result:
        """Sign in with email and password. Result value is the user id."""
        if self.identity is None:
            return self._fail("Sign-in is not configured", ErrorKind.AUTH)

        self.state = AuthState.loading()
        try:
            session = await self.identity.sign_in(email, password)
        except RemoteError as e:
            return self._fail(e.message or "Login failed", ErrorKind.AUTH)
        except asyncio.TimeoutError:
            return self._fail("Login timed out", ErrorKind.TIMEOUT)

        self._set_session(session)
        self.state = AuthState.success(session.uid)
        logger.info(f"Signed in user {session.uid}")
        return Result.success(session.uid)

    async def sign_up(self, email: str, password: str, name: str) -> Result:
        """Create an account and store its profile. Result value is the user id."""
        if self.identity is None:
            return self._fail("Sign-up is not configured", ErrorKind.AUTH)

        self.state = AuthState.loading()
        try:
            session = await self.identity.sign_up(email, password)
        except RemoteError as e:
            return self._fail(e.message or "Signup failed", ErrorKind.AUTH)
        except asyncio.TimeoutError:
            return self._fail("Signup timed out", ErrorKind.TIMEOUT)

        # The account exists from here on, even if the profile write fails
        self._set_session(session)

        profile = UserProfile(uid=session.uid, email=email, name=name)
        if self.database is not None:
            try:
                await self.database.set(f"users/{session.uid}", profile.to_remote(), session.id_token)
            except (RemoteError, asyncio.TimeoutError) as e:
                logger.error(f"Failed to store profile for {session.uid}: {e}")
                return self._fail("Failed to store user data", ErrorKind.STORAGE)

        self.state = AuthState.success(session.uid)
        logger.info(f"Signed up user {session.uid}")
        return Result.success(session.uid)

    def sign_out(self) -> None:
        self._set_session(None)
        self.state = AuthState.idle()

    def _fail(self, message: str, kind: ErrorKind) -> Result:
        logger.warning(f"Auth failed: {message}")
        self.state = AuthState.error(message)
        return Result.failure(message, kind)
