"""Home surface data: quote, preferences and preference toggles."""

import asyncio
import logging
from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from pydantic import ValidationError

from ..models.result import ErrorKind, Result
from ..models.user import FALLBACK_QUOTE, HomeState, Quote, UserPreferences
from ..remote.errors import RemoteError
from ..remote.quotes import ZenQuotesClient
from .auth_service import AuthService
from .preferences import PreferencesStore

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timed out. Please try again."

HomeListener = Callable[[HomeState], None]


class HomeService:
    """Loads home data under an overall timeout and saves preference changes."""

    def __init__(self, quotes: ZenQuotesClient, auth: AuthService,
                 preferences: Optional[PreferencesStore] = None, timeout_seconds: float = 10.0,
                 default_prefs: Optional[UserPreferences] = None):
        """Initialize home service.

        Args:
            quotes: Quote provider
            auth: Source of the signed-in user
            preferences: Remote preference store, None when running offline
            timeout_seconds: Bound on a whole refresh
            default_prefs: Preferences used when none can be loaded
        """
        self.quotes = quotes
        self.auth = auth
        self.preferences = preferences
        self.timeout_seconds = timeout_seconds
        self.default_prefs = default_prefs or UserPreferences()
        self.state = HomeState(is_loading=True, prefs=self.default_prefs)
        self._listeners: List[HomeListener] = []

    def subscribe(self, listener: HomeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: HomeState) -> None:
        self.state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Home state listener failed")

    async def refresh(self) -> HomeState:
        """Fetch a quote and the user's preferences.

        A missing quote or preferences fall back to defaults. Exceeding the timeout
        sets a TIMEOUT error distinct from any other failure.
        """
        self._set_state(replace(self.state, is_loading=True, error=None, error_kind=None))

        try:
            quote_result, prefs_result = await asyncio.wait_for(self._load(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"Home refresh timed out after {self.timeout_seconds}s")
            self._set_state(replace(self.state, is_loading=False, error=TIMEOUT_MESSAGE,
                                    error_kind=ErrorKind.TIMEOUT))
            return self.state
        except Exception as e:
            logger.error(f"Error in refresh: {e}", exc_info=True)
            self._set_state(replace(self.state, is_loading=False, error=str(e) or "Failed to load home data",
                                    error_kind=ErrorKind.UNKNOWN))
            return self.state

        self._set_state(HomeState(
            is_loading=False,
            quote=quote_result.get_or(FALLBACK_QUOTE),
            prefs=prefs_result.get_or(self.default_prefs),
        ))
        return self.state

    async def _load(self) -> Tuple[Result, Result]:
        return await asyncio.gather(self.fetch_quote(), self.get_preferences())

    async def fetch_quote(self) -> Result:
        try:
            quote: Quote = await self.quotes.fetch_random_quote()
        except RemoteError as e:
            logger.debug(f"Quote fetch failed: {e}")
            return Result.failure(e.message, ErrorKind.NETWORK)
        except asyncio.TimeoutError:
            logger.debug("Quote fetch timed out")
            return Result.failure(TIMEOUT_MESSAGE, ErrorKind.TIMEOUT)
        return Result.success(quote)

    async def get_preferences(self) -> Result:
        """Signed-out users and offline mode get default preferences."""
        user = self.auth.current_user
        if user is None or self.preferences is None:
            return Result.success(self.default_prefs)
        try:
            prefs = await self.preferences.get(user.uid, user.id_token)
        except RemoteError as e:
            return Result.failure(e.message, ErrorKind.NETWORK)
        except asyncio.TimeoutError:
            return Result.failure(TIMEOUT_MESSAGE, ErrorKind.TIMEOUT)
        except ValidationError as e:
            return Result.failure(f"Invalid preferences: {e.error_count()} error(s)", ErrorKind.STORAGE)
        return Result.success(prefs)

    async def save_preferences(self, prefs: UserPreferences) -> Result:
        user = self.auth.current_user
        if user is None:
            return Result.failure("Not logged in", ErrorKind.NOT_LOGGED_IN)
        if self.preferences is None:
            return Result.failure("Preferences store is not configured", ErrorKind.STORAGE)
        try:
            await self.preferences.set(user.uid, prefs, user.id_token)
        except RemoteError as e:
            return Result.failure(e.message, ErrorKind.NETWORK)
        except asyncio.TimeoutError:
            return Result.failure(TIMEOUT_MESSAGE, ErrorKind.TIMEOUT)
        return Result.success()

    async def toggle_ambient(self, enabled: bool) -> Result:
        prefs = self.state.prefs.model_copy(update={"ambient_noise_detection": bool(enabled)})
        return await self._apply_preferences(prefs)

    async def set_default_duration(self, minutes: int) -> Result:
        prefs = self.state.prefs.model_copy(update={"default_duration_minutes": max(1, int(minutes))})
        return await self._apply_preferences(prefs)

    async def _apply_preferences(self, prefs: UserPreferences) -> Result:
        """Show the change immediately, then persist it; a failed save is reported on the state."""
        self._set_state(replace(self.state, prefs=prefs))
        result = await self.save_preferences(prefs)
        if not result.ok:
            logger.warning(f"Saving preferences failed: {result.error}")
            self._set_state(replace(self.state, error=result.error, error_kind=result.kind))
        return result
