"""Remote per-user preferences."""

import logging

from ..models.user import UserPreferences
from ..remote.realtime_db import RealtimeDatabase

logger = logging.getLogger(__name__)


class PreferencesStore:
    """Preferences live at users/{uid}/preferences."""

    def __init__(self, database: RealtimeDatabase, defaults: UserPreferences = None):
        self.database = database
        self.defaults = defaults or UserPreferences()

    @staticmethod
    def _path(uid: str) -> str:
        return f"users/{uid}/preferences"

    async def get(self, uid: str, id_token: str = None) -> UserPreferences:
        """Read preferences; missing fields fall back to defaults."""
        data = await self.database.get(self._path(uid), id_token)
        if not isinstance(data, dict):
            return self.defaults
        return UserPreferences.model_validate({**self.defaults.to_remote(), **data})

    async def set(self, uid: str, prefs: UserPreferences, id_token: str = None) -> None:
        await self.database.update(self._path(uid), prefs.to_remote(), id_token)
        logger.info(f"Saved preferences for {uid}: {prefs.to_remote()}")
