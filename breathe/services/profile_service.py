"""User profile loading and editing."""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from pydantic import ValidationError

from ..models.result import ErrorKind, Result
from ..models.user import ProfileState, UserProfile
from ..remote.errors import RemoteError
from ..remote.realtime_db import RealtimeDatabase
from .auth_service import AuthService

logger = logging.getLogger(__name__)


class ProfileService:
    """Profile document at users/{uid}: display name and profile image URL."""

    def __init__(self, database: Optional[RealtimeDatabase], auth: AuthService):
        self.database = database
        self.auth = auth
        self.state = ProfileState()

    def _path(self) -> Optional[str]:
        user = self.auth.current_user
        return f"users/{user.uid}" if user else None

    async def load_profile(self) -> Result:
        path = self._path()
        if path is None or self.database is None:
            return Result.failure("Not logged in", ErrorKind.NOT_LOGGED_IN)
        try:
            data = await self.database.get(path, self.auth.current_user.id_token)
        except (RemoteError, asyncio.TimeoutError) as e:
            logger.warning(f"Profile load failed: {e}")
            return Result.failure(str(e), ErrorKind.NETWORK)

        if not isinstance(data, dict):
            return Result.failure("Profile not found", ErrorKind.NOT_FOUND)
        try:
            profile = UserProfile.model_validate(data)
        except ValidationError as e:
            return Result.failure(f"Invalid profile: {e.error_count()} error(s)", ErrorKind.STORAGE)

        self.state = replace(self.state, name=profile.name or "User", profile_url=profile.profile_url)
        return Result.success(profile)

    def on_name_change(self, name: str) -> None:
        self.state = replace(self.state, name=name)

    async def save_profile(self) -> Result:
        """Write the edited name."""
        result = await self._update({"name": self.state.name}, saving=True)
        if result.ok:
            logger.info("Profile name saved")
        return result

    async def set_profile_url(self, url: str) -> Result:
        result = await self._update({"profileUrl": url})
        if result.ok:
            self.state = replace(self.state, profile_url=url)
        return result

    async def _update(self, children: dict, saving: bool = False) -> Result:
        path = self._path()
        if path is None or self.database is None:
            return Result.failure("Not logged in", ErrorKind.NOT_LOGGED_IN)

        if saving:
            self.state = replace(self.state, is_saving=True)
        try:
            await self.database.update(path, children, self.auth.current_user.id_token)
        except (RemoteError, asyncio.TimeoutError) as e:
            logger.warning(f"Profile update failed: {e}")
            return Result.failure(str(e), ErrorKind.NETWORK)
        finally:
            if saving:
                self.state = replace(self.state, is_saving=False)
        return Result.success()
