"""Session recorder: durable local log plus a best-effort remote mirror."""

import asyncio
import logging
from dataclasses import replace
from typing import List, Optional

from ..models.result import ErrorKind, Result
from ..models.session import SessionRecord
from ..remote.errors import RemoteError
from ..remote.realtime_db import RealtimeDatabase
from ..storage.session_log import SessionLog
from .auth_service import AuthService

logger = logging.getLogger(__name__)


class SessionRecorder:
    """Persists finished sessions and answers history queries."""

    def __init__(self, log: SessionLog, database: Optional[RealtimeDatabase] = None,
                 auth: Optional[AuthService] = None):
        """Initialize session recorder.

        Args:
            log: Local append-only store, the source of truth for history
            database: Remote store that signed-in sessions are mirrored to
            auth: Source of the signed-in user
        """
        self.log = log
        self.database = database
        self.auth = auth

    async def append(self, record: SessionRecord) -> Result:
        """Write record locally, then mirror it to users/{uid}/sessions when signed in."""
        user = self.auth.current_user if self.auth else None
        if user is not None:
            record = replace(record, user_id=user.uid)

        try:
            # file IO stays off the event loop while session loops run
            await asyncio.to_thread(self.log.append, record)
        except OSError as e:
            return Result.failure(f"Could not write session log: {e}", ErrorKind.STORAGE)

        if user is not None and self.database is not None:
            try:
                key = await self.database.push(f"users/{user.uid}/sessions", record.to_dict(), user.id_token)
                logger.info(f"Mirrored session to remote store as {key}")
            except (RemoteError, asyncio.TimeoutError) as e:
                # local copy is already safe
                logger.warning(f"Remote session mirror failed: {e}")

        return Result.success(record)

    async def list_all(self, user_id: Optional[str] = None) -> List[SessionRecord]:
        """All records, most recent first, optionally for one user."""
        return await asyncio.to_thread(self.log.read_all, user_id)

    async def clear_all(self) -> int:
        return await asyncio.to_thread(self.log.clear)
