"""Realtime Database REST client for per-user documents."""

import logging
from typing import Any, Dict, Optional

from .http import request_json

logger = logging.getLogger(__name__)


class RealtimeDatabase:
    """Reads and writes JSON documents by path, e.g. ``users/{uid}/preferences``."""

    def __init__(self, database_url: str, timeout_seconds: float = 10.0):
        """Initialize database client.

        Args:
            database_url: Root URL of the database (https://<project>.firebaseio.com)
            timeout_seconds: Per-request timeout
        """
        self.database_url = database_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

        logger.info(f"RealtimeDatabase initialized: {self.database_url}")

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{path.strip('/')}.json"

    @staticmethod
    def _params(id_token: Optional[str]) -> Optional[Dict[str, str]]:
        return {"auth": id_token} if id_token else None

    async def get(self, path: str, id_token: Optional[str] = None) -> Any:
        """Read a document. Returns None when nothing is stored at path."""
        return await request_json("GET", self._url(path), params=self._params(id_token),
                                  timeout_seconds=self.timeout_seconds)

    async def set(self, path: str, value: Any, id_token: Optional[str] = None) -> Any:
        """Replace the document at path."""
        return await request_json("PUT", self._url(path), json=value, params=self._params(id_token),
                                  timeout_seconds=self.timeout_seconds)

    async def update(self, path: str, children: Dict[str, Any], id_token: Optional[str] = None) -> Any:
        """Merge children into the document at path."""
        return await request_json("PATCH", self._url(path), json=children, params=self._params(id_token),
                                  timeout_seconds=self.timeout_seconds)

    async def push(self, path: str, value: Any, id_token: Optional[str] = None) -> str:
        """Append value under a generated key. Returns the key."""
        data = await request_json("POST", self._url(path), json=value, params=self._params(id_token),
                                  timeout_seconds=self.timeout_seconds)
        key = data.get("name", "") if isinstance(data, dict) else ""
        logger.debug(f"Pushed to {path}: {key}")
        return key
