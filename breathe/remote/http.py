"""Shared aiohttp request helper."""

import json as jsonlib
import logging
from typing import Any, Dict, Optional

import aiohttp

from .errors import RemoteError

logger = logging.getLogger(__name__)


async def request_json(method: str, url: str, *, json: Any = None,
                       params: Optional[Dict[str, str]] = None,
                       timeout_seconds: float = 10.0) -> Any:
    """Send one request and decode the JSON body.

    Raises:
        RemoteError: On a non-2xx status or a transport failure
    """
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.request(method, url, json=json, params=params) as response:
                if response.status >= 300:
                    error_text = await response.text()
                    raise RemoteError(_error_message(error_text, response.status), status=response.status)
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
    except aiohttp.ClientError as e:
        logger.debug(f"{method} {url} failed: {e}")
        raise RemoteError(f"Network error: {e}") from e


def _error_message(body: str, status: int) -> str:
    """Pull the provider's error message out of a JSON error body when there is one."""
    try:
        data = jsonlib.loads(body)
    except ValueError:
        return f"HTTP {status}: {body[:200]}"

    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str):
        return error
    return f"HTTP {status}"
