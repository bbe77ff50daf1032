"""Random quote client (ZenQuotes)."""

import logging
from typing import Any, List, Optional

from pydantic import BaseModel, ValidationError

from ..models.user import Quote
from .errors import RemoteError
from .http import request_json

logger = logging.getLogger(__name__)

ZENQUOTES_URL = "https://zenquotes.io/api/random"


class ZenQuoteResponse(BaseModel):
    """One entry of the API's array response: q = text, a = author, h = html."""
    q: Optional[str] = None
    a: Optional[str] = None
    h: Optional[str] = None


def parse_quote_payload(payload: Any) -> Quote:
    """Turn ``[{"q": ..., "a": ...}]`` into a Quote.

    Raises:
        RemoteError: If the payload holds no quote
    """
    if not isinstance(payload, list) or not payload:
        raise RemoteError("No quote received")
    try:
        entries: List[ZenQuoteResponse] = [ZenQuoteResponse.model_validate(item) for item in payload]
    except ValidationError as e:
        raise RemoteError(f"Malformed quote response: {e.error_count()} error(s)") from e

    first = entries[0]
    return Quote(text=first.q or "Be present.", author=first.a or "Unknown")


class ZenQuotesClient:
    """Fetches a random quote. No authentication."""

    def __init__(self, url: str = ZENQUOTES_URL, timeout_seconds: float = 10.0):
        self.url = url
        self.timeout_seconds = timeout_seconds

    async def fetch_random_quote(self) -> Quote:
        payload = await request_json("GET", self.url, timeout_seconds=self.timeout_seconds)
        quote = parse_quote_payload(payload)
        logger.debug(f"Fetched quote by {quote.author}")
        return quote
