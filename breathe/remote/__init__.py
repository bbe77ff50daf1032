"""HTTP clients for the identity provider, the remote database and the quote API."""

from .errors import RemoteError
from .identity import IdentityClient, AuthSession
from .realtime_db import RealtimeDatabase
from .quotes import ZenQuotesClient, parse_quote_payload

__all__ = [
    "RemoteError",
    "IdentityClient",
    "AuthSession",
    "RealtimeDatabase",
    "ZenQuotesClient",
    "parse_quote_payload",
]
