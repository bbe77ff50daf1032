"""Errors raised by the remote clients."""

from typing import Optional


class RemoteError(Exception):
    """A remote call failed. status is the HTTP status, or None for transport errors."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status = status
