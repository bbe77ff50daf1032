"""User, preference and home-screen models.

Preferences, profiles and quotes travel through remote JSON stores, so they are
pydantic models with the camelCase aliases those stores use.
"""

import time
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .result import ErrorKind

DEFAULT_DURATION_MINUTES = 3


class UserPreferences(BaseModel):
    """Per-user settings read at session start."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    ambient_noise_detection: bool = Field(False, alias="ambientNoiseDetection")
    default_duration_minutes: int = Field(DEFAULT_DURATION_MINUTES, alias="defaultDurationMinutes")

    def to_remote(self) -> dict:
        return self.model_dump(by_alias=True)


class UserProfile(BaseModel):
    """Profile document stored under users/{uid}."""
    model_config = ConfigDict(populate_by_name=True)

    uid: str = ""
    name: str = ""
    email: str = ""
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000), alias="createdAt")
    profile_url: Optional[str] = Field(None, alias="profileUrl")

    def to_remote(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Quote(BaseModel):
    """A motivational quote."""
    model_config = ConfigDict(frozen=True)

    text: str
    author: str


FALLBACK_QUOTE = Quote(text="Take a deep breath.", author="Unknown")


@dataclass(frozen=True)
class AuthState:
    """Outcome of the latest sign-in or sign-up attempt."""
    status: str = "idle"  # idle | loading | success | error
    uid: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "AuthState":
        return cls()

    @classmethod
    def loading(cls) -> "AuthState":
        return cls(status="loading")

    @classmethod
    def success(cls, uid: str) -> "AuthState":
        return cls(status="success", uid=uid)

    @classmethod
    def error(cls, message: str) -> "AuthState":
        return cls(status="error", message=message)


@dataclass(frozen=True)
class HomeState:
    """What the home surface shows: quote, preferences and the last error."""
    is_loading: bool = False
    quote: Optional[Quote] = None
    prefs: UserPreferences = field(default_factory=UserPreferences)
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


@dataclass(frozen=True)
class ProfileState:
    """Editable profile fields."""
    name: str = ""
    profile_url: Optional[str] = None
    is_saving: bool = False
