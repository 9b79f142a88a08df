"""Domain models for the upstream SMS panel."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class PanelSession:
    """Authenticated panel credential, replaced wholesale on re-login."""

    cookies: dict[str, str] = field(default_factory=dict)
    issued_at: datetime | None = None

    def cookie_header(self) -> str:
        """Render the cookies as a ``Cookie`` header value."""
        return "; ".join(f"{name}={value}" for name, value in self.cookies.items())


@dataclass(frozen=True)
class CaptchaChallenge:
    """Challenge waiting for a human answer."""

    id: str
    raw_text: str
    created_at: datetime


@dataclass(frozen=True)
class PanelCountry:
    """Country parsed from the panel."""

    code: str
    name: str
    flag: str


@dataclass(frozen=True)
class PanelNumber:
    """Number row parsed from the panel."""

    number: str
    country: str
    service: str | None
    available: bool


@dataclass(frozen=True)
class PanelOTP:
    """SMS report row parsed from the panel."""

    number: str
    code: str
    message: str
    service: str | None
    received_at: datetime
    source: str = "panel"
    timestamp_estimated: bool = False
