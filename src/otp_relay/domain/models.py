"""Domain models for relay users."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UserRecord:
    """Represents a user stored in the database.

    The id is the user's Telegram id, which is also the reservation holder id.
    """

    id: int
    display_name: str | None
    is_operator: bool
    joined_at: datetime
    otps_received: int = 0
    numbers_used: int = 0
