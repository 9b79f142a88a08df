"""Domain models for the mirrored panel inventory."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class NumberStatus(str, Enum):
    """Lifecycle states of a phone number."""

    AVAILABLE = "available"
    RESERVED = "reserved"
    BUSY = "busy"


@dataclass(frozen=True)
class Country:
    """Country row, upserted wholesale on each sync."""

    code: str
    name: str
    flag: str
    number_count: int = 0
    active: bool = True


@dataclass(frozen=True)
class NumberRecord:
    """Phone number row with its reservation state."""

    id: int
    number: str
    country_code: str
    service: str | None
    status: NumberStatus
    reserved_by: int | None
    reserved_until: datetime | None
    added_at: datetime

    def is_held(self, now: datetime) -> bool:
        """Return True if the reservation is live at ``now``."""
        return (
            self.status is NumberStatus.RESERVED
            and self.reserved_by is not None
            and self.reserved_until is not None
            and self.reserved_until > now
        )


@dataclass(frozen=True)
class NumberUpsert:
    """Upstream view of a number used to upsert inventory rows."""

    number: str
    country_code: str
    service: str | None
    status: NumberStatus


@dataclass(frozen=True)
class OTPDraft:
    """OTP observed upstream, not yet persisted."""

    number: str
    code: str
    service: str | None
    message: str
    received_at: datetime
    source: str
    dedup_key: str
    holder_id: int | None = None


@dataclass(frozen=True)
class OTPRecord:
    """Persisted OTP; immutable apart from the delivered flag."""

    id: int
    number: str
    code: str
    service: str | None
    message: str
    holder_id: int | None
    received_at: datetime
    source: str
    delivered: bool
    dedup_key: str


@dataclass(frozen=True)
class InventoryStats:
    """Inventory totals for the operator dashboard."""

    total_countries: int
    total_numbers: int
    available_numbers: int
    reserved_numbers: int
    total_otps: int
    total_users: int
