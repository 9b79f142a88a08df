"""Reservation state machine for panel numbers.

Every transition re-reads the number and applies a conditional update at
the store while holding the number's lock stripe, so two concurrent reservations
of the same number yield exactly one success.
"""

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol

from otp_relay.domain.inventory import NumberRecord, NumberStatus, NumberUpsert
from otp_relay.services.clock import Clock, utcnow

_logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


class ReservationError(Exception):
    """Base error for rejected reservation operations."""

    def __init__(self, number_id: int, message: str) -> None:
        super().__init__(message)
        self.number_id = number_id


class ReservationNotFound(ReservationError):
    """Raised when the number does not exist."""

    def __init__(self, number_id: int) -> None:
        super().__init__(number_id, f"Number {number_id} not found")


class NumberNotAvailable(ReservationError):
    """Raised when the number is reserved or busy."""

    def __init__(self, number_id: int) -> None:
        super().__init__(number_id, f"Number {number_id} is not available")


class NumberRepository(Protocol):
    """Persistence interface for phone numbers."""

    def get_number(self, number_id: int) -> NumberRecord | None:
        """Return a number by id, if present."""

    def get_by_number(self, number: str) -> NumberRecord | None:
        """Return a number by its phone number, if present."""

    def list_by_country(
        self, country_code: str, status: NumberStatus | None = None
    ) -> list[NumberRecord]:
        """Return numbers for a country, optionally filtered by status."""

    def list_reserved_by(self, holder_id: int) -> list[NumberRecord]:
        """Return numbers currently marked reserved by a holder."""

    def reserve_if_available(
        self, number_id: int, holder_id: int, reserved_until: datetime
    ) -> NumberRecord | None:
        """Atomically reserve an available number; None if it was not available."""

    def release(self, number_id: int) -> None:
        """Reset a number to available."""

    def release_expired(self, now: datetime) -> int:
        """Reset reserved numbers whose reservation ended before now."""

    def upsert_numbers(self, numbers: Iterable[NumberUpsert]) -> None:
        """Insert or update numbers without touching live reservations."""

    def count_numbers(self, status: NumberStatus | None = None) -> int:
        """Return the number of rows, optionally filtered by status."""

    def count_by_country(self) -> dict[str, int]:
        """Return the number of rows per country code."""


@dataclass
class ReservationManager:
    """Enforce the available -> reserved -> available number lifecycle."""

    repository: NumberRepository
    reservation_ttl_seconds: int = 600
    clock: Clock = utcnow
    _locks: tuple[threading.Lock, ...] = field(
        default_factory=lambda: tuple(threading.Lock() for _ in range(_LOCK_STRIPES)),
        init=False,
    )

    def reserve(self, number_id: int, holder_id: int) -> NumberRecord:
        """Reserve a number for a holder until the TTL elapses."""
        with self._lock_for(number_id):
            current = self.repository.get_number(number_id)
            if current is None:
                raise ReservationNotFound(number_id)
            if current.status is not NumberStatus.AVAILABLE:
                raise NumberNotAvailable(number_id)
            reserved_until = self.clock() + timedelta(
                seconds=self.reservation_ttl_seconds
            )
            reserved = self.repository.reserve_if_available(
                number_id, holder_id, reserved_until
            )
            if reserved is None:
                raise NumberNotAvailable(number_id)
        _logger.info(
            "Number %s reserved by %s until %s",
            reserved.number,
            holder_id,
            reserved_until.isoformat(),
        )
        return reserved

    def release(self, number_id: int) -> None:
        """Return a number to the available pool."""
        with self._lock_for(number_id):
            current = self.repository.get_number(number_id)
            if current is None:
                raise ReservationNotFound(number_id)
            self.repository.release(number_id)
        _logger.info("Number %s released", current.number)

    def sweep_expired(self) -> int:
        """Release every reservation whose TTL has elapsed."""
        released = self.repository.release_expired(self.clock())
        if released:
            _logger.info("Released %s expired reservations", released)
        return released

    def current_holder(self, number: str) -> int | None:
        """Return who holds a phone number right now, if anyone."""
        record = self.repository.get_by_number(number)
        if record is None or not record.is_held(self.clock()):
            return None
        return record.reserved_by

    def active_reservations(self, holder_id: int) -> list[NumberRecord]:
        """Return the holder's reservations that have not expired."""
        now = self.clock()
        return [
            record
            for record in self.repository.list_reserved_by(holder_id)
            if record.is_held(now)
        ]

    def _lock_for(self, number_id: int) -> threading.Lock:
        return self._locks[number_id % len(self._locks)]
