"""Number allocation flow used by requesters."""

import logging
from dataclasses import dataclass

from otp_relay.domain.inventory import NumberRecord, NumberStatus
from otp_relay.services.reservations import (
    NumberRepository,
    ReservationError,
    ReservationManager,
    ReservationNotFound,
)
from otp_relay.services.users import UserService

_logger = logging.getLogger(__name__)


class ReservationLimitReached(ReservationError):
    """Raised when the holder already has the maximum number of reservations."""

    def __init__(self, number_id: int, limit: int) -> None:
        super().__init__(number_id, f"Reservation limit of {limit} reached")
        self.limit = limit


class NotReservationHolder(ReservationError):
    """Raised when someone other than the holder tries to release a number."""

    def __init__(self, number_id: int) -> None:
        super().__init__(number_id, f"Number {number_id} is not reserved by you")


@dataclass
class AllocationService:
    """Apply the per-holder cap on top of the reservation state machine."""

    reservation_manager: ReservationManager
    number_repository: NumberRepository
    user_service: UserService
    max_numbers_per_user: int = 3

    def allocate(self, holder_id: int, number_id: int) -> NumberRecord:
        """Reserve a number for the holder if they are under the cap."""
        active = self.reservation_manager.active_reservations(holder_id)
        if len(active) >= self.max_numbers_per_user:
            _logger.info(
                "Holder %s hit the reservation limit (%s)",
                holder_id,
                self.max_numbers_per_user,
            )
            raise ReservationLimitReached(number_id, self.max_numbers_per_user)
        reserved = self.reservation_manager.reserve(number_id, holder_id)
        self.user_service.record_number_used(holder_id)
        return reserved

    def release(self, holder_id: int, number_id: int) -> None:
        """Release a number held by the holder."""
        record = self.number_repository.get_number(number_id)
        if record is None:
            raise ReservationNotFound(number_id)
        held = record.status is NumberStatus.RESERVED
        if not held or record.reserved_by != holder_id:
            raise NotReservationHolder(number_id)
        self.reservation_manager.release(number_id)

    def list_available(self, country_code: str) -> list[NumberRecord]:
        """Return numbers of a country that can be reserved."""
        return self.number_repository.list_by_country(
            country_code, status=NumberStatus.AVAILABLE
        )

    def list_reserved(self, holder_id: int) -> list[NumberRecord]:
        """Return the holder's live reservations."""
        return self.reservation_manager.active_reservations(holder_id)
