"""Routing outcomes for incoming OTPs."""

from dataclasses import dataclass

from otp_relay.domain.inventory import OTPRecord


@dataclass(frozen=True)
class Delivered:
    """OTP belongs to the current holder of its number."""

    holder_id: int
    otp: OTPRecord


@dataclass(frozen=True)
class Unclaimed:
    """Nobody holds the number the OTP arrived on."""

    otp: OTPRecord


@dataclass(frozen=True)
class AdminNotice:
    """Operator copy of an unclaimed OTP."""

    otp: OTPRecord


RoutingEvent = Delivered | Unclaimed | AdminNotice


@dataclass(frozen=True)
class RoutingResult:
    """Events emitted for a single OTP."""

    otp: OTPRecord
    events: tuple[RoutingEvent, ...]

    @property
    def holder_id(self) -> int | None:
        """Return the holder the OTP was delivered to, if any."""
        for event in self.events:
            if isinstance(event, Delivered):
                return event.holder_id
        return None
