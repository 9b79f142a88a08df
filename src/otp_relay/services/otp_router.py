"""Match incoming OTPs to the current holder of their number."""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from otp_relay.domain.inventory import OTPDraft, OTPRecord
from otp_relay.domain.panel import PanelOTP
from otp_relay.domain.routing import (
    AdminNotice,
    Delivered,
    RoutingEvent,
    RoutingResult,
    Unclaimed,
)
from otp_relay.services.clock import Clock, utcnow
from otp_relay.services.reservations import ReservationManager
from otp_relay.services.users import UserService

_logger = logging.getLogger(__name__)


class OTPRepository(Protocol):
    """Persistence interface for observed OTPs."""

    def create_otp(self, draft: OTPDraft) -> OTPRecord:
        """Persist an OTP and return it."""

    def find_by_dedup_key(
        self, dedup_key: str, since: datetime, until: datetime
    ) -> OTPRecord | None:
        """Return an OTP with the key received within [since, until], if any."""

    def mark_delivered(self, otp_id: int) -> None:
        """Flag an OTP as delivered to its holder."""

    def list_for_holder(self, holder_id: int, limit: int) -> list[OTPRecord]:
        """Return the holder's most recent OTPs."""

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete OTPs received before the cutoff and return how many."""

    def count_otps(self) -> int:
        """Return the number of stored OTPs."""


class OTPNotifier(Protocol):
    """Outbound channel for routed OTPs."""

    async def notify_holder(self, holder_id: int, otp: OTPRecord) -> bool:
        """Send an OTP to its holder; return False on failure."""

    async def notify_admin(self, otp: OTPRecord) -> bool:
        """Send an unclaimed OTP to the operator; return False on failure."""


def dedup_key(number: str, code: str, message: str) -> str:
    """Return the content hash used to recognise a re-polled OTP."""
    normalized = " ".join(message.split()).lower()
    payload = f"{number}|{code}|{normalized}".encode()
    return hashlib.sha256(payload).hexdigest()


@dataclass
class OTPRouter:
    """Route OTPs to holders and hand delivery events to the notifier.

    ``route`` is a pure lookup and never changes the number's reservation;
    ``ingest`` is the polling pipeline (dedup, persist, route, notify).
    Report rows older than the dedup window are ignored, so a row whose
    stored copy was already purged is never routed a second time.
    """

    reservation_manager: ReservationManager
    otp_repository: OTPRepository
    notifier: OTPNotifier
    user_service: UserService
    admin_id: int | None = None
    dedup_window_seconds: int = 600
    retention_days: int = 1
    clock: Clock = utcnow

    def route(self, otp: OTPRecord) -> RoutingResult:
        """Return the routing events for an OTP."""
        holder_id = self.reservation_manager.current_holder(otp.number)
        return self._result_for(otp, holder_id)

    async def ingest(self, otps: list[PanelOTP]) -> list[RoutingResult]:
        """Persist and dispatch OTPs that were not seen before."""
        results: list[RoutingResult] = []
        now = self.clock()
        oldest = now - timedelta(seconds=self.dedup_window_seconds)
        for parsed in otps:
            if parsed.received_at < oldest:
                continue
            key = dedup_key(parsed.number, parsed.code, parsed.message)
            if self._is_duplicate(key, parsed, now):
                continue
            holder_id = self.reservation_manager.current_holder(parsed.number)
            record = self.otp_repository.create_otp(
                OTPDraft(
                    number=parsed.number,
                    code=parsed.code,
                    service=parsed.service,
                    message=parsed.message,
                    received_at=parsed.received_at,
                    source=parsed.source,
                    dedup_key=key,
                    holder_id=holder_id,
                )
            )
            result = self._result_for(record, holder_id)
            await self.dispatch(result)
            results.append(result)
        if results:
            _logger.info("Routed %s new OTPs", len(results))
        return results

    async def dispatch(self, result: RoutingResult) -> None:
        """Hand each routing event to the notifier."""
        for event in result.events:
            if isinstance(event, Delivered):
                sent = await self.notifier.notify_holder(event.holder_id, event.otp)
                if sent:
                    self.otp_repository.mark_delivered(event.otp.id)
                    self.user_service.record_otp_received(event.holder_id)
            elif isinstance(event, AdminNotice):
                await self.notifier.notify_admin(event.otp)
            else:
                _logger.info(
                    "Unclaimed OTP on %s (service=%s)",
                    event.otp.number,
                    event.otp.service,
                )

    def _result_for(self, otp: OTPRecord, holder_id: int | None) -> RoutingResult:
        events: tuple[RoutingEvent, ...]
        if holder_id is not None:
            events = (Delivered(holder_id=holder_id, otp=otp),)
        elif self.admin_id is not None:
            events = (Unclaimed(otp=otp), AdminNotice(otp=otp))
        else:
            events = (Unclaimed(otp=otp),)
        return RoutingResult(otp=otp, events=events)

    def _is_duplicate(self, key: str, parsed: PanelOTP, now: datetime) -> bool:
        window = timedelta(seconds=self.dedup_window_seconds)
        if parsed.timestamp_estimated:
            # fetch time moves on every poll; match the key over all kept rows
            since = now - timedelta(days=self.retention_days)
            until = now + window
        else:
            since = parsed.received_at - window
            until = parsed.received_at + window
        existing = self.otp_repository.find_by_dedup_key(
            key, since=since, until=until
        )
        return existing is not None
