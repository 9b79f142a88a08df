"""Periodic inventory sync, OTP polling and reservation sweeps."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import timedelta

from otp_relay.adapters.panel_client import PanelClient
from otp_relay.services.clock import Clock, utcnow
from otp_relay.services.inventory import InventoryService
from otp_relay.services.otp_router import OTPRepository, OTPRouter
from otp_relay.services.reservations import ReservationManager

_logger = logging.getLogger(__name__)

INVENTORY_SYNC = "inventory_sync"
OTP_POLL = "otp_poll"
RESERVATION_SWEEP = "reservation_sweep"


@dataclass
class PeriodicJob:
    """A recurring action that never overlaps with itself.

    A trigger that fires while the previous run is still in progress is
    dropped rather than queued.
    """

    name: str
    interval_seconds: float
    action: Callable[[], Awaitable[object]]
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @property
    def running(self) -> bool:
        """Return True while a run is in progress."""
        return self._lock.locked()

    async def run_once(self) -> bool:
        """Run the action unless it is already running; return True if it ran."""
        if self._lock.locked():
            _logger.info("Job %s still running; skipping this tick", self.name)
            return False
        async with self._lock:
            try:
                await self.action()
            except Exception:
                _logger.exception("Job %s failed", self.name)
        return True

    async def run_forever(self) -> None:
        """Run the action on a fixed interval until cancelled."""
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)


@dataclass
class SyncScheduler:
    """Drive the three background actions on independent tasks."""

    panel_client: PanelClient
    inventory_service: InventoryService
    otp_router: OTPRouter
    reservation_manager: ReservationManager
    otp_repository: OTPRepository
    inventory_sync_interval_seconds: float = 300.0
    otp_poll_interval_seconds: float = 30.0
    reservation_sweep_interval_seconds: float = 60.0
    otp_retention_days: int = 1
    clock: Clock = utcnow
    jobs: dict[str, PeriodicJob] = field(default_factory=dict, init=False)
    _tasks: list["asyncio.Task[None]"] = field(default_factory=list, init=False)

    def __post_init__(self) -> None:
        for job in (
            PeriodicJob(
                INVENTORY_SYNC,
                self.inventory_sync_interval_seconds,
                self.sync_inventory,
            ),
            PeriodicJob(OTP_POLL, self.otp_poll_interval_seconds, self.poll_otps),
            PeriodicJob(
                RESERVATION_SWEEP,
                self.reservation_sweep_interval_seconds,
                self.sweep,
            ),
        ):
            self.jobs[job.name] = job

    def start(self) -> None:
        """Start every job on its own task."""
        if self._tasks:
            return
        for job in self.jobs.values():
            task = asyncio.create_task(job.run_forever(), name=f"job:{job.name}")
            self._tasks.append(task)
        _logger.info("Scheduler started with jobs: %s", ", ".join(self.jobs))

    async def stop(self) -> None:
        """Cancel the job tasks and wait for them to finish."""
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            _logger.info("Scheduler stopped")

    async def run_now(self, name: str) -> bool:
        """Trigger a job outside its schedule; False if unknown or busy."""
        job = self.jobs.get(name)
        if job is None:
            return False
        return await job.run_once()

    async def sync_inventory(self) -> None:
        """Upsert countries and numbers from the panel."""
        await self.inventory_service.sync()

    async def poll_otps(self) -> None:
        """Fetch the SMS report and route new OTPs."""
        otps = await self.panel_client.fetch_new_otps()
        await self.otp_router.ingest(otps)

    async def sweep(self) -> None:
        """Release expired reservations and purge old OTPs."""
        self.reservation_manager.sweep_expired()
        cutoff = self.clock() - timedelta(days=self.otp_retention_days)
        purged = self.otp_repository.delete_older_than(cutoff)
        if purged:
            _logger.info("Purged %s OTPs older than %s", purged, cutoff.isoformat())
