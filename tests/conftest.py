"""Shared test fixtures."""

import threading
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta

import pytest

from otp_relay.adapters.panel_client import PanelClient
from otp_relay.adapters.telegram_client import TelegramClient
from otp_relay.adapters.telegram_notifier import TelegramNotifier
from otp_relay.config import Settings
from otp_relay.containers import AppContainer
from otp_relay.domain.inventory import (
    Country,
    NumberRecord,
    NumberStatus,
    NumberUpsert,
    OTPDraft,
    OTPRecord,
)
from otp_relay.domain.models import UserRecord
from otp_relay.domain.panel import PanelCountry, PanelNumber, PanelOTP
from otp_relay.services.allocation import AllocationService
from otp_relay.services.captcha import CaptchaResolver
from otp_relay.services.inventory import CountryRepository, InventoryService
from otp_relay.services.otp_router import OTPRepository, OTPRouter
from otp_relay.services.reservations import NumberRepository, ReservationManager
from otp_relay.services.scheduler import SyncScheduler
from otp_relay.services.users import UserRepository, UserService

OPERATOR_ID = 7


@dataclass
class FakeClock:
    """Manually advanced clock."""

    now: datetime = field(
        default_factory=lambda: datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
    )

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@dataclass
class InMemoryNumberRepository(NumberRepository):
    """In-memory number repository with an atomic conditional reserve."""

    rows: dict[int, NumberRecord] = field(default_factory=dict)
    _guard: threading.Lock = field(default_factory=threading.Lock)
    _next_id: int = 1

    def add(
        self,
        number: str,
        country_code: str = "US",
        service: str | None = None,
        status: NumberStatus = NumberStatus.AVAILABLE,
    ) -> NumberRecord:
        record = NumberRecord(
            id=self._next_id,
            number=number,
            country_code=country_code,
            service=service,
            status=status,
            reserved_by=None,
            reserved_until=None,
            added_at=datetime(2024, 5, 1, tzinfo=UTC),
        )
        self.rows[record.id] = record
        self._next_id += 1
        return record

    def get_number(self, number_id: int) -> NumberRecord | None:
        return self.rows.get(number_id)

    def get_by_number(self, number: str) -> NumberRecord | None:
        for record in self.rows.values():
            if record.number == number:
                return record
        return None

    def list_by_country(
        self, country_code: str, status: NumberStatus | None = None
    ) -> list[NumberRecord]:
        return [
            record
            for record in self.rows.values()
            if record.country_code == country_code
            and (status is None or record.status is status)
        ]

    def list_reserved_by(self, holder_id: int) -> list[NumberRecord]:
        return [
            record
            for record in self.rows.values()
            if record.status is NumberStatus.RESERVED
            and record.reserved_by == holder_id
        ]

    def reserve_if_available(
        self, number_id: int, holder_id: int, reserved_until: datetime
    ) -> NumberRecord | None:
        with self._guard:
            current = self.rows.get(number_id)
            if current is None or current.status is not NumberStatus.AVAILABLE:
                return None
            reserved = replace(
                current,
                status=NumberStatus.RESERVED,
                reserved_by=holder_id,
                reserved_until=reserved_until,
            )
            self.rows[number_id] = reserved
            return reserved

    def release(self, number_id: int) -> None:
        current = self.rows[number_id]
        self.rows[number_id] = replace(
            current,
            status=NumberStatus.AVAILABLE,
            reserved_by=None,
            reserved_until=None,
        )

    def release_expired(self, now: datetime) -> int:
        expired = [
            record.id
            for record in self.rows.values()
            if record.status is NumberStatus.RESERVED
            and record.reserved_until is not None
            and record.reserved_until <= now
        ]
        for number_id in expired:
            self.release(number_id)
        return len(expired)

    def upsert_numbers(self, numbers: Iterable[NumberUpsert]) -> None:
        for upsert in numbers:
            existing = self.get_by_number(upsert.number)
            if existing is None:
                self.add(
                    upsert.number,
                    country_code=upsert.country_code,
                    service=upsert.service,
                    status=upsert.status,
                )
                continue
            status = (
                existing.status
                if existing.status is NumberStatus.RESERVED
                else upsert.status
            )
            record = replace(
                existing,
                country_code=upsert.country_code,
                service=upsert.service,
                status=status,
            )
            self.rows[record.id] = record

    def count_numbers(self, status: NumberStatus | None = None) -> int:
        return sum(
            1
            for record in self.rows.values()
            if status is None or record.status is status
        )

    def count_by_country(self) -> dict[str, int]:
        return dict(Counter(record.country_code for record in self.rows.values()))


@dataclass
class InMemoryOTPRepository(OTPRepository):
    """In-memory OTP repository for tests."""

    records: dict[int, OTPRecord] = field(default_factory=dict)

    def create_otp(self, draft: OTPDraft) -> OTPRecord:
        record = OTPRecord(
            id=len(self.records) + 1,
            number=draft.number,
            code=draft.code,
            service=draft.service,
            message=draft.message,
            holder_id=draft.holder_id,
            received_at=draft.received_at,
            source=draft.source,
            delivered=False,
            dedup_key=draft.dedup_key,
        )
        self.records[record.id] = record
        return record

    def find_by_dedup_key(
        self, dedup_key: str, since: datetime, until: datetime
    ) -> OTPRecord | None:
        for record in self.records.values():
            if record.dedup_key == dedup_key and since <= record.received_at <= until:
                return record
        return None

    def mark_delivered(self, otp_id: int) -> None:
        self.records[otp_id] = replace(self.records[otp_id], delivered=True)

    def list_for_holder(self, holder_id: int, limit: int) -> list[OTPRecord]:
        owned = [
            record for record in self.records.values() if record.holder_id == holder_id
        ]
        owned.sort(key=lambda record: record.received_at, reverse=True)
        return owned[:limit]

    def delete_older_than(self, cutoff: datetime) -> int:
        stale = [
            otp_id
            for otp_id, record in self.records.items()
            if record.received_at < cutoff
        ]
        for otp_id in stale:
            del self.records[otp_id]
        return len(stale)

    def count_otps(self) -> int:
        return len(self.records)


@dataclass
class InMemoryCountryRepository(CountryRepository):
    """In-memory country repository for tests."""

    countries: dict[str, Country] = field(default_factory=dict)

    def upsert_countries(self, countries: Iterable[Country]) -> None:
        for country in countries:
            self.countries[country.code] = country

    def list_countries(self, active_only: bool = True) -> list[Country]:
        rows = [
            country
            for country in self.countries.values()
            if country.active or not active_only
        ]
        return sorted(rows, key=lambda country: country.name)

    def get_country(self, code: str) -> Country | None:
        return self.countries.get(code)

    def count_countries(self) -> int:
        return len(self.countries)


@dataclass
class InMemoryUserRepository(UserRepository):
    """In-memory user repository for tests."""

    users: dict[int, UserRecord] = field(default_factory=dict)

    def get_user(self, user_id: int) -> UserRecord | None:
        return self.users.get(user_id)

    def create_user(
        self, user_id: int, display_name: str | None, is_operator: bool
    ) -> UserRecord:
        user = UserRecord(
            id=user_id,
            display_name=display_name,
            is_operator=is_operator,
            joined_at=datetime(2024, 5, 1, tzinfo=UTC),
        )
        self.users[user_id] = user
        return user

    def increment_counter(self, user_id: int, counter: str) -> None:
        user = self.users.get(user_id)
        if user is None:
            return
        self.users[user_id] = replace(user, **{counter: getattr(user, counter) + 1})

    def count_users(self) -> int:
        return len(self.users)


@dataclass
class FakeNotifier:
    """Notifier that records every notification."""

    holder_messages: list[tuple[int, OTPRecord]] = field(default_factory=list)
    admin_messages: list[OTPRecord] = field(default_factory=list)
    challenges: list[tuple[str, str]] = field(default_factory=list)
    fail_holder: bool = False
    fail_operator: bool = False

    async def notify_holder(self, holder_id: int, otp: OTPRecord) -> bool:
        if self.fail_holder:
            return False
        self.holder_messages.append((holder_id, otp))
        return True

    async def notify_admin(self, otp: OTPRecord) -> bool:
        self.admin_messages.append(otp)
        return True

    async def notify_operator_of_challenge(
        self, challenge_id: str, raw_text: str
    ) -> bool:
        self.challenges.append((challenge_id, raw_text))
        return not self.fail_operator


@dataclass
class FakePanelClient(PanelClient):
    """Panel client returning canned snapshots."""

    countries: list[PanelCountry] = field(default_factory=list)
    numbers: list[PanelNumber] = field(default_factory=list)
    otps: list[PanelOTP] = field(default_factory=list)
    calls: list[str] = field(default_factory=list)

    async def fetch_countries(self) -> list[PanelCountry]:
        self.calls.append("countries")
        return list(self.countries)

    async def fetch_numbers(self) -> list[PanelNumber]:
        self.calls.append("numbers")
        return list(self.numbers)

    async def fetch_new_otps(self) -> list[PanelOTP]:
        self.calls.append("otps")
        return list(self.otps)

    async def close(self) -> None:
        return None


@dataclass
class FakeTelegramClient(TelegramClient):
    """Fake Telegram client that records messages."""

    messages: list[tuple[int, str]] = field(default_factory=list)
    commands: list[dict[str, str]] | None = None

    async def send_message(
        self, chat_id: int, text: str, reply_markup: dict | None = None
    ) -> None:
        self.messages.append((chat_id, text))

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        self.commands = commands


@pytest.fixture
def settings() -> Settings:
    return Settings(
        telegram_bot_token="test-token",
        telegram_admin_id=str(OPERATOR_ID),
        supabase_url="https://example.supabase.co",
        supabase_service_key="header.payload.signature",
        admin_token="admin-token",
        panel_url="https://panel.test",
        auto_sync=False,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def number_repository() -> InMemoryNumberRepository:
    return InMemoryNumberRepository()


@pytest.fixture
def otp_repository() -> InMemoryOTPRepository:
    return InMemoryOTPRepository()


@pytest.fixture
def country_repository() -> InMemoryCountryRepository:
    return InMemoryCountryRepository()


@pytest.fixture
def user_repository() -> InMemoryUserRepository:
    return InMemoryUserRepository()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def panel_client() -> FakePanelClient:
    return FakePanelClient()


@pytest.fixture
def telegram_client() -> FakeTelegramClient:
    return FakeTelegramClient()


@pytest.fixture
def user_service(user_repository: InMemoryUserRepository) -> UserService:
    return UserService(user_repository, operator_id=OPERATOR_ID)


@pytest.fixture
def reservation_manager(
    number_repository: InMemoryNumberRepository, clock: FakeClock
) -> ReservationManager:
    return ReservationManager(
        number_repository, reservation_ttl_seconds=600, clock=clock
    )


@pytest.fixture
def otp_router(
    reservation_manager: ReservationManager,
    otp_repository: InMemoryOTPRepository,
    notifier: FakeNotifier,
    user_service: UserService,
    clock: FakeClock,
) -> OTPRouter:
    return OTPRouter(
        reservation_manager=reservation_manager,
        otp_repository=otp_repository,
        notifier=notifier,
        user_service=user_service,
        admin_id=OPERATOR_ID,
        clock=clock,
    )


@pytest.fixture
def inventory_service(
    panel_client: FakePanelClient,
    country_repository: InMemoryCountryRepository,
    number_repository: InMemoryNumberRepository,
    otp_repository: InMemoryOTPRepository,
    user_repository: InMemoryUserRepository,
) -> InventoryService:
    return InventoryService(
        panel_client=panel_client,
        country_repository=country_repository,
        number_repository=number_repository,
        otp_repository=otp_repository,
        user_repository=user_repository,
    )


@pytest.fixture
def container(  # noqa: PLR0913
    settings: Settings,
    telegram_client: FakeTelegramClient,
    panel_client: FakePanelClient,
    number_repository: InMemoryNumberRepository,
    otp_repository: InMemoryOTPRepository,
    user_service: UserService,
    reservation_manager: ReservationManager,
    inventory_service: InventoryService,
    clock: FakeClock,
) -> AppContainer:
    notifier = TelegramNotifier(telegram_client=telegram_client, admin_id=OPERATOR_ID)
    captcha_resolver = CaptchaResolver(notifier=notifier, timeout_seconds=1.0)
    allocation_service = AllocationService(
        reservation_manager=reservation_manager,
        number_repository=number_repository,
        user_service=user_service,
        max_numbers_per_user=settings.max_numbers_per_user,
    )
    otp_router = OTPRouter(
        reservation_manager=reservation_manager,
        otp_repository=otp_repository,
        notifier=notifier,
        user_service=user_service,
        admin_id=OPERATOR_ID,
        clock=clock,
    )
    scheduler = SyncScheduler(
        panel_client=panel_client,
        inventory_service=inventory_service,
        otp_router=otp_router,
        reservation_manager=reservation_manager,
        otp_repository=otp_repository,
        clock=clock,
    )

    async def close_resources() -> None:
        await scheduler.stop()

    return AppContainer(
        settings=settings,
        telegram_client=telegram_client,
        panel_client=panel_client,
        captcha_resolver=captcha_resolver,
        user_service=user_service,
        reservation_manager=reservation_manager,
        allocation_service=allocation_service,
        otp_repository=otp_repository,
        otp_router=otp_router,
        inventory_service=inventory_service,
        scheduler=scheduler,
        close_resources=close_resources,
    )
