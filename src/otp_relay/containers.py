"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from supabase import create_client

from otp_relay.adapters.panel_client import HttpxPanelClient, PanelClient
from otp_relay.adapters.supabase_country_repository import SupabaseCountryRepository
from otp_relay.adapters.supabase_number_repository import SupabaseNumberRepository
from otp_relay.adapters.supabase_otp_repository import SupabaseOTPRepository
from otp_relay.adapters.supabase_user_repository import SupabaseUserRepository
from otp_relay.adapters.telegram_client import HttpxTelegramClient, TelegramClient
from otp_relay.adapters.telegram_notifier import TelegramNotifier
from otp_relay.config import (
    Settings,
    parse_admin_id,
    parse_auth_markers,
    validate_panel_url,
)
from otp_relay.services.allocation import AllocationService
from otp_relay.services.captcha import CaptchaResolver
from otp_relay.services.inventory import InventoryService
from otp_relay.services.otp_router import OTPRepository, OTPRouter
from otp_relay.services.reservations import ReservationManager
from otp_relay.services.scheduler import SyncScheduler
from otp_relay.services.users import UserService


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    telegram_client: TelegramClient
    panel_client: PanelClient
    captcha_resolver: CaptchaResolver
    user_service: UserService
    reservation_manager: ReservationManager
    allocation_service: AllocationService
    otp_repository: OTPRepository
    otp_router: OTPRouter
    inventory_service: InventoryService
    scheduler: SyncScheduler
    close_resources: Callable[[], Awaitable[None]]

    @property
    def admin_id(self) -> int | None:
        """Return the configured operator id."""
        return parse_admin_id(self.settings.telegram_admin_id)


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container.

    Raises ValueError when the panel URL is unusable, the one configuration
    problem the relay cannot run without.
    """
    resolved_settings = settings or Settings()
    panel_url = validate_panel_url(resolved_settings.panel_url)
    admin_id = parse_admin_id(resolved_settings.telegram_admin_id)

    supabase_client = create_client(
        resolved_settings.supabase_url, resolved_settings.supabase_service_key
    )
    country_repository = SupabaseCountryRepository(supabase_client)
    number_repository = SupabaseNumberRepository(supabase_client)
    otp_repository = SupabaseOTPRepository(supabase_client)
    user_repository = SupabaseUserRepository(supabase_client)

    telegram_client = HttpxTelegramClient.create(resolved_settings.telegram_bot_token)
    notifier = TelegramNotifier(telegram_client=telegram_client, admin_id=admin_id)
    captcha_resolver = CaptchaResolver(
        notifier=notifier,
        timeout_seconds=resolved_settings.captcha_timeout_seconds,
    )
    panel_client = HttpxPanelClient.create(
        base_url=panel_url,
        base_path=resolved_settings.panel_base_path,
        username=resolved_settings.panel_username,
        password=resolved_settings.panel_password,
        captcha_solver=captcha_resolver,
        auth_markers=parse_auth_markers(resolved_settings.panel_auth_markers),
        timeout_seconds=resolved_settings.panel_timeout_seconds,
        retry_attempts=resolved_settings.panel_retries,
        user_agent=resolved_settings.panel_user_agent,
    )

    user_service = UserService(user_repository, operator_id=admin_id)
    reservation_manager = ReservationManager(
        number_repository,
        reservation_ttl_seconds=resolved_settings.reservation_ttl_seconds,
    )
    allocation_service = AllocationService(
        reservation_manager=reservation_manager,
        number_repository=number_repository,
        user_service=user_service,
        max_numbers_per_user=resolved_settings.max_numbers_per_user,
    )
    otp_router = OTPRouter(
        reservation_manager=reservation_manager,
        otp_repository=otp_repository,
        notifier=notifier,
        user_service=user_service,
        admin_id=admin_id,
        dedup_window_seconds=resolved_settings.otp_dedup_window_seconds,
        retention_days=resolved_settings.otp_retention_days,
    )
    inventory_service = InventoryService(
        panel_client=panel_client,
        country_repository=country_repository,
        number_repository=number_repository,
        otp_repository=otp_repository,
        user_repository=user_repository,
    )
    scheduler = SyncScheduler(
        panel_client=panel_client,
        inventory_service=inventory_service,
        otp_router=otp_router,
        reservation_manager=reservation_manager,
        otp_repository=otp_repository,
        inventory_sync_interval_seconds=(
            resolved_settings.inventory_sync_interval_seconds
        ),
        otp_poll_interval_seconds=resolved_settings.otp_poll_interval_seconds,
        reservation_sweep_interval_seconds=(
            resolved_settings.reservation_sweep_interval_seconds
        ),
        otp_retention_days=resolved_settings.otp_retention_days,
    )

    async def close_resources() -> None:
        await scheduler.stop()
        await telegram_client.close()
        await panel_client.close()

    return AppContainer(
        settings=resolved_settings,
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
