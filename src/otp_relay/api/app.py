"""FastAPI application factory."""

import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from otp_relay.api.admin import router as admin_router
from otp_relay.api.telegram_models import TelegramMessage, TelegramUpdate
from otp_relay.app_logging import configure_logging
from otp_relay.containers import AppContainer
from otp_relay.domain.inventory import Country, NumberRecord, OTPRecord
from otp_relay.services.reservations import ReservationError
from otp_relay.telegram_commands import telegram_commands

_CHALLENGE_ID_PATTERN = re.compile(r"ID:\s*([0-9A-Za-z]+)")
_RECENT_OTP_LIMIT = 10

_HELP_TEXT = (
    "Welcome to the OTP relay.\n\n"
    "/countries - countries with available numbers\n"
    "/numbers <code> - available numbers for a country\n"
    "/reserve <id> - reserve a number\n"
    "/release <id> - release your number\n"
    "/mynumbers - your active reservations\n"
    "/myotps - recent OTPs delivered to you\n\n"
    "OTPs for a reserved number are sent here as soon as they arrive."
)


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging()
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        try:
            await state_container.telegram_client.set_my_commands(
                telegram_commands()
            )
        except Exception:
            logger.exception("Failed to sync Telegram bot commands")
        if state_container.settings.auto_sync:
            state_container.scheduler.start()
        yield
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.post("/telegram/webhook")
    async def telegram_webhook(
        update: TelegramUpdate, request: Request
    ) -> dict[str, str]:
        """Handle Telegram webhook updates."""
        state_container: AppContainer = request.app.state.container
        message = update.message
        if message is None or not message.text:
            return {"status": "ok"}

        if state_container.user_service.is_operator(message.from_user.id):
            answer = _handle_operator_answer(state_container, message)
            if answer is not None:
                await state_container.telegram_client.send_message(
                    chat_id=message.chat.id, text=answer
                )
                return {"status": "ok"}

        reply = _handle_command(state_container, message)
        if reply is not None:
            await state_container.telegram_client.send_message(
                chat_id=message.chat.id, text=reply
            )
        return {"status": "ok"}

    return app


def _handle_operator_answer(
    container: AppContainer, message: TelegramMessage
) -> str | None:
    """Route an operator CAPTCHA answer to the resolver, if the message is one."""
    parsed = message.command()
    challenge_id: str | None = None
    solution = (message.text or "").strip()
    if parsed is not None and parsed[0] == "/captcha":
        challenge_id, _, solution = parsed[1].partition(" ")
        if not challenge_id or not solution.strip():
            return "Usage: /captcha <id> <answer>"
    elif message.reply_to_message and message.reply_to_message.text:
        match = _CHALLENGE_ID_PATTERN.search(message.reply_to_message.text)
        if match:
            challenge_id = match.group(1)
    if challenge_id is None:
        return None
    if container.captcha_resolver.submit_solution(challenge_id, solution):
        return f"Captcha {challenge_id} answered."
    return f"Captcha {challenge_id} is no longer pending."


def _handle_command(  # noqa: PLR0911
    container: AppContainer, message: TelegramMessage
) -> str | None:
    parsed = message.command()
    if parsed is None:
        return None
    command, argument = parsed
    user = container.user_service.ensure_user(
        message.from_user.id, display_name=message.from_user.display_name
    )

    if command == "/start":
        return _HELP_TEXT
    if command == "/countries":
        return _format_countries(container.inventory_service.list_countries())
    if command == "/numbers":
        if not argument:
            return "Usage: /numbers <country_code>"
        country_code = argument.split()[0]
        numbers = container.allocation_service.list_available(country_code)
        if not numbers and country_code != country_code.upper():
            country_code = country_code.upper()
            numbers = container.allocation_service.list_available(country_code)
        return _format_available(country_code, numbers)
    if command in {"/reserve", "/release"}:
        number_id = _parse_number_id(argument)
        if number_id is None:
            return f"Usage: {command} <number_id>"
        try:
            if command == "/reserve":
                record = container.allocation_service.allocate(user.id, number_id)
                return _format_reserved(record)
            container.allocation_service.release(user.id, number_id)
        except ReservationError as exc:
            return str(exc)
        return f"Number {number_id} released."
    if command == "/mynumbers":
        return _format_reservations(
            container.allocation_service.list_reserved(user.id)
        )
    if command == "/myotps":
        return _format_otps(
            container.otp_repository.list_for_holder(user.id, _RECENT_OTP_LIMIT)
        )
    return "Unknown command. Send /start for the list of commands."


def _parse_number_id(raw: str) -> int | None:
    try:
        return int(raw)
    except ValueError:
        return None


def _format_countries(countries: list[Country]) -> str:
    if not countries:
        return "No countries available yet."
    lines = ["Countries:"]
    for country in countries:
        lines.append(
            f"{country.flag} {country.name} ({country.code}): "
            f"{country.number_count} numbers"
        )
    return "\n".join(lines)


def _format_available(country_code: str, numbers: list[NumberRecord]) -> str:
    if not numbers:
        return f"No available numbers for {country_code}."
    lines = [f"Available numbers for {country_code}:"]
    for record in numbers:
        service = f" [{record.service}]" if record.service else ""
        lines.append(f"{record.id}: {record.number}{service}")
    lines.append("Reserve one with /reserve <id>.")
    return "\n".join(lines)


def _format_reserved(record: NumberRecord) -> str:
    until = (
        f" until {record.reserved_until:%H:%M} UTC" if record.reserved_until else ""
    )
    return f"Reserved {record.number}{until}. OTPs will be forwarded here."


def _format_reservations(records: list[NumberRecord]) -> str:
    if not records:
        return "You have no active reservations."
    lines = ["Your numbers:"]
    for record in records:
        until = (
            f"{record.reserved_until:%H:%M} UTC" if record.reserved_until else "-"
        )
        lines.append(f"{record.id}: {record.number} (until {until})")
    return "\n".join(lines)


def _format_otps(otps: list[OTPRecord]) -> str:
    if not otps:
        return "No OTPs yet."
    lines = ["Recent OTPs:"]
    for otp in otps:
        lines.append(
            f"{otp.received_at:%Y-%m-%d %H:%M} {otp.number}: {otp.code}"
            f" ({otp.service or 'Unknown'})"
        )
    return "\n".join(lines)
