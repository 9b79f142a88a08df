"""Telegram bot command configuration."""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class TelegramCommand:
    """Declarative bot command definition."""

    command: str
    description: str


class BotCommand(Enum):
    """Enum of bot commands (single source of truth)."""

    START = TelegramCommand("start", "Register and show the quick guide")
    COUNTRIES = TelegramCommand("countries", "Countries with available numbers")
    NUMBERS = TelegramCommand("numbers", "Available numbers for a country code")
    RESERVE = TelegramCommand("reserve", "Reserve a number by id")
    RELEASE = TelegramCommand("release", "Release a reserved number")
    MYNUMBERS = TelegramCommand("mynumbers", "Your active reservations")
    MYOTPS = TelegramCommand("myotps", "Recent OTPs delivered to you")


def telegram_commands() -> list[dict[str, str]]:
    """Return commands formatted for Telegram API."""
    return [
        {"command": entry.value.command, "description": entry.value.description}
        for entry in BotCommand
    ]
