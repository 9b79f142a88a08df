"""Telegram Bot API adapter."""

from dataclasses import dataclass
from typing import Protocol

import httpx

_API_BASE = "https://api.telegram.org"


class TelegramAPIError(Exception):
    """Raised when the Bot API answers with ``ok: false``."""

    def __init__(self, method: str, description: str) -> None:
        super().__init__(f"{method} failed: {description}")
        self.method = method
        self.description = description


class TelegramClient(Protocol):
    """Outbound Telegram operations used by the relay."""

    async def send_message(
        self, chat_id: int, text: str, reply_markup: dict | None = None
    ) -> None:
        """Send a text message to a chat."""

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        """Publish the bot command list."""


@dataclass
class HttpxTelegramClient:
    """Bot API client on a shared httpx session."""

    bot_token: str
    http_client: httpx.AsyncClient
    api_base: str = _API_BASE
    timeout_seconds: float = 10.0

    @classmethod
    def create(cls, bot_token: str) -> "HttpxTelegramClient":
        """Create a Telegram client with a managed httpx session."""
        return cls(bot_token=bot_token, http_client=httpx.AsyncClient())

    async def send_message(
        self, chat_id: int, text: str, reply_markup: dict | None = None
    ) -> None:
        """Send a plain-text message; links are not previewed."""
        payload: dict[str, object] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        }
        if reply_markup is not None:
            payload["reply_markup"] = reply_markup
        await self._call("sendMessage", payload)

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        """Replace the command menu shown by Telegram clients."""
        await self._call("setMyCommands", {"commands": commands})

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _call(self, method: str, payload: dict[str, object]) -> object:
        url = f"{self.api_base}/bot{self.bot_token}/{method}"
        response = await self.http_client.post(
            url, json=payload, timeout=self.timeout_seconds
        )
        response.raise_for_status()
        body = response.json()
        if not body.get("ok", False):
            raise TelegramAPIError(method, str(body.get("description", "unknown")))
        return body.get("result")
