"""Pydantic models for the Telegram webhook payloads the relay reads."""

from pydantic import BaseModel, Field


class TelegramUser(BaseModel):
    """Sender of a message."""

    id: int
    is_bot: bool | None = None
    first_name: str | None = None
    username: str | None = None

    @property
    def display_name(self) -> str | None:
        """Return the handle, falling back to the first name."""
        return self.username or self.first_name


class TelegramChat(BaseModel):
    """Chat the message was sent in."""

    id: int
    type: str


class TelegramMessage(BaseModel):
    """Text message, optionally replying to an earlier bot message."""

    message_id: int
    date: int
    chat: TelegramChat
    from_user: TelegramUser = Field(alias="from")
    text: str | None = None
    reply_to_message: "TelegramMessage | None" = None

    def command(self) -> tuple[str, str] | None:
        """Split ``/name@bot argument`` into the lowercased name and argument."""
        text = (self.text or "").strip()
        if not text.startswith("/"):
            return None
        head, _, argument = text.partition(" ")
        return head.split("@", 1)[0].lower(), argument.strip()


class TelegramUpdate(BaseModel):
    """Webhook update; only message updates are handled."""

    update_id: int
    message: TelegramMessage | None = None
