"""Deliver OTPs and CAPTCHA requests over Telegram."""

import logging
from dataclasses import dataclass

from otp_relay.adapters.telegram_client import TelegramClient
from otp_relay.domain.inventory import OTPRecord

_logger = logging.getLogger(__name__)


@dataclass
class TelegramNotifier:
    """Fire-and-forget notifications; failures are logged and reported as False."""

    telegram_client: TelegramClient
    admin_id: int | None = None

    async def notify_holder(self, holder_id: int, otp: OTPRecord) -> bool:
        """Send an OTP to the user holding its number."""
        return await self._send(holder_id, format_holder_otp(otp), "holder OTP")

    async def notify_admin(self, otp: OTPRecord) -> bool:
        """Send an unclaimed OTP to the operator."""
        if self.admin_id is None:
            return False
        return await self._send(self.admin_id, format_admin_otp(otp), "admin OTP")

    async def notify_operator_of_challenge(
        self, challenge_id: str, raw_text: str
    ) -> bool:
        """Ask the operator to solve a CAPTCHA."""
        if self.admin_id is None:
            _logger.error("No operator configured for manual captcha solving")
            return False
        return await self._send(
            self.admin_id, format_challenge(challenge_id, raw_text), "captcha request"
        )

    async def _send(self, chat_id: int, text: str, kind: str) -> bool:
        try:
            await self.telegram_client.send_message(chat_id=chat_id, text=text)
        except Exception:
            _logger.exception("Failed to send %s to %s", kind, chat_id)
            return False
        return True


def format_holder_otp(otp: OTPRecord) -> str:
    """Render the OTP notification for its holder."""
    return (
        "New OTP received\n"
        f"Service: {otp.service or 'Unknown'}\n"
        f"Number: {otp.number}\n"
        f"Message: {otp.message or 'N/A'}\n"
        f"Time: {otp.received_at:%Y-%m-%d %H:%M:%S} UTC\n\n"
        f"Code: {otp.code}"
    )


def format_admin_otp(otp: OTPRecord) -> str:
    """Render the operator copy of an unclaimed OTP."""
    return (
        "Unclaimed OTP\n"
        f"Number: {otp.number}\n"
        f"Code: {otp.code}\n"
        f"Service: {otp.service or 'Unknown'}\n"
        f"Time: {otp.received_at:%Y-%m-%d %H:%M:%S} UTC"
    )


def format_challenge(challenge_id: str, raw_text: str) -> str:
    """Render a CAPTCHA request; the operator replies to it with the answer."""
    return (
        "CAPTCHA REQUIRED\n"
        "A captcha needs to be solved to access the panel.\n\n"
        f"Captcha: {raw_text}\n"
        f"ID: {challenge_id}\n\n"
        "Reply to this message with the solution."
    )
