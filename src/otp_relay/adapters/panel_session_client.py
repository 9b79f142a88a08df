"""Login flow against the SMS panel."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import httpx

from otp_relay.adapters.panel_parser import extract_captcha, has_auth_marker
from otp_relay.domain.panel import PanelSession
from otp_relay.services.captcha import CaptchaError

_logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Raised when the panel login did not produce a session."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class CaptchaSolver(Protocol):
    """Interface for answering login challenges."""

    async def solve(self, challenge_text: str) -> str:
        """Return the answer for a challenge or raise CaptchaError."""


@dataclass
class PanelSessionClient:
    """Authenticate against the panel and hand out session credentials."""

    http_client: httpx.AsyncClient
    login_path: str
    username: str
    password: str
    captcha_solver: CaptchaSolver
    auth_markers: tuple[str, ...] = ("Welcome", "Dashboard")

    async def authenticate(self) -> PanelSession:
        """Log in and return a fresh session, or raise AuthError."""
        _logger.info("Authenticating with panel")
        self.http_client.cookies.clear()
        try:
            login_page = await self.http_client.get(self.login_path)
            login_page.raise_for_status()
        except httpx.HTTPError as exc:
            raise AuthError(f"Login page unavailable: {exc}") from exc

        cookies = dict(login_page.cookies.items())
        form = {"username": self.username, "password": self.password}
        challenge = extract_captcha(login_page.text)
        if challenge:
            _logger.info("Captcha detected on login page")
            try:
                form["captcha"] = await self.captcha_solver.solve(challenge)
            except CaptchaError as exc:
                raise AuthError(f"Captcha unresolved: {exc}") from exc

        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if cookies:
            headers["Cookie"] = PanelSession(cookies=cookies).cookie_header()
        try:
            response = await self.http_client.post(
                self.login_path, data=form, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise AuthError(f"Login request failed: {exc}") from exc

        if not has_auth_marker(response.text, self.auth_markers):
            raise AuthError("Login rejected: post-login marker missing")
        cookies.update(response.cookies.items())
        for redirect in response.history:
            cookies.update(redirect.cookies.items())
        _logger.info("Authentication successful")
        return PanelSession(cookies=cookies, issued_at=datetime.now(tz=UTC))
