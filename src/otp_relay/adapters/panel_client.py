"""SMS panel client that scrapes countries, numbers and OTPs."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, TypeVar

import httpx

from otp_relay.adapters.panel_parser import (
    looks_unauthenticated,
    parse_countries,
    parse_numbers,
    parse_otps,
)
from otp_relay.adapters.panel_session_client import (
    AuthError,
    CaptchaSolver,
    PanelSessionClient,
)
from otp_relay.domain.panel import PanelCountry, PanelNumber, PanelOTP, PanelSession

_logger = logging.getLogger(__name__)

_Row = TypeVar("_Row")


class PanelClient(Protocol):
    """Interface for reading the panel inventory."""

    async def fetch_countries(self) -> list[PanelCountry]:
        """Return the panel's countries, or an empty list on failure."""

    async def fetch_numbers(self) -> list[PanelNumber]:
        """Return the panel's numbers, or an empty list on failure."""

    async def fetch_new_otps(self) -> list[PanelOTP]:
        """Return the SMS report rows carrying an OTP, or an empty list."""


class SessionAuthenticator(Protocol):
    """Interface for obtaining a fresh panel session."""

    async def authenticate(self) -> PanelSession:
        """Return a new session or raise AuthError."""


@dataclass
class HttpxPanelClient(PanelClient):
    """HTTPX-backed panel client with lazy re-authentication.

    The session is memoised and handed to every request explicitly. A
    response that looks unauthenticated drops the session and the fetch is
    retried once after logging in again.
    """

    http_client: httpx.AsyncClient
    authenticator: SessionAuthenticator
    base_path: str
    auth_markers: tuple[str, ...] = ("Welcome", "Dashboard")
    retry_attempts: int = 3
    retry_delay_seconds: float = 0.5
    _session: PanelSession | None = field(default=None, init=False)
    _auth_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        *,
        base_url: str,
        base_path: str,
        username: str,
        password: str,
        captcha_solver: CaptchaSolver,
        auth_markers: tuple[str, ...],
        timeout_seconds: float = 30.0,
        retry_attempts: int = 3,
        user_agent: str = "Mozilla/5.0",
    ) -> "HttpxPanelClient":
        """Create a panel client with a managed httpx session."""
        http_client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            follow_redirects=True,
            headers={
                "User-Agent": user_agent,
                "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
            },
        )
        authenticator = PanelSessionClient(
            http_client=http_client,
            login_path=base_path,
            username=username,
            password=password,
            captcha_solver=captcha_solver,
            auth_markers=auth_markers,
        )
        return cls(
            http_client=http_client,
            authenticator=authenticator,
            base_path=base_path,
            auth_markers=auth_markers,
            retry_attempts=retry_attempts,
        )

    @property
    def session(self) -> PanelSession | None:
        """Return the current session, if logged in."""
        return self._session

    async def fetch_countries(self) -> list[PanelCountry]:
        """Fetch the country selector from the panel."""
        return await self._fetch("countries", None, parse_countries)

    async def fetch_numbers(self) -> list[PanelNumber]:
        """Fetch the numbers table from the panel."""
        return await self._fetch("numbers", {"action": "numbers"}, parse_numbers)

    async def fetch_new_otps(self) -> list[PanelOTP]:
        """Fetch the SMS report from the panel."""
        return await self._fetch("otps", {"action": "smsreport"}, parse_otps)

    def invalidate_session(self) -> None:
        """Forget the current session so the next fetch logs in again."""
        self._session = None

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

    async def _fetch(
        self,
        name: str,
        params: dict[str, str] | None,
        parser: Callable[[str], list[_Row]],
    ) -> list[_Row]:
        try:
            html = await self._get_authenticated(params)
            rows = parser(html)
        except AuthError as exc:
            _logger.warning("Panel %s fetch skipped: %s", name, exc.reason)
            return []
        except httpx.HTTPError as exc:
            _logger.warning("Panel %s fetch failed: %s", name, exc)
            return []
        except Exception:
            _logger.exception("Panel %s page could not be parsed", name)
            return []
        _logger.info("Panel %s fetched: %s rows", name, len(rows))
        return rows

    async def _get_authenticated(self, params: dict[str, str] | None) -> str:
        session = await self._ensure_session()
        html = await self._get(params, session)
        if not looks_unauthenticated(html, self.auth_markers):
            return html

        _logger.info("Panel session no longer valid; re-authenticating")
        session = await self._refresh_session(stale=session)
        html = await self._get(params, session)
        if looks_unauthenticated(html, self.auth_markers):
            self.invalidate_session()
            raise AuthError("Panel still unauthenticated after re-login")
        return html

    async def _ensure_session(self) -> PanelSession:
        session = self._session
        if session is not None:
            return session
        async with self._auth_lock:
            if self._session is None:
                self._session = await self.authenticator.authenticate()
            return self._session

    async def _refresh_session(self, stale: PanelSession) -> PanelSession:
        async with self._auth_lock:
            if self._session is None or self._session is stale:
                self._session = None
                self._session = await self.authenticator.authenticate()
            return self._session

    async def _get(self, params: dict[str, str] | None, session: PanelSession) -> str:
        """GET a panel page with the session cookie and a short retry."""
        headers = {"Cookie": session.cookie_header()} if session.cookies else {}
        attempt = 0
        while True:
            try:
                response = await self.http_client.get(
                    self.base_path, params=params, headers=headers
                )
                response.raise_for_status()
            except httpx.HTTPError as exc:
                attempt += 1
                _logger.warning(
                    "Panel request failed (attempt %s/%s): %s",
                    attempt,
                    self.retry_attempts + 1,
                    exc,
                )
                if attempt > self.retry_attempts:
                    raise
                await asyncio.sleep(self.retry_delay_seconds)
                continue
            return response.text
