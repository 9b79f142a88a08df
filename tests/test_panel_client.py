"""Tests for the panel session and scraping client."""

import asyncio
from dataclasses import dataclass, field
from urllib.parse import parse_qs

import httpx
import pytest

from otp_relay.adapters.panel_client import HttpxPanelClient
from otp_relay.adapters.panel_session_client import AuthError, PanelSessionClient
from otp_relay.services.captcha import CaptchaResolver
from tests.conftest import FakeNotifier

BASE_PATH = "/ints/client/SMSCDRStats"
MARKERS = ("Welcome", "Dashboard", "Logout")

LOGIN_PAGE = """
<html><body><form method="post">
<input name="username"><input type="password" name="password">
<table><tr><td>Security Code</td><td><font>12 + 7 =</font></td></tr></table>
</form></body></html>
"""
WELCOME_PAGE = "<html><body>Welcome, user! <a>Dashboard</a></body></html>"
NUMBERS_PAGE = """
<html><body><a href="/logout">Logout</a><table>
<tr><td>+15551234567</td><td>USA</td><td>WhatsApp</td><td>Available</td></tr>
</table></body></html>
"""
OTP_PAGE = """
<html><body><a href="/logout">Logout</a><table>
<tr><td>+15551234567</td><td>Your code is 482913</td><td>WhatsApp</td>
<td>2024-05-01 12:00:00</td></tr>
</table></body></html>
"""
COUNTRIES_PAGE = """
<html><body><a href="/logout">Logout</a>
<select name="country"><option value="US">USA</option></select>
</body></html>
"""


@dataclass
class FakePanel:
    """Scripted panel that issues one session id per successful login."""

    accept_login: bool = True
    data_always_login: bool = False
    data_failures: int = 0
    expire_after_requests: int | None = None
    logins: list[dict[str, list[str]]] = field(default_factory=list)
    data_requests: int = 0
    valid_sessions: set[str] = field(default_factory=set)
    _issued: int = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return self._login(request)
        action = request.url.params.get("action")
        session_id = _session_from(request)
        if action is None and session_id not in self.valid_sessions:
            self._issued += 1
            return httpx.Response(
                200,
                text=LOGIN_PAGE,
                headers={"Set-Cookie": f"PHPSESSID=s{self._issued}; Path=/"},
            )
        self.data_requests += 1
        if self.data_failures:
            self.data_failures -= 1
            return httpx.Response(503, text="busy")
        if self.data_always_login or session_id not in self.valid_sessions:
            return httpx.Response(200, text=LOGIN_PAGE)
        if (
            self.expire_after_requests is not None
            and self.data_requests > self.expire_after_requests
        ):
            self.valid_sessions.discard(session_id)
            self.expire_after_requests = None
            return httpx.Response(200, text=LOGIN_PAGE)
        pages = {"numbers": NUMBERS_PAGE, "smsreport": OTP_PAGE}
        return httpx.Response(200, text=pages.get(action or "", COUNTRIES_PAGE))

    def _login(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode())
        self.logins.append(form)
        session_id = _session_from(request)
        if not self.accept_login or form.get("captcha") != ["19"] or not session_id:
            return httpx.Response(200, text=LOGIN_PAGE)
        self.valid_sessions.add(session_id)
        return httpx.Response(200, text=WELCOME_PAGE)


def _session_from(request: httpx.Request) -> str | None:
    for chunk in request.headers.get("cookie", "").split(";"):
        name, _, value = chunk.strip().partition("=")
        if name == "PHPSESSID":
            return value
    return None


def _client(panel: FakePanel) -> HttpxPanelClient:
    http_client = httpx.AsyncClient(
        base_url="https://panel.test", transport=httpx.MockTransport(panel.handler)
    )
    authenticator = PanelSessionClient(
        http_client=http_client,
        login_path=BASE_PATH,
        username="user",
        password="secret",
        captcha_solver=CaptchaResolver(notifier=FakeNotifier()),
        auth_markers=MARKERS,
    )
    return HttpxPanelClient(
        http_client=http_client,
        authenticator=authenticator,
        base_path=BASE_PATH,
        auth_markers=MARKERS,
        retry_attempts=2,
        retry_delay_seconds=0,
    )


def test_login_solves_captcha_and_fetches_numbers() -> None:
    panel = FakePanel()
    client = _client(panel)

    numbers = asyncio.run(client.fetch_numbers())

    assert [item.number for item in numbers] == ["+15551234567"]
    assert len(panel.logins) == 1
    login = panel.logins[0]
    assert login["username"] == ["user"]
    assert login["password"] == ["secret"]
    assert login["captcha"] == ["19"]
    assert client.session is not None
    assert client.session.cookies == {"PHPSESSID": "s1"}


def test_session_is_reused_across_fetches() -> None:
    panel = FakePanel()
    client = _client(panel)

    async def scenario() -> tuple[int, int, int]:
        countries = await client.fetch_countries()
        numbers = await client.fetch_numbers()
        otps = await client.fetch_new_otps()
        return len(countries), len(numbers), len(otps)

    assert asyncio.run(scenario()) == (1, 1, 1)
    assert len(panel.logins) == 1


def test_expired_session_triggers_single_reauthentication() -> None:
    panel = FakePanel(expire_after_requests=1)
    client = _client(panel)

    async def scenario() -> tuple[int, int]:
        first = await client.fetch_numbers()
        second = await client.fetch_new_otps()
        return len(first), len(second)

    assert asyncio.run(scenario()) == (1, 1)
    assert len(panel.logins) == 2
    assert client.session is not None
    assert client.session.cookies == {"PHPSESSID": "s2"}


def test_persistently_unauthenticated_pages_yield_empty_result() -> None:
    panel = FakePanel(data_always_login=True)
    client = _client(panel)

    assert asyncio.run(client.fetch_numbers()) == []
    assert len(panel.logins) == 2
    assert client.session is None


def test_rejected_login_yields_empty_result() -> None:
    panel = FakePanel(accept_login=False)
    client = _client(panel)

    assert asyncio.run(client.fetch_new_otps()) == []
    assert client.session is None


def test_rejected_login_raises_auth_error_from_session_client() -> None:
    panel = FakePanel(accept_login=False)
    client = _client(panel)

    with pytest.raises(AuthError):
        asyncio.run(client.authenticator.authenticate())


def test_transient_http_errors_are_retried() -> None:
    panel = FakePanel(data_failures=2)
    client = _client(panel)

    numbers = asyncio.run(client.fetch_numbers())

    assert len(numbers) == 1
    assert panel.data_requests == 3


def test_exhausted_retries_yield_empty_result() -> None:
    panel = FakePanel(data_failures=10)
    client = _client(panel)

    assert asyncio.run(client.fetch_numbers()) == []
    assert panel.data_requests == 3
