"""Heuristic extraction of panel records from HTML pages.

The panel has no structured API, so every parser here works on table,
row and cell positions and skips rows that lack a required field instead
of failing the whole page.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime

from bs4 import BeautifulSoup

from otp_relay.domain.panel import PanelCountry, PanelNumber, PanelOTP

_logger = logging.getLogger(__name__)

_OTP_CODE = re.compile(r"(?<!\d)\d{4,8}(?!\d)")
_INLINE_CAPTCHA = re.compile(
    r"(\d+\s*[-+*/x×]\s*\d+(?:\s*[-+*/x×]\s*\d+)*\s*=\s*\??)", re.IGNORECASE
)
_TIMESTAMP_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%d-%m-%Y %H:%M:%S",
    "%d/%m/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M:%S",
)

_UNKNOWN_FLAG = "🏳️"
_FLAGS_BY_NAME = {
    "usa": "🇺🇸",
    "united states": "🇺🇸",
    "uk": "🇬🇧",
    "united kingdom": "🇬🇧",
    "canada": "🇨🇦",
    "germany": "🇩🇪",
    "france": "🇫🇷",
    "italy": "🇮🇹",
    "spain": "🇪🇸",
    "russia": "🇷🇺",
    "china": "🇨🇳",
    "japan": "🇯🇵",
    "india": "🇮🇳",
    "brazil": "🇧🇷",
    "australia": "🇦🇺",
    "malaysia": "🇲🇾",
    "indonesia": "🇮🇩",
    "philippines": "🇵🇭",
    "vietnam": "🇻🇳",
    "thailand": "🇹🇭",
    "singapore": "🇸🇬",
    "pakistan": "🇵🇰",
    "bangladesh": "🇧🇩",
    "nigeria": "🇳🇬",
    "south africa": "🇿🇦",
    "egypt": "🇪🇬",
    "turkey": "🇹🇷",
    "saudi arabia": "🇸🇦",
    "uae": "🇦🇪",
    "united arab emirates": "🇦🇪",
}


def flag_for_country(name: str) -> str:
    """Return the flag emoji for a country name."""
    return _FLAGS_BY_NAME.get(name.strip().lower(), _UNKNOWN_FLAG)


def normalize_number(raw: str) -> str | None:
    """Normalize a phone number to ``+<digits>``; None if it has no digits."""
    digits = re.sub(r"\D", "", raw)
    if len(digits) < 6:  # noqa: PLR2004
        return None
    return f"+{digits}"


def extract_otp_code(message: str) -> str | None:
    """Return the first standalone run of 4-8 digits in a message."""
    match = _OTP_CODE.search(message)
    return match.group(0) if match else None


def extract_captcha(html: str) -> str | None:
    """Return the challenge text shown on the login page, if any."""
    soup = BeautifulSoup(html, "html.parser")
    for cell in soup.find_all("td"):
        if "security code" not in cell.get_text(" ", strip=True).lower():
            continue
        sibling = cell.find_next_sibling("td")
        if sibling is None:
            continue
        font = sibling.find("font")
        text = (font or sibling).get_text(" ", strip=True)
        if text:
            return text
    match = _INLINE_CAPTCHA.search(soup.get_text(" ", strip=True))
    if match:
        return match.group(1).strip()
    return None


def has_login_form(html: str) -> bool:
    """Return True if the page contains a password login form."""
    soup = BeautifulSoup(html, "html.parser")
    return soup.find("input", attrs={"type": "password"}) is not None


def has_auth_marker(html: str, markers: tuple[str, ...]) -> bool:
    """Return True if any post-login marker appears in the page."""
    lowered = html.lower()
    return any(marker.lower() in lowered for marker in markers)


def looks_unauthenticated(html: str, markers: tuple[str, ...]) -> bool:
    """Heuristic for pages served to a session that is not logged in."""
    return has_login_form(html) or not has_auth_marker(html, markers)


def parse_countries(html: str) -> list[PanelCountry]:
    """Parse the country selector into country rows."""
    soup = BeautifulSoup(html, "html.parser")
    countries: list[PanelCountry] = []
    seen: set[str] = set()
    for option in soup.select('select[name="country"] option'):
        code = str(option.get("value") or "").strip()
        name = option.get_text(strip=True)
        if not code or code == "0" or not name or code in seen:
            continue
        seen.add(code)
        countries.append(
            PanelCountry(code=code, name=name, flag=flag_for_country(name))
        )
    return countries


def parse_numbers(html: str) -> list[PanelNumber]:
    """Parse the numbers table; rows without number or country are skipped."""
    numbers: list[PanelNumber] = []
    for cells in _table_rows(html, min_cells=3):
        number = normalize_number(cells[0])
        country = cells[1]
        if not number or not country:
            continue
        status = cells[3].lower() if len(cells) > 3 else "available"  # noqa: PLR2004
        numbers.append(
            PanelNumber(
                number=number,
                country=country,
                service=cells[2] or None,
                available=status == "available",
            )
        )
    return numbers


def parse_otps(html: str, fetched_at: datetime | None = None) -> list[PanelOTP]:
    """Parse the SMS report table; rows without number or code are skipped."""
    fetched = fetched_at or datetime.now(tz=UTC)
    otps: list[PanelOTP] = []
    for cells in _table_rows(html, min_cells=4):
        number = normalize_number(cells[0])
        message = cells[1]
        code = extract_otp_code(message)
        if not number or not code:
            continue
        received_at = parse_timestamp(cells[3])
        otps.append(
            PanelOTP(
                number=number,
                code=code,
                message=message,
                service=cells[2] or None,
                received_at=received_at or fetched,
                timestamp_estimated=received_at is None,
            )
        )
    return otps


def parse_timestamp(raw: str) -> datetime | None:
    """Parse a panel timestamp, assuming UTC when no offset is given."""
    value = raw.strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        parsed = None
        for fmt in _TIMESTAMP_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)  # noqa: DTZ007
                break
            except ValueError:
                continue
    if parsed is None:
        _logger.debug("Unparseable panel timestamp: %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _table_rows(html: str, min_cells: int) -> list[list[str]]:
    soup = BeautifulSoup(html, "html.parser")
    rows: list[list[str]] = []
    for row in soup.find_all("tr"):
        cells = [cell.get_text(" ", strip=True) for cell in row.find_all("td")]
        if len(cells) >= min_cells:
            rows.append(cells)
    return rows
