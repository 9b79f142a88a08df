"""Mirror the panel inventory into the local store."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from otp_relay.adapters.panel_client import PanelClient
from otp_relay.adapters.panel_parser import flag_for_country
from otp_relay.domain.inventory import (
    Country,
    InventoryStats,
    NumberStatus,
    NumberUpsert,
)
from otp_relay.domain.panel import PanelCountry, PanelNumber
from otp_relay.services.otp_router import OTPRepository
from otp_relay.services.reservations import NumberRepository
from otp_relay.services.users import UserRepository

_logger = logging.getLogger(__name__)


class CountryRepository(Protocol):
    """Persistence interface for countries."""

    def upsert_countries(self, countries: Iterable[Country]) -> None:
        """Insert or replace countries by code."""

    def list_countries(self, active_only: bool = True) -> list[Country]:
        """Return countries ordered by name."""

    def get_country(self, code: str) -> Country | None:
        """Return a country by code, if present."""

    def count_countries(self) -> int:
        """Return the number of stored countries."""


@dataclass(frozen=True)
class SyncReport:
    """Outcome of one inventory sync."""

    countries: int
    numbers: int


@dataclass
class InventoryService:
    """Upsert panel countries and numbers and report totals."""

    panel_client: PanelClient
    country_repository: CountryRepository
    number_repository: NumberRepository
    otp_repository: OTPRepository
    user_repository: UserRepository

    async def sync(self) -> SyncReport:
        """Fetch countries and numbers from the panel and upsert them."""
        panel_countries = await self.panel_client.fetch_countries()
        panel_numbers = await self.panel_client.fetch_numbers()
        return self.apply_snapshot(panel_countries, panel_numbers)

    def apply_snapshot(
        self,
        panel_countries: list[PanelCountry],
        panel_numbers: list[PanelNumber],
    ) -> SyncReport:
        """Upsert one panel snapshot; empty fetches leave the store untouched."""
        known = {country.code: country for country in self._known_countries()}
        for country in panel_countries:
            known[country.code] = Country(
                code=country.code, name=country.name, flag=country.flag
            )

        if panel_numbers:
            self.number_repository.upsert_numbers(
                _to_upsert(number, known) for number in panel_numbers
            )

        if panel_countries or panel_numbers:
            counts = self.number_repository.count_by_country()
            seen = {country.code for country in panel_countries}
            for code in counts.keys() - known.keys():
                known[code] = Country(
                    code=code, name=code, flag=flag_for_country(code)
                )
            self.country_repository.upsert_countries(
                Country(
                    code=code,
                    name=country.name,
                    flag=country.flag,
                    number_count=counts.get(code, 0),
                    active=True,
                )
                for code, country in known.items()
                if code in seen or code in counts
            )

        report = SyncReport(
            countries=len(panel_countries), numbers=len(panel_numbers)
        )
        _logger.info(
            "Inventory sync: %s countries, %s numbers",
            report.countries,
            report.numbers,
        )
        return report

    def list_countries(self) -> list[Country]:
        """Return active countries."""
        return self.country_repository.list_countries(active_only=True)

    def statistics(self) -> InventoryStats:
        """Return inventory totals."""
        return InventoryStats(
            total_countries=self.country_repository.count_countries(),
            total_numbers=self.number_repository.count_numbers(),
            available_numbers=self.number_repository.count_numbers(
                NumberStatus.AVAILABLE
            ),
            reserved_numbers=self.number_repository.count_numbers(
                NumberStatus.RESERVED
            ),
            total_otps=self.otp_repository.count_otps(),
            total_users=self.user_repository.count_users(),
        )

    def _known_countries(self) -> list[Country]:
        return self.country_repository.list_countries(active_only=False)


def _to_upsert(number: PanelNumber, countries: dict[str, Country]) -> NumberUpsert:
    return NumberUpsert(
        number=number.number,
        country_code=_resolve_country_code(number.country, countries),
        service=number.service,
        status=NumberStatus.AVAILABLE if number.available else NumberStatus.BUSY,
    )


def _resolve_country_code(raw: str, countries: dict[str, Country]) -> str:
    """Match a panel country cell against known codes and names."""
    cleaned = raw.strip()
    if cleaned in countries:
        return cleaned
    lowered = cleaned.lower()
    for country in countries.values():
        if country.name.lower() == lowered or country.code.lower() == lowered:
            return country.code
    return cleaned
