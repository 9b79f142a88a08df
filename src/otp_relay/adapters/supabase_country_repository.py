"""Supabase-backed country repository."""

from collections.abc import Iterable
from dataclasses import dataclass

from supabase import Client

from otp_relay.domain.inventory import Country
from otp_relay.services.inventory import CountryRepository

_COLUMNS = "code, name, flag, numbers_count, is_active"


@dataclass
class SupabaseCountryRepository(CountryRepository):
    """Supabase implementation for countries."""

    client: Client

    def upsert_countries(self, countries: Iterable[Country]) -> None:
        """Insert or replace countries keyed by code."""
        rows = [
            {
                "code": country.code,
                "name": country.name,
                "flag": country.flag,
                "numbers_count": country.number_count,
                "is_active": country.active,
            }
            for country in countries
        ]
        if not rows:
            return
        self.client.table("countries").upsert(rows, on_conflict="code").execute()

    def list_countries(self, active_only: bool = True) -> list[Country]:
        """Return countries ordered by name."""
        query = self.client.table("countries").select(_COLUMNS)
        if active_only:
            query = query.eq("is_active", True)
        response = query.order("name").execute()
        return [_parse_country(row) for row in response.data or []]

    def get_country(self, code: str) -> Country | None:
        """Return a country by code, if present."""
        response = (
            self.client.table("countries")
            .select(_COLUMNS)
            .eq("code", code)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_country(response.data[0])

    def count_countries(self) -> int:
        """Return the number of stored countries."""
        response = (
            self.client.table("countries").select("code", count="exact").execute()
        )
        return response.count or 0


def _parse_country(row: dict[str, object]) -> Country:
    return Country(
        code=str(row["code"]),
        name=str(row.get("name") or row["code"]),
        flag=str(row.get("flag") or "🏳️"),
        number_count=int(row.get("numbers_count") or 0),
        active=bool(row.get("is_active", True)),
    )
