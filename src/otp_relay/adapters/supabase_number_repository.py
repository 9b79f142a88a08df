"""Supabase-backed phone number repository."""

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from otp_relay.domain.inventory import NumberRecord, NumberStatus, NumberUpsert
from otp_relay.services.reservations import NumberRepository

_COLUMNS = (
    "id, number, country_code, service, status, reserved_by, reserved_until, added_at"
)
_AVAILABLE_PAYLOAD = {
    "status": NumberStatus.AVAILABLE.value,
    "reserved_by": None,
    "reserved_until": None,
}


@dataclass
class SupabaseNumberRepository(NumberRepository):
    """Supabase implementation for numbers and their reservations.

    Reservation writes are conditional updates, so the database applies the
    status check and the write as one statement.
    """

    client: Client

    def get_number(self, number_id: int) -> NumberRecord | None:
        """Return a number by id, if present."""
        response = (
            self.client.table("numbers")
            .select(_COLUMNS)
            .eq("id", number_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_number(response.data[0])

    def get_by_number(self, number: str) -> NumberRecord | None:
        """Return a number by its phone number, if present."""
        response = (
            self.client.table("numbers")
            .select(_COLUMNS)
            .eq("number", number)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_number(response.data[0])

    def list_by_country(
        self, country_code: str, status: NumberStatus | None = None
    ) -> list[NumberRecord]:
        """Return numbers for a country, optionally filtered by status."""
        query = (
            self.client.table("numbers")
            .select(_COLUMNS)
            .eq("country_code", country_code)
        )
        if status is not None:
            query = query.eq("status", status.value)
        response = query.order("number").execute()
        return [_row_to_number(row) for row in response.data or []]

    def list_reserved_by(self, holder_id: int) -> list[NumberRecord]:
        """Return numbers currently reserved by a holder."""
        response = (
            self.client.table("numbers")
            .select(_COLUMNS)
            .eq("reserved_by", holder_id)
            .eq("status", NumberStatus.RESERVED.value)
            .order("reserved_until")
            .execute()
        )
        return [_row_to_number(row) for row in response.data or []]

    def reserve_if_available(
        self, number_id: int, holder_id: int, reserved_until: datetime
    ) -> NumberRecord | None:
        """Reserve the number only while its status is still available."""
        response = (
            self.client.table("numbers")
            .update(
                {
                    "status": NumberStatus.RESERVED.value,
                    "reserved_by": holder_id,
                    "reserved_until": reserved_until.isoformat(),
                }
            )
            .eq("id", number_id)
            .eq("status", NumberStatus.AVAILABLE.value)
            .execute()
        )
        if not response.data:
            return None
        return _row_to_number(response.data[0])

    def release(self, number_id: int) -> None:
        """Reset a number to available."""
        self.client.table("numbers").update(_AVAILABLE_PAYLOAD).eq(
            "id", number_id
        ).execute()

    def release_expired(self, now: datetime) -> int:
        """Reset reserved numbers whose reservation ended before now."""
        response = (
            self.client.table("numbers")
            .update(_AVAILABLE_PAYLOAD)
            .eq("status", NumberStatus.RESERVED.value)
            .lt("reserved_until", now.isoformat())
            .execute()
        )
        return len(response.data or [])

    def upsert_numbers(self, numbers: Iterable[NumberUpsert]) -> None:
        """Insert new numbers and refresh existing ones.

        Upstream availability never overwrites a live reservation.
        """
        incoming = {item.number: item for item in numbers}
        if not incoming:
            return
        response = (
            self.client.table("numbers")
            .select("number")
            .in_("number", list(incoming))
            .execute()
        )
        existing = {row["number"] for row in response.data or []}

        added_at = datetime.now(tz=UTC).isoformat()
        new_rows = [
            {
                "number": item.number,
                "country_code": item.country_code,
                "service": item.service,
                "status": item.status.value,
                "added_at": added_at,
            }
            for number, item in incoming.items()
            if number not in existing
        ]
        if new_rows:
            self.client.table("numbers").insert(new_rows).execute()

        for number in existing:
            item = incoming[number]
            self.client.table("numbers").update(
                {"country_code": item.country_code, "service": item.service}
            ).eq("number", number).execute()
            self.client.table("numbers").update({"status": item.status.value}).eq(
                "number", number
            ).neq("status", NumberStatus.RESERVED.value).execute()

    def count_numbers(self, status: NumberStatus | None = None) -> int:
        """Return the number of rows, optionally filtered by status."""
        query = self.client.table("numbers").select("id", count="exact")
        if status is not None:
            query = query.eq("status", status.value)
        response = query.execute()
        return response.count or 0

    def count_by_country(self) -> dict[str, int]:
        """Return the number of rows per country code."""
        response = self.client.table("numbers").select("country_code").execute()
        return dict(Counter(row["country_code"] for row in response.data or []))


def _row_to_number(row: dict[str, object]) -> NumberRecord:
    reserved_by = row.get("reserved_by")
    return NumberRecord(
        id=int(row["id"]),
        number=str(row["number"]),
        country_code=str(row["country_code"]),
        service=row.get("service"),
        status=NumberStatus(row.get("status") or NumberStatus.AVAILABLE.value),
        reserved_by=int(reserved_by) if reserved_by is not None else None,
        reserved_until=_parse_datetime(row.get("reserved_until")),
        added_at=_parse_datetime(row.get("added_at")) or datetime.now(tz=UTC),
    )


def _parse_datetime(value: object) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
