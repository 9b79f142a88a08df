"""Supabase-backed OTP repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from otp_relay.domain.inventory import OTPDraft, OTPRecord
from otp_relay.services.otp_router import OTPRepository

_COLUMNS = (
    "id, number, otp_code, service, message, user_id, received_at, source, "
    "delivered, dedup_key"
)


@dataclass
class SupabaseOTPRepository(OTPRepository):
    """Supabase implementation for observed OTPs."""

    client: Client

    def create_otp(self, draft: OTPDraft) -> OTPRecord:
        """Insert an OTP row and return it."""
        response = (
            self.client.table("otps")
            .insert(
                {
                    "number": draft.number,
                    "otp_code": draft.code,
                    "service": draft.service,
                    "message": draft.message,
                    "user_id": draft.holder_id,
                    "received_at": draft.received_at.isoformat(),
                    "source": draft.source,
                    "delivered": False,
                    "dedup_key": draft.dedup_key,
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create OTP")
        return _parse_otp(response.data[0])

    def find_by_dedup_key(
        self, dedup_key: str, since: datetime, until: datetime
    ) -> OTPRecord | None:
        """Return an OTP with the key received inside the window, if any."""
        response = (
            self.client.table("otps")
            .select(_COLUMNS)
            .eq("dedup_key", dedup_key)
            .gte("received_at", since.isoformat())
            .lte("received_at", until.isoformat())
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return _parse_otp(response.data[0])

    def mark_delivered(self, otp_id: int) -> None:
        """Flag an OTP as delivered."""
        self.client.table("otps").update({"delivered": True}).eq(
            "id", otp_id
        ).execute()

    def list_for_holder(self, holder_id: int, limit: int) -> list[OTPRecord]:
        """Return the holder's most recent OTPs."""
        response = (
            self.client.table("otps")
            .select(_COLUMNS)
            .eq("user_id", holder_id)
            .order("received_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [_parse_otp(row) for row in response.data or []]

    def delete_older_than(self, cutoff: datetime) -> int:
        """Delete OTPs received before the cutoff."""
        response = (
            self.client.table("otps")
            .delete()
            .lt("received_at", cutoff.isoformat())
            .execute()
        )
        return len(response.data or [])

    def count_otps(self) -> int:
        """Return the number of stored OTPs."""
        response = self.client.table("otps").select("id", count="exact").execute()
        return response.count or 0


def _parse_otp(row: dict[str, object]) -> OTPRecord:
    received_raw = row.get("received_at")
    received_at = (
        datetime.fromisoformat(received_raw)
        if isinstance(received_raw, str) and received_raw
        else datetime.now(tz=UTC)
    )
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=UTC)
    user_id = row.get("user_id")
    return OTPRecord(
        id=int(row["id"]),
        number=str(row["number"]),
        code=str(row["otp_code"]),
        service=row.get("service"),
        message=str(row.get("message") or ""),
        holder_id=int(user_id) if user_id is not None else None,
        received_at=received_at,
        source=str(row.get("source") or "panel"),
        delivered=bool(row.get("delivered", False)),
        dedup_key=str(row.get("dedup_key") or ""),
    )
