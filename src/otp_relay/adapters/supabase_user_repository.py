"""Supabase-backed user repository."""

from dataclasses import dataclass
from datetime import UTC, datetime

from supabase import Client

from otp_relay.domain.models import UserRecord
from otp_relay.services.users import UserRepository

_COLUMNS = "telegram_id, display_name, is_admin, joined_at, otps_received, numbers_used"
_COUNTERS = {"otps_received", "numbers_used"}


@dataclass
class SupabaseUserRepository(UserRepository):
    """Supabase implementation for user persistence."""

    client: Client

    def get_user(self, user_id: int) -> UserRecord | None:
        """Return the user for a Telegram id, if present."""
        response = (
            self.client.table("users")
            .select(_COLUMNS)
            .eq("telegram_id", user_id)
            .limit(1)
            .execute()
        )
        if response.data:
            return _parse_user(response.data[0])
        return None

    def create_user(
        self, user_id: int, display_name: str | None, is_operator: bool
    ) -> UserRecord:
        """Create a new user row and return it."""
        response = (
            self.client.table("users")
            .insert(
                {
                    "telegram_id": user_id,
                    "display_name": display_name,
                    "is_admin": is_operator,
                    "joined_at": datetime.now(tz=UTC).isoformat(),
                }
            )
            .execute()
        )
        if not response.data:
            raise RuntimeError("Failed to create user in Supabase")
        return _parse_user(response.data[0])

    def increment_counter(self, user_id: int, counter: str) -> None:
        """Add one to a usage counter of the user."""
        if counter not in _COUNTERS:
            raise ValueError(f"Unknown user counter: {counter}")
        response = (
            self.client.table("users")
            .select(counter)
            .eq("telegram_id", user_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return
        current = int(response.data[0].get(counter) or 0)
        self.client.table("users").update({counter: current + 1}).eq(
            "telegram_id", user_id
        ).execute()

    def count_users(self) -> int:
        """Return the number of registered users."""
        response = (
            self.client.table("users").select("telegram_id", count="exact").execute()
        )
        return response.count or 0


def _parse_user(row: dict[str, object]) -> UserRecord:
    joined_raw = row.get("joined_at")
    joined_at = (
        datetime.fromisoformat(joined_raw)
        if isinstance(joined_raw, str) and joined_raw
        else datetime.now(tz=UTC)
    )
    return UserRecord(
        id=int(row["telegram_id"]),
        display_name=row.get("display_name"),
        is_operator=bool(row.get("is_admin", False)),
        joined_at=joined_at,
        otps_received=int(row.get("otps_received") or 0),
        numbers_used=int(row.get("numbers_used") or 0),
    )
