"""User-related business logic."""

from dataclasses import dataclass
from typing import Protocol

from otp_relay.domain.models import UserRecord


class UserRepository(Protocol):
    """Persistence interface for user data."""

    def get_user(self, user_id: int) -> UserRecord | None:
        """Return a user by Telegram id, if present."""

    def create_user(
        self, user_id: int, display_name: str | None, is_operator: bool
    ) -> UserRecord:
        """Create and return a new user record."""

    def increment_counter(self, user_id: int, counter: str) -> None:
        """Add one to a usage counter of the user."""

    def count_users(self) -> int:
        """Return the number of registered users."""


@dataclass
class UserService:
    """Application service for user registration and usage counters."""

    repository: UserRepository
    operator_id: int | None = None

    def ensure_user(self, user_id: int, display_name: str | None = None) -> UserRecord:
        """Ensure a user exists for the Telegram id and return it."""
        existing = self.repository.get_user(user_id)
        if existing:
            return existing
        return self.repository.create_user(
            user_id,
            display_name=display_name,
            is_operator=self.is_operator(user_id),
        )

    def is_operator(self, user_id: int) -> bool:
        """Return True if the user is the configured operator."""
        return self.operator_id is not None and user_id == self.operator_id

    def record_number_used(self, user_id: int) -> None:
        """Count a successful number allocation."""
        self.repository.increment_counter(user_id, "numbers_used")

    def record_otp_received(self, user_id: int) -> None:
        """Count an OTP delivered to the user."""
        self.repository.increment_counter(user_id, "otps_received")
