from __future__ import annotations


class TermyxError(Exception):
    """Base class for errors raised by the Termyx gating services."""


class ValidationError(TermyxError, ValueError):
    """Malformed input, rejected before any data access."""


class UserNotFoundError(TermyxError, LookupError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"user {user_id!r} not found")
        self.user_id = user_id


class InsufficientCreditsError(TermyxError, ValueError):
    """Raised by the atomic deduction primitive when the balance is already 0."""

    def __init__(self, user_id: str) -> None:
        super().__init__("insufficient credits")
        self.user_id = user_id


class TrialExhaustedError(TermyxError, ValueError):
    """Raised by the atomic trial increment once the limit has been reached."""

    def __init__(self, user_id: str, limit: int) -> None:
        super().__init__(f"free trial limit of {limit} documents reached")
        self.user_id = user_id
        self.limit = limit
