"""Domain exceptions raised by the rewards and progress services.

Routers never catch these; the handlers registered in
``tilawa.middleware.error_handler`` map them to HTTP responses.
"""

from __future__ import annotations


class TilawaError(Exception):
    """Base class for all service-level errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TilawaError):
    """Malformed input to a record/check call. Raised before any mutation."""

    status_code = 400


class NotFound(TilawaError):
    """A referenced user, progress row, quiz, mistake or achievement does not exist."""

    status_code = 404


class InsufficientFunds(TilawaError):
    """A deduction exceeds the current balance. Nothing was written."""

    status_code = 409

    def __init__(self, balance: int, requested: int) -> None:
        super().__init__(f"Insufficient coins: balance {balance}, requested {requested}")
        self.balance = balance
        self.requested = requested


class ConcurrencyConflict(TilawaError):
    """Balance contention outlasted the retry budget. The whole event may be retried."""

    status_code = 503


class DuplicateAchievement(TilawaError):
    """The (user, badge_type) row already exists. Never leaves the achievement engine."""

    status_code = 409


class InvalidBadgeType(TilawaError):
    """A badge type outside the fixed catalog was requested."""

    status_code = 500
