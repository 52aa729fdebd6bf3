from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class RewardError(Exception):
    """Canonical error type for controller, clock and ledger failures.

    Every subclass aborts the triggering operation as a whole; the controller
    restores its store before the error reaches the caller.
    """

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class ConfigurationError(RewardError):
    """Schedule or config values that can never be valid (e.g. rate over ceiling)."""


class AuthorizationError(RewardError):
    """Caller lacks the required role, or a guarded operation was re-entered."""


class LifecycleError(RewardError):
    """Operation not allowed for the current pool or clock phase."""


class BudgetExceeded(RewardError):
    """A collection would push a period's claimed total above its budget."""


class InvariantError(RewardError):
    """An explicit ledger invariant check failed."""


__all__ = [
    "RewardError",
    "ConfigurationError",
    "AuthorizationError",
    "LifecycleError",
    "BudgetExceeded",
    "InvariantError",
]
