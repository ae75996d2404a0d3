"""Typed failures shared by the taste profile and recommendation services."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from app.services.usage_service import UsageSnapshot


class ValidationError(ValueError):
    """Raised for malformed input before any state is touched."""


class UpstreamUnavailable(RuntimeError):
    """Raised when the catalog, taxonomy, or LLM service cannot answer."""


class NotFound(LookupError):
    """Raised when a profile or record does not exist."""


class PersistenceError(RuntimeError):
    """Raised when a database write could not be committed."""


class QuotaExceeded(RuntimeError):
    """Raised when a user's plan has no recommendation queries left this month."""

    def __init__(self, usage: "UsageSnapshot") -> None:
        super().__init__(f"Monthly AI query limit reached for plan {usage.plan}")
        self.usage = usage
