"""Calendar-month usage quotas keyed to subscription tier.

The check is advisory-then-enforced: two requests racing near the limit
can both be allowed, overshooting by at most (concurrent requests - 1).
No row locking is taken.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Mapping, Union

from app.config import Settings
from app.metrics import quota_reject_total
from app.services.sessions import AuthContext
from app.services.store import SqlStore

logger = logging.getLogger(__name__)

BACKGROUND_REMOVAL = "background_removal"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def month_key(dt: datetime | None = None) -> str:
    """Return the month key in format YYYY-MM (UTC)."""
    if dt is None:
        dt = _now()
    return dt.astimezone(timezone.utc).strftime("%Y-%m")


def month_window(key: str) -> tuple[datetime, datetime]:
    """Return ``[first day of month, first day of next month)`` for ``key``."""
    try:
        year, month = (int(part) for part in key.split("-"))
        start = datetime(year, month, 1, tzinfo=timezone.utc)
    except ValueError as exc:
        raise ValueError(f"Invalid month key: {key!r}") from exc
    if month == 12:
        end = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(year, month + 1, 1, tzinfo=timezone.utc)
    return start, end


class QuotaPolicy:
    """Static mapping of tier to monthly allowance (``None`` = unlimited)."""

    def __init__(self, limits: Mapping[str, int | None]) -> None:
        self._limits = dict(limits)

    @classmethod
    def from_settings(cls, settings: Settings) -> "QuotaPolicy":
        return cls(settings.quota_policy())

    def max_per_month(self, tier: str) -> int | None:
        # tiers without an entry are gated entirely
        return self._limits.get(tier, 0)


@dataclass(frozen=True)
class Allow:
    allowed = True


@dataclass(frozen=True)
class Deny:
    reason: str
    limit: int
    allowed = False


Decision = Union[Allow, Deny]


@dataclass(frozen=True)
class UsageStatus:
    used: int
    max: int | None
    remaining: int | None
    month: str

    @property
    def unlimited(self) -> bool:
        return self.max is None


class QuotaLedger:
    def __init__(
        self,
        policy: QuotaPolicy,
        store: SqlStore,
        *,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self._policy = policy
        self._store = store
        self._clock = clock

    async def current_usage(self, user_id: int, action: str, key: str) -> int:
        start, end = month_window(key)
        return await asyncio.to_thread(
            self._store.count_usage_events, user_id, action, start, end
        )

    async def check_and_authorize(
        self, auth: AuthContext, action: str = BACKGROUND_REMOVAL
    ) -> Decision:
        limit = self._policy.max_per_month(auth.subscription_tier)
        if limit is None:
            return Allow()
        used = await self.current_usage(auth.user_id, action, month_key(self._clock()))
        if used < limit:
            return Allow()
        quota_reject_total.inc()
        logger.info(
            "Quota exceeded for user %s (%s/%s, tier %s)",
            auth.user_id,
            used,
            limit,
            auth.subscription_tier,
        )
        return Deny(reason="quota_exceeded", limit=limit)

    async def remaining(
        self, auth: AuthContext, action: str = BACKGROUND_REMOVAL
    ) -> UsageStatus:
        key = month_key(self._clock())
        used = await self.current_usage(auth.user_id, action, key)
        limit = self._policy.max_per_month(auth.subscription_tier)
        if limit is None:
            return UsageStatus(used=used, max=None, remaining=None, month=key)
        return UsageStatus(
            used=used, max=limit, remaining=max(0, limit - used), month=key
        )


__all__ = [
    "BACKGROUND_REMOVAL",
    "month_key",
    "month_window",
    "QuotaPolicy",
    "Allow",
    "Deny",
    "Decision",
    "UsageStatus",
    "QuotaLedger",
]
