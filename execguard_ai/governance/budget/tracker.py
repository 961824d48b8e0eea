"""Budget tracking against daily and monthly spending limits.

Usage is kept in an append-only ledger (``UsageRepository``); every status is
derived from the ledger and the configured limits at query time, bucketed by
UTC day and UTC month. Money is tracked in integer cents.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Callable, Optional

from execguard_ai.core.logging_config import get_logger

from ..config import BudgetLimits, GovernanceConfig
from ..errors import InvalidOperation
from ..repos.interfaces import UsageRepository
from ..schemas.domain import BudgetStatus, UsageRecord, UsageSummary, WarningLevel

logger = get_logger(__name__)

Clock = Callable[[], datetime]

_LEVEL_ORDER = {
    WarningLevel.none: 0,
    WarningLevel.low: 1,
    WarningLevel.medium: 2,
    WarningLevel.high: 3,
    WarningLevel.exceeded: 4,
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _day_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, now.day, tzinfo=timezone.utc)


def _month_start(now: datetime) -> datetime:
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)


def format_cents(cents: int) -> str:
    return f"${cents / 100:.2f}"


def classify_warning(used: int, limit: Optional[int], *, hard: bool = True) -> WarningLevel:
    """
    Classify usage against a limit.

    Thresholds: ``low`` from 75%, ``medium`` from 90%, ``high`` from 100%,
    ``exceeded`` from 110%. A hard limit is ``exceeded`` as soon as it is
    reached, so ``high`` only shows up for soft limits.

    Args:
        used: Amount used in cents.
        limit: The limit in cents, or None when unlimited.
        hard: Whether the limit is a hard stop.
    """
    if limit is None:
        return WarningLevel.none
    if limit <= 0:
        return WarningLevel.exceeded
    # Integer basis points avoid float rounding right at the thresholds.
    ratio_bp = used * 10_000 // limit
    if ratio_bp >= 11_000 or (hard and used >= limit):
        return WarningLevel.exceeded
    if ratio_bp >= 10_000:
        return WarningLevel.high
    if ratio_bp >= 9_000:
        return WarningLevel.medium
    if ratio_bp >= 7_500:
        return WarningLevel.low
    return WarningLevel.none


def _worse(a: WarningLevel, b: WarningLevel) -> WarningLevel:
    return a if _LEVEL_ORDER[a] >= _LEVEL_ORDER[b] else b


def refusal_reason(status: BudgetStatus) -> Optional[str]:
    """Why no new work may start in the status's scope, or None when it may."""
    if status.is_over_daily_limit:
        return (
            f"Daily budget limit ({format_cents(status.daily_limit or 0)}) exceeded. "
            f"Used: {format_cents(status.daily_used)}"
        )
    if status.is_over_monthly_limit:
        return (
            f"Monthly budget limit ({format_cents(status.monthly_limit or 0)}) exceeded. "
            f"Used: {format_cents(status.monthly_used)}"
        )
    return None


class BudgetTracker:
    """Track token/cost usage per budget scope and classify it against limits.

    Args:
        usage: The usage ledger repository.
        config: Engine-wide configuration holding limits and token prices.
        clock: Returns the current time; injectable so tests can cross UTC
            day and month boundaries.
    """

    def __init__(self, usage: UsageRepository, config: GovernanceConfig, *, clock: Optional[Clock] = None) -> None:
        self._usage = usage
        self._cfg = config
        self._clock: Clock = clock or _utc_now

    def limits_for(self, scope: str) -> BudgetLimits:
        return self._cfg.limits_for(scope)

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> int:
        """
        Estimate the cost of a model call in whole cents (rounded up).

        Raises:
            InvalidOperation: If either token count is negative.
        """
        if input_tokens < 0 or output_tokens < 0:
            raise InvalidOperation("Token counts must be non-negative")
        pricing = self._cfg.pricing
        cents = input_tokens / 1000 * pricing.input_cents_per_1k + output_tokens / 1000 * pricing.output_cents_per_1k
        return math.ceil(round(cents, 6))

    async def record_usage(
        self, scope: str, *, tokens: int, cost_cents: int, execution_id: Optional[str] = None
    ) -> BudgetStatus:
        """
        Append usage to the ledger and return the recomputed status.

        Raises:
            InvalidOperation: If ``tokens`` or ``cost_cents`` is negative.
        """
        if tokens < 0 or cost_cents < 0:
            raise InvalidOperation("Usage amounts must be non-negative", details={"tokens": tokens, "cost_cents": cost_cents})
        await self._usage.append(
            UsageRecord(
                scope=scope,
                execution_id=execution_id,
                tokens=tokens,
                cost_cents=cost_cents,
                recorded_at=self._clock().astimezone(timezone.utc),
            )
        )
        status = await self.get_status(scope)
        if status.warning_level != WarningLevel.none:
            logger.warning(
                f"Budget scope {scope!r} at warning level {status.warning_level.value}: "
                f"daily {format_cents(status.daily_used)}, monthly {format_cents(status.monthly_used)}"
            )
        return status

    async def get_status(self, scope: str) -> BudgetStatus:
        """Derive the current ``BudgetStatus`` of a scope from the ledger."""
        now = self._clock().astimezone(timezone.utc)
        day_start = _day_start(now)
        daily_tokens, daily_used = await self._usage.totals(scope, since=day_start)
        monthly_tokens, monthly_used = await self._usage.totals(scope, since=_month_start(now))

        limits = self.limits_for(scope)
        daily_limit = limits.daily_limit_cents
        monthly_limit = limits.monthly_limit_cents

        level = _worse(
            classify_warning(daily_used, daily_limit, hard=limits.hard),
            classify_warning(monthly_used, monthly_limit, hard=limits.hard),
        )
        return BudgetStatus(
            scope=scope,
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            daily_used=daily_used,
            monthly_used=monthly_used,
            daily_remaining=max(0, daily_limit - daily_used) if daily_limit is not None else None,
            monthly_remaining=max(0, monthly_limit - monthly_used) if monthly_limit is not None else None,
            daily_tokens_used=daily_tokens,
            monthly_tokens_used=monthly_tokens,
            is_over_daily_limit=daily_limit is not None and daily_used >= daily_limit,
            is_over_monthly_limit=monthly_limit is not None and monthly_used >= monthly_limit,
            warning_level=level,
        )

    async def usage_summary(self, scope: str) -> UsageSummary:
        now = self._clock().astimezone(timezone.utc)
        day_start = _day_start(now)
        today_tokens, today_cents = await self._usage.totals(scope, since=day_start)
        month_tokens, month_cents = await self._usage.totals(scope, since=_month_start(now))
        all_tokens, all_cents = await self._usage.totals(scope)
        return UsageSummary(
            scope=scope,
            today_cents=today_cents,
            today_tokens=today_tokens,
            this_month_cents=month_cents,
            this_month_tokens=month_tokens,
            all_time_cents=all_cents,
            all_time_tokens=all_tokens,
        )
