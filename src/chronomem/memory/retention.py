"""Retention periods and cutoffs per subscription plan and temporal grain.

Periods are expressed in each grain's own unit: hours for ``working``,
days for ``daily``, then weeks, months, quarters and years. Cutoffs use
calendar arithmetic, so a six month retention ending on 31 August starts on
the last day of February rather than 180 days earlier.
"""

from datetime import datetime

from dateutil.relativedelta import relativedelta

from chronomem.core.exceptions import InvalidGrainError
from chronomem.core.types import MEMORY_GRAINS, SubscriptionPlan, TemporalGrain, parse_grain
from chronomem.core.utils import ensure_utc, utc_now

RETENTION_PERIODS: dict[SubscriptionPlan, dict[TemporalGrain, int]] = {
    SubscriptionPlan.FREE: {
        TemporalGrain.WORKING: 24,
        TemporalGrain.DAILY: 30,
        TemporalGrain.WEEKLY: 6,
        TemporalGrain.MONTHLY: 6,
        TemporalGrain.QUARTERLY: 4,
        TemporalGrain.YEARLY: 2,
    },
    SubscriptionPlan.STARTER: {
        TemporalGrain.WORKING: 48,
        TemporalGrain.DAILY: 60,
        TemporalGrain.WEEKLY: 12,
        TemporalGrain.MONTHLY: 12,
        TemporalGrain.QUARTERLY: 8,
        TemporalGrain.YEARLY: 4,
    },
    SubscriptionPlan.PRO: {
        TemporalGrain.WORKING: 120,
        TemporalGrain.DAILY: 120,
        TemporalGrain.WEEKLY: 24,
        TemporalGrain.MONTHLY: 24,
        TemporalGrain.QUARTERLY: 16,
        TemporalGrain.YEARLY: 8,
    },
}


def retention_periods(plan: SubscriptionPlan | str) -> dict[TemporalGrain, int]:
    """Retention period of every memory grain for a plan, in grain-native units."""
    return dict(RETENTION_PERIODS[SubscriptionPlan(plan)])


def _period_delta(grain: TemporalGrain, amount: int) -> relativedelta:
    if grain == TemporalGrain.WORKING:
        return relativedelta(hours=amount)
    if grain == TemporalGrain.DAILY:
        return relativedelta(days=amount)
    if grain == TemporalGrain.WEEKLY:
        return relativedelta(weeks=amount)
    if grain == TemporalGrain.MONTHLY:
        return relativedelta(months=amount)
    if grain == TemporalGrain.QUARTERLY:
        return relativedelta(months=3 * amount)
    if grain == TemporalGrain.YEARLY:
        return relativedelta(years=amount)
    raise InvalidGrainError(grain.value)


def retention_cutoff(
    grain: TemporalGrain | str,
    plan: SubscriptionPlan | str,
    now: datetime | None = None,
) -> datetime:
    """Oldest timestamp a plan keeps for a grain.

    Facts older than the cutoff are eligible for deletion by the sweeper.

    Args:
        grain: Memory grain.
        plan: Subscription plan.
        now: Reference time (defaults to the current UTC time).

    Returns:
        ``now`` minus the retention period, in UTC.

    Raises:
        InvalidGrainError: If ``grain`` is not a memory grain.

    Example:
        >>> retention_cutoff("monthly", "free", datetime(2024, 8, 31, tzinfo=UTC))
        datetime.datetime(2024, 2, 29, 0, 0, tzinfo=datetime.timezone.utc)
    """
    grain = parse_grain(grain)
    if grain not in MEMORY_GRAINS:
        raise InvalidGrainError(grain.value, f"Grain {grain.value} has no retention policy")

    amount = RETENTION_PERIODS[SubscriptionPlan(plan)][grain]
    reference = ensure_utc(now) if now is not None else utc_now()
    return reference - _period_delta(grain, amount)  # type: ignore[operator]
