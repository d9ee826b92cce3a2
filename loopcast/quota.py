"""Usage accounting against a user's plan allowance."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .models import Plan, StreamSession

logger = logging.getLogger(__name__)


class UsageStore(Protocol):
    def add_usage(self, user_id: int, delta_seconds: int) -> int:
        ...

    def get_plan_for_user(self, user_id: int) -> Optional[Plan]:
        ...


@dataclass(frozen=True)
class ChargeResult:
    usage_seconds: int
    limit_seconds: int
    limit_type: str

    @property
    def remaining_seconds(self) -> int:
        return max(0, self.limit_seconds - self.usage_seconds)

    @property
    def exhausted(self) -> bool:
        return self.usage_seconds >= self.limit_seconds


def is_exhausted(usage_seconds: int, plan: Plan) -> bool:
    """Same ceiling for daily and total plans; only the store's reset policy differs."""
    return usage_seconds >= plan.daily_limit_hours * 3600


def exhaustion_message(limit_type: str, limit_seconds: int) -> str:
    hours = limit_seconds // 3600
    if limit_type == "total":
        return f"Trial quota of {hours} hours is used up. Upgrade your plan to keep streaming."
    return f"Daily limit of {hours} hours reached."


class QuotaAccountant:
    """Turns progress ticks into usage charges.

    Ticks are sampled: nothing is charged until at least ``sample_interval``
    whole seconds of media have streamed past the session's watermark.
    """

    def __init__(self, store: UsageStore, sample_interval: int = 5):
        self.store = store
        self.sample_interval = sample_interval

    def accountable_delta(self, session: StreamSession, elapsed: float) -> int:
        """Whole seconds to charge for this tick, advancing the session watermark.

        Out-of-order or repeated markers yield zero; the watermark never moves back.
        """
        delta = int(elapsed - session.last_accounted_offset)
        if delta < self.sample_interval:
            return 0
        session.last_accounted_offset += delta
        return delta

    def charge(self, user_id: int, delta_seconds: int) -> Optional[ChargeResult]:
        if delta_seconds <= 0:
            return None
        usage = self.store.add_usage(user_id, delta_seconds)
        plan = self.store.get_plan_for_user(user_id)
        if plan is None:
            logger.warning("User %s has no plan, usage charged without a ceiling.", user_id)
            return None
        return ChargeResult(usage_seconds=usage, limit_seconds=plan.limit_seconds, limit_type=plan.limit_type)
