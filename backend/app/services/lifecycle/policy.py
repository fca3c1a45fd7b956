"""
Settlement Policy

Pricing and fee rules used by the review, appeal and debt engines.
All rates are configuration; the defaults are the published citizen rules:
- Approved report earns 5% of the base fine for the violation type
- Rejected (false) report costs 5% of the same base fine
- Rejected appeal costs an additional 1.5% of the original penalty
- Unpaid penalties are due after 7 days, then grow 2.5% of the original
  amount per full week past due
"""
import math
import os
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

from ...models.db_models import ViolationType


# =============================================================================
# POLICY CONFIGURATION
# =============================================================================

REWARD_RATE = float(os.getenv("REWARD_RATE", "0.05"))
PENALTY_RATE = float(os.getenv("PENALTY_RATE", "0.05"))
APPEAL_PENALTY_RATE = float(os.getenv("APPEAL_PENALTY_RATE", "0.015"))
LATE_FEE_RATE_PER_WEEK = float(os.getenv("LATE_FEE_RATE_PER_WEEK", "0.025"))
DEBT_GRACE_DAYS = int(os.getenv("DEBT_GRACE_DAYS", "7"))
MIN_WITHDRAWAL_AMOUNT = float(os.getenv("MIN_WITHDRAWAL_AMOUNT", "100"))

# Base fines (BDT) per violation type
FINE_SCHEDULE: Dict[ViolationType, float] = {
    ViolationType.OVERSPEEDING: 5000,
    ViolationType.WRONG_SIDE: 3000,
    ViolationType.SIGNAL_BREAKING: 2000,
    ViolationType.NO_HELMET: 500,
    ViolationType.ILLEGAL_PARKING: 1000,
    ViolationType.DRUNK_DRIVING: 10000,
    ViolationType.NO_SEATBELT: 500,
    ViolationType.MOBILE_WHILE_DRIVING: 1000,
    ViolationType.OVERLOADING: 3000,
    ViolationType.NO_LICENSE: 5000,
    ViolationType.OTHER: 1000,
}

WEEK = timedelta(days=7)


def round_amount(value: float) -> float:
    """Round to whole currency units, halves away from zero."""
    return float(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# =============================================================================
# SETTLEMENT POLICY
# =============================================================================

class SettlementPolicy:
    """
    Monetary rules for report settlement and debt aging.

    Instances are cheap; engines build one with overrides in tests.
    """

    def __init__(
        self,
        reward_rate: float = REWARD_RATE,
        penalty_rate: float = PENALTY_RATE,
        appeal_penalty_rate: float = APPEAL_PENALTY_RATE,
        late_fee_rate_per_week: float = LATE_FEE_RATE_PER_WEEK,
        grace_days: int = DEBT_GRACE_DAYS,
        fine_schedule: Optional[Dict[ViolationType, float]] = None,
    ):
        self.reward_rate = reward_rate
        self.penalty_rate = penalty_rate
        self.appeal_penalty_rate = appeal_penalty_rate
        self.late_fee_rate_per_week = late_fee_rate_per_week
        self.grace_days = grace_days
        self.fine_schedule = fine_schedule or FINE_SCHEDULE

    def base_fine(self, violation_type: ViolationType) -> float:
        return self.fine_schedule.get(violation_type, self.fine_schedule[ViolationType.OTHER])

    def default_reward(self, violation_type: ViolationType) -> float:
        return round_amount(self.base_fine(violation_type) * self.reward_rate)

    def default_penalty(self, violation_type: ViolationType) -> float:
        return round_amount(self.base_fine(violation_type) * self.penalty_rate)

    def additional_appeal_penalty(self, penalty_amount: float) -> float:
        """Deterrent charged when an appeal is rejected: 1000 -> 15."""
        return round_amount(penalty_amount * self.appeal_penalty_rate)

    def due_date_from(self, settled_at: datetime) -> datetime:
        return settled_at + timedelta(days=self.grace_days)

    @staticmethod
    def weeks_past_due(due_date: datetime, now: datetime) -> int:
        """max(0, floor((now - due_date) / 7 days))"""
        if now <= due_date:
            return 0
        return math.floor((now - due_date) / WEEK)

    def late_fees(self, original_amount: float, weeks_past_due: int) -> float:
        """Monotonically non-decreasing in weeks_past_due."""
        if weeks_past_due <= 0:
            return 0.0
        return round(original_amount * self.late_fee_rate_per_week * weeks_past_due, 2)

    @staticmethod
    def period_key(now: datetime) -> str:
        """Accrual period identifier (ISO week)."""
        year, week, _ = now.isocalendar()
        return f"{year}-W{week:02d}"
