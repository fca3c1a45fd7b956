"""
Tests for SettlementPolicy: default amounts, appeal deterrent, debt aging.
"""
from datetime import datetime, timedelta

import pytest

from app.models.db_models import ViolationType
from app.services.lifecycle.policy import SettlementPolicy, round_amount


@pytest.fixture
def policy():
    return SettlementPolicy()


class TestRounding:

    def test_halves_round_up(self):
        assert round_amount(2.5) == 3.0
        assert round_amount(3.49) == 3.0

    def test_negative_halves_round_away_from_zero(self):
        assert round_amount(-2.5) == -3.0


class TestDefaultAmounts:

    def test_reward_is_five_percent_of_base_fine(self, policy):
        assert policy.default_reward(ViolationType.OVERSPEEDING) == 250.0
        assert policy.default_reward(ViolationType.DRUNK_DRIVING) == 500.0

    def test_penalty_is_five_percent_of_base_fine(self, policy):
        assert policy.default_penalty(ViolationType.NO_HELMET) == 25.0

    def test_custom_fine_schedule_falls_back_to_other(self):
        policy = SettlementPolicy(fine_schedule={ViolationType.OTHER: 2000})
        assert policy.base_fine(ViolationType.OVERSPEEDING) == 2000


class TestAppealPenalty:

    def test_one_and_a_half_percent(self, policy):
        assert policy.additional_appeal_penalty(1000) == 15.0

    @pytest.mark.parametrize("penalty,expected", [(250, 4.0), (100, 2.0), (0, 0.0)])
    def test_rounded_to_whole_units(self, policy, penalty, expected):
        assert policy.additional_appeal_penalty(penalty) == expected


class TestDebtAging:

    def test_due_date_is_grace_period_after_settlement(self, policy):
        settled = datetime(2026, 1, 5, 9, 0)
        assert policy.due_date_from(settled) == settled + timedelta(days=7)

    @pytest.mark.parametrize("days,weeks", [(-3, 0), (0, 0), (6, 0), (7, 1), (15, 2), (28, 4)])
    def test_weeks_past_due(self, days, weeks):
        due = datetime(2026, 1, 12)
        assert SettlementPolicy.weeks_past_due(due, due + timedelta(days=days)) == weeks

    def test_late_fees_scale_with_weeks(self, policy):
        assert policy.late_fees(1000, 0) == 0.0
        assert policy.late_fees(1000, 1) == 25.0
        assert policy.late_fees(1000, 2) == 50.0

    def test_late_fees_never_decrease(self, policy):
        fees = [policy.late_fees(730, weeks) for weeks in range(0, 12)]
        assert fees == sorted(fees)

    def test_period_key_is_iso_week(self):
        assert SettlementPolicy.period_key(datetime(2026, 1, 5)) == "2026-W02"
        # ISO week 1 of 2026 starts in December 2025
        assert SettlementPolicy.period_key(datetime(2025, 12, 29)) == "2026-W01"
