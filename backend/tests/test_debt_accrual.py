"""
Tests for DebtAccrual and the AccrualScheduler.

Key tests:
1. Late fees are charged once per accrual period and never decrease
2. Payments: bounds, PARTIAL/PAID transitions, ledger credit
3. Waiver stops collection and credits back what was still owed
4. Scheduler run over all overdue debts
"""
from datetime import timedelta

import pytest

from app.models.db_models import (
    DebtAccrualTickDB, DebtPaymentDB, DebtStatus, PaymentMethod, SettlementTransactionDB, TransactionSource,
    TransactionType,
)
from app.services.lifecycle import (
    AccrualScheduler, DebtAccrual, InvalidStateError, NotPermittedError, ReviewEngine, SettlementLedger,
    SettlementPolicy, ValidationError,
)
from conftest import T0


@pytest.fixture
def accrual(db):
    return DebtAccrual(db)


@pytest.fixture
def debt(db, accrual, citizen):
    """1000 owed, due at T0."""
    opened = accrual.open_debt(citizen.id, 1000, due_date=T0, related_report_id="report-1")
    db.commit()
    return opened


# =============================================================================
# OPEN
# =============================================================================

def test_open_debt_requires_positive_amount(accrual, citizen):
    with pytest.raises(ValidationError):
        accrual.open_debt(citizen.id, 0, due_date=T0)


def test_new_debt_is_outstanding(debt):
    assert debt.status == DebtStatus.OUTSTANDING
    assert debt.current_amount == 1000
    assert debt.late_fees == 0
    assert debt.remaining_amount == 1000


# =============================================================================
# ACCRUAL
# =============================================================================

class TestAccrue:

    def test_not_overdue_charges_nothing(self, db, accrual, debt):
        assert accrual.accrue(debt, now=T0 + timedelta(days=6)) is False
        assert debt.late_fees == 0
        assert db.query(DebtAccrualTickDB).count() == 0

    def test_charges_weekly_fee(self, db, accrual, debt, citizen):
        assert accrual.accrue(debt, now=T0 + timedelta(days=15)) is True
        db.commit()

        assert debt.weeks_past_due == 2
        assert debt.late_fees == 50.0
        assert debt.current_amount == 1050.0

        fee = db.query(SettlementTransactionDB).filter(
            SettlementTransactionDB.related_debt_id == debt.id
        ).one()
        assert fee.type == TransactionType.DEDUCTION
        assert fee.amount == -50.0
        assert SettlementLedger(db).balance_for(citizen.id) == -50.0

    def test_once_per_period(self, db, accrual, debt):
        accrual.accrue(debt, now=T0 + timedelta(days=15))
        # Same ISO week, three days later
        assert accrual.accrue(debt, now=T0 + timedelta(days=18)) is False
        db.commit()

        assert debt.late_fees == 50.0
        assert db.query(DebtAccrualTickDB).filter(DebtAccrualTickDB.debt_id == debt.id).count() == 1

    def test_next_period_charges_the_difference(self, db, accrual, debt):
        accrual.accrue(debt, now=T0 + timedelta(days=15))
        assert accrual.accrue(debt, now=T0 + timedelta(days=22)) is True
        db.commit()

        assert debt.weeks_past_due == 3
        assert debt.late_fees == 75.0
        charged = [t.amount for t in db.query(SettlementTransactionDB).order_by(SettlementTransactionDB.created_at)]
        assert charged == [-50.0, -25.0]

    def test_fees_never_decrease(self, db, accrual, debt):
        accrual.accrue(debt, now=T0 + timedelta(days=22))
        cheaper = DebtAccrual(db, SettlementPolicy(late_fee_rate_per_week=0.01))

        assert cheaper.accrue(debt, now=T0 + timedelta(days=29)) is False
        assert debt.late_fees == 75.0
        assert debt.weeks_past_due == 4

    def test_closed_debts_do_not_accrue(self, db, accrual, debt):
        accrual.waive(debt, "test")
        assert accrual.accrue(debt, now=T0 + timedelta(days=30)) is False
        assert debt.late_fees == 0


# =============================================================================
# PAYMENT
# =============================================================================

class TestPay:

    def test_partial_then_full(self, db, accrual, debt, citizen):
        paid = accrual.pay(debt.id, citizen.id, 400, PaymentMethod.MOBILE_MONEY, now=T0)
        assert paid.status == DebtStatus.PARTIAL
        assert paid.paid_amount == 400
        assert paid.remaining_amount == 600

        paid = accrual.pay(debt.id, citizen.id, 600, PaymentMethod.CARD, payment_reference="TXN-1", now=T0)
        assert paid.status == DebtStatus.PAID
        assert paid.remaining_amount == 0
        assert paid.payment_reference == "TXN-1"

        assert db.query(DebtPaymentDB).filter(DebtPaymentDB.debt_id == debt.id).count() == 2
        credits = db.query(SettlementTransactionDB).filter(
            SettlementTransactionDB.type == TransactionType.DEBT_PAYMENT
        ).all()
        assert sorted(t.amount for t in credits) == [400, 600]
        assert SettlementLedger(db).balance_for(citizen.id) == 1000

    @pytest.mark.parametrize("amount", [0, -5, 1000.01])
    def test_amount_bounds(self, db, accrual, debt, citizen, amount):
        with pytest.raises(ValidationError):
            accrual.pay(debt.id, citizen.id, amount, PaymentMethod.CARD)

        db.refresh(debt)
        assert debt.status == DebtStatus.OUTSTANDING
        assert debt.paid_amount == 0
        assert db.query(SettlementTransactionDB).count() == 0

    def test_pays_late_fees_too(self, db, accrual, debt, citizen):
        accrual.accrue(debt, now=T0 + timedelta(days=15))
        db.commit()

        paid = accrual.pay(debt.id, citizen.id, 1050, PaymentMethod.BANK_TRANSFER)
        assert paid.status == DebtStatus.PAID

    def test_other_users_debt(self, accrual, debt, other_citizen):
        with pytest.raises(NotPermittedError):
            accrual.pay(debt.id, other_citizen.id, 100, PaymentMethod.CARD)

    def test_paid_debt_is_closed(self, accrual, debt, citizen):
        accrual.pay(debt.id, citizen.id, 1000, PaymentMethod.CARD)
        with pytest.raises(InvalidStateError):
            accrual.pay(debt.id, citizen.id, 1, PaymentMethod.CARD)


# =============================================================================
# WAIVER AND READS
# =============================================================================

def test_waive_by_id(db, accrual, debt):
    waived = accrual.waive_by_id(debt.id, "Hardship")
    assert waived.status == DebtStatus.WAIVED
    assert waived.notes == "Hardship"

    with pytest.raises(InvalidStateError):
        accrual.waive_by_id(debt.id, "Again")


def test_waiver_credits_what_is_still_owed(db, make_report, citizen, officer):
    report = make_report()
    ReviewEngine(db).review(report.id, officer.id, "REJECTED", amount=1000, now=T0)
    accrual = DebtAccrual(db)
    debt = accrual.debts_for_report(report.id)[0]
    accrual.accrue(debt, now=T0 + timedelta(days=21))
    db.commit()
    accrual.pay(debt.id, citizen.id, 300, PaymentMethod.CARD, now=T0 + timedelta(days=22))

    accrual.waive_by_id(debt.id, "Hardship")

    credit = db.query(SettlementTransactionDB).filter(
        SettlementTransactionDB.related_debt_id == debt.id,
        SettlementTransactionDB.type == TransactionType.BONUS,
    ).one()
    assert credit.amount == 750.0
    assert credit.source == TransactionSource.SYSTEM

    summary = SettlementLedger(db).balance_summary(citizen.id)
    assert summary["current_balance"] == 0
    assert summary["total_outstanding_debt"] == 0


def test_waiver_can_forgive_nothing(db, accrual, debt):
    accrual.waive(debt, "Settled elsewhere", forgiven=0)
    db.commit()

    assert debt.status == DebtStatus.WAIVED
    assert db.query(SettlementTransactionDB).count() == 0


def test_summary_lists_open_debts(db, accrual, debt, citizen):
    second = accrual.open_debt(citizen.id, 15, due_date=T0 + timedelta(days=3))
    db.commit()
    accrual.pay(second.id, citizen.id, 5, PaymentMethod.CARD)

    summary = accrual.summary_for(citizen.id)
    assert summary["debt_count"] == 2
    assert summary["total_debt"] == 1010
    assert summary["oldest_due_date"] == T0


# =============================================================================
# SCHEDULER
# =============================================================================

class TestAccrualScheduler:

    def test_run_charges_overdue_debts_once_per_period(self, db, accrual, debt, citizen):
        accrual.open_debt(citizen.id, 500, due_date=T0 + timedelta(days=30))
        db.commit()
        now = T0 + timedelta(days=15)

        result = AccrualScheduler(db).run(now)
        assert result["period"] == "2026-W04"
        assert result["debts_charged"] == 1
        assert result["errors"] == 0
        assert result["details"]["charged"][0]["debt_id"] == debt.id
        assert result["details"]["charged"][0]["fee_charged"] == 50.0

        again = AccrualScheduler(db).run(now + timedelta(hours=1))
        assert again["debts_charged"] == 0
        assert again["debts_skipped"] == 1

    def test_overdue_debts(self, db, accrual, debt, citizen):
        accrual.open_debt(citizen.id, 500, due_date=T0 + timedelta(days=30))
        db.commit()

        overdue = accrual.overdue_debts(now=T0 + timedelta(days=1))
        assert [d.id for d in overdue] == [debt.id]
