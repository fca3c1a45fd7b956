"""
Tests for WithdrawalService: request rules, cancellation, admin processing.
"""
import pytest

from app.models.db_models import (
    SettlementTransactionDB, TransactionType, WithdrawalMethod, WithdrawalStatus,
)
from app.services.lifecycle import (
    InvalidStateError, NotPermittedError, ReviewEngine, SettlementLedger, ValidationError,
    WithdrawalService,
)


@pytest.fixture
def rewarded(db, make_report, citizen, officer):
    """Citizen with a 500 reward on the ledger."""
    ReviewEngine(db).review(make_report().id, officer.id, "APPROVED", amount=500)
    return citizen


class TestRequest:

    def test_request_reserves_balance(self, db, rewarded):
        withdrawal = WithdrawalService(db).request(
            rewarded.id, 200, WithdrawalMethod.MOBILE_BANKING, {"mobileNumber": "01700000000"}
        )

        assert withdrawal.status == WithdrawalStatus.PENDING
        summary = SettlementLedger(db).balance_summary(rewarded.id)
        assert summary["current_balance"] == 500
        assert summary["pending_withdrawals"] == 200
        assert summary["withdrawable_amount"] == 300

    def test_minimum_amount(self, db, rewarded):
        with pytest.raises(ValidationError):
            WithdrawalService(db).request(rewarded.id, 50, WithdrawalMethod.CASH)

    def test_cannot_exceed_withdrawable(self, db, rewarded):
        service = WithdrawalService(db)
        service.request(rewarded.id, 400, WithdrawalMethod.CASH)
        with pytest.raises(ValidationError):
            service.request(rewarded.id, 200, WithdrawalMethod.CASH)

    def test_outstanding_debt_blocks_withdrawal(self, db, make_report, rewarded, officer):
        ReviewEngine(db).review(make_report().id, officer.id, "REJECTED", amount=100)
        with pytest.raises(ValidationError):
            WithdrawalService(db).request(rewarded.id, 150, WithdrawalMethod.CASH)


class TestProcess:

    def test_completion_debits_ledger(self, db, rewarded, admin):
        service = WithdrawalService(db)
        withdrawal = service.request(rewarded.id, 200, WithdrawalMethod.BANK_TRANSFER)

        service.process(withdrawal.id, admin.id, WithdrawalStatus.APPROVED)
        completed = service.process(withdrawal.id, admin.id, WithdrawalStatus.COMPLETED, notes="Sent")

        assert completed.status == WithdrawalStatus.COMPLETED
        assert completed.processed_by == admin.id
        debit = db.get(SettlementTransactionDB, completed.transaction_id)
        assert debit.type == TransactionType.WITHDRAWAL
        assert debit.amount == -200

        summary = SettlementLedger(db).balance_summary(rewarded.id)
        assert summary["current_balance"] == 300
        assert summary["pending_withdrawals"] == 0

    def test_withdrawal_is_not_counted_as_a_penalty(self, db, rewarded, admin):
        service = WithdrawalService(db)
        withdrawal = service.request(rewarded.id, 200, WithdrawalMethod.CASH)
        service.process(withdrawal.id, admin.id, WithdrawalStatus.APPROVED)
        service.process(withdrawal.id, admin.id, WithdrawalStatus.COMPLETED)

        ledger = SettlementLedger(db)
        summary = ledger.balance_summary(rewarded.id)
        assert summary["total_penalties"] == 0
        assert summary["total_withdrawn"] == 200
        assert summary["total_earned"] == 500
        assert ledger.stats_for(rewarded.id)["total_penalties"] == 0

    def test_cannot_complete_unapproved(self, db, rewarded, admin):
        service = WithdrawalService(db)
        withdrawal = service.request(rewarded.id, 200, WithdrawalMethod.CASH)
        with pytest.raises(InvalidStateError):
            service.process(withdrawal.id, admin.id, WithdrawalStatus.COMPLETED)

    def test_rejection_releases_reservation(self, db, rewarded, admin):
        service = WithdrawalService(db)
        withdrawal = service.request(rewarded.id, 200, WithdrawalMethod.CASH)
        service.process(withdrawal.id, admin.id, WithdrawalStatus.REJECTED, notes="Bad account")

        assert SettlementLedger(db).balance_summary(rewarded.id)["withdrawable_amount"] == 500


class TestCancel:

    def test_owner_cancels_pending(self, db, rewarded):
        service = WithdrawalService(db)
        withdrawal = service.request(rewarded.id, 200, WithdrawalMethod.CASH)
        assert service.cancel(withdrawal.id, rewarded.id).status == WithdrawalStatus.CANCELLED

    def test_other_user_cannot_cancel(self, db, rewarded, other_citizen):
        service = WithdrawalService(db)
        withdrawal = service.request(rewarded.id, 200, WithdrawalMethod.CASH)
        with pytest.raises(NotPermittedError):
            service.cancel(withdrawal.id, other_citizen.id)

    def test_cannot_cancel_approved(self, db, rewarded, admin):
        service = WithdrawalService(db)
        withdrawal = service.request(rewarded.id, 200, WithdrawalMethod.CASH)
        service.process(withdrawal.id, admin.id, WithdrawalStatus.APPROVED)
        with pytest.raises(InvalidStateError):
            service.cancel(withdrawal.id, rewarded.id)
