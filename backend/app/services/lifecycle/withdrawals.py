"""
Withdrawal Service

Cash-out of a positive reward balance. A request reserves the amount
(it stops counting as withdrawable) and only hits the ledger when an admin
marks it COMPLETED.

    PENDING -> APPROVED -> COMPLETED
    PENDING -> REJECTED | CANCELLED
    APPROVED -> REJECTED
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

from sqlalchemy.orm import Session

from ...models.db_models import (
    TransactionSource, TransactionType, WithdrawalMethod, WithdrawalRequestDB,
    WithdrawalStatus,
)
from .errors import InvalidStateError, LifecycleError, NotFoundError, NotPermittedError, ValidationError
from .policy import MIN_WITHDRAWAL_AMOUNT
from .settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)

WITHDRAWAL_TRANSITIONS = {
    WithdrawalStatus.PENDING: [WithdrawalStatus.APPROVED, WithdrawalStatus.REJECTED, WithdrawalStatus.CANCELLED],
    WithdrawalStatus.APPROVED: [WithdrawalStatus.COMPLETED, WithdrawalStatus.REJECTED],
    WithdrawalStatus.REJECTED: [],
    WithdrawalStatus.COMPLETED: [],
    WithdrawalStatus.CANCELLED: [],
}


class WithdrawalService:
    """Request, cancel and process withdrawals."""

    def __init__(self, db_session: Session, min_amount: float = MIN_WITHDRAWAL_AMOUNT):
        """Initialize with database session."""
        self.db = db_session
        self.ledger = SettlementLedger(db_session)
        self.min_amount = min_amount

    def get(self, withdrawal_id: str) -> WithdrawalRequestDB:
        withdrawal = self.db.get(WithdrawalRequestDB, withdrawal_id)
        if withdrawal is None:
            raise NotFoundError(f"Withdrawal {withdrawal_id} not found")
        return withdrawal

    def request(
        self,
        user_id: str,
        amount: float,
        method: WithdrawalMethod,
        account_details: Optional[Dict[str, Any]] = None,
    ) -> WithdrawalRequestDB:
        """
        Reserve part of the balance for payout.

        Raises ValidationError below the minimum, above the withdrawable
        amount, or while the user still has outstanding debt.
        """
        if amount is None or amount <= 0:
            raise ValidationError("Withdrawal amount must be positive")
        if amount < self.min_amount:
            raise ValidationError(f"Minimum withdrawal is {self.min_amount:.2f}")

        summary = self.ledger.balance_summary(user_id)
        if summary["total_outstanding_debt"] > 0:
            raise ValidationError("Clear outstanding debt before withdrawing")
        if amount > summary["withdrawable_amount"]:
            raise ValidationError("Insufficient withdrawable balance")

        withdrawal = WithdrawalRequestDB(
            id=str(uuid4()),
            user_id=user_id,
            amount=amount,
            method=method,
            account_details=account_details or {},
            status=WithdrawalStatus.PENDING,
        )
        self.db.add(withdrawal)
        self.db.commit()
        self.db.refresh(withdrawal)

        logger.info(f"Withdrawal {withdrawal.id} requested by {user_id}: {amount:.2f} via {method.value}")
        return withdrawal

    def list_for_user(self, user_id: str) -> List[WithdrawalRequestDB]:
        return self.db.query(WithdrawalRequestDB).filter(
            WithdrawalRequestDB.user_id == user_id
        ).order_by(WithdrawalRequestDB.requested_at.desc()).all()

    def list_all(self, status: Optional[WithdrawalStatus] = None) -> List[WithdrawalRequestDB]:
        query = self.db.query(WithdrawalRequestDB)
        if status:
            query = query.filter(WithdrawalRequestDB.status == status)
        return query.order_by(WithdrawalRequestDB.requested_at.desc()).all()

    def cancel(self, withdrawal_id: str, user_id: str) -> WithdrawalRequestDB:
        withdrawal = self.get(withdrawal_id)
        if withdrawal.user_id != user_id:
            raise NotPermittedError("Withdrawal belongs to another user")
        return self._transition(withdrawal, WithdrawalStatus.CANCELLED, processed_by=user_id)

    def process(
        self,
        withdrawal_id: str,
        admin_id: str,
        status: WithdrawalStatus,
        notes: Optional[str] = None,
    ) -> WithdrawalRequestDB:
        """Admin decision. COMPLETED debits the ledger."""
        return self._transition(self.get(withdrawal_id), status, processed_by=admin_id, notes=notes)

    def _transition(
        self,
        withdrawal: WithdrawalRequestDB,
        to_status: WithdrawalStatus,
        processed_by: str,
        notes: Optional[str] = None,
    ) -> WithdrawalRequestDB:
        from_status = withdrawal.status
        if to_status not in WITHDRAWAL_TRANSITIONS.get(from_status, []):
            raise InvalidStateError(f"Cannot move withdrawal from {from_status.value} to {to_status.value}")

        now = datetime.utcnow()
        try:
            updated = self.db.query(WithdrawalRequestDB).filter(
                WithdrawalRequestDB.id == withdrawal.id,
                WithdrawalRequestDB.status == from_status,
            ).update(
                {
                    "status": to_status,
                    "processed_at": now,
                    "processed_by": processed_by,
                    "notes": notes if notes is not None else withdrawal.notes,
                },
                synchronize_session=False,
            )
            if updated != 1:
                raise InvalidStateError(f"Withdrawal {withdrawal.id} was modified concurrently")

            if to_status == WithdrawalStatus.COMPLETED:
                transaction = self.ledger.record(
                    user_id=withdrawal.user_id,
                    amount=-withdrawal.amount,
                    type=TransactionType.WITHDRAWAL,
                    source=TransactionSource.SYSTEM,
                    description=f"Withdrawal via {withdrawal.method.value}",
                    created_at=now,
                )
                self.db.query(WithdrawalRequestDB).filter(
                    WithdrawalRequestDB.id == withdrawal.id
                ).update({"transaction_id": transaction.id}, synchronize_session=False)

            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise

        self.db.refresh(withdrawal)
        logger.info(f"Withdrawal {withdrawal.id}: {from_status.value} -> {to_status.value}")
        return withdrawal
