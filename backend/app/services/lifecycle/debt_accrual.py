"""
Debt Accrual Engine

AUTHORITY: SYSTEM
Turns unpaid penalty settlements into debts and ages them into late fees.

Key behaviors:
- A debt is opened for every penalty settlement, due DEBT_GRACE_DAYS later
- Late fees are recomputed only at accrual ticks, driven by an external
  daily scheduler (see app.routers.scheduler)
- At most one charge per debt per accrual period (ISO week)
- Late fees never decrease; PAID and WAIVED debts stop accruing
- Payments are bounded by the remaining amount and credited to the ledger
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4
import logging

from sqlalchemy.orm import Session

from ...models.db_models import (
    DebtAccrualTickDB, DebtPaymentDB, DebtStatus, OutstandingDebtDB,
    PaymentMethod, TransactionSource, TransactionType,
)
from .errors import InvalidStateError, LifecycleError, NotFoundError, NotPermittedError, ValidationError
from .policy import SettlementPolicy
from .settlement_ledger import SettlementLedger

logger = logging.getLogger(__name__)

OPEN_DEBT_STATUSES = (DebtStatus.OUTSTANDING, DebtStatus.PARTIAL)


# =============================================================================
# DEBT ACCRUAL
# =============================================================================

class DebtAccrual:
    """
    Manages debts for the settlement system.

    Core Responsibilities:
    - Open debts for penalty settlements
    - Accrue late fees once per period
    - Accept payments (partial or full)
    - Waive debts (appeal refund, admin)
    """

    def __init__(self, db_session: Session, policy: Optional[SettlementPolicy] = None):
        """Initialize with database session."""
        self.db = db_session
        self.policy = policy or SettlementPolicy()
        self.ledger = SettlementLedger(db_session)

    # =========================================================================
    # LOOKUP
    # =========================================================================

    def get(self, debt_id: str) -> OutstandingDebtDB:
        debt = self.db.get(OutstandingDebtDB, debt_id)
        if debt is None:
            raise NotFoundError(f"Debt {debt_id} not found")
        return debt

    def get_for_user(self, debt_id: str, user_id: str) -> OutstandingDebtDB:
        debt = self.get(debt_id)
        if debt.user_id != user_id:
            raise NotPermittedError("Debt belongs to another user")
        return debt

    def debts_for_report(self, report_id: str) -> List[OutstandingDebtDB]:
        return self.db.query(OutstandingDebtDB).filter(
            OutstandingDebtDB.related_report_id == report_id
        ).order_by(OutstandingDebtDB.created_at).all()

    # =========================================================================
    # OPEN
    # =========================================================================

    def open_debt(
        self,
        user_id: str,
        amount: float,
        due_date: datetime,
        related_report_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> OutstandingDebtDB:
        """
        Open a debt for an unpaid penalty. The due date is supplied by the
        caller (policy grace period from the settlement time).
        Flushes but does not commit.
        """
        if amount <= 0:
            raise ValidationError("Debt amount must be positive")

        debt = OutstandingDebtDB(
            id=str(uuid4()),
            user_id=user_id,
            related_report_id=related_report_id,
            transaction_id=transaction_id,
            original_amount=amount,
            late_fees=0.0,
            current_amount=amount,
            paid_amount=0.0,
            due_date=due_date,
            weeks_past_due=0,
            status=DebtStatus.OUTSTANDING,
            notes=notes,
        )
        self.db.add(debt)
        self.db.flush()

        logger.info(f"Debt {debt.id} opened for user {user_id}: {amount:.2f} due {due_date.date().isoformat()}")
        return debt

    # =========================================================================
    # ACCRUE
    # =========================================================================

    def accrue(self, debt: OutstandingDebtDB, now: Optional[datetime] = None) -> bool:
        """
        Recompute weeks_past_due and late fees for one accrual tick.

        Idempotent per period: a second call in the same ISO week is a no-op.
        Returns True when a new fee was charged. Flushes but does not commit.
        """
        now = now or datetime.utcnow()

        if debt.status not in OPEN_DEBT_STATUSES:
            return False

        period_key = self.policy.period_key(now)
        already_ticked = self.db.query(DebtAccrualTickDB).filter(
            DebtAccrualTickDB.debt_id == debt.id,
            DebtAccrualTickDB.period_key == period_key,
        ).first()
        if already_ticked:
            return False

        weeks = self.policy.weeks_past_due(debt.due_date, now)
        if weeks <= 0:
            # Not yet overdue: nothing to record for this period
            return False

        # Never retroactively decrease
        weeks = max(weeks, debt.weeks_past_due or 0)
        fees = max(debt.late_fees or 0.0, self.policy.late_fees(debt.original_amount, weeks))
        delta = round(fees - (debt.late_fees or 0.0), 2)

        tick = DebtAccrualTickDB(
            id=str(uuid4()),
            debt_id=debt.id,
            period_key=period_key,
            weeks_past_due=weeks,
            fee_charged=delta,
        )

        if delta > 0:
            transaction = self.ledger.record(
                user_id=debt.user_id,
                amount=-delta,
                type=TransactionType.DEDUCTION,
                source=TransactionSource.SYSTEM,
                description=f"Late fee: {weeks} week(s) past due",
                related_debt_id=debt.id,
                created_at=now,
            )
            tick.transaction_id = transaction.id
            debt.last_penalty_date = now

        debt.weeks_past_due = weeks
        debt.late_fees = fees
        debt.current_amount = round(debt.original_amount + fees, 2)

        self.db.add(tick)
        self.db.flush()

        if delta > 0:
            logger.info(f"Debt {debt.id}: late fee {delta:.2f} charged ({weeks} week(s) past due)")
        return delta > 0

    # =========================================================================
    # PAY
    # =========================================================================

    def pay(
        self,
        debt_id: str,
        user_id: str,
        amount: float,
        method: PaymentMethod,
        payment_reference: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OutstandingDebtDB:
        """
        Pay part or all of a debt.

        Raises ValidationError if amount <= 0 or exceeds the remaining amount.
        Status becomes PAID when nothing remains, PARTIAL otherwise.
        """
        now = now or datetime.utcnow()
        try:
            debt = self.get_for_user(debt_id, user_id)

            if debt.status not in OPEN_DEBT_STATUSES:
                raise InvalidStateError(f"Debt {debt_id} is {debt.status.value}")
            if amount is None or amount <= 0:
                raise ValidationError("Payment amount must be positive")

            remaining = round(debt.current_amount - debt.paid_amount, 2)
            if amount > remaining:
                raise ValidationError(f"Payment {amount:.2f} exceeds remaining debt {remaining:.2f}")

            new_paid = round(debt.paid_amount + amount, 2)
            new_status = DebtStatus.PAID if new_paid >= debt.current_amount else DebtStatus.PARTIAL
            reference = payment_reference or f"PAY-{uuid4().hex[:12].upper()}"

            # Compare-and-set on paid_amount: a concurrent payment invalidates this one
            updated = self.db.query(OutstandingDebtDB).filter(
                OutstandingDebtDB.id == debt.id,
                OutstandingDebtDB.paid_amount == debt.paid_amount,
                OutstandingDebtDB.status.in_(OPEN_DEBT_STATUSES),
            ).update(
                {
                    "paid_amount": new_paid,
                    "status": new_status,
                    "paid_at": now,
                    "payment_reference": reference,
                    "updated_at": now,
                },
                synchronize_session=False,
            )
            if updated != 1:
                raise InvalidStateError(f"Debt {debt_id} was modified concurrently")

            transaction = self.ledger.record(
                user_id=user_id,
                amount=amount,
                type=TransactionType.DEBT_PAYMENT,
                source=TransactionSource.DEBT_PAYMENT,
                description=f"Debt payment via {method.value}",
                related_debt_id=debt.id,
                created_at=now,
            )

            self.db.add(DebtPaymentDB(
                id=str(uuid4()),
                debt_id=debt.id,
                user_id=user_id,
                amount=amount,
                payment_method=method,
                payment_reference=reference,
                transaction_id=transaction.id,
                paid_at=now,
            ))

            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise

        self.db.refresh(debt)
        logger.info(f"Debt {debt.id}: paid {amount:.2f} via {method.value}, status {debt.status.value}")
        return debt

    # =========================================================================
    # WAIVE
    # =========================================================================

    def waive(
        self,
        debt: OutstandingDebtDB,
        notes: str,
        forgiven: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> OutstandingDebtDB:
        """
        Stop collecting a debt. Payments already made stand.

        `forgiven` is credited back to the debtor as a BONUS tied to the debt
        and defaults to the unpaid remainder, so the penalty and late fees
        that were never paid stop weighing on the balance. Pass 0 when the
        caller settles the balance itself (appeal refund).
        Flushes but does not commit.
        """
        if debt.status not in OPEN_DEBT_STATUSES:
            raise InvalidStateError(f"Debt {debt.id} is {debt.status.value}")

        now = now or datetime.utcnow()
        if forgiven is None:
            forgiven = debt.current_amount - debt.paid_amount
        forgiven = round(forgiven, 2)

        self.db.flush()
        # Compare-and-set: a concurrent payment changes what is forgiven
        updated = self.db.query(OutstandingDebtDB).filter(
            OutstandingDebtDB.id == debt.id,
            OutstandingDebtDB.paid_amount == debt.paid_amount,
            OutstandingDebtDB.status.in_(OPEN_DEBT_STATUSES),
        ).update(
            {"status": DebtStatus.WAIVED, "notes": notes, "updated_at": now},
            synchronize_session=False,
        )
        if updated != 1:
            raise InvalidStateError(f"Debt {debt.id} was modified concurrently")

        if forgiven > 0:
            self.ledger.record(
                user_id=debt.user_id,
                amount=forgiven,
                type=TransactionType.BONUS,
                source=TransactionSource.SYSTEM,
                description=f"Debt waived: {notes}",
                related_debt_id=debt.id,
                created_at=now,
            )

        self.db.refresh(debt)
        logger.info(f"Debt {debt.id} waived ({forgiven:.2f} forgiven): {notes}")
        return debt

    def waive_by_id(self, debt_id: str, notes: str) -> OutstandingDebtDB:
        """Admin waiver. Commits."""
        try:
            debt = self.waive(self.get(debt_id), notes)
            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise
        return debt

    # =========================================================================
    # READ
    # =========================================================================

    def summary_for(self, user_id: str) -> Dict[str, Any]:
        """Open debts with totals for the debt warning view."""
        debts = self.db.query(OutstandingDebtDB).filter(
            OutstandingDebtDB.user_id == user_id,
            OutstandingDebtDB.status.in_(OPEN_DEBT_STATUSES),
        ).order_by(OutstandingDebtDB.due_date).all()

        return {
            "debts": debts,
            "total_debt": round(sum(d.current_amount - d.paid_amount for d in debts), 2),
            "total_late_fees": round(sum(d.late_fees for d in debts), 2),
            "debt_count": len(debts),
            "oldest_due_date": debts[0].due_date if debts else None,
        }

    def overdue_debts(self, now: Optional[datetime] = None) -> List[OutstandingDebtDB]:
        now = now or datetime.utcnow()
        return self.db.query(OutstandingDebtDB).filter(
            OutstandingDebtDB.status.in_(OPEN_DEBT_STATUSES),
            OutstandingDebtDB.due_date < now,
        ).order_by(OutstandingDebtDB.due_date).all()


# =============================================================================
# SCHEDULER
# =============================================================================

class AccrualScheduler:
    """
    Daily accrual run.

    AUTHORITY: SYSTEM - Runs automatically, no user intervention required.
    A failure on one debt is recorded and does not stop the run.
    """

    def __init__(self, db_session: Session, policy: Optional[SettlementPolicy] = None):
        """Initialize with database session."""
        self.db = db_session
        self.accrual = DebtAccrual(db_session, policy)

    def run(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.utcnow()
        charged = []
        skipped = 0
        errors = []

        # One transaction per debt so a failure only discards that debt's tick
        for debt in self.accrual.overdue_debts(now):
            debt_id = debt.id
            try:
                fees_before = debt.late_fees
                entry = None
                if self.accrual.accrue(debt, now):
                    entry = {
                        "debt_id": debt_id,
                        "weeks_past_due": debt.weeks_past_due,
                        "fee_charged": round(debt.late_fees - fees_before, 2),
                        "current_amount": debt.current_amount,
                    }
                self.db.commit()
                if entry:
                    charged.append(entry)
                else:
                    skipped += 1
            except Exception as e:
                self.db.rollback()
                logger.warning(f"Accrual failed for debt {debt_id}: {e}")
                errors.append({
                    "debt_id": debt_id,
                    "error": str(e),
                })

        return {
            "run_date": now.isoformat(),
            "period": self.accrual.policy.period_key(now),
            "debts_charged": len(charged),
            "debts_skipped": skipped,
            "errors": len(errors),
            "details": {
                "charged": charged,
                "errors": errors,
            },
        }
