"""
Settlement Ledger

Append-only transaction log for rewards, penalties, refunds, late fees,
debt payments and withdrawals, plus the balance views derived from it.

Core Principles:
1. The ledger records. It never edits or deletes history.
2. Balance is always recomputed from the log (SUM over COMPLETED rows).
3. One COMPLETED settlement per (related_report_id, type). A retried
   review or appeal call can never settle twice.
"""
from datetime import datetime
from math import ceil
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4
import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import (
    DebtStatus, OutstandingDebtDB, SettlementTransactionDB, TransactionSource,
    TransactionStatus, TransactionType, WithdrawalRequestDB, WithdrawalStatus,
)
from .errors import DuplicateError, LifecycleError, ValidationError

logger = logging.getLogger(__name__)

MANUAL_TYPES = (TransactionType.REWARD, TransactionType.PENALTY, TransactionType.BONUS, TransactionType.DEDUCTION)
DEBIT_TYPES = (TransactionType.PENALTY, TransactionType.DEDUCTION)


# =============================================================================
# PAGINATION
# =============================================================================

class TransactionPages:
    """
    Lazy, finite, restartable sequence of transaction pages.

    Nothing is queried until iteration starts; every new iteration starts
    again from the first page. Ordered newest first.
    """

    def __init__(self, db: Session, user_id: str, page_size: int = 20, filters: Optional[Dict[str, Any]] = None):
        if page_size < 1:
            raise ValidationError("page_size must be at least 1")
        self.db = db
        self.user_id = user_id
        self.page_size = page_size
        self.filters = filters or {}

    def _query(self):
        query = self.db.query(SettlementTransactionDB).filter(
            SettlementTransactionDB.user_id == self.user_id
        )
        if self.filters.get("type"):
            query = query.filter(SettlementTransactionDB.type == self.filters["type"])
        if self.filters.get("source"):
            query = query.filter(SettlementTransactionDB.source == self.filters["source"])
        if self.filters.get("date_from"):
            query = query.filter(SettlementTransactionDB.created_at >= self.filters["date_from"])
        if self.filters.get("date_to"):
            query = query.filter(SettlementTransactionDB.created_at <= self.filters["date_to"])
        return query

    def total(self) -> int:
        return self._query().count()

    def total_pages(self) -> int:
        return ceil(self.total() / self.page_size)

    def page(self, number: int) -> List[SettlementTransactionDB]:
        """Fetch one page (1-based)."""
        if number < 1:
            raise ValidationError("page must be at least 1")
        return (
            self._query()
            .order_by(SettlementTransactionDB.created_at.desc(), SettlementTransactionDB.id.desc())
            .offset((number - 1) * self.page_size)
            .limit(self.page_size)
            .all()
        )

    def __iter__(self) -> Iterator[List[SettlementTransactionDB]]:
        number = 1
        while True:
            rows = self.page(number)
            if not rows:
                return
            yield rows
            if len(rows) < self.page_size:
                return
            number += 1


# =============================================================================
# LEDGER
# =============================================================================

class SettlementLedger:
    """
    Core service for the append-only settlement ledger.

    Writers: ReviewEngine, AppealEngine, DebtAccrual, withdrawals, admin.
    Readers: rewards endpoints (balance, transactions, stats).
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # WRITE
    # =========================================================================

    def record(
        self,
        user_id: str,
        amount: float,
        type: TransactionType,
        source: TransactionSource,
        description: str,
        related_report_id: Optional[str] = None,
        related_debt_id: Optional[str] = None,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        created_at: Optional[datetime] = None,
    ) -> SettlementTransactionDB:
        """
        Append a transaction.

        Raises DuplicateError if a COMPLETED transaction already exists for the
        same (related_report_id, type). Flushes but does not commit; the
        calling engine owns the transaction boundary.
        """
        if amount == 0:
            raise ValidationError("Settlement amount must be non-zero")

        if related_report_id and status == TransactionStatus.COMPLETED:
            existing = self.find_settlement(related_report_id, type)
            if existing:
                logger.warning(f"Duplicate {type.value} settlement rejected for report {related_report_id}")
                raise DuplicateError(
                    f"Report {related_report_id} already has a completed {type.value} settlement"
                )

        now = created_at or datetime.utcnow()
        transaction = SettlementTransactionDB(
            id=str(uuid4()),
            user_id=user_id,
            amount=amount,
            type=type,
            source=source,
            status=status,
            description=description,
            related_report_id=related_report_id,
            related_debt_id=related_debt_id,
            created_at=now,
            processed_at=now if status == TransactionStatus.COMPLETED else None,
        )
        self.db.add(transaction)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent settlement of the same event
            raise DuplicateError(
                f"Report {related_report_id} already has a completed {type.value} settlement"
            )

        logger.info(f"Recorded {type.value} {amount:+.2f} for user {user_id} (report={related_report_id})")
        return transaction

    def manual_entry(
        self,
        admin_id: str,
        user_id: str,
        amount: float,
        type: TransactionType,
        description: str,
    ) -> SettlementTransactionDB:
        """
        Admin adjustment with source SYSTEM. `amount` is the magnitude; the
        sign follows the type (PENALTY and DEDUCTION debit). Commits.
        """
        if type not in MANUAL_TYPES:
            raise ValidationError(f"Manual entries cannot be of type {type.value}")
        if amount is None or amount <= 0:
            raise ValidationError("Manual entry amount must be positive")
        if not (description or "").strip():
            raise ValidationError("description is required")

        signed = -amount if type in DEBIT_TYPES else amount
        try:
            transaction = self.record(
                user_id=user_id,
                amount=signed,
                type=type,
                source=TransactionSource.SYSTEM,
                description=description.strip(),
            )
            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise

        logger.info(f"Manual {type.value} {signed:+.2f} for user {user_id} by admin {admin_id}")
        return transaction

    # =========================================================================
    # READ
    # =========================================================================

    def all_transactions(
        self,
        user_id: Optional[str] = None,
        type: Optional[TransactionType] = None,
        source: Optional[TransactionSource] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ):
        """Query over every user's entries for the admin console, newest first."""
        query = self.db.query(SettlementTransactionDB)
        if user_id:
            query = query.filter(SettlementTransactionDB.user_id == user_id)
        if type:
            query = query.filter(SettlementTransactionDB.type == type)
        if source:
            query = query.filter(SettlementTransactionDB.source == source)
        if date_from:
            query = query.filter(SettlementTransactionDB.created_at >= date_from)
        if date_to:
            query = query.filter(SettlementTransactionDB.created_at <= date_to)
        return query.order_by(SettlementTransactionDB.created_at.desc(), SettlementTransactionDB.id.desc())

    def find_settlement(self, related_report_id: str, type: TransactionType) -> Optional[SettlementTransactionDB]:
        return self.db.query(SettlementTransactionDB).filter(
            SettlementTransactionDB.related_report_id == related_report_id,
            SettlementTransactionDB.type == type,
            SettlementTransactionDB.status == TransactionStatus.COMPLETED,
        ).first()

    def transactions_for_report(self, report_id: str) -> List[SettlementTransactionDB]:
        return self.db.query(SettlementTransactionDB).filter(
            SettlementTransactionDB.related_report_id == report_id
        ).order_by(SettlementTransactionDB.created_at).all()

    def debt_adjustments(self, debt_ids: List[str]) -> float:
        """Net of late fees charged and waiver credits granted on these debts."""
        if not debt_ids:
            return 0.0
        total = self.db.query(func.coalesce(func.sum(SettlementTransactionDB.amount), 0.0)).filter(
            SettlementTransactionDB.related_debt_id.in_(debt_ids),
            SettlementTransactionDB.type.in_([TransactionType.DEDUCTION, TransactionType.BONUS]),
            SettlementTransactionDB.status == TransactionStatus.COMPLETED,
        ).scalar()
        return round(float(total), 2)

    def balance_for(self, user_id: str) -> float:
        """Sum of COMPLETED amounts. Pure function of the log, never cached."""
        total = self.db.query(func.coalesce(func.sum(SettlementTransactionDB.amount), 0.0)).filter(
            SettlementTransactionDB.user_id == user_id,
            SettlementTransactionDB.status == TransactionStatus.COMPLETED,
        ).scalar()
        return round(float(total), 2)

    def history(
        self,
        user_id: str,
        page_size: int = 20,
        type: Optional[TransactionType] = None,
        source: Optional[TransactionSource] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> TransactionPages:
        return TransactionPages(
            self.db,
            user_id,
            page_size=page_size,
            filters={"type": type, "source": source, "date_from": date_from, "date_to": date_to},
        )

    def _sum_by_type(self, user_id: str) -> Dict[TransactionType, Dict[str, float]]:
        rows = self.db.query(
            SettlementTransactionDB.type,
            func.count(SettlementTransactionDB.id),
            func.sum(SettlementTransactionDB.amount),
        ).filter(
            SettlementTransactionDB.user_id == user_id,
            SettlementTransactionDB.status == TransactionStatus.COMPLETED,
        ).group_by(SettlementTransactionDB.type).all()

        return {
            tx_type: {"count": count, "total": round(float(total or 0), 2)}
            for tx_type, count, total in rows
        }

    def balance_summary(self, user_id: str) -> Dict[str, Any]:
        """Balance view used by the rewards dashboard."""
        by_type = self._sum_by_type(user_id)

        def total(tx_type: TransactionType) -> float:
            return by_type.get(tx_type, {}).get("total", 0.0)

        outstanding = self.db.query(
            func.coalesce(func.sum(OutstandingDebtDB.current_amount - OutstandingDebtDB.paid_amount), 0.0)
        ).filter(
            OutstandingDebtDB.user_id == user_id,
            OutstandingDebtDB.status.in_([DebtStatus.OUTSTANDING, DebtStatus.PARTIAL]),
        ).scalar()

        pending_withdrawals = self.db.query(
            func.coalesce(func.sum(WithdrawalRequestDB.amount), 0.0)
        ).filter(
            WithdrawalRequestDB.user_id == user_id,
            WithdrawalRequestDB.status.in_([WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED]),
        ).scalar()

        pending_rewards = self.db.query(
            func.coalesce(func.sum(SettlementTransactionDB.amount), 0.0)
        ).filter(
            SettlementTransactionDB.user_id == user_id,
            SettlementTransactionDB.status == TransactionStatus.PENDING,
            SettlementTransactionDB.amount > 0,
        ).scalar()

        current_balance = self.balance_for(user_id)
        outstanding = round(float(outstanding), 2)
        pending_withdrawals = round(float(pending_withdrawals), 2)

        withdrawable = 0.0
        if outstanding <= 0:
            withdrawable = max(0.0, round(current_balance - pending_withdrawals, 2))

        return {
            "user_id": user_id,
            "total_earned": round(total(TransactionType.REWARD) + total(TransactionType.BONUS), 2),
            "total_penalties": round(-(total(TransactionType.PENALTY) + total(TransactionType.DEDUCTION)), 2),
            "total_fine_payments": 0.0,
            "total_outstanding_debt": outstanding,
            "total_debt_payments": total(TransactionType.DEBT_PAYMENT),
            "total_withdrawn": round(-total(TransactionType.WITHDRAWAL), 2),
            "current_balance": current_balance,
            "pending_rewards": round(float(pending_rewards), 2),
            "pending_withdrawals": pending_withdrawals,
            "withdrawable_amount": withdrawable,
            "last_updated": datetime.utcnow().isoformat(),
        }

    def stats_for(self, user_id: str) -> Dict[str, Any]:
        """Per-type totals for the rewards statistics view."""
        by_type = self._sum_by_type(user_id)
        earned = sum(v["total"] for t, v in by_type.items() if v["total"] > 0 and t != TransactionType.DEBT_PAYMENT)
        # Cashing out is not a penalty
        penalties = -sum(
            v["total"] for t, v in by_type.items() if v["total"] < 0 and t != TransactionType.WITHDRAWAL
        )
        rewards = by_type.get(TransactionType.REWARD, {"count": 0, "total": 0.0})

        return {
            "total_transactions": sum(v["count"] for v in by_type.values()),
            "total_earned": round(earned, 2),
            "total_penalties": round(penalties, 2),
            "net_balance": self.balance_for(user_id),
            "average_reward": round(rewards["total"] / rewards["count"], 2) if rewards["count"] else 0.0,
            "transactions_by_type": [
                {"type": tx_type.value, "count": v["count"], "total": v["total"]}
                for tx_type, v in sorted(by_type.items(), key=lambda item: item[0].value)
            ],
        }
