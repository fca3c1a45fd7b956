"""
Review Engine

AUTHORITY: POLICE
Converts a PENDING report into APPROVED or REJECTED exactly once and
settles the monetary outcome.

- APPROVED: reporter earns a reward (explicit amount or policy default)
- REJECTED: reporter pays a penalty for a false report; a debt is opened
- Review fields and status are written by one guarded UPDATE
- Exactly one COMPLETED settlement per report and decision, so a retried
  review call can never settle twice
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models.db_models import (
    ActorType, CitizenReportDB, ReportStatus, TransactionSource, TransactionType,
)
from .debt_accrual import DebtAccrual
from .errors import InvalidStateError, LifecycleError, ValidationError
from .policy import SettlementPolicy
from .report_store import ReportStore
from .settlement_ledger import SettlementLedger
from .state_machine import ReportStateMachine

logger = logging.getLogger(__name__)

REVIEW_DECISIONS = (ReportStatus.APPROVED, ReportStatus.REJECTED)


class ReviewEngine:
    """
    Main service for police review of citizen reports.

    Orchestrates:
    - State machine transition (guarded, logged)
    - Settlement ledger entry
    - Debt opening for penalties
    """

    def __init__(self, db_session: Session, policy: Optional[SettlementPolicy] = None):
        """Initialize with database session."""
        self.db = db_session
        self.policy = policy or SettlementPolicy()
        self.store = ReportStore(db_session)
        self.state_machine = ReportStateMachine(db_session)
        self.ledger = SettlementLedger(db_session)
        self.debts = DebtAccrual(db_session, self.policy)

    def review(
        self,
        report_id: str,
        reviewer_id: str,
        decision,
        notes: Optional[str] = None,
        amount: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> CitizenReportDB:
        """
        Review a PENDING report.

        Raises InvalidStateError if the report was already reviewed (including
        by a concurrent reviewer), ValidationError for an unknown decision or a
        non-positive amount.
        """
        now = now or datetime.utcnow()
        try:
            try:
                decision = ReportStatus(decision)
            except ValueError:
                raise ValidationError(f"Unknown review decision: {decision}")
            if decision not in REVIEW_DECISIONS:
                raise ValidationError("Review decision must be APPROVED or REJECTED")
            if amount is not None and amount <= 0:
                raise ValidationError("Settlement amount must be positive")

            report = self.store.get(report_id)
            if report.status != ReportStatus.PENDING:
                raise InvalidStateError(f"Report {report_id} is already {report.status.value}")

            values: Dict[str, Any] = {
                "reviewed_by": reviewer_id,
                "review_notes": notes,
                "reviewed_at": now,
            }
            if decision == ReportStatus.APPROVED:
                settled = amount if amount is not None else self.policy.default_reward(report.violation_type)
                values["reward_amount"] = settled
            else:
                settled = amount if amount is not None else self.policy.default_penalty(report.violation_type)
                values["penalty_amount"] = settled

            self.state_machine.transition(
                report,
                to_state=decision,
                actor=ActorType.POLICE,
                actor_id=reviewer_id,
                values=values,
                trigger="police_review",
            )

            if decision == ReportStatus.APPROVED:
                self.ledger.record(
                    user_id=report.citizen_id,
                    amount=settled,
                    type=TransactionType.REWARD,
                    source=TransactionSource.CITIZEN_REPORT,
                    description=f"Reward for approved report on {report.vehicle_plate}",
                    related_report_id=report.id,
                    created_at=now,
                )
            else:
                transaction = self.ledger.record(
                    user_id=report.citizen_id,
                    amount=-settled,
                    type=TransactionType.PENALTY,
                    source=TransactionSource.CITIZEN_REPORT,
                    description=f"Penalty for rejected report on {report.vehicle_plate}",
                    related_report_id=report.id,
                    created_at=now,
                )
                self.debts.open_debt(
                    user_id=report.citizen_id,
                    amount=settled,
                    due_date=self.policy.due_date_from(now),
                    related_report_id=report.id,
                    transaction_id=transaction.id,
                    notes="Penalty for rejected citizen report",
                )

            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise

        self.db.refresh(report)
        logger.info(f"Report {report.id} {decision.value} by {reviewer_id} (amount {settled:.2f})")
        return report

    def review_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Police dashboard figures."""
        now = now or datetime.utcnow()
        start_of_day = datetime(now.year, now.month, now.day)

        pending = self.db.query(func.count(CitizenReportDB.id)).filter(
            CitizenReportDB.status == ReportStatus.PENDING
        ).scalar()

        reviewed_today = self.db.query(func.count(CitizenReportDB.id)).filter(
            CitizenReportDB.reviewed_at >= start_of_day
        ).scalar()

        reviewed = self.db.query(CitizenReportDB.status, CitizenReportDB.created_at, CitizenReportDB.reviewed_at).filter(
            CitizenReportDB.reviewed_at.isnot(None)
        ).all()

        approved = sum(1 for status, _, _ in reviewed if status == ReportStatus.APPROVED)
        review_time = [
            reviewed_at - created_at
            for _, created_at, reviewed_at in reviewed
            if created_at and reviewed_at
        ]
        avg_hours = (
            sum(review_time, timedelta()) / len(review_time) / timedelta(hours=1)
            if review_time else 0.0
        )

        return {
            "pending_count": pending,
            "reviewed_today": reviewed_today,
            "approval_rate": round(approved / len(reviewed) * 100, 1) if reviewed else 0.0,
            "avg_review_time": round(avg_hours, 1),
        }
