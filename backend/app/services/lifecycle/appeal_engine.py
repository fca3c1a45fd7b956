"""
Appeal Engine

One contest of a REJECTED report, with a deterrent against unsuccessful
appeals.

AUTHORITY MODEL:
- CITIZEN: file_appeal (owner only, once, REJECTED reports only)
- POLICE: resolve_appeal

Outcomes:
- APPROVED: the rejection is overturned. The penalty and its late fees are
  refunded to the ledger and the penalty debt is waived. The base
  report status stays REJECTED (it is written once); effective_status
  reports APPROVED.
- REJECTED: an additional penalty of 1.5% of the original penalty is
  settled and opened as a debt.
"""
from datetime import datetime
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from ...models.appeal_state import AppealFiled, AppealNotFiled, appeal_state_of
from ...models.db_models import (
    ActorType, AppealStatus, CitizenReportDB, ReportStatus, TransactionSource,
    TransactionType,
)
from .debt_accrual import OPEN_DEBT_STATUSES, DebtAccrual
from .errors import ConflictError, InvalidStateError, LifecycleError, NotPermittedError, ValidationError
from .policy import SettlementPolicy
from .report_store import ReportStore
from .settlement_ledger import SettlementLedger
from .state_machine import ReportStateMachine

logger = logging.getLogger(__name__)

APPEAL_DECISIONS = (AppealStatus.APPROVED, AppealStatus.REJECTED)


class AppealEngine:
    """Files and resolves appeals on rejected reports."""

    def __init__(self, db_session: Session, policy: Optional[SettlementPolicy] = None):
        """Initialize with database session."""
        self.db = db_session
        self.policy = policy or SettlementPolicy()
        self.store = ReportStore(db_session)
        self.state_machine = ReportStateMachine(db_session)
        self.ledger = SettlementLedger(db_session)
        self.debts = DebtAccrual(db_session, self.policy)

    # =========================================================================
    # FILE
    # =========================================================================

    def file_appeal(
        self,
        report_id: str,
        citizen_id: str,
        reason: str,
        evidence_urls: Optional[List[str]] = None,
        now: Optional[datetime] = None,
    ) -> CitizenReportDB:
        """
        Contest a rejection.

        Raises InvalidStateError unless the report is REJECTED,
        NotPermittedError unless the citizen owns it, ConflictError if an
        appeal was already filed.
        """
        now = now or datetime.utcnow()
        try:
            report = self.store.get(report_id)

            if report.status != ReportStatus.REJECTED:
                raise InvalidStateError(
                    f"Only REJECTED reports can be appealed (report is {report.status.value})"
                )
            if report.citizen_id != citizen_id:
                raise NotPermittedError("Only the reporting citizen can appeal this report")
            if not isinstance(appeal_state_of(report), AppealNotFiled):
                raise ConflictError(f"An appeal was already filed for report {report_id}")

            reason = (reason or "").strip()
            if not reason:
                raise ValidationError("appealReason is required")

            evidence = [url.strip() for url in (evidence_urls or []) if url and url.strip()]

            try:
                self.state_machine.transition_appeal(
                    report,
                    to_state=AppealStatus.PENDING,
                    actor=ActorType.CITIZEN,
                    actor_id=citizen_id,
                    values={
                        "appeal_submitted": True,
                        "appeal_reason": reason,
                        "appeal_evidence_urls": evidence,
                        "appeal_submitted_at": now,
                    },
                    trigger="citizen_appeal",
                )
            except InvalidStateError:
                # A concurrent request filed first
                raise ConflictError(f"An appeal was already filed for report {report_id}")

            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise

        self.db.refresh(report)
        logger.info(f"Appeal filed on report {report.id} by {citizen_id}")
        return report

    # =========================================================================
    # RESOLVE
    # =========================================================================

    def resolve_appeal(
        self,
        report_id: str,
        reviewer_id: str,
        decision,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CitizenReportDB:
        """
        Resolve a filed appeal.

        Raises InvalidStateError unless the appeal is PENDING (including when a
        concurrent reviewer resolved it first).
        """
        now = now or datetime.utcnow()
        try:
            try:
                decision = AppealStatus(decision)
            except ValueError:
                raise ValidationError(f"Unknown appeal decision: {decision}")
            if decision not in APPEAL_DECISIONS:
                raise ValidationError("Appeal decision must be APPROVED or REJECTED")

            report = self.store.get(report_id)
            if not isinstance(appeal_state_of(report), AppealFiled):
                raise InvalidStateError(f"Report {report_id} has no pending appeal")

            penalty = report.penalty_amount or 0.0
            values = {
                "appeal_reviewed_by": reviewer_id,
                "appeal_reviewed_at": now,
                "appeal_notes": notes,
            }
            additional = None
            if decision == AppealStatus.REJECTED:
                additional = self.policy.additional_appeal_penalty(penalty)
                values["additional_penalty_amount"] = additional
                values["additional_penalty_applied"] = additional > 0

            self.state_machine.transition_appeal(
                report,
                to_state=decision,
                actor=ActorType.POLICE,
                actor_id=reviewer_id,
                values=values,
                trigger="police_appeal_review",
            )

            if decision == AppealStatus.APPROVED:
                self._refund_penalty(report, penalty, now)
            elif additional:
                transaction = self.ledger.record(
                    user_id=report.citizen_id,
                    amount=-additional,
                    type=TransactionType.DEDUCTION,
                    source=TransactionSource.CITIZEN_REPORT,
                    description=f"Additional penalty for rejected appeal on {report.vehicle_plate}",
                    related_report_id=report.id,
                    created_at=now,
                )
                self.debts.open_debt(
                    user_id=report.citizen_id,
                    amount=additional,
                    due_date=self.policy.due_date_from(now),
                    related_report_id=report.id,
                    transaction_id=transaction.id,
                    notes="Additional penalty for rejected appeal",
                )

            self.db.commit()
        except LifecycleError:
            self.db.rollback()
            raise

        self.db.refresh(report)
        logger.info(f"Appeal on report {report.id} {decision.value} by {reviewer_id}")
        return report

    def _refund_penalty(self, report: CitizenReportDB, penalty: float, now: datetime) -> None:
        """
        Undo everything the overturned penalty charged: the penalty itself and
        any late fees on its debt, less what an earlier waiver already
        credited. Debt payments stay on the ledger as the citizen's money.
        """
        debts = self.debts.debts_for_report(report.id)
        adjustments = self.ledger.debt_adjustments([d.id for d in debts])
        refund = round(penalty - adjustments, 2)

        for debt in debts:
            if debt.status in OPEN_DEBT_STATUSES:
                self.debts.waive(debt, "Appeal approved: penalty overturned", forgiven=0, now=now)

        if refund > 0:
            self.ledger.record(
                user_id=report.citizen_id,
                amount=refund,
                type=TransactionType.BONUS,
                source=TransactionSource.CITIZEN_REPORT,
                description=f"Penalty refund: appeal approved on {report.vehicle_plate}",
                related_report_id=report.id,
                created_at=now,
            )

        self.state_machine.log_event(
            report_id=report.id,
            event_type="penalty_refunded",
            actor=ActorType.SYSTEM,
            description=f"{refund:.2f} refunded after successful appeal (penalty {penalty:.2f})",
            metadata={
                "refund": refund,
                "penalty": penalty,
                "late_fees": round(sum(d.late_fees or 0.0 for d in debts), 2),
            },
        )
