"""
Report State Machine

Deterministic state machine for citizen reports and their nested appeal.
States never revert. Every transition is a guarded UPDATE (compare-and-set
on the current state) and is logged immutably to the report paper trail.

    Report:  PENDING -> APPROVED | REJECTED
    Appeal:  NOT_FILED -> PENDING -> APPROVED | REJECTED   (REJECTED reports only)
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4
import logging

from sqlalchemy.orm import Session

from ...models.db_models import (
    ActorType, AppealStatus, CitizenReportDB, ReportEventLogDB, ReportStatus,
)
from .errors import InvalidStateError

logger = logging.getLogger(__name__)

APPEAL_NOT_FILED = "NOT_FILED"


# =============================================================================
# STATE CONFIGURATION
# =============================================================================
#
# AUTHORITY MODEL:
# - CITIZEN: creates reports, deletes them while PENDING, files appeals
# - POLICE: reviews reports, resolves appeals
#
# =============================================================================

REPORT_STATE_CONFIG = {
    ReportStatus.PENDING: {
        "description": "Submitted, awaiting police review",
        "allowed_transitions": [ReportStatus.APPROVED, ReportStatus.REJECTED],
        "deletable": True,
        "entry_authority": "CITIZEN",
    },
    ReportStatus.APPROVED: {
        "description": "Violation confirmed, reporter rewarded",
        "allowed_transitions": [],  # Terminal state
        "deletable": False,
        "entry_authority": "POLICE",
    },
    ReportStatus.REJECTED: {
        "description": "Report found false or invalid, reporter penalized",
        "allowed_transitions": [],  # Terminal for the base report; appeal is nested
        "deletable": False,
        "entry_authority": "POLICE",
    },
}

APPEAL_STATE_CONFIG = {
    APPEAL_NOT_FILED: {
        "description": "No appeal on file",
        "allowed_transitions": [AppealStatus.PENDING],
        "entry_authority": "SYSTEM",
    },
    AppealStatus.PENDING: {
        "description": "Appeal filed, awaiting police resolution",
        "allowed_transitions": [AppealStatus.APPROVED, AppealStatus.REJECTED],
        "entry_authority": "CITIZEN",
    },
    AppealStatus.APPROVED: {
        "description": "Rejection overturned, penalty refunded",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "POLICE",
    },
    AppealStatus.REJECTED: {
        "description": "Rejection upheld, additional penalty applied",
        "allowed_transitions": [],  # Terminal state
        "entry_authority": "POLICE",
    },
}


def _value(state) -> str:
    return state.value if hasattr(state, "value") else str(state)


# =============================================================================
# STATE MACHINE
# =============================================================================

class ReportStateMachine:
    """
    Guards and records report and appeal transitions.

    Core Principles:
    - PENDING is the only state a report can leave
    - An appeal exists only on a REJECTED report, and only once
    - All fields of a transition are written by one UPDATE statement
    - All transitions are logged immutably
    """

    def __init__(self, db_session: Session):
        """Initialize with database session."""
        self.db = db_session

    def can_transition(self, from_state: ReportStatus, to_state: ReportStatus) -> Tuple[bool, str]:
        """
        Check if a report transition is allowed.

        Returns (allowed, reason)
        """
        allowed = REPORT_STATE_CONFIG.get(from_state, {}).get("allowed_transitions", [])
        if to_state in allowed:
            return True, "Transition allowed"
        return False, f"Cannot transition report from {_value(from_state)} to {_value(to_state)}"

    def can_transition_appeal(self, from_state, to_state: AppealStatus) -> Tuple[bool, str]:
        """Check if an appeal transition is allowed. from_state may be APPEAL_NOT_FILED."""
        allowed = APPEAL_STATE_CONFIG.get(from_state, {}).get("allowed_transitions", [])
        if to_state in allowed:
            return True, "Transition allowed"
        return False, f"Cannot transition appeal from {_value(from_state)} to {_value(to_state)}"

    def is_terminal_state(self, state: ReportStatus) -> bool:
        return len(REPORT_STATE_CONFIG.get(state, {}).get("allowed_transitions", [])) == 0

    def is_deletable(self, state: ReportStatus) -> bool:
        return REPORT_STATE_CONFIG.get(state, {}).get("deletable", False)

    def get_next_states(self, state: ReportStatus) -> List[ReportStatus]:
        return REPORT_STATE_CONFIG.get(state, {}).get("allowed_transitions", [])

    def guarded_update(
        self,
        report: CitizenReportDB,
        expected: Dict[str, Any],
        values: Dict[str, Any],
    ) -> None:
        """
        Write `values` to the report only if every column in `expected` still
        holds its expected value. Raises InvalidStateError when another request
        changed the row first (lost-update prevention).
        """
        query = self.db.query(CitizenReportDB).filter(CitizenReportDB.id == report.id)
        for column, expected_value in expected.items():
            query = query.filter(getattr(CitizenReportDB, column) == expected_value)

        values = {**values, "updated_at": datetime.utcnow()}
        updated = query.update(values, synchronize_session=False)
        if updated != 1:
            logger.warning(f"Guarded update lost race on report {report.id}: expected {expected}")
            raise InvalidStateError(f"Report {report.id} was modified concurrently")

        self.db.refresh(report)

    def log_event(
        self,
        report_id: str,
        event_type: str,
        actor: ActorType,
        description: str,
        actor_id: Optional[str] = None,
        from_state: Optional[str] = None,
        to_state: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ReportEventLogDB:
        """Append a paper trail entry (immutable)."""
        entry = ReportEventLogDB(
            id=str(uuid4()),
            report_id=report_id,
            event_type=event_type,
            actor=actor,
            actor_id=actor_id,
            from_state=from_state,
            to_state=to_state,
            description=description,
            event_metadata=metadata or {},
        )
        self.db.add(entry)
        return entry

    def transition(
        self,
        report: CitizenReportDB,
        to_state: ReportStatus,
        actor: ActorType,
        actor_id: str,
        values: Dict[str, Any],
        trigger: str,
    ) -> None:
        """
        Execute a report transition together with its companion fields.

        Raises InvalidStateError if the transition is not allowed or if the
        report left its state while this request was in flight.
        """
        from_state = report.status
        allowed, reason = self.can_transition(from_state, to_state)
        if not allowed:
            raise InvalidStateError(reason)

        self.guarded_update(report, {"status": from_state}, {**values, "status": to_state})

        self.log_event(
            report_id=report.id,
            event_type="state_transition",
            actor=actor,
            actor_id=actor_id,
            from_state=from_state.value,
            to_state=to_state.value,
            description=f"Report changed from {from_state.value} to {to_state.value}. Trigger: {trigger}",
            metadata={"trigger": trigger},
        )

    def transition_appeal(
        self,
        report: CitizenReportDB,
        to_state: AppealStatus,
        actor: ActorType,
        actor_id: str,
        values: Dict[str, Any],
        trigger: str,
    ) -> None:
        """Execute an appeal transition. Appeals only live on REJECTED reports."""
        if report.status != ReportStatus.REJECTED:
            raise InvalidStateError(
                f"Appeals are only possible on REJECTED reports (report is {report.status.value})"
            )

        from_state = report.appeal_status if report.appeal_submitted else APPEAL_NOT_FILED
        allowed, reason = self.can_transition_appeal(from_state, to_state)
        if not allowed:
            raise InvalidStateError(reason)

        if from_state == APPEAL_NOT_FILED:
            expected = {"status": ReportStatus.REJECTED, "appeal_submitted": False}
        else:
            expected = {"status": ReportStatus.REJECTED, "appeal_status": from_state}

        self.guarded_update(report, expected, {**values, "appeal_status": to_state})

        self.log_event(
            report_id=report.id,
            event_type="appeal_transition",
            actor=actor,
            actor_id=actor_id,
            from_state=_value(from_state),
            to_state=to_state.value,
            description=f"Appeal changed from {_value(from_state)} to {to_state.value}. Trigger: {trigger}",
            metadata={"trigger": trigger},
        )
