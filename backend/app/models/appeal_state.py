"""
Traffic Watch - Appeal State

The database keeps appeal data as flat nullable columns (the REST payload
mirrors them). Services never branch on which columns happen to be set;
they read the appeal through this tagged variant instead:

    AppealNotFiled -> AppealFiled -> AppealResolved

Illegal combinations (a decision without a filing, an additional penalty on
an approved appeal) cannot be built from these types.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

from .db_models import AppealStatus, CitizenReportDB, ReportStatus


@dataclass(frozen=True)
class AppealNotFiled:
    """No appeal exists. Only a REJECTED report may leave this state."""
    eligible: bool = False


@dataclass(frozen=True)
class AppealFiled:
    """Appeal submitted, awaiting police resolution."""
    reason: str
    evidence_urls: List[str] = field(default_factory=list)
    submitted_at: Optional[datetime] = None


@dataclass(frozen=True)
class AppealResolved:
    """Terminal appeal state."""
    reason: str
    decision: AppealStatus
    notes: Optional[str]
    resolved_at: Optional[datetime]
    additional_penalty: Optional[float] = None

    def __post_init__(self):
        if self.decision == AppealStatus.PENDING:
            raise ValueError("A resolved appeal needs a final decision")
        if self.decision == AppealStatus.APPROVED and self.additional_penalty is not None:
            raise ValueError("Approved appeals carry no additional penalty")


AppealState = Union[AppealNotFiled, AppealFiled, AppealResolved]


def appeal_state_of(report: CitizenReportDB) -> AppealState:
    """Read the appeal sub-entity of a report as an explicit state."""
    if not report.appeal_submitted:
        return AppealNotFiled(eligible=report.status == ReportStatus.REJECTED)

    if report.appeal_status in (None, AppealStatus.PENDING):
        return AppealFiled(
            reason=report.appeal_reason or "",
            evidence_urls=list(report.appeal_evidence_urls or []),
            submitted_at=report.appeal_submitted_at,
        )

    return AppealResolved(
        reason=report.appeal_reason or "",
        decision=report.appeal_status,
        notes=report.appeal_notes,
        resolved_at=report.appeal_reviewed_at,
        additional_penalty=(
            report.additional_penalty_amount
            if report.appeal_status == AppealStatus.REJECTED else None
        ),
    )
