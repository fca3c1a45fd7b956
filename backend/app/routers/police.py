"""
Traffic Watch - Police Router

AUTHORITY: POLICE (admins may act as police)
- Work the pending report queue
- Review each report once (approve -> reward, reject -> penalty)
- Resolve appeals on rejected reports
"""
from typing import Any, Dict, Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import model_validator
from sqlalchemy.orm import Session

from ..auth import require_police
from ..database import get_db
from ..models.api_models import CamelModel, Pagination, ReportListResponse, ReportResponse
from ..models.db_models import UserDB
from ..services.lifecycle import AppealEngine, ReportStore, ReviewEngine
from .filters import report_filters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/police", tags=["police"])

# Clients send either the status name or the imperative form
DECISION_ALIASES = {
    "APPROVE": "APPROVED",
    "REJECT": "REJECTED",
}


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class ReviewRequest(CamelModel):
    """Review decision. Accepts `status` or `action` for the decision."""
    status: Optional[str] = None
    action: Optional[str] = None
    review_notes: Optional[str] = None
    amount: Optional[float] = None

    @model_validator(mode="after")
    def require_decision(self):
        if not (self.status or self.action):
            raise ValueError("status or action is required")
        return self

    @property
    def decision(self) -> str:
        value = (self.status or self.action).strip().upper()
        return DECISION_ALIASES.get(value, value)


class ReviewStatsResponse(CamelModel):
    pending_count: int
    reviewed_today: int
    approval_rate: float
    avg_review_time: float


# =============================================================================
# REPORT REVIEW
# =============================================================================

@router.get("/pending-reports", response_model=ReportListResponse)
async def get_pending_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    filters: Dict[str, Any] = Depends(report_filters),
    officer: UserDB = Depends(require_police),
    db: Session = Depends(get_db),
):
    """Review queue, oldest first."""
    reports, pagination = ReportStore(db).list_pending(page, limit, **filters)
    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in reports],
        pagination=Pagination(**pagination),
    )


@router.post("/review-report/{report_id}", response_model=ReportResponse)
@router.post("/review/{report_id}", response_model=ReportResponse)
async def review_report(
    report_id: str,
    request: ReviewRequest,
    officer: UserDB = Depends(require_police),
    db: Session = Depends(get_db),
):
    """
    Approve or reject a PENDING report.
    A second review of the same report fails with 409.
    """
    report = ReviewEngine(db).review(
        report_id=report_id,
        reviewer_id=officer.id,
        decision=request.decision,
        notes=request.review_notes,
        amount=request.amount,
    )
    return ReportResponse.model_validate(report)


@router.get("/review-stats", response_model=ReviewStatsResponse)
async def get_review_stats(
    officer: UserDB = Depends(require_police),
    db: Session = Depends(get_db),
):
    return ReviewStatsResponse(**ReviewEngine(db).review_stats())


# =============================================================================
# APPEAL REVIEW
# =============================================================================

@router.get("/pending-appeals", response_model=ReportListResponse)
async def get_pending_appeals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    filters: Dict[str, Any] = Depends(report_filters),
    officer: UserDB = Depends(require_police),
    db: Session = Depends(get_db),
):
    reports, pagination = ReportStore(db).list_pending_appeals(page, limit, **filters)
    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in reports],
        pagination=Pagination(**pagination),
    )


@router.post("/review-appeal/{report_id}", response_model=ReportResponse)
async def review_appeal(
    report_id: str,
    request: ReviewRequest,
    officer: UserDB = Depends(require_police),
    db: Session = Depends(get_db),
):
    """
    Resolve a pending appeal.
    APPROVED refunds the penalty; REJECTED adds 1.5% of it as a further penalty.
    """
    report = AppealEngine(db).resolve_appeal(
        report_id=report_id,
        reviewer_id=officer.id,
        decision=request.decision,
        notes=request.review_notes,
    )
    return ReportResponse.model_validate(report)
