"""
Traffic Watch - Citizen Reports Router

AUTHORITY: CITIZEN
- Submit reports with evidence
- Track own reports and statistics
- Withdraw a report before review
- Appeal a rejection (once)
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.api_models import (
    CamelModel, MessageResponse, Pagination, ReportListResponse, ReportResponse,
)
from ..models.db_models import UserDB, UserRole
from ..services.lifecycle import AppealEngine, ReportStore
from .filters import report_filters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/citizen-reports", tags=["citizen-reports"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class CreateReportRequest(CamelModel):
    vehicle_plate: str
    violation_type: str
    description: Optional[str] = None
    evidence_urls: List[str] = []
    location_data: Optional[Dict[str, Any]] = None


class AppealRequest(CamelModel):
    appeal_reason: str
    evidence_urls: List[str] = []


class CitizenStatsResponse(CamelModel):
    total_reports: int
    pending_reports: int
    approved_reports: int
    rejected_reports: int
    total_rewards_earned: float
    total_penalties_paid: float
    approval_rate: float


# =============================================================================
# CREATE
# =============================================================================

@router.post("", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
@router.post("/create", response_model=ReportResponse, status_code=status.HTTP_201_CREATED)
async def create_report(
    request: CreateReportRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Submit a new violation report.
    The report starts PENDING; no reward is paid until police approve it.
    """
    report = ReportStore(db).create(
        citizen_id=current_user.id,
        vehicle_plate=request.vehicle_plate,
        violation_type=request.violation_type.upper(),
        evidence_urls=request.evidence_urls,
        location_data=request.location_data,
        description=request.description,
    )
    return ReportResponse.model_validate(report)


# =============================================================================
# READ
# =============================================================================

@router.get("/my-reports", response_model=ReportListResponse)
async def get_my_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    filters: Dict[str, Any] = Depends(report_filters),
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """List the caller's reports, newest first."""
    reports, pagination = ReportStore(db).list_for_citizen(current_user.id, page, limit, **filters)
    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in reports],
        pagination=Pagination(**pagination),
    )


@router.get("/my-stats", response_model=CitizenStatsResponse)
async def get_my_stats(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return CitizenStatsResponse(**ReportStore(db).stats_for_citizen(current_user.id))


@router.get("/{report_id}", response_model=ReportResponse)
async def get_report(
    report_id: str,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get one report.
    Citizens see only their own; police and admins see any.
    """
    report = ReportStore(db).get(report_id)
    if report.citizen_id != current_user.id and current_user.role == UserRole.CITIZEN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized to view this report"
        )
    return ReportResponse.model_validate(report)


# =============================================================================
# DELETE
# =============================================================================

@router.delete("/{report_id}", response_model=MessageResponse)
async def delete_report(
    report_id: str,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Withdraw a report that has not been reviewed yet."""
    ReportStore(db).delete(report_id, current_user.id)
    return MessageResponse(message="Report deleted successfully")


# =============================================================================
# APPEAL
# =============================================================================

@router.post("/{report_id}/appeal", response_model=ReportResponse)
async def submit_appeal(
    report_id: str,
    request: AppealRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Appeal a rejected report.
    One appeal per report; an unsuccessful appeal adds a further penalty.
    """
    report = AppealEngine(db).file_appeal(
        report_id=report_id,
        citizen_id=current_user.id,
        reason=request.appeal_reason,
        evidence_urls=request.evidence_urls,
    )
    return ReportResponse.model_validate(report)
