"""
Traffic Watch - Admin Router
Oversight console: every report, the full ledger, withdrawals, debts and
user roles. Ledger corrections are new entries, never edits.
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from ..auth import require_admin
from ..database import get_db
from ..models.api_models import (
    CamelModel, DebtResponse, Pagination, ReportListResponse, ReportResponse,
    TransactionListResponse, TransactionResponse, UserResponse, WithdrawalResponse,
)
from ..models.db_models import (
    TransactionType, UserDB, UserRole, WithdrawalStatus,
)
from ..services.lifecycle import DebtAccrual, ReportStore, SettlementLedger, WithdrawalService
from ..services.lifecycle.report_store import paginate
from .filters import parse_enum, report_filters
from .rewards import transaction_filters

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class TypeCount(CamelModel):
    type: str
    count: int


class StatusCount(CamelModel):
    status: str
    count: int


class DayCount(CamelModel):
    date: str
    count: int


class AdminReportStats(CamelModel):
    """System-wide report statistics."""
    total_reports: int
    pending_reports: int
    approved_reports: int
    rejected_reports: int
    total_rewards_distributed: float
    total_penalties_collected: float
    approval_rate: float
    reports_by_type: List[TypeCount]
    reports_by_status: List[StatusCount]
    reports_trend: List[DayCount]


class ManualTransactionRequest(CamelModel):
    user_id: str
    amount: float
    type: TransactionType
    description: str


class ProcessWithdrawalRequest(CamelModel):
    status: WithdrawalStatus
    notes: Optional[str] = None


class WaiveDebtRequest(CamelModel):
    notes: str = "Waived by admin"


class RoleUpdateRequest(CamelModel):
    role: UserRole
    badge_number: Optional[str] = None


class WithdrawalListResponse(CamelModel):
    withdrawals: List[WithdrawalResponse]


# =============================================================================
# REPORTS
# =============================================================================

@router.get("/citizen-reports", response_model=ReportListResponse)
async def list_citizen_reports(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    filters: Dict[str, Any] = Depends(report_filters),
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Every report, newest first."""
    reports, pagination = ReportStore(db).list_all(page, limit, **filters)
    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in reports],
        pagination=Pagination(**pagination),
    )


@router.get("/citizen-reports/stats", response_model=AdminReportStats)
async def get_citizen_report_stats(
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return AdminReportStats(**ReportStore(db).admin_stats())


# =============================================================================
# LEDGER
# =============================================================================

@router.get("/rewards/transactions", response_model=TransactionListResponse)
async def list_all_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user_id: Optional[str] = Query(None, alias="userId"),
    filters: Dict[str, Any] = Depends(transaction_filters),
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Ledger entries across all users, newest first."""
    query = SettlementLedger(db).all_transactions(user_id=user_id, **filters)
    transactions, pagination = paginate(query, page, limit)
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        pagination=Pagination(**pagination),
    )


@router.post("/rewards/manual", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_manual_transaction(
    request: ManualTransactionRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """
    Record a manual adjustment (source SYSTEM).
    The amount is a magnitude; PENALTY and DEDUCTION are debited.
    """
    if db.get(UserDB, request.user_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    transaction = SettlementLedger(db).manual_entry(
        admin_id=admin.id,
        user_id=request.user_id,
        amount=request.amount,
        type=request.type,
        description=request.description,
    )
    return TransactionResponse.model_validate(transaction)


# =============================================================================
# WITHDRAWALS
# =============================================================================

@router.get("/rewards/withdrawals", response_model=WithdrawalListResponse)
async def list_withdrawals(
    status_filter: Optional[str] = Query(None, alias="status"),
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    withdrawals = WithdrawalService(db).list_all(parse_enum(WithdrawalStatus, status_filter, "status"))
    return WithdrawalListResponse(
        withdrawals=[WithdrawalResponse.model_validate(w) for w in withdrawals]
    )


@router.put("/rewards/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
async def process_withdrawal(
    withdrawal_id: str,
    request: ProcessWithdrawalRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Approve, reject or complete a withdrawal. COMPLETED debits the ledger."""
    withdrawal = WithdrawalService(db).process(
        withdrawal_id=withdrawal_id,
        admin_id=admin.id,
        status=request.status,
        notes=request.notes,
    )
    return WithdrawalResponse.model_validate(withdrawal)


# =============================================================================
# DEBTS
# =============================================================================

@router.post("/debts/{debt_id}/waive", response_model=DebtResponse)
async def waive_debt(
    debt_id: str,
    request: WaiveDebtRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Stop collecting the remaining amount of a debt."""
    debt = DebtAccrual(db).waive_by_id(debt_id, request.notes)
    logger.info(f"Debt {debt_id} waived by admin {admin.id}")
    return DebtResponse.model_validate(debt)


# =============================================================================
# USERS
# =============================================================================

@router.put("/users/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: str,
    request: RoleUpdateRequest,
    admin: UserDB = Depends(require_admin),
    db: Session = Depends(get_db),
):
    """Grant or revoke police/admin access."""
    user = db.get(UserDB, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.id == admin.id and request.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Admins cannot remove their own admin role"
        )

    user.role = request.role
    if request.badge_number is not None:
        user.badge_number = request.badge_number
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.email} role set to {user.role.value} by {admin.email}")
    return UserResponse.model_validate(user)
