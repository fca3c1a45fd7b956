"""
Traffic Watch - API Models

Pydantic models shared by the routers. JSON payloads use camelCase keys
(vehiclePlate, evidenceUrls, totalPages); Python code uses snake_case.
Both spellings are accepted on input.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .db_models import (
    AppealStatus, DebtStatus, PaymentMethod, ReportStatus, TransactionSource,
    TransactionStatus, TransactionType, UserRole, ViolationType, WithdrawalMethod,
    WithdrawalStatus,
)


class CamelModel(BaseModel):
    """Base for every request/response body."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


# =============================================================================
# REPORTS
# =============================================================================

class LocationData(CamelModel):
    latitude: float
    longitude: float
    address: str
    city: Optional[str] = None
    district: Optional[str] = None
    division: Optional[str] = None


class ReportResponse(CamelModel):
    """A citizen report as returned to every role."""
    id: str
    citizen_id: str
    vehicle_plate: str
    violation_type: ViolationType
    description: Optional[str] = None
    evidence_urls: List[str] = []
    location: Optional[LocationData] = None

    status: ReportStatus
    effective_status: ReportStatus
    reviewed_by: Optional[str] = None
    review_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reward_amount: Optional[float] = None
    penalty_amount: Optional[float] = None

    appeal_submitted: bool = False
    appeal_reason: Optional[str] = None
    appeal_evidence_urls: Optional[List[str]] = None
    appeal_submitted_at: Optional[datetime] = None
    appeal_status: Optional[AppealStatus] = None
    appeal_reviewed_at: Optional[datetime] = None
    appeal_notes: Optional[str] = None
    additional_penalty_applied: bool = False
    additional_penalty_amount: Optional[float] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReportListResponse(CamelModel):
    reports: List[ReportResponse]
    pagination: Pagination


# =============================================================================
# LEDGER
# =============================================================================

class TransactionResponse(CamelModel):
    id: str
    user_id: str
    amount: float
    type: TransactionType
    source: TransactionSource
    status: TransactionStatus
    description: Optional[str] = None
    related_report_id: Optional[str] = None
    related_debt_id: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class TransactionListResponse(CamelModel):
    transactions: List[TransactionResponse]
    pagination: Pagination


class BalanceResponse(CamelModel):
    user_id: str
    total_earned: float
    total_penalties: float
    total_fine_payments: float
    total_outstanding_debt: float
    total_debt_payments: float
    total_withdrawn: float
    current_balance: float
    pending_rewards: float
    pending_withdrawals: float
    withdrawable_amount: float
    last_updated: str


class TypeTotal(CamelModel):
    type: str
    count: int
    total: float


class RewardStatsResponse(CamelModel):
    total_transactions: int
    total_earned: float
    total_penalties: float
    net_balance: float
    average_reward: float
    transactions_by_type: List[TypeTotal]


# =============================================================================
# DEBTS
# =============================================================================

class DebtResponse(CamelModel):
    id: str
    user_id: str
    related_report_id: Optional[str] = None
    original_amount: float
    late_fees: float
    current_amount: float
    paid_amount: float
    remaining_amount: float
    due_date: datetime
    weeks_past_due: int
    status: DebtStatus
    paid_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class DebtPaymentResponse(CamelModel):
    id: str
    amount: float
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_at: Optional[datetime] = None


class DebtDetailResponse(DebtResponse):
    payments: List[DebtPaymentResponse] = []


class DebtSummaryResponse(CamelModel):
    debts: List[DebtResponse]
    total_debt: float
    total_late_fees: float
    debt_count: int
    oldest_due_date: Optional[datetime] = None


# =============================================================================
# WITHDRAWALS
# =============================================================================

class WithdrawalResponse(CamelModel):
    id: str
    user_id: str
    amount: float
    method: WithdrawalMethod
    account_details: Optional[Dict[str, Any]] = None
    status: WithdrawalStatus
    requested_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    notes: Optional[str] = None
    transaction_id: Optional[str] = None


# =============================================================================
# USERS
# =============================================================================

class UserResponse(CamelModel):
    id: str
    email: str
    username: str
    role: UserRole
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    badge_number: Optional[str] = None


class MessageResponse(CamelModel):
    message: str
