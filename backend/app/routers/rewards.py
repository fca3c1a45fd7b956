"""
Traffic Watch - Rewards Router

AUTHORITY: CITIZEN (own ledger only)
- Balance, transaction history and statistics
- Withdrawals of earned rewards
- Outstanding debts and debt payments
"""
from typing import Any, Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ..auth import get_current_user
from ..database import get_db
from ..models.api_models import (
    BalanceResponse, CamelModel, DebtDetailResponse, DebtResponse, DebtSummaryResponse,
    MessageResponse, Pagination, RewardStatsResponse, TransactionListResponse,
    TransactionResponse, WithdrawalResponse,
)
from ..models.db_models import (
    PaymentMethod, TransactionSource, TransactionType, UserDB, WithdrawalMethod,
)
from ..services.lifecycle import DebtAccrual, SettlementLedger, WithdrawalService
from .filters import parse_date, parse_enum

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rewards", tags=["rewards"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class WithdrawRequest(CamelModel):
    amount: float
    method: WithdrawalMethod
    account_details: Optional[Dict[str, Any]] = None


class PayDebtRequest(CamelModel):
    debt_id: str
    amount: float
    payment_method: PaymentMethod
    payment_reference: Optional[str] = None


class DebtTotalResponse(CamelModel):
    total_debt: float
    total_late_fees: float
    debt_count: int


class WithdrawalListResponse(CamelModel):
    withdrawals: List[WithdrawalResponse]


def transaction_filters(
    type: Optional[str] = None,
    source: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
) -> Dict[str, Any]:
    """Dependency collecting the ledger list filters."""
    return {
        "type": parse_enum(TransactionType, type, "type"),
        "source": parse_enum(TransactionSource, source, "source"),
        "date_from": parse_date(date_from, "dateFrom"),
        "date_to": parse_date(date_to, "dateTo", end_of_day=True),
    }


# =============================================================================
# LEDGER
# =============================================================================

@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Balance derived from the completed ledger entries."""
    return BalanceResponse(**SettlementLedger(db).balance_summary(current_user.id))


@router.get("/transactions", response_model=TransactionListResponse)
async def get_transactions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    filters: Dict[str, Any] = Depends(transaction_filters),
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Transaction history, newest first."""
    pages = SettlementLedger(db).history(current_user.id, page_size=limit, **filters)
    total = pages.total()
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in pages.page(page)],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=-(-total // limit),
        ),
    )


@router.get("/stats", response_model=RewardStatsResponse)
async def get_reward_stats(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return RewardStatsResponse(**SettlementLedger(db).stats_for(current_user.id))


# =============================================================================
# WITHDRAWALS
# =============================================================================

@router.post("/withdraw", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(
    request: WithdrawRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Request a payout of earned rewards.
    Refused while any debt is outstanding.
    """
    withdrawal = WithdrawalService(db).request(
        user_id=current_user.id,
        amount=request.amount,
        method=request.method,
        account_details=request.account_details,
    )
    return WithdrawalResponse.model_validate(withdrawal)


@router.get("/withdrawals", response_model=WithdrawalListResponse)
async def get_withdrawals(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    withdrawals = WithdrawalService(db).list_for_user(current_user.id)
    return WithdrawalListResponse(
        withdrawals=[WithdrawalResponse.model_validate(w) for w in withdrawals]
    )


@router.delete("/withdrawals/{withdrawal_id}", response_model=MessageResponse)
async def cancel_withdrawal(
    withdrawal_id: str,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Cancel a withdrawal that is still PENDING."""
    WithdrawalService(db).cancel(withdrawal_id, current_user.id)
    return MessageResponse(message="Withdrawal cancelled")


# =============================================================================
# DEBTS
# =============================================================================

@router.get("/debts", response_model=DebtSummaryResponse)
async def get_debts(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Open debts, oldest due date first."""
    summary = DebtAccrual(db).summary_for(current_user.id)
    return DebtSummaryResponse(
        debts=[DebtResponse.model_validate(d) for d in summary["debts"]],
        total_debt=summary["total_debt"],
        total_late_fees=summary["total_late_fees"],
        debt_count=summary["debt_count"],
        oldest_due_date=summary["oldest_due_date"],
    )


@router.get("/debts/total", response_model=DebtTotalResponse)
async def get_debt_total(
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    summary = DebtAccrual(db).summary_for(current_user.id)
    return DebtTotalResponse(
        total_debt=summary["total_debt"],
        total_late_fees=summary["total_late_fees"],
        debt_count=summary["debt_count"],
    )


@router.get("/debts/{debt_id}", response_model=DebtDetailResponse)
async def get_debt(
    debt_id: str,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """One debt with its payment history."""
    debt = DebtAccrual(db).get_for_user(debt_id, current_user.id)
    return DebtDetailResponse.model_validate(debt)


@router.post("/pay-debt", response_model=DebtResponse)
async def pay_debt(
    request: PayDebtRequest,
    current_user: UserDB = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Pay part or all of a debt.
    The payment is credited to the ledger as a DEBT_PAYMENT.
    """
    debt = DebtAccrual(db).pay(
        debt_id=request.debt_id,
        user_id=current_user.id,
        amount=request.amount,
        method=request.payment_method,
        payment_reference=request.payment_reference,
    )
    return DebtResponse.model_validate(debt)
