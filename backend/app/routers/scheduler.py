"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Weekly late-fee accrual on overdue debts.
"""
from datetime import datetime
from typing import Optional
import os

from fastapi import APIRouter, Depends, HTTPException, Header
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.lifecycle import AccrualScheduler, DebtAccrual
from .filters import parse_date


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/accrue-late-fees", response_model=dict)
async def run_late_fee_accrual(
    as_of: Optional[str] = None,
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Run the late-fee accrual over every overdue debt.

    System-automatic - no user confirmation required.
    Safe to call more than once per week: each debt is charged at most once
    per accrual period.
    """
    scheduler = AccrualScheduler(db)

    result = scheduler.run(parse_date(as_of, "as_of"))

    return result


# =============================================================================
# SCHEDULER STATUS ENDPOINTS (READ-ONLY)
# =============================================================================

@router.get("/overdue-debts", response_model=dict)
async def get_overdue_debts(
    db: Session = Depends(get_db),
    _: bool = Depends(verify_internal_key),
):
    """
    Get open debts past their due date, for monitoring.
    """
    debts = DebtAccrual(db).overdue_debts()

    return {
        "as_of": datetime.utcnow().isoformat(),
        "count": len(debts),
        "debts": [
            {
                "id": d.id,
                "user_id": d.user_id,
                "related_report_id": d.related_report_id,
                "due_date": d.due_date.isoformat(),
                "weeks_past_due": d.weeks_past_due,
                "late_fees": d.late_fees,
                "remaining_amount": d.remaining_amount,
                "status": d.status.value,
            }
            for d in debts
        ],
    }
