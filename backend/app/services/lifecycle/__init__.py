"""
Report Lifecycle Services

Citizen report -> police review -> settlement -> appeal -> debt.
Each service is built on a SQLAlchemy session and commits one transaction
per operation.
"""

from .errors import (
    LifecycleError,
    ValidationError,
    NotPermittedError,
    InvalidStateError,
    ConflictError,
    DuplicateError,
    NotFoundError,
)
from .policy import SettlementPolicy
from .state_machine import ReportStateMachine
from .report_store import ReportStore
from .settlement_ledger import SettlementLedger, TransactionPages
from .debt_accrual import DebtAccrual, AccrualScheduler
from .review_engine import ReviewEngine
from .appeal_engine import AppealEngine
from .withdrawals import WithdrawalService

__all__ = [
    # Errors
    'LifecycleError',
    'ValidationError',
    'NotPermittedError',
    'InvalidStateError',
    'ConflictError',
    'DuplicateError',
    'NotFoundError',
    # Services
    'SettlementPolicy',
    'ReportStateMachine',
    'ReportStore',
    'SettlementLedger',
    'TransactionPages',
    'DebtAccrual',
    'AccrualScheduler',
    'ReviewEngine',
    'AppealEngine',
    'WithdrawalService',
]
