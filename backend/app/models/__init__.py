"""Traffic Watch - Data Models"""
from .db_models import (
    # Enums
    UserRole, ViolationType, ReportStatus, AppealStatus,
    TransactionType, TransactionSource, TransactionStatus,
    DebtStatus, PaymentMethod, WithdrawalMethod, WithdrawalStatus, ActorType,
    # Tables
    UserDB, ReportLocationDB, CitizenReportDB, SettlementTransactionDB,
    OutstandingDebtDB, DebtAccrualTickDB, DebtPaymentDB, WithdrawalRequestDB,
    ReportEventLogDB,
)
from .appeal_state import (
    AppealNotFiled, AppealFiled, AppealResolved, AppealState, appeal_state_of,
)

__all__ = [
    "UserRole", "ViolationType", "ReportStatus", "AppealStatus",
    "TransactionType", "TransactionSource", "TransactionStatus",
    "DebtStatus", "PaymentMethod", "WithdrawalMethod", "WithdrawalStatus", "ActorType",
    "UserDB", "ReportLocationDB", "CitizenReportDB", "SettlementTransactionDB",
    "OutstandingDebtDB", "DebtAccrualTickDB", "DebtPaymentDB", "WithdrawalRequestDB",
    "ReportEventLogDB",
    "AppealNotFiled", "AppealFiled", "AppealResolved", "AppealState", "appeal_state_of",
]
