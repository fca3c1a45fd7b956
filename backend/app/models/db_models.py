"""
Traffic Watch - SQLAlchemy ORM Models
PostgreSQL database models for persistent storage
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Text, JSON, ForeignKey,
    Enum as SQLEnum, Boolean, Index, UniqueConstraint, text,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS FOR REPORT/SETTLEMENT SYSTEM
# =============================================================================

class UserRole(str, Enum):
    """Roles that gate the citizen, police and admin surfaces."""
    CITIZEN = "CITIZEN"
    POLICE = "POLICE"
    ADMIN = "ADMIN"


class ViolationType(str, Enum):
    """Violation categories a citizen can report."""
    OVERSPEEDING = "OVERSPEEDING"
    WRONG_SIDE = "WRONG_SIDE"
    SIGNAL_BREAKING = "SIGNAL_BREAKING"
    NO_HELMET = "NO_HELMET"
    ILLEGAL_PARKING = "ILLEGAL_PARKING"
    DRUNK_DRIVING = "DRUNK_DRIVING"
    NO_SEATBELT = "NO_SEATBELT"
    MOBILE_WHILE_DRIVING = "MOBILE_WHILE_DRIVING"
    OVERLOADING = "OVERLOADING"
    NO_LICENSE = "NO_LICENSE"
    OTHER = "OTHER"


class ReportStatus(str, Enum):
    """Base report status. Set once by review, never reverts."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AppealStatus(str, Enum):
    """Status of the single appeal allowed on a rejected report."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TransactionType(str, Enum):
    REWARD = "REWARD"
    PENALTY = "PENALTY"
    BONUS = "BONUS"
    DEDUCTION = "DEDUCTION"
    DEBT_PAYMENT = "DEBT_PAYMENT"
    WITHDRAWAL = "WITHDRAWAL"


class TransactionSource(str, Enum):
    CITIZEN_REPORT = "CITIZEN_REPORT"
    VIOLATION = "VIOLATION"
    FINE_PAYMENT = "FINE_PAYMENT"
    DEBT_PAYMENT = "DEBT_PAYMENT"
    SYSTEM = "SYSTEM"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class DebtStatus(str, Enum):
    OUTSTANDING = "OUTSTANDING"
    PAID = "PAID"
    WAIVED = "WAIVED"
    PARTIAL = "PARTIAL"


class PaymentMethod(str, Enum):
    CARD = "CARD"
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_MONEY = "MOBILE_MONEY"
    ONLINE = "ONLINE"


class WithdrawalMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    MOBILE_BANKING = "MOBILE_BANKING"
    CASH = "CASH"


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ActorType(str, Enum):
    """Actor types for the report paper trail."""
    CITIZEN = "CITIZEN"
    POLICE = "POLICE"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


# =============================================================================
# USERS
# =============================================================================

class UserDB(Base):
    """User account. Role decides which surfaces the user may call."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.CITIZEN)

    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    phone = Column(String(20), nullable=True)
    badge_number = Column(String(50), nullable=True)  # Police only

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    reports = relationship(
        "CitizenReportDB",
        back_populates="citizen",
        foreign_keys="CitizenReportDB.citizen_id",
    )


# =============================================================================
# CITIZEN REPORTS
# =============================================================================

class ReportLocationDB(Base):
    """Geocoded location attached to a report. Geocoding happens client-side."""
    __tablename__ = "report_locations"

    id = Column(String(36), primary_key=True)  # UUID
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    address = Column(String(500), nullable=False)
    city = Column(String(100), nullable=True)
    district = Column(String(100), nullable=True)
    division = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)


class CitizenReportDB(Base):
    """
    A citizen-submitted allegation of a traffic violation.

    Review columns (reviewed_by, review_notes, reviewed_at, status) are only
    ever written together in one conditional UPDATE. Appeal columns are only
    written once status is REJECTED.
    """
    __tablename__ = "citizen_reports"

    id = Column(String(36), primary_key=True)  # UUID
    citizen_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Content
    vehicle_plate = Column(String(32), nullable=False, index=True)
    violation_type = Column(SQLEnum(ViolationType), nullable=False)
    description = Column(Text, nullable=True)
    evidence_urls = Column(JSON, nullable=False, default=list)  # Ordered list of media URLs

    # Location
    location_id = Column(String(36), ForeignKey("report_locations.id", ondelete="SET NULL"), nullable=True)

    # Review
    status = Column(SQLEnum(ReportStatus), nullable=False, default=ReportStatus.PENDING, index=True)
    reviewed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    review_notes = Column(Text, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    # Settlement (mutually exclusive)
    reward_amount = Column(Float, nullable=True)   # Only if APPROVED
    penalty_amount = Column(Float, nullable=True)  # Only if REJECTED

    # Appeal (only on REJECTED reports)
    appeal_submitted = Column(Boolean, nullable=False, default=False)  # One-way
    appeal_reason = Column(Text, nullable=True)
    appeal_evidence_urls = Column(JSON, nullable=True)
    appeal_submitted_at = Column(DateTime, nullable=True)
    appeal_status = Column(SQLEnum(AppealStatus), nullable=True)
    appeal_reviewed_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    appeal_reviewed_at = Column(DateTime, nullable=True)
    appeal_notes = Column(Text, nullable=True)
    additional_penalty_applied = Column(Boolean, nullable=False, default=False)
    additional_penalty_amount = Column(Float, nullable=True)  # Only if appeal REJECTED

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    citizen = relationship("UserDB", back_populates="reports", foreign_keys=[citizen_id])
    location = relationship("ReportLocationDB")

    @property
    def effective_status(self) -> ReportStatus:
        """Outcome after the appeal: an approved appeal overturns the rejection."""
        if self.appeal_status == AppealStatus.APPROVED:
            return ReportStatus.APPROVED
        return self.status


# =============================================================================
# SETTLEMENT LEDGER
# =============================================================================

class SettlementTransactionDB(Base):
    """
    Append-only settlement ledger entry.
    Signed amount: positive credits the user, negative debits.
    """
    __tablename__ = "settlement_transactions"
    __table_args__ = (
        # One completed settlement per (report, type)
        Index(
            "uq_settlement_report_type_completed",
            "related_report_id", "type",
            unique=True,
            sqlite_where=text("status = 'COMPLETED' AND related_report_id IS NOT NULL"),
            postgresql_where=text("status = 'COMPLETED' AND related_report_id IS NOT NULL"),
        ),
    )

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    type = Column(SQLEnum(TransactionType), nullable=False)
    source = Column(SQLEnum(TransactionSource), nullable=False)
    status = Column(SQLEnum(TransactionStatus), nullable=False, default=TransactionStatus.COMPLETED)
    description = Column(String(500), nullable=True)

    # Back-references (not FKs: the ledger outlives the rows it mentions)
    related_report_id = Column(String(36), nullable=True, index=True)
    related_debt_id = Column(String(36), nullable=True, index=True)
    related_violation_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    processed_at = Column(DateTime, nullable=True)


# =============================================================================
# DEBT
# =============================================================================

class OutstandingDebtDB(Base):
    """
    Unpaid penalty that ages into late fees past its due date.
    current_amount = original_amount + late_fees; late_fees never decreases.
    """
    __tablename__ = "outstanding_debts"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    related_report_id = Column(String(36), nullable=True, index=True)
    transaction_id = Column(String(36), nullable=True)  # Settlement that created the debt

    original_amount = Column(Float, nullable=False)
    late_fees = Column(Float, nullable=False, default=0.0)
    current_amount = Column(Float, nullable=False)
    paid_amount = Column(Float, nullable=False, default=0.0)

    due_date = Column(DateTime, nullable=False)
    last_penalty_date = Column(DateTime, nullable=True)  # Last accrual tick that charged
    weeks_past_due = Column(Integer, nullable=False, default=0)

    status = Column(SQLEnum(DebtStatus), nullable=False, default=DebtStatus.OUTSTANDING, index=True)
    paid_at = Column(DateTime, nullable=True)
    payment_reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    payments = relationship("DebtPaymentDB", back_populates="debt", cascade="all, delete-orphan")
    accrual_ticks = relationship("DebtAccrualTickDB", back_populates="debt", cascade="all, delete-orphan")

    @property
    def remaining_amount(self) -> float:
        return round(self.current_amount - self.paid_amount, 2)


class DebtAccrualTickDB(Base):
    """
    One row per debt per accrual period.
    The unique key stops a period from being charged twice.
    """
    __tablename__ = "debt_accrual_ticks"
    __table_args__ = (
        UniqueConstraint("debt_id", "period_key", name="uq_debt_accrual_period"),
    )

    id = Column(String(36), primary_key=True)  # UUID
    debt_id = Column(String(36), ForeignKey("outstanding_debts.id", ondelete="CASCADE"), nullable=False, index=True)
    period_key = Column(String(16), nullable=False)  # ISO week, e.g. 2026-W42

    weeks_past_due = Column(Integer, nullable=False)
    fee_charged = Column(Float, nullable=False, default=0.0)
    transaction_id = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    debt = relationship("OutstandingDebtDB", back_populates="accrual_ticks")


class DebtPaymentDB(Base):
    """Individual payment against a debt."""
    __tablename__ = "debt_payments"

    id = Column(String(36), primary_key=True)  # UUID
    debt_id = Column(String(36), ForeignKey("outstanding_debts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    amount = Column(Float, nullable=False)
    payment_method = Column(SQLEnum(PaymentMethod), nullable=False)
    payment_reference = Column(String(100), nullable=True)
    transaction_id = Column(String(36), nullable=True)

    paid_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    debt = relationship("OutstandingDebtDB", back_populates="payments")


# =============================================================================
# WITHDRAWALS
# =============================================================================

class WithdrawalRequestDB(Base):
    """Citizen request to cash out a positive balance."""
    __tablename__ = "withdrawal_requests"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    amount = Column(Float, nullable=False)
    method = Column(SQLEnum(WithdrawalMethod), nullable=False)
    account_details = Column(JSON, nullable=True)  # {"accountNumber": ..., "mobileNumber": ...}
    status = Column(SQLEnum(WithdrawalStatus), nullable=False, default=WithdrawalStatus.PENDING, index=True)

    requested_at = Column(DateTime, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)
    transaction_id = Column(String(36), nullable=True)  # Ledger debit on completion


# =============================================================================
# PAPER TRAIL
# =============================================================================

class ReportEventLogDB(Base):
    """
    Immutable record of all report lifecycle events.
    Append-only. report_id is not a foreign key so the trail survives deletion.
    """
    __tablename__ = "report_event_log"

    id = Column(String(36), primary_key=True)  # UUID
    report_id = Column(String(36), nullable=False, index=True)

    event_type = Column(String(50), nullable=False)  # report_created, report_reviewed, appeal_filed, ...
    actor = Column(SQLEnum(ActorType), nullable=False)
    actor_id = Column(String(36), nullable=True)

    from_state = Column(String(32), nullable=True)
    to_state = Column(String(32), nullable=True)
    description = Column(Text, nullable=False)

    # Event Metadata (named to avoid 'metadata' which is reserved in SQLAlchemy)
    event_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
