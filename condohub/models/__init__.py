"""
SQLAlchemy Models for the condominium ledger
"""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, DateTime, Date, Numeric,
    ForeignKey, Index, UniqueConstraint, CheckConstraint, event
)
from sqlalchemy.orm import relationship
import enum

from condohub.core.database import Base


CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce a numeric value to a Decimal rounded to cents"""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


# ==================== ENUMS ====================

class UserRole(enum.Enum):
    ADMIN = "admin"
    MANAGER = "manager"
    SYNDIC = "syndic"
    RESIDENT = "resident"


class TransactionType(enum.Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionCategory(enum.Enum):
    CONDOMINIUM_FEE = "condominium_fee"
    WATER = "water"
    ELECTRICITY = "electricity"
    GAS = "gas"
    MAINTENANCE = "maintenance"
    SECURITY = "security"
    CLEANING = "cleaning"
    INSURANCE = "insurance"
    RESERVE_FUND = "reserve_fund"
    UTILITIES = "utilities"
    OTHER = "other"


class TransactionStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentMethod(enum.Enum):
    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    PIX = "pix"
    PIX_A = "pix_a"
    PIX_B = "pix_b"
    PIX_C = "pix_c"
    CREDIT_CARD = "credit_card"
    DEBIT_CARD = "debit_card"
    BANK_SLIP = "bank_slip"
    MIXED = "mixed"


PIX_METHODS = {
    PaymentMethod.PIX.value, PaymentMethod.PIX_A.value,
    PaymentMethod.PIX_B.value, PaymentMethod.PIX_C.value,
}


class RecurrenceType(enum.Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


class MaintenanceCategory(enum.Enum):
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    HVAC = "hvac"
    ELEVATOR = "elevator"
    SECURITY = "security"
    CLEANING = "cleaning"
    LANDSCAPING = "landscaping"
    STRUCTURAL = "structural"
    APPLIANCES = "appliances"
    OTHER = "other"


class MaintenancePriority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class MaintenanceStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


# Statuses a request can only reach after staff approved it
APPROVED_MAINTENANCE_STATUSES = (
    MaintenanceStatus.IN_PROGRESS.value,
    MaintenanceStatus.COMPLETED.value,
)


class MaintenancePaymentStatus(enum.Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"


class UnitPaymentStatus(enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    PARTIAL = "partial"
    CANCELLED = "cancelled"


class NotificationPriority(enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# ==================== CORE MODELS ====================

class Condominium(Base):
    """Condominium (building or complex)"""
    __tablename__ = 'condominiums'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    units = relationship("Unit", back_populates="condominium", cascade="all, delete-orphan")
    transactions = relationship("FinancialTransaction", back_populates="condominium")
    maintenance_requests = relationship("MaintenanceRequest", back_populates="condominium")


class User(Base):
    """User account; authentication lives outside this service"""
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(String(20), default=UserRole.RESIDENT.value, nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.ADMIN.value, UserRole.MANAGER.value, UserRole.SYNDIC.value)


class Unit(Base):
    """Apartment/unit within a condominium"""
    __tablename__ = 'units'

    id = Column(Integer, primary_key=True)
    condominium_id = Column(Integer, ForeignKey('condominiums.id', ondelete='CASCADE'), nullable=False)
    number = Column(String(20), nullable=False)
    block = Column(String(20), nullable=True)
    resident_user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    monthly_amount = Column(Numeric(12, 2), default=Decimal("0.00"))
    payment_due_day = Column(Integer, nullable=True)
    auto_billing_enabled = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    condominium = relationship("Condominium", back_populates="units")
    resident_user = relationship("User")

    __table_args__ = (
        CheckConstraint('payment_due_day IS NULL OR (payment_due_day BETWEEN 1 AND 28)', name='ck_unit_due_day'),
    )


class FinancialTransaction(Base):
    """Receivable or payable of a condominium"""
    __tablename__ = 'financial_transactions'

    id = Column(Integer, primary_key=True)
    condominium_id = Column(Integer, ForeignKey('condominiums.id'), nullable=False)
    unit_id = Column(Integer, ForeignKey('units.id'), nullable=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=True)
    type = Column(String(20), nullable=False)
    category = Column(String(30), nullable=False)
    title = Column(String(255), nullable=True)
    description = Column(String(500), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=False)
    original_due_date = Column(Date, nullable=True)
    paid_date = Column(DateTime, nullable=True)
    status = Column(String(20), default=TransactionStatus.PENDING.value, nullable=False)
    payment_method = Column(String(20), nullable=True)
    reference_month = Column(Integer, nullable=True)
    reference_year = Column(Integer, nullable=True)
    notes = Column(Text, nullable=True)

    late_fee = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    discount = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    total_amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)

    # Maintenance integration
    maintenance_request_id = Column(Integer, ForeignKey('maintenance_requests.id', ondelete='SET NULL'), nullable=True)
    auto_generated = Column(Boolean, default=False, nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurrence_type = Column(String(20), default=RecurrenceType.ONE_TIME.value, nullable=False)

    # PIX
    pix_type = Column(String(1), nullable=True)
    pix_key = Column(String(255), nullable=True)
    pix_recipient_name = Column(String(255), nullable=True)

    # Cash confirmation
    cash_confirmed = Column(Boolean, default=False, nullable=False)
    cash_confirmed_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    cash_confirmed_at = Column(DateTime, nullable=True)

    # Mixed payments (PIX + cash)
    mixed_payment = Column(Boolean, default=False, nullable=False)
    pix_amount = Column(Numeric(12, 2), default=Decimal("0.00"))
    cash_amount = Column(Numeric(12, 2), default=Decimal("0.00"))

    private_expense = Column(Boolean, default=False, nullable=False)

    # Audit fields
    created_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    approved_by = Column(Integer, ForeignKey('users.id'), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    balance_before = Column(Numeric(15, 2), nullable=True)
    balance_after = Column(Numeric(15, 2), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    condominium = relationship("Condominium", back_populates="transactions")
    unit = relationship("Unit")
    user = relationship("User", foreign_keys=[user_id])
    maintenance_request = relationship(
        "MaintenanceRequest",
        foreign_keys=[maintenance_request_id],
        back_populates="linked_transactions",
    )

    __table_args__ = (
        CheckConstraint('amount >= 0.01', name='ck_transaction_amount_positive'),
        CheckConstraint('late_fee >= 0', name='ck_transaction_late_fee'),
        CheckConstraint('discount >= 0', name='ck_transaction_discount'),
        Index('ix_transactions_condo_status_due', 'condominium_id', 'status', 'due_date'),
        Index('ix_transactions_maintenance_request', 'maintenance_request_id', unique=True),
    )

    def compute_total(self) -> Decimal:
        return to_money(self.amount) + to_money(self.late_fee) - to_money(self.discount)


class MaintenanceRequest(Base):
    """Repair/service ticket opened by a resident"""
    __tablename__ = 'maintenance_requests'

    id = Column(Integer, primary_key=True)
    condominium_id = Column(Integer, ForeignKey('condominiums.id'), nullable=False)
    unit_id = Column(Integer, ForeignKey('units.id'), nullable=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(20), default=MaintenanceCategory.OTHER.value, nullable=False)
    priority = Column(String(10), default=MaintenancePriority.MEDIUM.value, nullable=False)
    status = Column(String(20), default=MaintenanceStatus.PENDING.value, nullable=False)
    location = Column(String(255), nullable=True)
    estimated_cost = Column(Numeric(10, 2), nullable=True)
    actual_cost = Column(Numeric(10, 2), default=Decimal("0.00"))
    assigned_to = Column(String(255), nullable=True)
    assigned_contact = Column(String(255), nullable=True)
    scheduled_date = Column(DateTime, nullable=True)
    completed_date = Column(DateTime, nullable=True)
    admin_notes = Column(Text, nullable=True)
    resident_rating = Column(Integer, nullable=True)
    resident_feedback = Column(Text, nullable=True)
    approved_by = Column(Integer, ForeignKey('users.id'), nullable=True)

    financial_transaction_id = Column(
        Integer,
        ForeignKey('financial_transactions.id', ondelete='SET NULL', use_alter=True, name='fk_maintenance_transaction'),
        nullable=True,
    )
    payment_status = Column(String(20), default=MaintenancePaymentStatus.NOT_REQUIRED.value, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    condominium = relationship("Condominium", back_populates="maintenance_requests")
    user = relationship("User", foreign_keys=[user_id])
    financial_transaction = relationship(
        "FinancialTransaction",
        foreign_keys=[financial_transaction_id],
        post_update=True,
    )
    linked_transactions = relationship(
        "FinancialTransaction",
        foreign_keys="FinancialTransaction.maintenance_request_id",
        back_populates="maintenance_request",
    )

    __table_args__ = (
        CheckConstraint('resident_rating IS NULL OR (resident_rating BETWEEN 1 AND 5)', name='ck_maintenance_rating'),
        Index('ix_maintenance_condo_status', 'condominium_id', 'status'),
    )


class UnitPayment(Base):
    """Monthly dues of a unit"""
    __tablename__ = 'unit_payments'

    id = Column(Integer, primary_key=True)
    unit_id = Column(Integer, ForeignKey('units.id', ondelete='CASCADE'), nullable=False)
    condominium_id = Column(Integer, ForeignKey('condominiums.id'), nullable=False)
    reference_month = Column(Integer, nullable=False)
    reference_year = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    late_fee = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    discount = Column(Numeric(10, 2), default=Decimal("0.00"), nullable=False)
    total_amount = Column(Numeric(12, 2), default=Decimal("0.00"), nullable=False)
    amount_paid = Column(Numeric(12, 2), nullable=True)
    status = Column(String(20), default=UnitPaymentStatus.PENDING.value, nullable=False)
    payment_date = Column(DateTime, nullable=True)
    payment_method = Column(String(20), nullable=True)
    financial_transaction_id = Column(Integer, ForeignKey('financial_transactions.id'), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    unit = relationship("Unit")
    financial_transaction = relationship("FinancialTransaction")

    __table_args__ = (
        UniqueConstraint('unit_id', 'reference_month', 'reference_year', name='unique_unit_month_year'),
        CheckConstraint('reference_month BETWEEN 1 AND 12', name='ck_unit_payment_month'),
        CheckConstraint('reference_year BETWEEN 2020 AND 2050', name='ck_unit_payment_year'),
    )

    def compute_total(self) -> Decimal:
        return to_money(self.amount) + to_money(self.late_fee) - to_money(self.discount)


class AuditLog(Base):
    """Immutable record of a mutating action"""
    __tablename__ = 'audit_logs'

    id = Column(Integer, primary_key=True)
    action = Column(String(50), nullable=False, index=True)
    resource = Column(String(100), nullable=False)
    resource_id = Column(Integer, nullable=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    condominium_id = Column(Integer, ForeignKey('condominiums.id', ondelete='SET NULL'), nullable=True)
    old_values = Column(Text, nullable=True)  # JSON
    new_values = Column(Text, nullable=True)  # JSON
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('ix_audit_resource', 'resource', 'resource_id'),
        Index('ix_audit_condo_created', 'condominium_id', 'created_at'),
    )


class Notification(Base):
    """Stored notification for a user; delivery happens elsewhere"""
    __tablename__ = 'notifications'

    id = Column(Integer, primary_key=True)
    condominium_id = Column(Integer, ForeignKey('condominiums.id', ondelete='CASCADE'), nullable=True)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), default="system", nullable=False)
    priority = Column(String(10), default=NotificationPriority.MEDIUM.value, nullable=False)
    data = Column(Text, nullable=True)  # JSON
    is_read = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_notifications_user_read', 'user_id', 'is_read'),
    )


# ==================== DERIVED TOTALS ====================

@event.listens_for(FinancialTransaction, "before_insert")
@event.listens_for(FinancialTransaction, "before_update")
@event.listens_for(UnitPayment, "before_insert")
@event.listens_for(UnitPayment, "before_update")
def _recompute_total_amount(mapper, connection, target):
    """total_amount = amount + late_fee - discount, on every persist"""
    if target.late_fee is None:
        target.late_fee = Decimal("0.00")
    if target.discount is None:
        target.discount = Decimal("0.00")
    target.total_amount = target.compute_total()
