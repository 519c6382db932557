"""
Pydantic Schemas for API Validation
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Literal
from datetime import datetime, date
from decimal import Decimal
from enum import Enum


# ==================== ENUMS ====================

class TransactionTypeEnum(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionCategoryEnum(str, Enum):
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


class PaymentMethodEnum(str, Enum):
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


class RecurrenceTypeEnum(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMIANNUAL = "semiannual"
    ANNUAL = "annual"
    ONE_TIME = "one_time"


# ==================== FINANCIAL SCHEMAS ====================

class TransactionCreate(BaseModel):
    condominium_id: int
    unit_id: Optional[int] = None
    user_id: Optional[int] = None
    type: TransactionTypeEnum
    category: TransactionCategoryEnum
    title: Optional[str] = Field(None, max_length=255)
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., ge=Decimal("0.01"))
    late_fee: Decimal = Field(default=Decimal("0.00"), ge=0)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    due_date: date
    payment_method: Optional[PaymentMethodEnum] = None
    reference_month: Optional[int] = Field(None, ge=1, le=12)
    reference_year: Optional[int] = Field(None, ge=2020, le=2050)
    notes: Optional[str] = None
    is_recurring: bool = False
    recurrence_type: RecurrenceTypeEnum = RecurrenceTypeEnum.ONE_TIME
    pix_key: Optional[str] = Field(None, max_length=255)
    pix_recipient_name: Optional[str] = Field(None, max_length=255)
    pix_amount: Optional[Decimal] = Field(None, ge=0)
    cash_amount: Optional[Decimal] = Field(None, ge=0)
    private_expense: bool = False

    model_config = ConfigDict(use_enum_values=True)


class TransactionResponse(BaseModel):
    id: int
    condominium_id: int
    unit_id: Optional[int] = None
    user_id: Optional[int] = None
    type: str
    category: str
    title: Optional[str] = None
    description: str
    amount: Decimal
    late_fee: Decimal
    discount: Decimal
    total_amount: Decimal
    due_date: date
    original_due_date: Optional[date] = None
    paid_date: Optional[datetime] = None
    status: str
    payment_method: Optional[str] = None
    maintenance_request_id: Optional[int] = None
    auto_generated: bool
    cash_confirmed: bool
    approved_by: Optional[int] = None
    balance_before: Optional[Decimal] = None
    balance_after: Optional[Decimal] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BalanceResponse(BaseModel):
    condominium_id: int
    balance: Decimal


# ==================== MAINTENANCE SCHEMAS ====================

class MaintenanceRequestResponse(BaseModel):
    id: int
    condominium_id: int
    unit_id: Optional[int] = None
    user_id: int
    title: str
    category: str
    priority: str
    status: str
    estimated_cost: Optional[Decimal] = None
    actual_cost: Optional[Decimal] = None
    financial_transaction_id: Optional[int] = None
    payment_status: str
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    resident_rating: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class MaintenanceApproveRequest(BaseModel):
    estimated_cost: Optional[Decimal] = Field(None, ge=0)
    assigned_to: Optional[str] = Field(None, max_length=255)
    assigned_contact: Optional[str] = Field(None, max_length=255)
    scheduled_date: Optional[datetime] = None
    admin_notes: Optional[str] = None


class MaintenanceApproveResponse(BaseModel):
    request: MaintenanceRequestResponse
    transaction: Optional[TransactionResponse] = None


class MaintenanceRejectRequest(BaseModel):
    admin_notes: Optional[str] = None


class MaintenanceCompleteRequest(BaseModel):
    actual_cost: Optional[Decimal] = Field(None, ge=0)


class MaintenanceRateRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = None


class ReprocessRequest(BaseModel):
    action: Literal["sync", "recreate", "unlink"]


# ==================== UNIT PAYMENT SCHEMAS ====================

class GeneratePaymentsRequest(BaseModel):
    reference_month: int = Field(..., ge=1, le=12)
    reference_year: int = Field(..., ge=2020, le=2050)
    due_date: date
    amount: Optional[Decimal] = Field(None, ge=0)
    exclude_units: List[int] = []


class MarkPaidRequest(BaseModel):
    payment_method: PaymentMethodEnum
    amount_paid: Optional[Decimal] = Field(None, ge=Decimal("0.01"))
    late_fee: Decimal = Field(default=Decimal("0.00"), ge=0)
    discount: Decimal = Field(default=Decimal("0.00"), ge=0)
    payment_date: Optional[datetime] = None
    notes: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)


class UnitPaymentResponse(BaseModel):
    id: int
    unit_id: int
    condominium_id: int
    reference_month: int
    reference_year: int
    due_date: date
    amount: Decimal
    late_fee: Decimal
    discount: Decimal
    total_amount: Decimal
    amount_paid: Optional[Decimal] = None
    status: str
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    financial_transaction_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


# ==================== NOTIFICATION SCHEMAS ====================

class NotificationResponse(BaseModel):
    id: int
    condominium_id: Optional[int] = None
    title: str
    message: str
    type: str
    priority: str
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
