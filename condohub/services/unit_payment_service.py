"""
Unit Payment Service - monthly dues per unit
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Iterable
from sqlalchemy.orm import Session
import logging

from condohub.core.clock import Clock, default_clock, to_naive
from condohub.core.exceptions import NotFoundError, ValidationError, InvalidStateError
from condohub.models import (
    Condominium, Unit, UnitPayment, UnitPaymentStatus, FinancialTransaction,
    TransactionType, TransactionCategory, TransactionStatus, to_money
)
from condohub.services.audit_service import AuditService, AuditAction

logger = logging.getLogger(__name__)

DUE_SOON_DAYS = 3
UPCOMING_DAYS = 7


class UnitPaymentService:
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or default_clock()
        self.audit = AuditService(db)

    def get_by_id(self, payment_id: int) -> UnitPayment:
        payment = self.db.get(UnitPayment, payment_id)
        if not payment:
            raise NotFoundError("UnitPayment", payment_id)
        return payment

    def generate_monthly_payments(
        self,
        condominium_id: int,
        reference_month: int,
        reference_year: int,
        due_date: date,
        amount=None,
        exclude_units: Iterable[int] = (),
        acting_user_id: Optional[int] = None
    ) -> Dict:
        """
        Create one payment per unit for the reference month.

        Units that already have a payment for that month are reported, not
        duplicated. The unit's monthly amount wins over the default `amount`.
        """
        if not self.db.get(Condominium, condominium_id):
            raise NotFoundError("Condominium", condominium_id)
        if not 1 <= reference_month <= 12:
            raise ValidationError("reference_month must be between 1 and 12")

        query = self.db.query(Unit).filter(Unit.condominium_id == condominium_id)
        excluded = list(exclude_units)
        if excluded:
            query = query.filter(Unit.id.notin_(excluded))
        units = query.order_by(Unit.id).all()

        if not units:
            raise ValidationError("No units found to generate payments for", "Condominium", condominium_id)

        created: List[Dict] = []
        skipped: List[Dict] = []
        for unit in units:
            existing = self.db.query(UnitPayment).filter(
                UnitPayment.unit_id == unit.id,
                UnitPayment.reference_month == reference_month,
                UnitPayment.reference_year == reference_year
            ).first()
            if existing:
                skipped.append({"unit_id": unit.id, "unit_number": unit.number,
                                "error": "Payment already exists for this period"})
                continue

            unit_amount = to_money(unit.monthly_amount)
            payment = UnitPayment(
                unit_id=unit.id,
                condominium_id=condominium_id,
                reference_month=reference_month,
                reference_year=reference_year,
                due_date=due_date,
                amount=unit_amount if unit_amount > 0 else to_money(amount),
            )
            self.db.add(payment)
            self.db.flush()
            created.append({"unit_id": unit.id, "unit_number": unit.number,
                            "payment_id": payment.id, "amount": float(payment.amount)})

        self.audit.log(
            AuditAction.UNIT_PAYMENTS_GENERATED,
            "Condominium",
            resource_id=condominium_id,
            user_id=acting_user_id,
            condominium_id=condominium_id,
            new_values={"reference_month": reference_month, "reference_year": reference_year,
                        "created": len(created)},
        )
        logger.info(
            f"Monthly payments generated for condominium {condominium_id} "
            f"{reference_month:02d}/{reference_year}: {len(created)} created, {len(skipped)} skipped"
        )
        return {
            "created_payments": created,
            "errors": skipped,
            "summary": {
                "total_units": len(units),
                "payments_created": len(created),
                "errors_count": len(skipped),
            },
        }

    def mark_as_paid(
        self,
        payment_id: int,
        acting_user_id: int,
        payment_method: str,
        amount_paid=None,
        late_fee=0,
        discount=0,
        payment_date: Optional[datetime] = None,
        notes: Optional[str] = None
    ) -> UnitPayment:
        """Settle a payment and record the matching income transaction"""
        payment = self.get_by_id(payment_id)
        if payment.status == UnitPaymentStatus.PAID.value:
            raise InvalidStateError("Payment already confirmed", "UnitPayment", payment.id)
        if payment.status == UnitPaymentStatus.CANCELLED.value:
            raise InvalidStateError("Payment is cancelled", "UnitPayment", payment.id)

        paid = to_money(amount_paid) if amount_paid is not None else to_money(payment.amount)
        late_fee = to_money(late_fee)
        discount = to_money(discount)
        if paid < Decimal("0.01"):
            raise ValidationError("amount_paid must be at least 0.01", "UnitPayment", payment.id)
        if late_fee < 0 or discount < 0:
            raise ValidationError("Late fee and discount cannot be negative", "UnitPayment", payment.id)
        if discount > paid + late_fee:
            raise ValidationError("Discount cannot exceed amount paid plus late fee", "UnitPayment", payment.id)

        paid_at = payment_date or to_naive(self.clock.now())
        payment.status = (
            UnitPaymentStatus.PARTIAL.value if paid < to_money(payment.amount)
            else UnitPaymentStatus.PAID.value
        )
        payment.amount_paid = paid
        payment.payment_date = paid_at
        payment.payment_method = payment_method
        payment.late_fee = late_fee
        payment.discount = discount
        if notes:
            payment.notes = f"{payment.notes or ''}\n[PAYMENT] {notes}".strip()

        unit = self.db.get(Unit, payment.unit_id)
        transaction = FinancialTransaction(
            condominium_id=payment.condominium_id,
            unit_id=payment.unit_id,
            user_id=acting_user_id,
            type=TransactionType.INCOME.value,
            category=TransactionCategory.CONDOMINIUM_FEE.value,
            description=(
                f"Condominium fee - {unit.number if unit else payment.unit_id} - "
                f"{payment.reference_month:02d}/{payment.reference_year}"
            ),
            amount=paid,
            late_fee=late_fee,
            discount=discount,
            due_date=payment.due_date,
            paid_date=paid_at,
            status=TransactionStatus.PAID.value,
            payment_method=payment_method,
            reference_month=payment.reference_month,
            reference_year=payment.reference_year,
            created_by=acting_user_id,
        )
        self.db.add(transaction)
        self.db.flush()

        payment.financial_transaction_id = transaction.id
        self.db.flush()

        self.audit.log(
            AuditAction.UNIT_PAYMENT_PAID,
            "UnitPayment",
            resource_id=payment.id,
            user_id=acting_user_id,
            condominium_id=payment.condominium_id,
            new_values={"status": payment.status, "amount_paid": paid, "transaction_id": transaction.id},
        )
        logger.info(f"Unit payment confirmed: {payment.id} by user {acting_user_id} - R$ {transaction.total_amount}")
        return payment

    def days_overdue(self, payment: UnitPayment) -> int:
        if payment.status != UnitPaymentStatus.OVERDUE.value:
            return 0
        return max((self.clock.today() - payment.due_date).days, 0)

    def detailed_status(self, payment: UnitPayment) -> Dict:
        if payment.status == UnitPaymentStatus.PAID.value:
            return {"status": "paid", "payment_date": payment.payment_date}
        if payment.status == UnitPaymentStatus.OVERDUE.value:
            return {"status": "overdue", "days_overdue": self.days_overdue(payment)}
        if payment.status == UnitPaymentStatus.PARTIAL.value:
            return {"status": "partial", "amount_paid": payment.amount_paid}
        if payment.status == UnitPaymentStatus.CANCELLED.value:
            return {"status": "cancelled"}

        days_until_due = (payment.due_date - self.clock.today()).days
        if days_until_due <= 0:
            # Due today or past due but not yet flagged
            status = "overdue"
        elif days_until_due <= DUE_SOON_DAYS:
            status = "due_soon"
        elif days_until_due <= UPCOMING_DAYS:
            status = "upcoming"
        else:
            status = "current"
        return {"status": status, "days_until_due": days_until_due}

    def refresh_overdue(self, condominium_id: Optional[int] = None) -> int:
        """Flag pending payments past their due date as overdue"""
        query = self.db.query(UnitPayment).filter(
            UnitPayment.status == UnitPaymentStatus.PENDING.value,
            UnitPayment.due_date < self.clock.today()
        )
        if condominium_id:
            query = query.filter(UnitPayment.condominium_id == condominium_id)

        payments = query.all()
        for payment in payments:
            payment.status = UnitPaymentStatus.OVERDUE.value
        self.db.flush()

        if payments:
            logger.info(f"{len(payments)} unit payments flagged overdue")
        return len(payments)
