"""
Auto Billing Service - monthly condominium fee charges for opted-in units
"""
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, List, Dict
from sqlalchemy.orm import Session
from dateutil.relativedelta import relativedelta
import logging

from condohub.core.clock import Clock, default_clock
from condohub.core.config import settings
from condohub.core.database import unit_of_work
from condohub.core.exceptions import NotFoundError, ValidationError
from condohub.models import (
    Unit, Condominium, User, FinancialTransaction, TransactionType,
    TransactionCategory, TransactionStatus, RecurrenceType, to_money
)
from condohub.services.audit_service import AuditService, AuditAction
from condohub.services.late_fee_service import BatchItemError

logger = logging.getLogger(__name__)


class AutoBillingService:
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or default_clock()
        self.audit = AuditService(db)

    def process_auto_billing(self, token=None) -> Dict:
        """
        Charge units whose due day falls AUTO_BILLING_LEAD_DAYS from today.

        The charge is due on that target date; a unit already charged for the
        target month is skipped. A cancelled `token` stops before the next unit.
        """
        target = self.clock.today() + timedelta(days=settings.AUTO_BILLING_LEAD_DAYS)
        units = self.db.query(Unit).filter(
            Unit.auto_billing_enabled == True,
            Unit.payment_due_day == target.day,
            Unit.monthly_amount > 0
        ).order_by(Unit.id).all()

        created: List[int] = []
        skipped: List[int] = []
        errors: List[BatchItemError] = []
        cancelled = False
        for unit in units:
            if token is not None and token.cancelled:
                logger.warning(f"Auto billing cancelled after {len(created)} charges")
                cancelled = True
                break
            try:
                with unit_of_work(self.db):
                    transaction = self._bill_unit(unit, target)
                if transaction is None:
                    skipped.append(unit.id)
                else:
                    created.append(transaction.id)
            except Exception as e:
                logger.error(f"Auto billing failed for unit {unit.id}: {e}", exc_info=True)
                errors.append(BatchItemError(unit.id, str(e)))

        logger.info(
            f"Auto billing for due day {target.day}: {len(created)} created, "
            f"{len(skipped)} already billed, {len(errors)} errors"
        )
        result = {
            "processed": len(created),
            "skipped": len(skipped),
            "errors": [e.to_dict() for e in errors],
            "total": len(units),
            "transaction_ids": created,
        }
        if cancelled:
            result["cancelled"] = True
        return result

    def _bill_unit(self, unit: Unit, due_date: date) -> Optional[FinancialTransaction]:
        existing = self.db.query(FinancialTransaction).filter(
            FinancialTransaction.unit_id == unit.id,
            FinancialTransaction.reference_month == due_date.month,
            FinancialTransaction.reference_year == due_date.year,
            FinancialTransaction.category == TransactionCategory.CONDOMINIUM_FEE.value,
            FinancialTransaction.type == TransactionType.INCOME.value
        ).first()
        if existing:
            return None

        label = f"Unit {unit.number}" + (f" Block {unit.block}" if unit.block else "")
        transaction = FinancialTransaction(
            condominium_id=unit.condominium_id,
            unit_id=unit.id,
            user_id=unit.resident_user_id,
            type=TransactionType.INCOME.value,
            category=TransactionCategory.CONDOMINIUM_FEE.value,
            description=f"Condominium fee - {label}",
            amount=to_money(unit.monthly_amount),
            due_date=due_date,
            status=TransactionStatus.PENDING.value,
            reference_month=due_date.month,
            reference_year=due_date.year,
            auto_generated=True,
            is_recurring=True,
            recurrence_type=RecurrenceType.MONTHLY.value,
        )
        self.db.add(transaction)
        self.db.flush()

        self.audit.log(
            AuditAction.AUTO_BILLING_CREATED,
            "FinancialTransaction",
            resource_id=transaction.id,
            condominium_id=unit.condominium_id,
            new_values={"unit_id": unit.id, "amount": transaction.amount, "due_date": due_date},
        )
        logger.info(f"Auto billing created for unit {unit.id}: R$ {transaction.amount} due {due_date}")
        return transaction

    def calculate_next_billing_date(self, payment_due_day: int) -> date:
        """Next occurrence of the due day strictly after today"""
        today = self.clock.today()
        candidate = today + relativedelta(day=payment_due_day)
        if candidate <= today:
            candidate = today + relativedelta(months=1, day=payment_due_day)
        return candidate

    def get_upcoming_billings(self, days: int = 30) -> List[Dict]:
        today = self.clock.today()
        rows = self.db.query(Unit, Condominium.name, User.name).join(
            Condominium, Condominium.id == Unit.condominium_id
        ).outerjoin(
            User, User.id == Unit.resident_user_id
        ).filter(
            Unit.auto_billing_enabled == True,
            Unit.monthly_amount > 0,
            Unit.payment_due_day.isnot(None)
        ).order_by(Unit.payment_due_day).all()

        billings = []
        for unit, condominium_name, resident_name in rows:
            next_date = self.calculate_next_billing_date(unit.payment_due_day)
            days_until = (next_date - today).days
            if days_until > days:
                continue
            billings.append({
                "unit_id": unit.id,
                "unit_number": unit.number,
                "unit_block": unit.block,
                "condominium_name": condominium_name,
                "resident_name": resident_name,
                "monthly_amount": float(unit.monthly_amount),
                "payment_due_day": unit.payment_due_day,
                "next_billing_date": next_date,
                "days_until_billing": days_until,
                "auto_create_date": next_date - timedelta(days=settings.AUTO_BILLING_LEAD_DAYS),
            })
        return billings

    def enable_for_unit(self, unit_id: int, monthly_amount, payment_due_day: int) -> Unit:
        unit = self.db.get(Unit, unit_id)
        if not unit:
            raise NotFoundError("Unit", unit_id)
        if to_money(monthly_amount) <= Decimal("0"):
            raise ValidationError("monthly_amount must be positive", "Unit", unit_id)
        if not 1 <= payment_due_day <= 28:
            raise ValidationError("payment_due_day must be between 1 and 28", "Unit", unit_id)

        unit.monthly_amount = to_money(monthly_amount)
        unit.payment_due_day = payment_due_day
        unit.auto_billing_enabled = True
        self.db.flush()
        logger.info(f"Auto billing enabled for unit {unit.id}")
        return unit

    def disable_for_unit(self, unit_id: int) -> Unit:
        unit = self.db.get(Unit, unit_id)
        if not unit:
            raise NotFoundError("Unit", unit_id)
        unit.auto_billing_enabled = False
        self.db.flush()
        logger.info(f"Auto billing disabled for unit {unit.id}")
        return unit
