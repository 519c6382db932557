"""
Financial Service - create, approve, confirm and cancel condominium transactions
"""
from decimal import Decimal
from typing import Optional, Dict, List
from sqlalchemy.orm import Session
from sqlalchemy import func, case
import logging

from condohub.core.clock import Clock, default_clock, to_naive
from condohub.core.database import unit_of_work
from condohub.core.exceptions import NotFoundError, ValidationError, InvalidStateError
from condohub.models import (
    Condominium, FinancialTransaction, TransactionType, TransactionStatus,
    PaymentMethod, PIX_METHODS, UserRole, NotificationPriority, to_money
)
from condohub.services.audit_service import AuditService, AuditAction
from condohub.services.late_fee_service import BatchItemError
from condohub.services.maintenance_financial_service import MaintenanceFinancialService
from condohub.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

MIXED_PAYMENT_TOLERANCE = Decimal("0.01")
CASH_METHODS = (PaymentMethod.CASH.value, PaymentMethod.MIXED.value)


class FinancialService:
    def __init__(self, db: Session, clock: Optional[Clock] = None,
                 notifications: Optional[NotificationService] = None,
                 bridge: Optional[MaintenanceFinancialService] = None):
        self.db = db
        self.clock = clock or default_clock()
        self.notifications = notifications or NotificationService(db)
        self.bridge = bridge or MaintenanceFinancialService(db, self.clock, self.notifications)
        self.audit = AuditService(db)

    def get_by_id(self, transaction_id: int) -> FinancialTransaction:
        transaction = self.db.get(FinancialTransaction, transaction_id)
        if not transaction:
            raise NotFoundError("FinancialTransaction", transaction_id)
        return transaction

    def get_condominium_balance(self, condominium_id: int) -> Decimal:
        """Paid income minus paid expenses"""
        income, expense = self.db.query(
            func.coalesce(func.sum(case(
                (FinancialTransaction.type == TransactionType.INCOME.value, FinancialTransaction.total_amount),
                else_=0
            )), 0),
            func.coalesce(func.sum(case(
                (FinancialTransaction.type == TransactionType.EXPENSE.value, FinancialTransaction.total_amount),
                else_=0
            )), 0),
        ).filter(
            FinancialTransaction.condominium_id == condominium_id,
            FinancialTransaction.status == TransactionStatus.PAID.value
        ).one()
        return to_money(income) - to_money(expense)

    def _validate_payment_split(self, data) -> None:
        amount = to_money(data.amount)
        late_fee = to_money(data.late_fee)
        discount = to_money(data.discount)

        if amount < Decimal("0.01"):
            raise ValidationError("Amount must be at least 0.01")
        if late_fee < 0 or discount < 0:
            raise ValidationError("Late fee and discount cannot be negative")
        if discount > amount + late_fee:
            raise ValidationError(f"Discount ({discount}) cannot exceed amount plus late fee ({amount + late_fee})")

        if data.payment_method == PaymentMethod.MIXED.value:
            if not data.pix_amount or not data.cash_amount:
                raise ValidationError("Mixed payments require both PIX and cash amounts")
            split_total = to_money(data.pix_amount) + to_money(data.cash_amount)
            expected = amount + late_fee - discount
            if abs(split_total - expected) > MIXED_PAYMENT_TOLERANCE:
                raise ValidationError(
                    f"PIX ({to_money(data.pix_amount)}) + cash ({to_money(data.cash_amount)}) "
                    f"must equal the total amount ({expected})"
                )

        if data.payment_method in PIX_METHODS and not data.pix_key:
            raise ValidationError("A PIX key is required for PIX payments")

    def create_transaction(self, data, acting_user_id: Optional[int] = None) -> FinancialTransaction:
        """Create a transaction after validating amounts and payment details"""
        if not self.db.get(Condominium, data.condominium_id):
            raise NotFoundError("Condominium", data.condominium_id)
        self._validate_payment_split(data)

        pix_type = None
        if data.payment_method in (PaymentMethod.PIX_A.value, PaymentMethod.PIX_B.value, PaymentMethod.PIX_C.value):
            pix_type = data.payment_method[-1].upper()

        transaction = FinancialTransaction(
            condominium_id=data.condominium_id,
            unit_id=data.unit_id,
            user_id=data.user_id,
            type=data.type,
            category=data.category,
            title=data.title,
            description=data.description,
            amount=to_money(data.amount),
            late_fee=to_money(data.late_fee),
            discount=to_money(data.discount),
            due_date=data.due_date,
            status=TransactionStatus.PENDING.value,
            payment_method=data.payment_method,
            reference_month=data.reference_month,
            reference_year=data.reference_year,
            notes=data.notes,
            is_recurring=data.is_recurring,
            recurrence_type=data.recurrence_type,
            pix_type=pix_type,
            pix_key=data.pix_key,
            pix_recipient_name=data.pix_recipient_name,
            mixed_payment=data.payment_method == PaymentMethod.MIXED.value,
            pix_amount=to_money(data.pix_amount),
            cash_amount=to_money(data.cash_amount),
            private_expense=data.private_expense,
            created_by=acting_user_id,
        )
        total = transaction.compute_total()
        balance_before = self.get_condominium_balance(data.condominium_id)
        transaction.balance_before = balance_before
        if data.type == TransactionType.INCOME.value:
            transaction.balance_after = balance_before + total
        else:
            transaction.balance_after = balance_before - total

        self.db.add(transaction)
        self.db.flush()

        self.audit.log(
            AuditAction.TRANSACTION_CREATED,
            "FinancialTransaction",
            resource_id=transaction.id,
            user_id=acting_user_id,
            condominium_id=transaction.condominium_id,
            new_values={"type": transaction.type, "category": transaction.category,
                        "amount": transaction.amount, "total_amount": transaction.total_amount},
        )
        self.notifications.notify_roles(
            transaction.condominium_id,
            (UserRole.ADMIN.value, UserRole.MANAGER.value),
            title="New financial transaction",
            message=f"{transaction.type.capitalize()} '{transaction.description}' of R$ {total:.2f} was registered.",
            type="financial",
            data={"transaction_id": transaction.id},
        )

        logger.info(f"Transaction created: {transaction.id} ({transaction.type}) total={total}")
        return transaction

    def approve_transaction(self, transaction_id: int, acting_user_id: int) -> FinancialTransaction:
        """Approve a transaction, which settles it as paid"""
        transaction = self.get_by_id(transaction_id)
        if transaction.approved_by:
            raise InvalidStateError("Transaction already approved", "FinancialTransaction", transaction.id)
        if transaction.status == TransactionStatus.CANCELLED.value:
            raise InvalidStateError("Cancelled transactions cannot be approved", "FinancialTransaction", transaction.id)

        now = to_naive(self.clock.now())
        old_status = transaction.status
        transaction.approved_by = acting_user_id
        transaction.approved_at = now
        transaction.status = TransactionStatus.PAID.value
        transaction.paid_date = now
        self.db.flush()

        self.audit.log(
            AuditAction.TRANSACTION_APPROVED,
            "FinancialTransaction",
            resource_id=transaction.id,
            user_id=acting_user_id,
            condominium_id=transaction.condominium_id,
            old_values={"status": old_status},
            new_values={"status": transaction.status},
        )
        self.bridge.sync_maintenance_payment_status(transaction.id)

        logger.info(f"Transaction approved: {transaction.id} by user {acting_user_id}")
        return transaction

    def confirm_cash_payment(self, transaction_id: int, acting_user_id: int) -> FinancialTransaction:
        """Confirm cash received for a cash or mixed transaction"""
        transaction = self.get_by_id(transaction_id)
        if transaction.payment_method not in CASH_METHODS:
            raise InvalidStateError(
                "Only cash or mixed payments need cash confirmation",
                "FinancialTransaction", transaction.id
            )
        if transaction.cash_confirmed:
            raise InvalidStateError("Cash payment already confirmed", "FinancialTransaction", transaction.id)
        if transaction.status == TransactionStatus.CANCELLED.value:
            raise InvalidStateError("Transaction is cancelled", "FinancialTransaction", transaction.id)

        now = to_naive(self.clock.now())
        transaction.cash_confirmed = True
        transaction.cash_confirmed_by = acting_user_id
        transaction.cash_confirmed_at = now
        transaction.status = TransactionStatus.PAID.value
        transaction.paid_date = now
        self.db.flush()

        self.audit.log(
            AuditAction.CASH_CONFIRMED,
            "FinancialTransaction",
            resource_id=transaction.id,
            user_id=acting_user_id,
            condominium_id=transaction.condominium_id,
            new_values={"cash_amount": transaction.cash_amount, "status": transaction.status},
        )
        self.bridge.sync_maintenance_payment_status(transaction.id)

        logger.info(f"Cash payment confirmed: transaction {transaction.id} by user {acting_user_id}")
        return transaction

    def cancel_transaction(self, transaction_id: int, acting_user_id: int) -> FinancialTransaction:
        transaction = self.get_by_id(transaction_id)
        if transaction.status not in (TransactionStatus.PENDING.value, TransactionStatus.OVERDUE.value):
            raise InvalidStateError(
                f"Cannot cancel a transaction with status '{transaction.status}'",
                "FinancialTransaction", transaction.id
            )

        old_status = transaction.status
        transaction.status = TransactionStatus.CANCELLED.value
        self.db.flush()

        self.audit.log(
            AuditAction.TRANSACTION_CANCELLED,
            "FinancialTransaction",
            resource_id=transaction.id,
            user_id=acting_user_id,
            condominium_id=transaction.condominium_id,
            old_values={"status": old_status},
            new_values={"status": transaction.status},
        )
        self.bridge.sync_maintenance_payment_status(transaction.id)

        logger.info(f"Transaction cancelled: {transaction.id} by user {acting_user_id}")
        return transaction

    def fix_inconsistent_transactions(self) -> Dict:
        """Approved transactions left pending are settled as paid"""
        ids = [row[0] for row in self.db.query(FinancialTransaction.id).filter(
            FinancialTransaction.approved_by.isnot(None),
            FinancialTransaction.status == TransactionStatus.PENDING.value
        ).all()]

        fixed: List[int] = []
        errors: List[BatchItemError] = []
        for transaction_id in ids:
            try:
                with unit_of_work(self.db):
                    transaction = self.get_by_id(transaction_id)
                    transaction.status = TransactionStatus.PAID.value
                    transaction.paid_date = transaction.approved_at or to_naive(self.clock.now())
                    self.db.flush()
                    self.audit.log(
                        AuditAction.INCONSISTENCY_FIXED,
                        "FinancialTransaction",
                        resource_id=transaction.id,
                        condominium_id=transaction.condominium_id,
                        old_values={"status": TransactionStatus.PENDING.value},
                        new_values={"status": transaction.status},
                    )
                    self.bridge.sync_maintenance_payment_status(transaction.id)
                fixed.append(transaction_id)
            except Exception as e:
                logger.error(f"Failed to fix transaction {transaction_id}: {e}", exc_info=True)
                errors.append(BatchItemError(transaction_id, str(e)))

        logger.info(f"Inconsistent transactions fixed: {len(fixed)}/{len(ids)}")
        return {"fixed": len(fixed), "total": len(ids),
                "transaction_ids": fixed, "errors": [e.to_dict() for e in errors]}
