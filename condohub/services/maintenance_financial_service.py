"""
Maintenance Financial Service - keeps maintenance requests and their
financial transactions consistent

Nothing here commits: callers wrap each operation in `unit_of_work` so the
transaction row and the request row change together.
"""
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Dict, Union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import logging

from condohub.core.clock import Clock, default_clock, to_naive
from condohub.core.config import settings
from condohub.core.exceptions import (
    NotFoundError, ValidationError, DuplicateLinkError, InvalidStateError
)
from condohub.models import (
    FinancialTransaction, MaintenanceRequest, TransactionType, TransactionCategory,
    TransactionStatus, RecurrenceType, MaintenanceStatus, MaintenancePaymentStatus,
    NotificationPriority, to_money
)
from condohub.services.audit_service import AuditService, AuditAction
from condohub.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


# Transaction status -> maintenance payment status
PAYMENT_STATUS_BY_TRANSACTION_STATUS = {
    TransactionStatus.PAID.value: MaintenancePaymentStatus.PAID.value,
    TransactionStatus.OVERDUE.value: MaintenancePaymentStatus.OVERDUE.value,
    TransactionStatus.CANCELLED.value: MaintenancePaymentStatus.NOT_REQUIRED.value,
}

REPROCESS_ACTIONS = ("sync", "recreate", "unlink")


class MaintenanceFinancialService:
    def __init__(self, db: Session, clock: Optional[Clock] = None,
                 notifications: Optional[NotificationService] = None):
        self.db = db
        self.clock = clock or default_clock()
        self.notifications = notifications or NotificationService(db)
        self.audit = AuditService(db)

    # ---------- lookups ----------

    def get_request(self, request_id: int) -> MaintenanceRequest:
        request = self.db.get(MaintenanceRequest, request_id)
        if not request:
            raise NotFoundError("MaintenanceRequest", request_id)
        return request

    def get_transaction(self, transaction_id: int) -> FinancialTransaction:
        transaction = self.db.get(FinancialTransaction, transaction_id)
        if not transaction:
            raise NotFoundError("FinancialTransaction", transaction_id)
        return transaction

    def find_linked_transaction(self, request: MaintenanceRequest) -> Optional[FinancialTransaction]:
        """Transaction referencing the request, whichever side holds the link"""
        if request.financial_transaction_id:
            transaction = self.db.get(FinancialTransaction, request.financial_transaction_id)
            if transaction:
                return transaction
        return self._expense_for_request(request.id)

    def _expense_for_request(self, request_id: int) -> Optional[FinancialTransaction]:
        return self.db.query(FinancialTransaction).filter(
            FinancialTransaction.maintenance_request_id == request_id
        ).first()

    # ---------- expense creation ----------

    def create_maintenance_expense(
        self,
        request: Union[MaintenanceRequest, int],
        acting_user_id: Optional[int] = None
    ) -> FinancialTransaction:
        """
        Create the pending expense that pays for an approved maintenance request.

        Raises:
            DuplicateLinkError: the request already has a transaction
            ValidationError: the request has no positive estimated cost
        """
        if isinstance(request, int):
            request = self.get_request(request)

        existing = self._expense_for_request(request.id)
        if existing:
            raise DuplicateLinkError(request.id, existing.id)

        amount = to_money(request.estimated_cost)
        if amount < Decimal("0.01"):
            raise ValidationError(
                f"Maintenance request {request.id} has no estimated cost to bill",
                "MaintenanceRequest", request.id
            )

        due_date = self.clock.today() + timedelta(days=settings.MAINTENANCE_PAYMENT_TERM_DAYS)

        transaction = FinancialTransaction(
            condominium_id=request.condominium_id,
            unit_id=request.unit_id,
            user_id=request.user_id,
            type=TransactionType.EXPENSE.value,
            category=TransactionCategory.MAINTENANCE.value,
            title=request.title,
            description=f"Maintenance: {request.title}",
            amount=amount,
            due_date=due_date,
            status=TransactionStatus.PENDING.value,
            auto_generated=True,
            is_recurring=False,
            recurrence_type=RecurrenceType.ONE_TIME.value,
            maintenance_request_id=request.id,
            created_by=acting_user_id,
        )
        # The unique index settles a race with a concurrent creator
        try:
            with self.db.begin_nested():
                self.db.add(transaction)
        except IntegrityError:
            winner = self._expense_for_request(request.id)
            logger.warning(f"Concurrent expense creation for maintenance request {request.id}")
            raise DuplicateLinkError(request.id, winner.id if winner else None) from None

        request.financial_transaction_id = transaction.id
        request.payment_status = MaintenancePaymentStatus.PENDING.value
        self.db.flush()

        self.audit.log(
            AuditAction.MAINTENANCE_EXPENSE_CREATED,
            "FinancialTransaction",
            resource_id=transaction.id,
            user_id=acting_user_id,
            condominium_id=request.condominium_id,
            new_values={
                "maintenance_request_id": request.id,
                "amount": amount,
                "due_date": due_date,
            },
        )
        self.notifications.create_notification(
            request.user_id,
            title="Maintenance expense created",
            message=(
                f"An expense of R$ {amount:.2f} was created for '{request.title}', "
                f"due on {due_date:%d/%m/%Y}."
            ),
            type="maintenance_financial",
            priority=NotificationPriority.MEDIUM.value,
            condominium_id=request.condominium_id,
            data={"transaction_id": transaction.id, "maintenance_request_id": request.id,
                  "amount": amount, "due_date": due_date},
        )

        logger.info(
            f"Maintenance expense created: transaction={transaction.id} "
            f"request={request.id} amount={amount} due={due_date}"
        )
        return transaction

    # ---------- status synchronization ----------

    def sync_maintenance_payment_status(self, transaction_id: int) -> Dict:
        """
        Mirror a transaction's status onto its maintenance request.

        paid -> paid (actual_cost = total), overdue -> overdue,
        cancelled -> not_required (link cleared), anything else -> pending.
        """
        transaction = self.get_transaction(transaction_id)
        if not transaction.maintenance_request_id:
            return {"status": "no_maintenance_linked", "transaction_id": transaction.id}

        request = self.db.get(MaintenanceRequest, transaction.maintenance_request_id)
        if not request:
            return {"status": "no_maintenance_linked", "transaction_id": transaction.id}

        old_values = {"payment_status": request.payment_status, "actual_cost": request.actual_cost}
        payment_status = PAYMENT_STATUS_BY_TRANSACTION_STATUS.get(
            transaction.status, MaintenancePaymentStatus.PENDING.value
        )

        request.payment_status = payment_status
        if transaction.status == TransactionStatus.PAID.value:
            request.actual_cost = to_money(transaction.total_amount)
        elif transaction.status == TransactionStatus.CANCELLED.value:
            request.financial_transaction_id = None
        self.db.flush()

        self.audit.log(
            AuditAction.MAINTENANCE_PAYMENT_SYNCED,
            "MaintenanceRequest",
            resource_id=request.id,
            condominium_id=request.condominium_id,
            old_values=old_values,
            new_values={"payment_status": payment_status, "actual_cost": request.actual_cost,
                        "transaction_status": transaction.status},
        )

        if transaction.status == TransactionStatus.PAID.value:
            self.notifications.create_notification(
                request.user_id,
                title="Maintenance payment confirmed",
                message=(
                    f"Payment of R$ {to_money(transaction.total_amount):.2f} for "
                    f"'{request.title}' was confirmed."
                ),
                type="maintenance_financial",
                priority=NotificationPriority.LOW.value,
                condominium_id=request.condominium_id,
                data={"transaction_id": transaction.id, "maintenance_request_id": request.id},
            )

        logger.info(
            f"Maintenance payment synced: request={request.id} "
            f"transaction={transaction.id} {transaction.status} -> {payment_status}"
        )
        return {
            "status": "synced",
            "transaction_id": transaction.id,
            "maintenance_request_id": request.id,
            "transaction_status": transaction.status,
            "payment_status": payment_status,
        }

    # ---------- operator repair ----------

    def reprocess(self, request_id: int, action: str, acting_user_id: Optional[int] = None) -> Dict:
        """Repair a request's financial link: sync, recreate or unlink"""
        if action not in REPROCESS_ACTIONS:
            raise ValidationError(
                f"Invalid reprocess action '{action}', expected one of {', '.join(REPROCESS_ACTIONS)}"
            )

        request = self.get_request(request_id)
        result: Dict = {"action": action, "maintenance_request_id": request.id}

        if action == "sync":
            transaction = self.find_linked_transaction(request)
            if transaction is None:
                result["status"] = "no_transaction_linked"
            else:
                result.update(self.sync_maintenance_payment_status(transaction.id))
                result["action"] = action

        elif action == "recreate":
            deleted = self._destroy_linked_transactions(request)
            request.financial_transaction_id = None
            request.payment_status = MaintenancePaymentStatus.NOT_REQUIRED.value
            self.db.flush()

            result["deleted_transaction_ids"] = deleted
            if to_money(request.estimated_cost) > 0:
                transaction = self.create_maintenance_expense(request, acting_user_id)
                result["status"] = "recreated"
                result["transaction_id"] = transaction.id
            else:
                result["status"] = "removed"

        else:  # unlink
            # The transaction keeps its maintenance_request_id as provenance
            result["previous_transaction_id"] = request.financial_transaction_id
            request.financial_transaction_id = None
            request.payment_status = MaintenancePaymentStatus.NOT_REQUIRED.value
            self.db.flush()
            result["status"] = "unlinked"

        result["payment_status"] = request.payment_status
        self.audit.log(
            AuditAction.MAINTENANCE_REPROCESSED,
            "MaintenanceRequest",
            resource_id=request.id,
            user_id=acting_user_id,
            condominium_id=request.condominium_id,
            new_values=result,
        )
        logger.info(f"Maintenance request {request.id} reprocessed: {action} -> {result.get('status')}")
        return result

    def _destroy_linked_transactions(self, request: MaintenanceRequest) -> list:
        transactions = self.db.query(FinancialTransaction).filter(
            FinancialTransaction.maintenance_request_id == request.id
        ).all()
        if request.financial_transaction_id and all(
            t.id != request.financial_transaction_id for t in transactions
        ):
            linked = self.db.get(FinancialTransaction, request.financial_transaction_id)
            if linked:
                transactions.append(linked)

        request.financial_transaction_id = None
        self.db.flush()

        deleted = []
        for transaction in transactions:
            deleted.append(transaction.id)
            self.db.delete(transaction)
        self.db.flush()
        return deleted

    # ---------- maintenance workflow ----------

    def approve_request(
        self,
        request_id: int,
        acting_user_id: int,
        estimated_cost=None,
        assigned_to: Optional[str] = None,
        assigned_contact: Optional[str] = None,
        scheduled_date=None,
        admin_notes: Optional[str] = None
    ) -> Dict:
        """Approve a pending request; bill it when it carries a positive estimate"""
        request = self.get_request(request_id)
        if request.status != MaintenanceStatus.PENDING.value:
            raise InvalidStateError(
                "Only pending maintenance requests can be approved",
                "MaintenanceRequest", request.id
            )
        if estimated_cost is not None and Decimal(str(estimated_cost)) < 0:
            raise ValidationError("estimated_cost cannot be negative", "MaintenanceRequest", request.id)

        request.status = MaintenanceStatus.IN_PROGRESS.value
        request.approved_by = acting_user_id
        if estimated_cost is not None:
            request.estimated_cost = to_money(estimated_cost)
        if assigned_to is not None:
            request.assigned_to = assigned_to
        if assigned_contact is not None:
            request.assigned_contact = assigned_contact
        if scheduled_date is not None:
            request.scheduled_date = scheduled_date
        if admin_notes:
            request.admin_notes = f"{request.admin_notes or ''}\n[APPROVAL] {admin_notes}".strip()
        self.db.flush()

        self.audit.log(
            AuditAction.MAINTENANCE_APPROVED,
            "MaintenanceRequest",
            resource_id=request.id,
            user_id=acting_user_id,
            condominium_id=request.condominium_id,
            new_values={"status": request.status, "estimated_cost": request.estimated_cost},
        )
        self.notifications.create_notification(
            request.user_id,
            title="Maintenance request approved",
            message=f"Your request '{request.title}' was approved.",
            type="maintenance",
            condominium_id=request.condominium_id,
            data={"maintenance_request_id": request.id},
        )

        transaction = None
        if to_money(request.estimated_cost) > 0:
            transaction = self.create_maintenance_expense(request, acting_user_id)

        logger.info(f"Maintenance request approved: {request.id} by user {acting_user_id}")
        return {"request": request, "transaction": transaction}

    def reject_request(self, request_id: int, acting_user_id: int,
                       admin_notes: Optional[str] = None) -> MaintenanceRequest:
        request = self.get_request(request_id)
        if request.status != MaintenanceStatus.PENDING.value:
            raise InvalidStateError(
                "Only pending maintenance requests can be rejected",
                "MaintenanceRequest", request.id
            )

        request.status = MaintenanceStatus.REJECTED.value
        if admin_notes:
            request.admin_notes = f"{request.admin_notes or ''}\n[REJECTION] {admin_notes}".strip()
        self.db.flush()

        self.audit.log(
            AuditAction.MAINTENANCE_REJECTED,
            "MaintenanceRequest",
            resource_id=request.id,
            user_id=acting_user_id,
            condominium_id=request.condominium_id,
        )
        self.notifications.create_notification(
            request.user_id,
            title="Maintenance request rejected",
            message=f"Your request '{request.title}' was rejected.",
            type="maintenance",
            condominium_id=request.condominium_id,
            data={"maintenance_request_id": request.id},
        )
        logger.info(f"Maintenance request rejected: {request.id} by user {acting_user_id}")
        return request

    def complete_request(self, request_id: int, acting_user_id: Optional[int] = None,
                         actual_cost=None) -> MaintenanceRequest:
        request = self.get_request(request_id)
        if request.status != MaintenanceStatus.IN_PROGRESS.value:
            raise InvalidStateError(
                "Only requests in progress can be completed",
                "MaintenanceRequest", request.id
            )

        request.status = MaintenanceStatus.COMPLETED.value
        if not request.completed_date:
            request.completed_date = to_naive(self.clock.now())
        if actual_cost is not None:
            request.actual_cost = to_money(actual_cost)
        self.db.flush()

        self.audit.log(
            AuditAction.MAINTENANCE_COMPLETED,
            "MaintenanceRequest",
            resource_id=request.id,
            user_id=acting_user_id,
            condominium_id=request.condominium_id,
        )
        return request

    def rate_request(self, request_id: int, acting_user_id: int, rating: int,
                     feedback: Optional[str] = None) -> MaintenanceRequest:
        """Only the resident who opened a completed request may rate it"""
        request = self.get_request(request_id)
        if request.user_id != acting_user_id:
            raise InvalidStateError(
                "Only the creator of the request can rate it",
                "MaintenanceRequest", request.id
            )
        if request.status != MaintenanceStatus.COMPLETED.value:
            raise InvalidStateError(
                "Only completed requests can be rated",
                "MaintenanceRequest", request.id
            )
        if rating is None or not 1 <= int(rating) <= 5:
            raise ValidationError("Rating must be between 1 and 5", "MaintenanceRequest", request.id)

        request.resident_rating = int(rating)
        request.resident_feedback = feedback
        self.db.flush()

        self.audit.log(
            AuditAction.MAINTENANCE_RATED,
            "MaintenanceRequest",
            resource_id=request.id,
            user_id=acting_user_id,
            condominium_id=request.condominium_id,
            new_values={"resident_rating": request.resident_rating},
        )
        logger.info(f"Maintenance request rated: {request.id} by user {acting_user_id} - {rating}")
        return request
