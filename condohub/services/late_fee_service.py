"""
Late Fee Service - late-fee arithmetic, overdue sweep and due-date reminders
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, List, Dict, Union
from sqlalchemy.orm import Session
import logging

from condohub.core.clock import Clock, default_clock
from condohub.core.config import settings
from condohub.core.database import unit_of_work
from condohub.models import (
    FinancialTransaction, MaintenanceRequest, TransactionStatus,
    NotificationPriority, to_money
)
from condohub.services.audit_service import AuditService, AuditAction
from condohub.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]

ONE_DAY = timedelta(days=1)
HUNDRED = Decimal("100")


def _as_datetime(value: DateLike) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime(value.year, value.month, value.day)


def days_overdue(due_date: DateLike, as_of: DateLike) -> int:
    """Whole days elapsed since the due date (floor), negative if not yet due"""
    if not isinstance(due_date, datetime) and not isinstance(as_of, datetime):
        return (as_of - due_date).days
    return (_as_datetime(as_of) - _as_datetime(due_date)) // ONE_DAY


def compute_late_fee(
    amount,
    due_date: DateLike,
    as_of: DateLike,
    base_percent=None,
    daily_percent=None,
    cap_percent=None,
) -> Decimal:
    """
    Late fee accrued by `amount` between `due_date` and `as_of`.

    fee = amount * (base + days_late * daily) / 100, zero when not late.
    Uncapped unless `cap_percent` is given.
    """
    days_late = days_overdue(due_date, as_of)
    if days_late <= 0:
        return Decimal("0.00")

    base = Decimal(str(settings.LATE_FEE_BASE_PERCENT if base_percent is None else base_percent))
    daily = Decimal(str(settings.LATE_FEE_DAILY_PERCENT if daily_percent is None else daily_percent))

    fee_percentage = base + days_late * daily
    if cap_percent is not None:
        fee_percentage = min(fee_percentage, Decimal(str(cap_percent)))

    fee = Decimal(str(amount)) * fee_percentage / HUNDRED
    return fee.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@dataclass
class BatchItemError:
    """One unit of work that failed inside a batch"""
    resource_id: int
    error: str

    def to_dict(self) -> Dict:
        return {"id": self.resource_id, "error": self.error}


@dataclass
class LateFeeRunResult:
    applied: List[Dict] = field(default_factory=list)
    errors: List[BatchItemError] = field(default_factory=list)
    total: int = 0
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.applied)

    def to_dict(self) -> Dict:
        data = {
            "processed": self.processed,
            "total": self.total,
            "errors": [e.to_dict() for e in self.errors],
            "transactions": self.applied,
        }
        if self.cancelled:
            data["cancelled"] = True
        return data


@dataclass
class UpcomingDuesResult:
    notified: List[Dict] = field(default_factory=list)
    errors: List[BatchItemError] = field(default_factory=list)
    days_ahead: int = 3
    cancelled: bool = False

    def to_dict(self) -> Dict:
        data = {
            "notified": len(self.notified),
            "days_ahead": self.days_ahead,
            "errors": [e.to_dict() for e in self.errors],
            "transactions": self.notified,
        }
        if self.cancelled:
            data["cancelled"] = True
        return data


class LateFeeService:
    """Applies late fees to past-due transactions and sends due-date reminders"""

    def __init__(self, db: Session, clock: Optional[Clock] = None,
                 notifications: Optional[NotificationService] = None):
        self.db = db
        self.clock = clock or default_clock()
        self.notifications = notifications or NotificationService(db)
        self.audit = AuditService(db)

    def _pending_overdue_query(self, condominium_id: Optional[int] = None):
        query = self.db.query(FinancialTransaction).filter(
            FinancialTransaction.status == TransactionStatus.PENDING.value,
            FinancialTransaction.due_date < self.clock.today()
        )
        if condominium_id:
            query = query.filter(FinancialTransaction.condominium_id == condominium_id)
        return query

    def count_pending_overdue(self, condominium_id: Optional[int] = None) -> int:
        return self._pending_overdue_query(condominium_id).count()

    def condominiums_with_pending_overdue(self) -> List[int]:
        rows = self.db.query(FinancialTransaction.condominium_id).filter(
            FinancialTransaction.status == TransactionStatus.PENDING.value,
            FinancialTransaction.due_date < self.clock.today()
        ).distinct().order_by(FinancialTransaction.condominium_id).all()
        return [r[0] for r in rows]

    def check_and_apply_late_fees(self, condominium_id: Optional[int] = None,
                                  token=None) -> LateFeeRunResult:
        """
        Overdue sweep: mark past-due pending transactions overdue with their fee.

        Each transaction is committed on its own; a failure is recorded and
        the sweep moves on. A cancelled `token` stops it before the next one.
        """
        from condohub.services.maintenance_financial_service import MaintenanceFinancialService

        bridge = MaintenanceFinancialService(self.db, self.clock, self.notifications)
        transaction_ids = [t.id for t in self._pending_overdue_query(condominium_id).with_entities(FinancialTransaction.id)]
        result = LateFeeRunResult(total=len(transaction_ids))
        now = self.clock.now()

        for transaction_id in transaction_ids:
            if token is not None and token.cancelled:
                logger.warning(f"Overdue sweep cancelled after {result.processed}/{result.total} transactions")
                result.cancelled = True
                break
            try:
                with unit_of_work(self.db):
                    summary = self._apply_late_fee(transaction_id, now, bridge)
                if summary:
                    result.applied.append(summary)
            except Exception as e:
                logger.error(f"Failed to apply late fee to transaction {transaction_id}: {e}", exc_info=True)
                result.errors.append(BatchItemError(transaction_id, str(e)))

        logger.info(
            f"Overdue sweep finished (condominium={condominium_id or 'all'}): "
            f"{result.processed}/{result.total} updated, {len(result.errors)} errors"
        )
        return result

    def _apply_late_fee(self, transaction_id: int, now: datetime, bridge) -> Optional[Dict]:
        transaction = self.db.get(FinancialTransaction, transaction_id)
        # Another writer may have settled it since the id list was read
        if transaction is None or transaction.status != TransactionStatus.PENDING.value:
            return None

        old_values = {
            "status": transaction.status,
            "late_fee": transaction.late_fee,
            "total_amount": transaction.total_amount,
        }
        late_fee = compute_late_fee(
            transaction.amount,
            transaction.due_date,
            now,
            cap_percent=settings.LATE_FEE_CAP_PERCENT,
        )

        if transaction.original_due_date is None:
            transaction.original_due_date = transaction.due_date
        transaction.status = TransactionStatus.OVERDUE.value
        transaction.late_fee = late_fee
        transaction.total_amount = transaction.compute_total()
        self.db.flush()

        if transaction.maintenance_request_id:
            bridge.sync_maintenance_payment_status(transaction.id)

        days_late = days_overdue(transaction.due_date, now)
        self.notifications.create_notification(
            transaction.user_id,
            title="Payment overdue",
            message=(
                f"'{transaction.description}' is {days_late} day(s) overdue. "
                f"Late fee R$ {late_fee:.2f}, new total R$ {transaction.total_amount:.2f}."
            ),
            type="financial_overdue",
            priority=NotificationPriority.HIGH.value,
            condominium_id=transaction.condominium_id,
            data={"transaction_id": transaction.id, "late_fee": late_fee, "days_overdue": days_late},
        )
        self.audit.log(
            AuditAction.LATE_FEE_APPLIED,
            "FinancialTransaction",
            resource_id=transaction.id,
            condominium_id=transaction.condominium_id,
            old_values=old_values,
            new_values={
                "status": transaction.status,
                "late_fee": transaction.late_fee,
                "total_amount": transaction.total_amount,
            },
        )

        logger.info(f"Late fee applied: transaction={transaction.id} days={days_late} fee={late_fee}")
        return {
            "id": transaction.id,
            "condominium_id": transaction.condominium_id,
            "days_overdue": days_late,
            "late_fee": float(late_fee),
            "total_amount": float(transaction.total_amount),
        }

    def check_upcoming_due_dates(self, condominium_id: Optional[int] = None,
                                 days_ahead: Optional[int] = None, token=None) -> UpcomingDuesResult:
        """Remind users of pending transactions due within the next `days_ahead` days"""
        if days_ahead is None:
            days_ahead = settings.UPCOMING_DUE_DAYS_AHEAD
        today = self.clock.today()
        limit_date = today + timedelta(days=days_ahead)

        query = self.db.query(FinancialTransaction).filter(
            FinancialTransaction.status == TransactionStatus.PENDING.value,
            FinancialTransaction.due_date >= today,
            FinancialTransaction.due_date <= limit_date
        )
        if condominium_id:
            query = query.filter(FinancialTransaction.condominium_id == condominium_id)

        result = UpcomingDuesResult(days_ahead=days_ahead)
        for transaction in query.order_by(FinancialTransaction.due_date).all():
            if token is not None and token.cancelled:
                logger.warning(f"Upcoming dues cancelled after {len(result.notified)} reminders")
                result.cancelled = True
                break
            try:
                days_until_due = (transaction.due_date - today).days
                message = (
                    f"'{transaction.description}' of R$ {to_money(transaction.total_amount):.2f} "
                    f"is due in {days_until_due} day(s) ({transaction.due_date:%d/%m/%Y})."
                )
                maintenance_title = None
                if transaction.maintenance_request_id:
                    request = self.db.get(MaintenanceRequest, transaction.maintenance_request_id)
                    if request:
                        maintenance_title = request.title
                        message += f" Maintenance: {request.title}."

                with unit_of_work(self.db):
                    self.notifications.create_notification(
                        transaction.user_id,
                        title="Payment due soon",
                        message=message,
                        type="financial_due_soon",
                        priority=NotificationPriority.MEDIUM.value,
                        condominium_id=transaction.condominium_id,
                        data={"transaction_id": transaction.id, "days_until_due": days_until_due},
                    )
                    self.audit.log(
                        AuditAction.DUE_DATE_REMINDER,
                        "FinancialTransaction",
                        resource_id=transaction.id,
                        condominium_id=transaction.condominium_id,
                        new_values={"days_until_due": days_until_due},
                    )
                result.notified.append({
                    "id": transaction.id,
                    "days_until_due": days_until_due,
                    "maintenance_title": maintenance_title,
                })
            except Exception as e:
                logger.error(f"Failed to send due-date reminder for transaction {transaction.id}: {e}", exc_info=True)
                result.errors.append(BatchItemError(transaction.id, str(e)))

        logger.info(f"Upcoming dues: {len(result.notified)} reminders sent (next {days_ahead} days)")
        return result
