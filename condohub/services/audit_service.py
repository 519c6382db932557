"""
Audit Logging Service
Append-only trail of every mutating operation, plus retention cleanup
"""
from sqlalchemy.orm import Session
from sqlalchemy import desc
from typing import Optional, List, Dict
from datetime import datetime, date, timedelta
import json
import logging

from condohub.core.clock import to_naive
from condohub.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Constants for audit actions"""
    # Maintenance / financial integration
    MAINTENANCE_EXPENSE_CREATED = "MAINTENANCE_EXPENSE_CREATED"
    MAINTENANCE_PAYMENT_SYNCED = "MAINTENANCE_PAYMENT_SYNCED"
    MAINTENANCE_REPROCESSED = "MAINTENANCE_REPROCESSED"

    # Maintenance workflow
    MAINTENANCE_APPROVED = "MAINTENANCE_APPROVED"
    MAINTENANCE_REJECTED = "MAINTENANCE_REJECTED"
    MAINTENANCE_COMPLETED = "MAINTENANCE_COMPLETED"
    MAINTENANCE_RATED = "MAINTENANCE_RATED"

    # Scheduled jobs
    LATE_FEE_APPLIED = "LATE_FEE_APPLIED"
    DUE_DATE_REMINDER = "DUE_DATE_REMINDER"
    AUTO_BILLING_CREATED = "AUTO_BILLING_CREATED"
    INCONSISTENCY_FIXED = "INCONSISTENCY_FIXED"

    # Financial operations
    TRANSACTION_CREATED = "TRANSACTION_CREATED"
    TRANSACTION_APPROVED = "TRANSACTION_APPROVED"
    TRANSACTION_CANCELLED = "TRANSACTION_CANCELLED"
    CASH_CONFIRMED = "CASH_CONFIRMED"
    UNIT_PAYMENT_PAID = "UNIT_PAYMENT_PAID"
    UNIT_PAYMENTS_GENERATED = "UNIT_PAYMENTS_GENERATED"


# Actions written by integrations and jobs rather than by a person;
# only these are pruned by the retention cleanup.
AUTOMATED_ACTIONS = (
    AuditAction.MAINTENANCE_EXPENSE_CREATED,
    AuditAction.MAINTENANCE_PAYMENT_SYNCED,
    AuditAction.LATE_FEE_APPLIED,
    AuditAction.DUE_DATE_REMINDER,
    AuditAction.AUTO_BILLING_CREATED,
    AuditAction.INCONSISTENCY_FIXED,
)


class AuditService:
    """Service for recording and retrieving audit logs"""

    def __init__(self, db: Session):
        self.db = db

    def log(
        self,
        action: str,
        resource: str,
        resource_id: Optional[int] = None,
        user_id: Optional[int] = None,
        condominium_id: Optional[int] = None,
        old_values: Optional[Dict] = None,
        new_values: Optional[Dict] = None,
        success: bool = True,
        error_message: Optional[str] = None
    ) -> Optional[AuditLog]:
        """
        Create an audit log entry inside the caller's unit of work.

        Args:
            action: The action being performed (use AuditAction constants)
            resource: Type of resource affected (e.g. 'FinancialTransaction')
            resource_id: ID of the affected resource
            user_id: ID of the acting user, None for scheduled jobs
            condominium_id: Condominium context
            old_values: Values before the change
            new_values: Values after the change
            success: Whether the action succeeded
            error_message: Error message when success is False

        Returns:
            The created AuditLog, or None when it could not be written
        """
        try:
            audit_log = AuditLog(
                action=action,
                resource=resource,
                resource_id=resource_id,
                user_id=user_id,
                condominium_id=condominium_id,
                old_values=json.dumps(old_values, default=str) if old_values else None,
                new_values=json.dumps(new_values, default=str) if new_values else None,
                success=success,
                error_message=error_message
            )
            with self.db.begin_nested():
                self.db.add(audit_log)

            logger.debug(
                f"Audit: {action} {resource}(id={resource_id}) by user={user_id} "
                f"condominium={condominium_id} success={success}"
            )
            return audit_log

        except Exception as e:
            # Audit logging must not break the main operation
            logger.error(f"Failed to create audit log: {e}")
            return None

    def get_by_resource(self, resource: str, resource_id: int, limit: int = 50) -> List[AuditLog]:
        """Get audit history for a specific resource"""
        return self.db.query(AuditLog).filter(
            AuditLog.resource == resource,
            AuditLog.resource_id == resource_id
        ).order_by(desc(AuditLog.created_at), desc(AuditLog.id)).limit(limit).all()

    def get_by_condominium(
        self,
        condominium_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        action: Optional[str] = None,
        limit: int = 100,
        offset: int = 0
    ) -> List[AuditLog]:
        """Get audit logs for a condominium with optional filters"""
        query = self.db.query(AuditLog).filter(AuditLog.condominium_id == condominium_id)

        if start_date:
            query = query.filter(AuditLog.created_at >= start_date)
        if end_date:
            query = query.filter(AuditLog.created_at < end_date)
        if action:
            query = query.filter(AuditLog.action == action)

        return query.order_by(desc(AuditLog.created_at)).offset(offset).limit(limit).all()

    def cleanup_old_logs(self, retention_days: int, now: datetime) -> int:
        """
        Delete automated audit rows older than the retention window.

        Entries written by people are kept regardless of age.
        """
        cutoff = to_naive(now) - timedelta(days=retention_days)
        deleted = self.db.query(AuditLog).filter(
            AuditLog.created_at < cutoff,
            AuditLog.action.in_(AUTOMATED_ACTIONS)
        ).delete(synchronize_session=False)

        logger.info(f"Audit cleanup removed {deleted} entries older than {cutoff:%Y-%m-%d}")
        return deleted
