# Services Package
from condohub.services.audit_service import AuditService, AuditAction
from condohub.services.notification_service import NotificationService
from condohub.services.late_fee_service import LateFeeService, compute_late_fee, days_overdue
from condohub.services.maintenance_financial_service import MaintenanceFinancialService
from condohub.services.financial_service import FinancialService
from condohub.services.unit_payment_service import UnitPaymentService
from condohub.services.auto_billing_service import AutoBillingService
from condohub.services.dashboard_service import DashboardService
from condohub.services.scheduler import Scheduler

__all__ = [
    'AuditService',
    'AuditAction',
    'NotificationService',
    'LateFeeService',
    'compute_late_fee',
    'days_overdue',
    'MaintenanceFinancialService',
    'FinancialService',
    'UnitPaymentService',
    'AutoBillingService',
    'DashboardService',
    'Scheduler',
]
