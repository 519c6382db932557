"""
Maintenance / Financial Integration API Routes
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date

from condohub.core.clock import Clock, get_clock
from condohub.core.database import get_db, unit_of_work
from condohub.core.security import RoleChecker, STAFF_ROLES, MANAGEMENT_ROLES
from condohub.models import User
from condohub.schemas import ReprocessRequest, TransactionResponse
from condohub.services.dashboard_service import DashboardService
from condohub.services.scheduler import Scheduler
from condohub.services.maintenance_financial_service import MaintenanceFinancialService
from condohub.api.v1.jobs import get_scheduler

router = APIRouter(prefix="/integration", tags=["Integration"])


@router.post(
    "/maintenance/{request_id}/expense",
    response_model=TransactionResponse,
    status_code=status.HTTP_201_CREATED
)
async def create_maintenance_expense(
    request_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    """Create the expense paying for a maintenance request"""
    service = MaintenanceFinancialService(db, clock)
    with unit_of_work(db):
        transaction = service.create_maintenance_expense(request_id, current_user.id)
    db.refresh(transaction)
    return transaction


@router.post("/transactions/{transaction_id}/sync")
async def sync_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    """Propagate a transaction's status to its maintenance request"""
    service = MaintenanceFinancialService(db, clock)
    with unit_of_work(db):
        return service.sync_maintenance_payment_status(transaction_id)


@router.post("/maintenance/{request_id}/reprocess")
async def reprocess_maintenance(
    request_id: int,
    body: ReprocessRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(MANAGEMENT_ROLES))
):
    """Repair a maintenance request's financial link"""
    service = MaintenanceFinancialService(db, clock)
    with unit_of_work(db):
        return service.reprocess(request_id, body.action, current_user.id)


@router.post("/late-fees/check")
async def check_late_fees(
    condominium_id: Optional[int] = None,
    scheduler: Scheduler = Depends(get_scheduler),
    current_user: User = Depends(RoleChecker(MANAGEMENT_ROLES))
):
    """Run the overdue sweep now, optionally for one condominium; skipped while another sweep runs"""
    return await scheduler.run_overdue_check_now(condominium_id)


@router.post("/upcoming-dues/check")
async def check_upcoming_dues(
    condominium_id: Optional[int] = None,
    days_ahead: Optional[int] = None,
    scheduler: Scheduler = Depends(get_scheduler),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    """Send reminders for pending transactions due soon"""
    return await scheduler.run_upcoming_dues_now(days_ahead=days_ahead, condominium_id=condominium_id)


@router.get("/dashboard/{condominium_id}")
async def get_dashboard(
    condominium_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    """Unified financial and maintenance metrics"""
    return DashboardService(db, clock).get_unified_dashboard_metrics(condominium_id, start_date, end_date)
