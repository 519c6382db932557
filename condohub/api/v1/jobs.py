"""
Scheduled Jobs API Routes - status and operator-initiated runs
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from typing import Optional

from condohub.core.security import RoleChecker
from condohub.models import UserRole
from condohub.services.scheduler import Scheduler

router = APIRouter(
    prefix="/jobs",
    tags=["Jobs"],
    dependencies=[Depends(RoleChecker([UserRole.ADMIN.value]))]
)


def get_scheduler(request: Request) -> Scheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not available")
    return scheduler


@router.get("/status")
async def jobs_status(scheduler: Scheduler = Depends(get_scheduler)):
    return scheduler.get_jobs_status()


@router.post("/overdue/run")
async def run_overdue(condominium_id: Optional[int] = None, scheduler: Scheduler = Depends(get_scheduler)):
    return await scheduler.run_overdue_check_now(condominium_id)


@router.post("/upcoming/run")
async def run_upcoming(
    days_ahead: Optional[int] = None,
    condominium_id: Optional[int] = None,
    scheduler: Scheduler = Depends(get_scheduler)
):
    return await scheduler.run_upcoming_dues_now(days_ahead, condominium_id)


@router.post("/payment-sync/run")
async def run_payment_sync(scheduler: Scheduler = Depends(get_scheduler)):
    return await scheduler.run_payment_sync_now()


@router.post("/cleanup/run")
async def run_cleanup(scheduler: Scheduler = Depends(get_scheduler)):
    return await scheduler.run_cleanup_now()


@router.post("/auto-billing/run")
async def run_auto_billing(scheduler: Scheduler = Depends(get_scheduler)):
    return await scheduler.run_auto_billing_now()


@router.post("/emergency")
async def run_emergency(scheduler: Scheduler = Depends(get_scheduler)):
    """Overdue sweep paced condominium by condominium"""
    return await scheduler.run_emergency_overdue_processing()
