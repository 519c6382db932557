"""
Maintenance Workflow API Routes
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from condohub.core.clock import Clock, get_clock
from condohub.core.database import get_db, unit_of_work
from condohub.core.security import get_current_user, RoleChecker, STAFF_ROLES
from condohub.models import User
from condohub.schemas import (
    MaintenanceApproveRequest, MaintenanceApproveResponse, MaintenanceRejectRequest,
    MaintenanceCompleteRequest, MaintenanceRateRequest, MaintenanceRequestResponse
)
from condohub.services.maintenance_financial_service import MaintenanceFinancialService

router = APIRouter(prefix="/maintenance", tags=["Maintenance"])


@router.post("/requests/{request_id}/approve", response_model=MaintenanceApproveResponse)
async def approve_request(
    request_id: int,
    body: MaintenanceApproveRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    """Approve a request; a positive estimate also creates its expense"""
    service = MaintenanceFinancialService(db, clock)
    with unit_of_work(db):
        result = service.approve_request(
            request_id,
            current_user.id,
            estimated_cost=body.estimated_cost,
            assigned_to=body.assigned_to,
            assigned_contact=body.assigned_contact,
            scheduled_date=body.scheduled_date,
            admin_notes=body.admin_notes,
        )
    return result


@router.post("/requests/{request_id}/reject", response_model=MaintenanceRequestResponse)
async def reject_request(
    request_id: int,
    body: MaintenanceRejectRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    service = MaintenanceFinancialService(db, clock)
    with unit_of_work(db):
        request = service.reject_request(request_id, current_user.id, body.admin_notes)
    return request


@router.post("/requests/{request_id}/complete", response_model=MaintenanceRequestResponse)
async def complete_request(
    request_id: int,
    body: MaintenanceCompleteRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    service = MaintenanceFinancialService(db, clock)
    with unit_of_work(db):
        request = service.complete_request(request_id, current_user.id, body.actual_cost)
    return request


@router.post("/requests/{request_id}/rate", response_model=MaintenanceRequestResponse)
async def rate_request(
    request_id: int,
    body: MaintenanceRateRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_user)
):
    """Residents rate their own completed requests"""
    service = MaintenanceFinancialService(db, clock)
    with unit_of_work(db):
        request = service.rate_request(request_id, current_user.id, body.rating, body.feedback)
    return request
