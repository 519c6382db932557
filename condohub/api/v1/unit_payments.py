"""
Unit Payments API Routes
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from condohub.core.clock import Clock, get_clock
from condohub.core.database import get_db, unit_of_work
from condohub.core.security import get_current_user, RoleChecker, STAFF_ROLES
from condohub.models import User
from condohub.schemas import GeneratePaymentsRequest, MarkPaidRequest, UnitPaymentResponse
from condohub.services.unit_payment_service import UnitPaymentService

router = APIRouter(prefix="/unit-payments", tags=["Unit Payments"])


@router.post("/condominiums/{condominium_id}/generate", status_code=status.HTTP_201_CREATED)
async def generate_monthly_payments(
    condominium_id: int,
    body: GeneratePaymentsRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    """Create this month's dues for every unit of a condominium"""
    service = UnitPaymentService(db, clock)
    with unit_of_work(db):
        return service.generate_monthly_payments(
            condominium_id,
            body.reference_month,
            body.reference_year,
            body.due_date,
            amount=body.amount,
            exclude_units=body.exclude_units,
            acting_user_id=current_user.id,
        )


@router.post("/{payment_id}/pay", response_model=UnitPaymentResponse)
async def mark_as_paid(
    payment_id: int,
    body: MarkPaidRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    service = UnitPaymentService(db, clock)
    with unit_of_work(db):
        payment = service.mark_as_paid(
            payment_id,
            current_user.id,
            body.payment_method,
            amount_paid=body.amount_paid,
            late_fee=body.late_fee,
            discount=body.discount,
            payment_date=body.payment_date,
            notes=body.notes,
        )
    db.refresh(payment)
    return payment


@router.get("/{payment_id}/status")
async def get_payment_status(
    payment_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(get_current_user)
):
    service = UnitPaymentService(db, clock)
    payment = service.get_by_id(payment_id)
    return {"payment_id": payment.id, **service.detailed_status(payment)}
