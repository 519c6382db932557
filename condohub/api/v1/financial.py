"""
Financial Transactions API Routes
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from condohub.core.clock import Clock, get_clock
from condohub.core.database import get_db, unit_of_work
from condohub.core.security import get_current_user, RoleChecker, STAFF_ROLES, MANAGEMENT_ROLES
from condohub.models import User
from condohub.schemas import TransactionCreate, TransactionResponse, BalanceResponse
from condohub.services.financial_service import FinancialService

router = APIRouter(prefix="/financial", tags=["Financial"])


@router.post("/transactions", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    transaction_data: TransactionCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    """Create a new transaction"""
    service = FinancialService(db, clock)
    with unit_of_work(db):
        transaction = service.create_transaction(transaction_data, current_user.id)
    db.refresh(transaction)
    return transaction


@router.post("/transactions/{transaction_id}/approve", response_model=TransactionResponse)
async def approve_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(MANAGEMENT_ROLES))
):
    service = FinancialService(db, clock)
    with unit_of_work(db):
        transaction = service.approve_transaction(transaction_id, current_user.id)
    db.refresh(transaction)
    return transaction


@router.post("/transactions/{transaction_id}/confirm-cash", response_model=TransactionResponse)
async def confirm_cash_payment(
    transaction_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(STAFF_ROLES))
):
    service = FinancialService(db, clock)
    with unit_of_work(db):
        transaction = service.confirm_cash_payment(transaction_id, current_user.id)
    db.refresh(transaction)
    return transaction


@router.post("/transactions/{transaction_id}/cancel", response_model=TransactionResponse)
async def cancel_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    current_user: User = Depends(RoleChecker(MANAGEMENT_ROLES))
):
    service = FinancialService(db, clock)
    with unit_of_work(db):
        transaction = service.cancel_transaction(transaction_id, current_user.id)
    db.refresh(transaction)
    return transaction


@router.get("/balance/{condominium_id}", response_model=BalanceResponse)
async def get_balance(
    condominium_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """Paid income minus paid expenses"""
    balance = FinancialService(db).get_condominium_balance(condominium_id)
    return {"condominium_id": condominium_id, "balance": balance}
