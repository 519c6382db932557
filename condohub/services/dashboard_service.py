"""
Dashboard Service - unified financial and maintenance metrics for a condominium
"""
from dataclasses import dataclass
from typing import Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy import func, select
from decimal import Decimal
from datetime import date, timedelta

from condohub.core.clock import Clock, default_clock
from condohub.core.config import settings
from condohub.models import (
    FinancialTransaction, MaintenanceRequest, Unit, TransactionType, TransactionStatus,
    MaintenancePaymentStatus, APPROVED_MAINTENANCE_STATUSES, to_money
)


# ==================== AGGREGATE ROWS ====================

@dataclass(frozen=True)
class TransactionAggregateRow:
    """Transactions grouped by (status, type, auto_generated)"""
    status: str
    type: str
    auto_generated: bool
    count: int
    amount: Decimal
    total_amount: Decimal
    late_fees: Decimal


@dataclass(frozen=True)
class MaintenanceAggregateRow:
    """Maintenance requests grouped by (status, payment_status)"""
    status: str
    payment_status: str
    count: int
    estimated_cost: Decimal
    actual_cost: Decimal


@dataclass(frozen=True)
class AutoExpenseAggregateRow:
    """Auto-generated maintenance expenses grouped by status"""
    status: str
    count: int
    total_amount: Decimal


class DashboardService:
    def __init__(self, db: Session, clock: Optional[Clock] = None):
        self.db = db
        self.clock = clock or default_clock()

    def _in_period(self, query, column, start_date: Optional[date], end_date: Optional[date]):
        if start_date:
            query = query.filter(column >= start_date)
        if end_date:
            # end_date is inclusive
            query = query.filter(column < end_date + timedelta(days=1))
        return query

    # ---------- grouped queries ----------

    def get_transaction_rows(self, condominium_id: int, start_date: Optional[date] = None,
                             end_date: Optional[date] = None) -> List[TransactionAggregateRow]:
        query = self.db.query(
            FinancialTransaction.status,
            FinancialTransaction.type,
            FinancialTransaction.auto_generated,
            func.count(FinancialTransaction.id),
            func.sum(FinancialTransaction.amount),
            func.sum(FinancialTransaction.total_amount),
            func.sum(FinancialTransaction.late_fee)
        ).filter(FinancialTransaction.condominium_id == condominium_id)
        query = self._in_period(query, FinancialTransaction.created_at, start_date, end_date)

        results = query.group_by(
            FinancialTransaction.status,
            FinancialTransaction.type,
            FinancialTransaction.auto_generated
        ).all()

        return [
            TransactionAggregateRow(
                status=r[0], type=r[1], auto_generated=bool(r[2]), count=r[3] or 0,
                amount=to_money(r[4]), total_amount=to_money(r[5]), late_fees=to_money(r[6])
            )
            for r in results
        ]

    def get_maintenance_rows(self, condominium_id: int, start_date: Optional[date] = None,
                             end_date: Optional[date] = None) -> List[MaintenanceAggregateRow]:
        query = self.db.query(
            MaintenanceRequest.status,
            MaintenanceRequest.payment_status,
            func.count(MaintenanceRequest.id),
            func.sum(MaintenanceRequest.estimated_cost),
            func.sum(MaintenanceRequest.actual_cost)
        ).filter(MaintenanceRequest.condominium_id == condominium_id)
        query = self._in_period(query, MaintenanceRequest.created_at, start_date, end_date)

        results = query.group_by(MaintenanceRequest.status, MaintenanceRequest.payment_status).all()
        return [
            MaintenanceAggregateRow(
                status=r[0], payment_status=r[1], count=r[2] or 0,
                estimated_cost=to_money(r[3]), actual_cost=to_money(r[4])
            )
            for r in results
        ]

    def get_auto_expense_rows(self, condominium_id: int, start_date: Optional[date] = None,
                              end_date: Optional[date] = None) -> List[AutoExpenseAggregateRow]:
        query = self.db.query(
            FinancialTransaction.status,
            func.count(FinancialTransaction.id),
            func.sum(FinancialTransaction.total_amount)
        ).filter(
            FinancialTransaction.condominium_id == condominium_id,
            FinancialTransaction.auto_generated == True,
            FinancialTransaction.maintenance_request_id.isnot(None)
        )
        query = self._in_period(query, FinancialTransaction.created_at, start_date, end_date)

        results = query.group_by(FinancialTransaction.status).all()
        return [
            AutoExpenseAggregateRow(status=r[0], count=r[1] or 0, total_amount=to_money(r[2]))
            for r in results
        ]

    # ---------- reductions ----------

    @staticmethod
    def summarize_financial(rows: List[TransactionAggregateRow]) -> Dict:
        summary = {
            "total_income": Decimal("0"),
            "total_expenses": Decimal("0"),
            "pending_amount": Decimal("0"),
            "overdue_amount": Decimal("0"),
            "late_fees_total": Decimal("0"),
            "auto_generated_count": 0,
            "transaction_count": 0,
        }
        for row in rows:
            summary["transaction_count"] += row.count
            if row.auto_generated:
                summary["auto_generated_count"] += row.count
            if row.status == TransactionStatus.CANCELLED.value:
                continue

            if row.status == TransactionStatus.PAID.value:
                if row.type == TransactionType.INCOME.value:
                    summary["total_income"] += row.total_amount
                else:
                    summary["total_expenses"] += row.total_amount
            elif row.status == TransactionStatus.PENDING.value:
                summary["pending_amount"] += row.total_amount
            elif row.status == TransactionStatus.OVERDUE.value:
                summary["overdue_amount"] += row.total_amount
            summary["late_fees_total"] += row.late_fees

        summary["balance"] = summary["total_income"] - summary["total_expenses"]
        return summary

    @staticmethod
    def summarize_maintenance(rows: List[MaintenanceAggregateRow]) -> Dict:
        summary = {
            "total_requests": 0,
            "by_status": {},
            "by_payment_status": {},
            "estimated_cost_total": Decimal("0"),
            "actual_cost_total": Decimal("0"),
        }
        for row in rows:
            summary["total_requests"] += row.count
            summary["by_status"][row.status] = summary["by_status"].get(row.status, 0) + row.count
            summary["by_payment_status"][row.payment_status] = (
                summary["by_payment_status"].get(row.payment_status, 0) + row.count
            )
            summary["estimated_cost_total"] += row.estimated_cost
            summary["actual_cost_total"] += row.actual_cost
        return summary

    @staticmethod
    def summarize_auto_expenses(rows: List[AutoExpenseAggregateRow]) -> Dict:
        summary = {"total_count": 0, "total_amount": Decimal("0"), "by_status": {}}
        for row in rows:
            summary["total_count"] += row.count
            summary["total_amount"] += row.total_amount
            summary["by_status"][row.status] = {"count": row.count, "total_amount": row.total_amount}
        return summary

    # ---------- lists ----------

    def get_upcoming_due_dates(self, condominium_id: int) -> List[Dict]:
        today = self.clock.today()
        results = self.db.query(FinancialTransaction, MaintenanceRequest.title, Unit.number, Unit.block).outerjoin(
            MaintenanceRequest, MaintenanceRequest.id == FinancialTransaction.maintenance_request_id
        ).outerjoin(
            Unit, Unit.id == FinancialTransaction.unit_id
        ).filter(
            FinancialTransaction.condominium_id == condominium_id,
            FinancialTransaction.status == TransactionStatus.PENDING.value,
            FinancialTransaction.due_date >= today,
            FinancialTransaction.due_date <= today + timedelta(days=settings.DASHBOARD_UPCOMING_DAYS)
        ).order_by(
            FinancialTransaction.due_date, FinancialTransaction.id
        ).limit(settings.DASHBOARD_UPCOMING_LIMIT).all()

        return [
            {
                "id": t.id,
                "description": t.description,
                "type": t.type,
                "total_amount": t.total_amount,
                "due_date": t.due_date,
                "days_until_due": (t.due_date - today).days,
                "maintenance_request_id": t.maintenance_request_id,
                "maintenance_title": title,
                "unit_number": number,
                "unit_block": block,
            }
            for t, title, number, block in results
        ]

    def get_pending_financial_approval(self, condominium_id: int) -> List[Dict]:
        """Approved maintenance with a positive estimate that no transaction references"""
        referenced = select(FinancialTransaction.id).where(
            FinancialTransaction.maintenance_request_id == MaintenanceRequest.id
        )
        requests = self.db.query(MaintenanceRequest).filter(
            MaintenanceRequest.condominium_id == condominium_id,
            MaintenanceRequest.status.in_(APPROVED_MAINTENANCE_STATUSES),
            MaintenanceRequest.financial_transaction_id.is_(None),
            MaintenanceRequest.estimated_cost > 0,
            ~referenced.exists()
        ).order_by(MaintenanceRequest.created_at, MaintenanceRequest.id).limit(
            settings.DASHBOARD_PENDING_APPROVAL_LIMIT
        ).all()

        return [
            {
                "id": r.id,
                "title": r.title,
                "status": r.status,
                "estimated_cost": r.estimated_cost,
                "unit_id": r.unit_id,
            }
            for r in requests
        ]

    def get_unified_dashboard_metrics(self, condominium_id: int, start_date: Optional[date] = None,
                                      end_date: Optional[date] = None) -> Dict:
        """Read-only snapshot of a condominium's finances and maintenance"""
        transaction_rows = self.get_transaction_rows(condominium_id, start_date, end_date)
        maintenance_rows = self.get_maintenance_rows(condominium_id, start_date, end_date)
        auto_expense_rows = self.get_auto_expense_rows(condominium_id, start_date, end_date)

        return {
            "financial": self.summarize_financial(transaction_rows),
            "maintenance": self.summarize_maintenance(maintenance_rows),
            "maintenance_expenses": self.summarize_auto_expenses(auto_expense_rows),
            "upcoming_due_dates": self.get_upcoming_due_dates(condominium_id),
            "pending_financial_approval": self.get_pending_financial_approval(condominium_id),
            "integration_stats": {
                "auto_generated_expenses": sum(
                    r.count for r in transaction_rows
                    if r.auto_generated and r.type == TransactionType.EXPENSE.value
                ),
                "synced_payments": sum(
                    r.count for r in maintenance_rows
                    if r.payment_status == MaintenancePaymentStatus.PAID.value
                ),
            },
            "period": {"start_date": start_date, "end_date": end_date},
        }
