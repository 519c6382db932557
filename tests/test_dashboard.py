"""
Tests for the unified dashboard metrics
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from condohub.core.database import unit_of_work
from condohub.models import TransactionStatus, MaintenanceStatus, MaintenancePaymentStatus
from condohub.services.dashboard_service import (
    DashboardService, TransactionAggregateRow, MaintenanceAggregateRow
)
from condohub.services.maintenance_financial_service import MaintenanceFinancialService


@pytest.fixture
def service(db, clock):
    return DashboardService(db, clock)


def _row(status, type="income", auto_generated=False, count=1, total="0", late_fees="0"):
    return TransactionAggregateRow(
        status=status, type=type, auto_generated=auto_generated, count=count,
        amount=Decimal(total), total_amount=Decimal(total), late_fees=Decimal(late_fees)
    )


class TestSummaries:
    def test_financial_summary(self):
        summary = DashboardService.summarize_financial([
            _row("paid", total="1000.00", count=3),
            _row("paid", type="expense", auto_generated=True, total="250.00"),
            _row("pending", total="400.00", count=2),
            _row("overdue", total="103.00", late_fees="3.00"),
            _row("cancelled", total="999.00"),
        ])

        assert summary["total_income"] == Decimal("1000.00")
        assert summary["total_expenses"] == Decimal("250.00")
        assert summary["balance"] == Decimal("750.00")
        assert summary["pending_amount"] == Decimal("400.00")
        assert summary["overdue_amount"] == Decimal("103.00")
        assert summary["late_fees_total"] == Decimal("3.00")
        assert summary["transaction_count"] == 8
        assert summary["auto_generated_count"] == 1

    def test_maintenance_summary(self):
        summary = DashboardService.summarize_maintenance([
            MaintenanceAggregateRow("in_progress", "pending", 2, Decimal("500.00"), Decimal("0")),
            MaintenanceAggregateRow("completed", "paid", 1, Decimal("200.00"), Decimal("210.00")),
            MaintenanceAggregateRow("completed", "not_required", 1, Decimal("0"), Decimal("0")),
        ])

        assert summary["total_requests"] == 4
        assert summary["by_status"] == {"in_progress": 2, "completed": 2}
        assert summary["by_payment_status"] == {"pending": 2, "paid": 1, "not_required": 1}
        assert summary["actual_cost_total"] == Decimal("210.00")

    def test_empty(self):
        summary = DashboardService.summarize_financial([])
        assert summary["balance"] == Decimal("0")
        assert summary["transaction_count"] == 0


class TestUnifiedMetrics:
    def test_combines_ledger_and_maintenance(self, db, service, condominium, make_transaction, make_request):
        request = make_request(payment_status=MaintenancePaymentStatus.PAID.value)
        make_transaction(
            type="expense", category="maintenance", amount=Decimal("250.00"),
            status=TransactionStatus.PAID.value, auto_generated=True, maintenance_request_id=request.id,
        )
        make_transaction(amount=Decimal("450.00"), status=TransactionStatus.PAID.value)
        make_transaction(amount=Decimal("450.00"), due_date=date(2024, 1, 15))

        metrics = service.get_unified_dashboard_metrics(condominium.id)

        assert metrics["financial"]["total_income"] == Decimal("450.00")
        assert metrics["financial"]["total_expenses"] == Decimal("250.00")
        assert metrics["financial"]["pending_amount"] == Decimal("450.00")
        assert metrics["maintenance"]["total_requests"] == 1
        assert metrics["maintenance_expenses"]["total_count"] == 1
        assert metrics["integration_stats"] == {"auto_generated_expenses": 1, "synced_payments": 1}
        assert [d["days_until_due"] for d in metrics["upcoming_due_dates"]] == [4]

    def test_period_is_inclusive(self, db, service, condominium, make_transaction):
        make_transaction(status=TransactionStatus.PAID.value, created_at=datetime(2024, 1, 5, 18, 30))
        make_transaction(status=TransactionStatus.PAID.value, created_at=datetime(2024, 1, 6, 0, 0))

        metrics = service.get_unified_dashboard_metrics(
            condominium.id, start_date=date(2024, 1, 1), end_date=date(2024, 1, 5)
        )

        assert metrics["financial"]["transaction_count"] == 1
        assert metrics["period"] == {"start_date": date(2024, 1, 1), "end_date": date(2024, 1, 5)}

    def test_upcoming_due_dates_window(self, service, condominium, make_transaction, make_request):
        request = make_request(title="Roof repair")
        today = date(2024, 1, 11)
        make_transaction(due_date=today + timedelta(days=7), maintenance_request_id=request.id)
        make_transaction(due_date=today + timedelta(days=1))
        make_transaction(due_date=today + timedelta(days=8))
        make_transaction(due_date=today - timedelta(days=1))

        upcoming = service.get_upcoming_due_dates(condominium.id)

        assert [d["days_until_due"] for d in upcoming] == [1, 7]
        assert upcoming[1]["maintenance_title"] == "Roof repair"

    def test_upcoming_due_dates_limit(self, service, condominium, make_transaction):
        for _ in range(12):
            make_transaction(due_date=date(2024, 1, 12))

        assert len(service.get_upcoming_due_dates(condominium.id)) == 10

    def test_pending_financial_approval(self, db, service, condominium, make_request, make_transaction):
        waiting = make_request(status=MaintenanceStatus.COMPLETED.value)
        make_request(status=MaintenanceStatus.PENDING.value)
        make_request(estimated_cost=Decimal("0"))
        linked = make_request()
        linked.financial_transaction_id = make_transaction(maintenance_request_id=linked.id).id
        db.commit()

        pending = service.get_pending_financial_approval(condominium.id)

        assert [r["id"] for r in pending] == [waiting.id]

    def test_unlinked_request_is_not_pending_approval(self, db, service, clock, condominium, make_request):
        request = make_request()
        bridge = MaintenanceFinancialService(db, clock)
        with unit_of_work(db):
            bridge.create_maintenance_expense(request.id)
        with unit_of_work(db):
            bridge.reprocess(request.id, "unlink")

        # the transaction still points at the request, so a new expense would conflict
        assert service.get_pending_financial_approval(condominium.id) == []
