"""
Tests for automatic monthly billing

With the clock on 2024-01-11 and a ten day lead, units due on the 21st
are billed today.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest

from condohub.core.clock import FixedClock
from condohub.core.database import unit_of_work
from condohub.core.exceptions import ValidationError
from condohub.models import FinancialTransaction, Unit, TransactionStatus, RecurrenceType
from condohub.services.auto_billing_service import AutoBillingService
from condohub.services.scheduler import CancellationToken


@pytest.fixture
def service(db, clock):
    return AutoBillingService(db, clock)


@pytest.fixture
def billed_unit(db, unit):
    unit.auto_billing_enabled = True
    db.commit()
    return unit


class TestProcessAutoBilling:
    def test_bills_units_due_on_target_day(self, db, service, billed_unit, resident):
        result = service.process_auto_billing()

        assert result["processed"] == 1
        transaction = db.get(FinancialTransaction, result["transaction_ids"][0])
        assert transaction.unit_id == billed_unit.id
        assert transaction.user_id == resident.id
        assert transaction.amount == Decimal("450.00")
        assert transaction.due_date == date(2024, 1, 21)
        assert transaction.status == TransactionStatus.PENDING.value
        assert transaction.auto_generated is True
        assert transaction.recurrence_type == RecurrenceType.MONTHLY.value
        assert (transaction.reference_month, transaction.reference_year) == (1, 2024)
        assert transaction.description == "Condominium fee - Unit 101 Block A"

    def test_second_run_skips_billed_unit(self, db, service, billed_unit):
        service.process_auto_billing()
        result = service.process_auto_billing()

        assert result["processed"] == 0
        assert result["skipped"] == 1
        assert db.query(FinancialTransaction).count() == 1

    def test_ignores_other_days_and_disabled_units(self, db, service, billed_unit, condominium):
        db.add_all([
            Unit(condominium_id=condominium.id, number="201", monthly_amount=Decimal("300.00"),
                 payment_due_day=5, auto_billing_enabled=True),
            Unit(condominium_id=condominium.id, number="202", monthly_amount=Decimal("300.00"),
                 payment_due_day=21, auto_billing_enabled=False),
        ])
        db.commit()

        result = service.process_auto_billing()

        assert result["total"] == 1
        assert result["processed"] == 1


    def test_cancelled_run_bills_nothing(self, db, service, billed_unit):
        token = CancellationToken()
        token.cancel()

        result = service.process_auto_billing(token=token)

        assert result["cancelled"] is True
        assert result["processed"] == 0
        assert db.query(FinancialTransaction).count() == 0


class TestBillingSchedule:
    def test_next_billing_date_is_strictly_after_today(self, service):
        assert service.calculate_next_billing_date(21) == date(2024, 1, 21)
        assert service.calculate_next_billing_date(11) == date(2024, 2, 11)
        assert service.calculate_next_billing_date(3) == date(2024, 2, 3)

    def test_next_billing_date_rolls_into_next_year(self, db):
        service = AutoBillingService(db, FixedClock(datetime(2024, 12, 20, 12, 0)))

        assert service.calculate_next_billing_date(5) == date(2025, 1, 5)
        assert service.calculate_next_billing_date(28) == date(2024, 12, 28)

    def test_upcoming_billings(self, service, billed_unit):
        billings = service.get_upcoming_billings(days=15)

        assert len(billings) == 1
        assert billings[0]["days_until_billing"] == 10
        assert billings[0]["auto_create_date"] == date(2024, 1, 11)
        assert service.get_upcoming_billings(days=5) == []

    def test_enable_and_disable(self, db, service, unit):
        with unit_of_work(db):
            service.enable_for_unit(unit.id, Decimal("500.00"), 10)
        assert unit.auto_billing_enabled is True
        assert unit.payment_due_day == 10

        with unit_of_work(db):
            service.disable_for_unit(unit.id)
        assert unit.auto_billing_enabled is False

    @pytest.mark.parametrize("amount, day", [(Decimal("0"), 10), (Decimal("100.00"), 31)])
    def test_enable_validation(self, service, unit, amount, day):
        with pytest.raises(ValidationError):
            service.enable_for_unit(unit.id, amount, day)
