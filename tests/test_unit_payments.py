"""
Tests for monthly unit payment generation and settlement
"""
from datetime import date
from decimal import Decimal

import pytest

from condohub.core.database import unit_of_work
from condohub.core.exceptions import NotFoundError, ValidationError, InvalidStateError
from condohub.models import (
    FinancialTransaction, Unit, UnitPayment, UnitPaymentStatus, TransactionStatus
)
from condohub.services.unit_payment_service import UnitPaymentService


@pytest.fixture
def service(db, clock):
    return UnitPaymentService(db, clock)


@pytest.fixture
def payment(db, service, unit, condominium):
    with unit_of_work(db):
        result = service.generate_monthly_payments(condominium.id, 1, 2024, date(2024, 1, 21))
    return db.get(UnitPayment, result["created_payments"][0]["payment_id"])


class TestGenerateMonthlyPayments:
    def test_one_payment_per_unit(self, db, service, unit, condominium):
        empty = Unit(condominium_id=condominium.id, number="102")
        db.add(empty)
        db.commit()

        with unit_of_work(db):
            result = service.generate_monthly_payments(
                condominium.id, 2, 2024, date(2024, 2, 10), amount=Decimal("300.00")
            )

        amounts = {item["unit_id"]: item["amount"] for item in result["created_payments"]}
        # units without their own monthly amount fall back to the default
        assert amounts == {unit.id: 450.0, empty.id: 300.0}
        assert result["summary"]["payments_created"] == 2

    def test_existing_period_is_skipped(self, db, service, payment, unit, condominium):
        with unit_of_work(db):
            result = service.generate_monthly_payments(condominium.id, 1, 2024, date(2024, 1, 21))

        assert result["created_payments"] == []
        assert result["errors"][0]["unit_id"] == unit.id
        assert db.query(UnitPayment).count() == 1

    def test_excluded_units(self, service, unit, condominium):
        with pytest.raises(ValidationError):
            service.generate_monthly_payments(
                condominium.id, 1, 2024, date(2024, 1, 21), exclude_units=[unit.id]
            )

    def test_invalid_month(self, service, unit, condominium):
        with pytest.raises(ValidationError):
            service.generate_monthly_payments(condominium.id, 13, 2024, date(2024, 1, 21))

    def test_unknown_condominium(self, service):
        with pytest.raises(NotFoundError):
            service.generate_monthly_payments(77, 1, 2024, date(2024, 1, 21))


class TestMarkAsPaid:
    def test_full_payment_records_income(self, db, service, payment, syndic):
        with unit_of_work(db):
            service.mark_as_paid(payment.id, syndic.id, "pix", late_fee=Decimal("4.50"))

        transaction = db.get(FinancialTransaction, payment.financial_transaction_id)
        assert payment.status == UnitPaymentStatus.PAID.value
        assert payment.amount_paid == Decimal("450.00")
        assert transaction.status == TransactionStatus.PAID.value
        assert transaction.amount == Decimal("450.00")
        assert transaction.total_amount == Decimal("454.50")
        assert transaction.reference_month == 1

    def test_partial_payment(self, db, service, payment, syndic):
        with unit_of_work(db):
            service.mark_as_paid(payment.id, syndic.id, "cash", amount_paid=Decimal("200.00"))

        assert payment.status == UnitPaymentStatus.PARTIAL.value
        assert payment.amount_paid == Decimal("200.00")
        assert payment.amount == Decimal("450.00")
        assert service.detailed_status(payment)["status"] == "partial"

    def test_cannot_pay_twice(self, db, service, payment, syndic):
        with unit_of_work(db):
            service.mark_as_paid(payment.id, syndic.id, "pix")

        with pytest.raises(InvalidStateError):
            service.mark_as_paid(payment.id, syndic.id, "pix")

    def test_discount_larger_than_payment(self, db, service, payment, syndic):
        with pytest.raises(ValidationError):
            service.mark_as_paid(payment.id, syndic.id, "pix", discount=Decimal("450.01"))

        assert db.query(FinancialTransaction).count() == 0


class TestPaymentStatus:
    @pytest.mark.parametrize("due, expected", [
        (date(2024, 1, 11), "overdue"),
        (date(2024, 1, 13), "due_soon"),
        (date(2024, 1, 18), "upcoming"),
        (date(2024, 2, 1), "current"),
    ])
    def test_pending_buckets(self, db, service, payment, due, expected):
        payment.due_date = due
        db.commit()

        assert service.detailed_status(payment)["status"] == expected

    def test_refresh_overdue(self, db, service, payment):
        payment.due_date = date(2024, 1, 1)
        db.commit()

        with unit_of_work(db):
            flagged = service.refresh_overdue()

        assert flagged == 1
        assert payment.status == UnitPaymentStatus.OVERDUE.value
        assert service.days_overdue(payment) == 10
        assert service.detailed_status(payment) == {"status": "overdue", "days_overdue": 10}
