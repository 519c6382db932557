"""
Tests for the late-fee arithmetic, the overdue sweep and due-date reminders
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from condohub.models import (
    AuditLog, Notification, TransactionStatus, MaintenancePaymentStatus
)
from condohub.services.audit_service import AuditAction
from condohub.services.late_fee_service import LateFeeService, compute_late_fee, days_overdue
from condohub.services.scheduler import CancellationToken


class TestComputeLateFee:
    def test_same_day_is_free(self):
        assert compute_late_fee(Decimal("100.00"), date(2024, 1, 1), date(2024, 1, 1)) == Decimal("0.00")

    def test_before_due_date_is_free(self):
        assert compute_late_fee(Decimal("100.00"), date(2024, 1, 10), date(2024, 1, 1)) == Decimal("0.00")

    def test_one_day_late(self):
        # amount * 2.1 / 100
        assert compute_late_fee(Decimal("100.00"), date(2024, 1, 1), date(2024, 1, 2)) == Decimal("2.10")

    def test_ten_days_late(self):
        assert compute_late_fee(Decimal("100.00"), date(2024, 1, 1), date(2024, 1, 11)) == Decimal("3.00")

    def test_rounds_half_up_to_cents(self):
        # 33.33 * 2.1% = 0.69993
        assert compute_late_fee(Decimal("33.33"), date(2024, 1, 1), date(2024, 1, 2)) == Decimal("0.70")

    def test_partial_days_are_floored(self):
        due = datetime(2024, 1, 1, 0, 0)
        assert compute_late_fee(Decimal("100.00"), due, due + timedelta(hours=23)) == Decimal("0.00")
        assert compute_late_fee(Decimal("100.00"), due, due + timedelta(days=1, hours=23)) == Decimal("2.10")

    def test_uncapped_by_default(self):
        # 1000 days late: 2 + 100 = 102%
        fee = compute_late_fee(Decimal("100.00"), date(2020, 1, 1), date(2020, 1, 1) + timedelta(days=1000))
        assert fee == Decimal("102.00")

    def test_cap_limits_percentage(self):
        fee = compute_late_fee(
            Decimal("100.00"), date(2020, 1, 1), date(2020, 1, 1) + timedelta(days=1000), cap_percent=20
        )
        assert fee == Decimal("20.00")

    def test_custom_rates(self):
        fee = compute_late_fee(
            Decimal("200.00"), date(2024, 1, 1), date(2024, 1, 6), base_percent=1, daily_percent=0.5
        )
        # 200 * (1 + 5 * 0.5) / 100
        assert fee == Decimal("7.00")

    def test_monotonic_in_as_of(self):
        due = date(2024, 1, 1)
        fees = [compute_late_fee(Decimal("87.45"), due, due + timedelta(days=d)) for d in range(-5, 120)]
        assert fees == sorted(fees)

    def test_days_overdue_mixed_types(self):
        assert days_overdue(date(2024, 1, 1), datetime(2024, 1, 11, 12, 0)) == 10
        assert days_overdue(date(2024, 1, 5), date(2024, 1, 1)) == -4


class TestOverdueSweep:
    def test_applies_fee_and_marks_overdue(self, db, clock, make_transaction):
        transaction = make_transaction(amount=Decimal("100.00"), due_date=date(2024, 1, 1))

        result = LateFeeService(db, clock).check_and_apply_late_fees()

        db.expire_all()
        updated = db.get(type(transaction), transaction.id)
        assert result.processed == 1
        assert result.total == 1
        assert updated.status == TransactionStatus.OVERDUE.value
        assert updated.late_fee == Decimal("3.00")
        assert updated.total_amount == Decimal("103.00")
        assert updated.original_due_date == date(2024, 1, 1)

    def test_total_amount_respects_discount(self, db, clock, make_transaction):
        transaction = make_transaction(amount=Decimal("100.00"), discount=Decimal("10.00"))

        LateFeeService(db, clock).check_and_apply_late_fees()

        db.expire_all()
        updated = db.get(type(transaction), transaction.id)
        assert updated.total_amount == updated.amount + updated.late_fee - updated.discount

    def test_ignores_not_yet_due_and_settled(self, db, clock, make_transaction):
        make_transaction(due_date=date(2024, 1, 11))
        make_transaction(due_date=date(2024, 1, 1), status=TransactionStatus.PAID.value)
        make_transaction(due_date=date(2024, 1, 1), status=TransactionStatus.CANCELLED.value)

        result = LateFeeService(db, clock).check_and_apply_late_fees()

        assert result.total == 0
        assert result.processed == 0

    def test_scoped_to_condominium(self, db, clock, make_transaction):
        from condohub.models import Condominium
        other = Condominium(name="Other")
        db.add(other)
        db.commit()
        make_transaction()
        make_transaction(condominium_id=other.id)

        result = LateFeeService(db, clock).check_and_apply_late_fees(other.id)

        assert result.processed == 1
        assert result.applied[0]["condominium_id"] == other.id

    def test_notifies_owner_and_audits(self, db, clock, make_transaction, resident):
        transaction = make_transaction(user_id=resident.id)

        LateFeeService(db, clock).check_and_apply_late_fees()

        notifications = db.query(Notification).filter(Notification.user_id == resident.id).all()
        assert len(notifications) == 1
        assert notifications[0].priority == "high"
        audit = db.query(AuditLog).filter(AuditLog.action == AuditAction.LATE_FEE_APPLIED).one()
        assert audit.resource_id == transaction.id

    def test_propagates_to_linked_request(self, db, clock, make_transaction, make_request):
        request = make_request()
        transaction = make_transaction(maintenance_request_id=request.id)
        request.financial_transaction_id = transaction.id
        request.payment_status = MaintenancePaymentStatus.PENDING.value
        db.commit()

        LateFeeService(db, clock).check_and_apply_late_fees()

        db.expire_all()
        assert db.get(type(request), request.id).payment_status == MaintenancePaymentStatus.OVERDUE.value

    def test_failure_on_one_item_does_not_stop_batch(self, db, clock, make_transaction, monkeypatch):
        first = make_transaction()
        second = make_transaction()
        original = LateFeeService._apply_late_fee

        def flaky(self, transaction_id, now, bridge):
            if transaction_id == first.id:
                raise RuntimeError("ledger unavailable")
            return original(self, transaction_id, now, bridge)

        monkeypatch.setattr(LateFeeService, "_apply_late_fee", flaky)

        result = LateFeeService(db, clock).check_and_apply_late_fees()

        assert result.processed == 1
        assert result.total == 2
        assert [e.resource_id for e in result.errors] == [first.id]
        db.expire_all()
        assert db.get(type(first), first.id).status == TransactionStatus.PENDING.value
        assert db.get(type(second), second.id).status == TransactionStatus.OVERDUE.value

    def test_second_run_finds_nothing(self, db, clock, make_transaction):
        make_transaction()
        service = LateFeeService(db, clock)
        service.check_and_apply_late_fees()

        assert service.check_and_apply_late_fees().total == 0
        assert service.count_pending_overdue() == 0

    def test_cancelled_token_stops_between_transactions(self, db, clock, make_transaction, monkeypatch):
        transactions = [make_transaction(), make_transaction()]
        token = CancellationToken()
        service = LateFeeService(db, clock)
        real_apply = service._apply_late_fee

        def apply_then_cancel(*args):
            summary = real_apply(*args)
            token.cancel()
            return summary

        monkeypatch.setattr(service, "_apply_late_fee", apply_then_cancel)

        result = service.check_and_apply_late_fees(token=token)

        assert result.to_dict()["cancelled"] is True
        assert result.total == 2
        assert result.processed == 1
        db.expire_all()
        statuses = sorted(db.get(type(t), t.id).status for t in transactions)
        assert statuses == [TransactionStatus.OVERDUE.value, TransactionStatus.PENDING.value]


class TestUpcomingDues:
    def test_window_is_inclusive(self, db, clock, make_transaction, resident):
        today = clock.today()
        inside = [make_transaction(user_id=resident.id, due_date=today + timedelta(days=d)) for d in (0, 3)]
        make_transaction(user_id=resident.id, due_date=today + timedelta(days=4))
        make_transaction(user_id=resident.id, due_date=today - timedelta(days=1))

        result = LateFeeService(db, clock).check_upcoming_due_dates(days_ahead=3)

        assert sorted(item["id"] for item in result.notified) == sorted(t.id for t in inside)
        assert db.query(Notification).count() == 2

    def test_message_mentions_maintenance(self, db, clock, make_transaction, make_request, resident):
        request = make_request(title="Elevator repair")
        make_transaction(
            user_id=resident.id,
            due_date=clock.today() + timedelta(days=2),
            maintenance_request_id=request.id,
        )

        result = LateFeeService(db, clock).check_upcoming_due_dates()

        assert result.notified[0]["days_until_due"] == 2
        assert result.notified[0]["maintenance_title"] == "Elevator repair"
        notification = db.query(Notification).one()
        assert "Elevator repair" in notification.message
        assert "2 day(s)" in notification.message

    def test_cancelled_token_sends_nothing(self, db, clock, make_transaction, resident):
        make_transaction(user_id=resident.id, due_date=clock.today() + timedelta(days=1))
        token = CancellationToken()
        token.cancel()

        result = LateFeeService(db, clock).check_upcoming_due_dates(token=token)

        assert result.cancelled is True
        assert result.notified == []
        assert db.query(Notification).count() == 0
