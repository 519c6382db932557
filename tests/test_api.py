"""
HTTP tests: authentication, role gating and error mapping
"""
from datetime import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from condohub.core.clock import get_clock
from condohub.core.database import get_db
from condohub.core.security import create_access_token
from condohub.main import app
from condohub.models import FinancialTransaction, TransactionStatus
from condohub.services.scheduler import Scheduler


@pytest.fixture
def client(session_factory, clock, config_scheduler):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.state.scheduler = config_scheduler
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.scheduler = None


@pytest.fixture
def config_scheduler(session_factory, clock):
    return Scheduler(session_factory, clock)


def auth(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)})}"}


class TestAuthentication:
    def test_missing_token(self, client, make_request):
        request = make_request()
        response = client.post(f"/api/v1/integration/maintenance/{request.id}/expense")
        assert response.status_code == 401

    def test_garbage_token(self, client, make_request):
        request = make_request()
        response = client.post(
            f"/api/v1/integration/maintenance/{request.id}/expense",
            headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    def test_unknown_user(self, client, make_request):
        request = make_request()
        token = create_access_token({"sub": "9999"})
        response = client.post(
            f"/api/v1/integration/maintenance/{request.id}/expense",
            headers={"Authorization": f"Bearer {token}"}
        )
        assert response.status_code == 401

    def test_inactive_user(self, db, client, make_request, syndic):
        syndic.is_active = False
        db.commit()
        request = make_request()

        response = client.post(f"/api/v1/integration/maintenance/{request.id}/expense", headers=auth(syndic))

        assert response.status_code == 403

    def test_health_is_public(self, client):
        assert client.get("/health").json()["status"] == "healthy"


class TestIntegrationRoutes:
    def test_create_expense(self, client, make_request, syndic):
        request = make_request(estimated_cost=Decimal("320.00"))

        response = client.post(f"/api/v1/integration/maintenance/{request.id}/expense", headers=auth(syndic))

        assert response.status_code == 201
        body = response.json()
        assert body["maintenance_request_id"] == request.id
        assert body["status"] == TransactionStatus.PENDING.value
        assert Decimal(str(body["total_amount"])) == Decimal("320.00")

    def test_duplicate_expense_conflicts(self, client, make_request, syndic):
        request = make_request()
        client.post(f"/api/v1/integration/maintenance/{request.id}/expense", headers=auth(syndic))

        response = client.post(f"/api/v1/integration/maintenance/{request.id}/expense", headers=auth(syndic))

        assert response.status_code == 409

    def test_missing_request(self, client, syndic):
        response = client.post("/api/v1/integration/maintenance/404/expense", headers=auth(syndic))
        assert response.status_code == 404

    def test_resident_cannot_create_expense(self, client, make_request, resident):
        request = make_request()
        response = client.post(f"/api/v1/integration/maintenance/{request.id}/expense", headers=auth(resident))
        assert response.status_code == 403

    def test_reprocess_requires_management(self, client, make_request, syndic, manager):
        request = make_request()
        url = f"/api/v1/integration/maintenance/{request.id}/reprocess"

        assert client.post(url, json={"action": "recreate"}, headers=auth(syndic)).status_code == 403
        response = client.post(url, json={"action": "recreate"}, headers=auth(manager))
        assert response.status_code == 200
        assert response.json()["status"] == "recreated"

    def test_reprocess_rejects_unknown_action(self, client, make_request, manager):
        request = make_request()
        response = client.post(
            f"/api/v1/integration/maintenance/{request.id}/reprocess",
            json={"action": "delete"}, headers=auth(manager)
        )
        assert response.status_code == 422

    def test_sync_unlinked_transaction(self, client, make_transaction, syndic):
        transaction = make_transaction()

        response = client.post(f"/api/v1/integration/transactions/{transaction.id}/sync", headers=auth(syndic))

        assert response.json() == {"status": "no_maintenance_linked", "transaction_id": transaction.id}

    def test_late_fee_check(self, db, client, make_transaction, manager):
        transaction = make_transaction()

        response = client.post("/api/v1/integration/late-fees/check", headers=auth(manager))

        assert response.json()["processed"] == 1
        db.expire_all()
        assert db.get(FinancialTransaction, transaction.id).status == TransactionStatus.OVERDUE.value

    def test_late_fee_check_skipped_while_sweep_runs(self, db, client, config_scheduler, make_transaction, manager):
        transaction = make_transaction()
        config_scheduler.registry.try_acquire("emergency_overdue", datetime(2024, 1, 11, 9, 0))

        response = client.post("/api/v1/integration/late-fees/check", headers=auth(manager))

        assert response.json()["skipped"] is True
        assert response.json()["held_by"] == "emergency_overdue"
        db.expire_all()
        assert db.get(FinancialTransaction, transaction.id).status == TransactionStatus.PENDING.value

    def test_dashboard(self, client, condominium, make_transaction, admin):
        make_transaction(status=TransactionStatus.PAID.value)

        response = client.get(f"/api/v1/integration/dashboard/{condominium.id}", headers=auth(admin))

        assert response.status_code == 200
        assert float(response.json()["financial"]["total_income"]) == 100.0


class TestJobRoutes:
    def test_status_for_admin(self, client, admin):
        response = client.get("/api/v1/jobs/status", headers=auth(admin))

        assert response.status_code == 200
        names = {job["name"] for job in response.json()["jobs"]}
        assert {"overdue_check", "upcoming_dues", "payment_sync", "audit_cleanup"} <= names

    def test_manager_is_refused(self, client, manager):
        assert client.get("/api/v1/jobs/status", headers=auth(manager)).status_code == 403

    def test_manual_overdue_run(self, client, make_transaction, admin):
        make_transaction()

        response = client.post("/api/v1/jobs/overdue/run", headers=auth(admin))

        assert response.json()["processed"] == 1

    def test_scheduler_unavailable(self, client, admin):
        app.state.scheduler = None
        assert client.get("/api/v1/jobs/status", headers=auth(admin)).status_code == 503


class TestLedgerRoutes:
    def test_create_approve_and_balance(self, client, condominium, syndic, manager, resident):
        payload = {
            "condominium_id": condominium.id,
            "type": "income",
            "category": "condominium_fee",
            "description": "January fee",
            "amount": "450.00",
            "due_date": "2024-01-21",
        }
        created = client.post("/api/v1/financial/transactions", json=payload, headers=auth(syndic))
        assert created.status_code == 201
        transaction_id = created.json()["id"]

        assert client.post(
            f"/api/v1/financial/transactions/{transaction_id}/approve", headers=auth(syndic)
        ).status_code == 403
        approved = client.post(f"/api/v1/financial/transactions/{transaction_id}/approve", headers=auth(manager))
        assert approved.json()["status"] == TransactionStatus.PAID.value

        balance = client.get(f"/api/v1/financial/balance/{condominium.id}", headers=auth(resident))
        assert Decimal(str(balance.json()["balance"])) == Decimal("450.00")

    def test_invalid_mixed_split(self, client, condominium, syndic):
        payload = {
            "condominium_id": condominium.id,
            "type": "expense",
            "category": "cleaning",
            "description": "Supplies",
            "amount": "100.00",
            "due_date": "2024-01-21",
            "payment_method": "mixed",
            "pix_amount": "10.00",
            "cash_amount": "10.00",
        }
        response = client.post("/api/v1/financial/transactions", json=payload, headers=auth(syndic))
        assert response.status_code == 400

    def test_unit_payment_flow(self, client, condominium, unit, syndic):
        generated = client.post(
            f"/api/v1/unit-payments/condominiums/{condominium.id}/generate",
            json={"reference_month": 1, "reference_year": 2024, "due_date": "2024-01-21"},
            headers=auth(syndic)
        )
        assert generated.status_code == 201
        payment_id = generated.json()["created_payments"][0]["payment_id"]

        status = client.get(f"/api/v1/unit-payments/{payment_id}/status", headers=auth(syndic))
        assert status.json() == {"payment_id": payment_id, "status": "current", "days_until_due": 10}

        paid = client.post(f"/api/v1/unit-payments/{payment_id}/pay", json={"payment_method": "pix"},
                           headers=auth(syndic))
        assert paid.json()["status"] == "paid"
        assert paid.json()["financial_transaction_id"] is not None


class TestWorkflowRoutes:
    def test_approve_maintenance_creates_expense(self, client, make_request, syndic):
        request = make_request(status="pending", estimated_cost=None)

        response = client.post(
            f"/api/v1/maintenance/requests/{request.id}/approve",
            json={"estimated_cost": "150.00"}, headers=auth(syndic)
        )

        assert response.status_code == 200
        assert response.json()["transaction"]["maintenance_request_id"] == request.id

    def test_own_notifications(self, client, make_request, syndic, resident):
        request = make_request()
        client.post(f"/api/v1/integration/maintenance/{request.id}/expense", headers=auth(syndic))

        response = client.get("/api/v1/notifications", headers=auth(resident))

        assert len(response.json()) == 1
        assert client.get("/api/v1/notifications", headers=auth(syndic)).json() == []

    def test_mark_notification_read(self, client, make_request, syndic, resident):
        request = make_request()
        client.post(f"/api/v1/integration/maintenance/{request.id}/expense", headers=auth(syndic))
        notification_id = client.get("/api/v1/notifications", headers=auth(resident)).json()[0]["id"]

        # only the recipient can mark it
        assert client.post(f"/api/v1/notifications/{notification_id}/read", headers=auth(syndic)).status_code == 404
        assert client.post(f"/api/v1/notifications/{notification_id}/read", headers=auth(resident)).status_code == 200

        unread = client.get("/api/v1/notifications", params={"unread_only": True}, headers=auth(resident))
        assert unread.json() == []
