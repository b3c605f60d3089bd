"""
HTTP tests for the FastAPI application.

Services are the same fake-backed instances the service tests use, wired in
through `app.dependency_overrides`; no database or registrar is contacted.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from api.dependencies import (
    get_booking_status_service,
    get_checkout_service,
    get_pricing_cache,
    get_reconciliation_service,
)
from api.main import app
from domain.registrar import ContactIds, DomainStatusReport, RegistrarDomainState, RegistrarError
from fakes import paid_line_item, paid_order

ADMIN_TOKEN = "test-admin-token"
ADMIN = {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def client(monkeypatch, reconciliation, pricing_cache, checkout, booking_status):
    monkeypatch.setenv("ADMIN_API_TOKEN", ADMIN_TOKEN)
    app.dependency_overrides[get_reconciliation_service] = lambda: reconciliation
    app.dependency_overrides[get_pricing_cache] = lambda: pricing_cache
    app.dependency_overrides[get_checkout_service] = lambda: checkout
    app.dependency_overrides[get_booking_status_service] = lambda: booking_status
    yield TestClient(app)
    app.dependency_overrides.clear()


def _place(client: TestClient, *domains: str, amount: str = "899.00"):
    return client.post(
        "/api/v1/orders",
        json={
            "user_id": "user-1",
            "payment": {"payment_id": "pay_1", "confirmed": True, "amount": amount, "currency": "INR"},
            "items": [{"domain_name": d} for d in domains],
        },
    )


def test_health(client) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["service"] == "domain-provisioning-api"


@pytest.mark.parametrize(
    "path",
    ["/api/v1/admin/pending-domains", "/api/v1/admin/tld-pricing/cache"],
)
def test_admin_endpoints_require_token(client, path) -> None:
    assert client.get(path).status_code == 401
    assert client.get(path, headers={"X-Admin-Token": "wrong"}).status_code == 403
    assert client.get(path, headers=ADMIN).status_code == 200


def test_admin_token_unset_on_server_is_forbidden(client, monkeypatch) -> None:
    monkeypatch.delenv("ADMIN_API_TOKEN")

    response = client.get("/api/v1/admin/pending-domains", headers=ADMIN)

    assert response.status_code == 403


def test_pending_list_includes_unfinished_line_items(client, orders, clock) -> None:
    orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))

    response = client.get("/api/v1/admin/pending-domains", headers=ADMIN)

    assert response.status_code == 200
    body = response.json()
    assert [item["id"] for item in body["items"]] == ["order:ord_1:foo.com"]
    assert body["items"][0]["source"] == "order"
    assert body["summary"]["processing"] == 1
    assert body["total"] == 1
    assert body["pagination"]["pages"] == 1


def test_pending_list_rejects_bad_paging(client) -> None:
    response = client.get("/api/v1/admin/pending-domains?limit=500", headers=ADMIN)

    assert response.status_code == 422


def test_verify_without_pending_records_is_not_found(client) -> None:
    response = client.post(
        "/api/v1/admin/pending-domains/verify", json={"domain_ids": ["missing"]}, headers=ADMIN
    )

    assert response.status_code == 404


def test_manual_create_then_retry(client, orders, clock) -> None:
    orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))

    created = client.post(
        "/api/v1/admin/pending-domains",
        json={"domain_name": "foo.com", "order_id": "ord_1", "price": "899.00"},
        headers=ADMIN,
    )
    assert created.status_code == 201
    pending_id = created.json()["id"]
    assert created.json()["status"] == "pending"

    retried = client.post(f"/api/v1/admin/pending-domains/{pending_id}/register", headers=ADMIN)

    assert retried.status_code == 200
    assert retried.json()["success"] is True
    assert retried.json()["outcome"] == "registered"
    assert client.get(
        f"/api/v1/admin/pending-domains/{pending_id}", headers=ADMIN
    ).json()["status"] == "completed"


def test_manual_create_for_unknown_order_is_bad_request(client) -> None:
    response = client.post(
        "/api/v1/admin/pending-domains",
        json={"domain_name": "foo.com", "order_id": "ord_missing", "price": "899.00"},
        headers=ADMIN,
    )

    assert response.status_code == 400


def test_processing_cannot_be_set_by_hand(client, orders, clock) -> None:
    orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))
    pending_id = client.post(
        "/api/v1/admin/pending-domains",
        json={"domain_name": "foo.com", "order_id": "ord_1", "price": "899.00"},
        headers=ADMIN,
    ).json()["id"]

    response = client.put(
        f"/api/v1/admin/pending-domains/{pending_id}", json={"status": "processing"}, headers=ADMIN
    )

    assert response.status_code == 422


def test_unknown_pending_domain_is_not_found(client) -> None:
    assert client.get("/api/v1/admin/pending-domains/nope", headers=ADMIN).status_code == 404


def test_public_price_list(client) -> None:
    response = client.get("/api/v1/tld-pricing")

    assert response.status_code == 200
    body = response.json()
    assert [item["tld"] for item in body["items"]] == ["com", "in"]
    assert Decimal(str(body["items"][0]["price"])) == Decimal("899.00")
    assert body["total_count"] == 2

    assert client.get("/api/v1/tld-pricing/.com").status_code == 200
    assert client.get("/api/v1/tld-pricing/xyz").status_code == 404


def test_cache_settings_and_purge(client, pricing_source) -> None:
    client.get("/api/v1/tld-pricing")

    updated = client.put("/api/v1/admin/tld-pricing/cache", json={"ttl_minutes": 30}, headers=ADMIN)
    assert updated.status_code == 200
    assert updated.json()["cache"]["ttl_minutes"] == 30

    assert client.put(
        "/api/v1/admin/tld-pricing/cache", json={"ttl_minutes": 0}, headers=ADMIN
    ).status_code == 422

    purged = client.delete("/api/v1/admin/tld-pricing/cache", headers=ADMIN)
    assert purged.json()["cache"]["is_cached"] is False

    client.get("/api/v1/tld-pricing")
    assert pricing_source.calls == 2


def test_quote(client) -> None:
    response = client.post(
        "/api/v1/orders/quote",
        json={"items": [{"domain_name": "foo.com", "registration_period": 2}]},
    )

    assert response.status_code == 200
    assert Decimal(str(response.json()["subtotal"])) == Decimal("1798.00")


def test_quote_unsupported_extension_is_bad_request(client) -> None:
    response = client.post("/api/v1/orders/quote", json={"items": [{"domain_name": "foo.xyz"}]})

    assert response.status_code == 400


def test_place_order_and_poll_status(client) -> None:
    placed = _place(client, "foo.com")

    assert placed.status_code == 201
    order_id = placed.json()["order_id"]
    assert placed.json()["registered"] == ["foo.com"]
    assert placed.json()["domains"][0]["progress"] == 100

    status = client.get(
        "/api/v1/domains/booking-status",
        params={"user_id": "user-1", "order_id": order_id, "domain_name": "foo.com"},
    )
    assert status.status_code == 200
    assert status.json()["status"] == "registered"

    other_user = client.get(
        "/api/v1/domains/booking-status",
        params={"user_id": "user-2", "order_id": order_id, "domain_name": "foo.com"},
    )
    assert other_user.status_code == 404

    activated = client.post(
        "/api/v1/domains/activate-dns",
        json={"user_id": "user-1", "order_id": order_id, "domain_name": "foo.com"},
    )
    assert activated.status_code == 200
    assert activated.json()["dns_activated"] is True


def test_failed_registration_is_masked_for_users(client, registrar) -> None:
    registrar.register_outcomes.append(RegistrarError("Insufficient funds in reseller account"))

    placed = _place(client, "foo.com")

    assert placed.status_code == 201
    domain = placed.json()["domains"][0]
    assert domain["status"] == "failed"
    assert "funds" not in domain["message"]


def test_mismatched_payment_is_bad_request(client, db) -> None:
    response = _place(client, "foo.com", amount="1.00")

    assert response.status_code == 400
    assert db.rows("orders") == []


def test_manual_create_with_role_contacts_is_used_by_retry(client, orders, registrar, clock) -> None:
    orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))
    pending_id = client.post(
        "/api/v1/admin/pending-domains",
        json={
            "domain_name": "foo.com",
            "order_id": "ord_1",
            "price": "899.00",
            "contact_id": "shared-1",
            "billing_contact_id": "bill-2",
        },
        headers=ADMIN,
    ).json()["id"]

    retried = client.post(f"/api/v1/admin/pending-domains/{pending_id}/register", headers=ADMIN)

    assert retried.json()["success"] is True
    assert registrar.count("create_or_get_contact") == 0
    assert registrar.calls[-1][1][4] == ContactIds(admin="shared-1", tech="shared-1", billing="bill-2")


def test_retry_for_deleted_order_is_conflict(client, orders, db, registrar, clock) -> None:
    orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))
    pending_id = client.post(
        "/api/v1/admin/pending-domains",
        json={"domain_name": "foo.com", "order_id": "ord_1", "price": "899.00"},
        headers=ADMIN,
    ).json()["id"]
    db.tables["orders"].clear()

    response = client.post(f"/api/v1/admin/pending-domains/{pending_id}/register", headers=ADMIN)

    assert response.status_code == 409
    assert "ord_1" in response.json()["detail"]
    assert registrar.calls == []
    assert client.get(
        f"/api/v1/admin/pending-domains/{pending_id}", headers=ADMIN
    ).json()["status"] == "failed"


def test_status_override_without_line_item_is_conflict(client, orders, clock) -> None:
    orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))
    pending_id = client.post(
        "/api/v1/admin/pending-domains",
        json={"domain_name": "bar.com", "order_id": "ord_1", "price": "899.00"},
        headers=ADMIN,
    ).json()["id"]

    response = client.put(
        f"/api/v1/admin/pending-domains/{pending_id}", json={"status": "completed"}, headers=ADMIN
    )

    assert response.status_code == 409


def test_verify_reports_order_out_of_sync(client, orders, db, registrar, clock) -> None:
    orders.create_order(paid_order("ord_1", [paid_line_item("foo.com", clock())], clock()))
    pending_id = client.post(
        "/api/v1/admin/pending-domains",
        json={"domain_name": "foo.com", "order_id": "ord_1", "price": "899.00"},
        headers=ADMIN,
    ).json()["id"]
    registrar.statuses["foo.com"] = DomainStatusReport(domain_name="foo.com", state=RegistrarDomainState.ACTIVE)
    db.tables["orders"].clear()

    response = client.post(
        "/api/v1/admin/pending-domains/verify", json={"domain_ids": [pending_id]}, headers=ADMIN
    )

    assert response.status_code == 200
    result = response.json()["results"][0]
    assert result["outcome"] == "completed"
    assert "ord_1" in result["integrity_error"]
