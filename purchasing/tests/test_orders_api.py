from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import OperationalError
from django.utils import timezone
from inventory.models import StockItem, StockMovement
from inventory.tests.factories import BranchFactory
from purchasing.models import IdempotencyKey, Payment, PurchaseOrder
from purchasing.tests.factories import PurchaseOrderFactory
from rest_framework.test import APIClient

ORDERS_URL = "/api/v1/purchasing/orders/"


@pytest.fixture
def client():
    return APIClient()


def _create(client, branch=None, quantity=10, price="5.00", supplier="Acme Supplies"):
    item = {"product_name": "Widget", "quantity_ordered": quantity, "purchase_price_per_unit": price}
    if branch is not None:
        # Clients send the destination wrapped in a list
        item["branch_destination_id"] = [branch.id]
    r = client.post(
        ORDERS_URL,
        {"supplier_name": supplier, "order_date": "2025-03-01", "items": [item]},
        format="json",
    )
    assert r.status_code == 201, r.content
    return r.json()


@pytest.mark.django_db
def test_create_and_fetch_order(client):
    branch = BranchFactory()
    body = _create(client, branch=branch)

    assert body["status"] == "ordered"
    assert Decimal(body["total_amount"]) == Decimal("50.00")
    assert Decimal(body["balance_remaining"]) == Decimal("50.00")
    assert body["number"] == f"PO-{body['id']:06d}"
    assert body["items"][0]["branch_destination"] == branch.id

    r = client.get(f"{ORDERS_URL}{body['id']}/")
    assert r.status_code == 200
    assert r.json()["id"] == body["id"]

    r_missing = client.get(f"{ORDERS_URL}999999/")
    assert r_missing.status_code == 404
    assert r_missing.json()["code"] == "order_not_found"


@pytest.mark.django_db
def test_create_order_error_codes(client):
    r_no_items = client.post(
        ORDERS_URL, {"supplier_name": "Acme", "order_date": "2025-03-01", "items": []}, format="json"
    )
    assert r_no_items.status_code == 400
    assert r_no_items.json()["code"] == "invalid_order"

    r_qty = client.post(
        ORDERS_URL,
        {
            "supplier_name": "Acme",
            "order_date": "2025-03-01",
            "items": [{"product_name": "Widget", "quantity_ordered": 0, "purchase_price_per_unit": "1.00"}],
        },
        format="json",
    )
    assert r_qty.status_code == 400
    assert r_qty.json()["code"] == "invalid_quantity"

    r_branches = client.post(
        ORDERS_URL,
        {
            "supplier_name": "Acme",
            "order_date": "2025-03-01",
            "items": [
                {
                    "product_name": "Widget",
                    "quantity_ordered": 1,
                    "purchase_price_per_unit": "1.00",
                    "branch_destination_id": [1, 2],
                }
            ],
        },
        format="json",
    )
    assert r_branches.status_code == 400
    assert "items" in r_branches.json()
    assert not PurchaseOrder.objects.exists()


@pytest.mark.django_db
def test_list_filters_status_and_supplier(client):
    o1 = _create(client, supplier="Acme Supplies")
    o2 = _create(client, supplier="Globex")
    client.post(f"{ORDERS_URL}{o2['id']}/payment/", {"amount": "10.00"}, format="json")

    r_status = client.get(f"{ORDERS_URL}?status=partially_paid")
    assert r_status.status_code == 200
    assert [o["id"] for o in r_status.json()["results"]] == [o2["id"]]

    r_supplier = client.get(f"{ORDERS_URL}?supplier=acme")
    assert [o["id"] for o in r_supplier.json()["results"]] == [o1["id"]]
    assert r_supplier.json()["results"][0]["item_count"] == 1


@pytest.mark.django_db
def test_payment_errors_and_transitions(client):
    order = _create(client)
    url = f"{ORDERS_URL}{order['id']}/payment/"

    r1 = client.post(url, {"amount": "30.00"}, format="json")
    assert r1.status_code == 200
    assert r1.json()["status"] == "partially_paid"
    assert Decimal(r1.json()["balance_remaining"]) == Decimal("20.00")

    r_over = client.post(url, {"amount": "20.01"}, format="json")
    assert r_over.status_code == 400
    assert r_over.json()["code"] == "invalid_payment"

    r_zero = client.post(url, {"amount": "0"}, format="json")
    assert r_zero.status_code == 400
    assert r_zero.json()["code"] == "invalid_payment"

    r2 = client.post(url, {"amount": "20.00"}, format="json")
    assert r2.json()["status"] == "paid"
    assert len(r2.json()["payments"]) == 2

    r_missing = client.post(f"{ORDERS_URL}999999/payment/", {"amount": "1.00"}, format="json")
    assert r_missing.status_code == 404
    assert r_missing.json()["code"] == "order_not_found"


@pytest.mark.django_db
def test_payment_is_idempotent_with_header(client):
    order = _create(client)
    url = f"{ORDERS_URL}{order['id']}/payment/"
    key = "pay-abc-123"

    r1 = client.post(url, {"amount": "15.00"}, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r1.status_code == 200
    r2 = client.post(url, {"amount": "15.00"}, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r2.status_code == 200
    assert r2.json() == r1.json()

    # Only one payment was recorded
    assert Payment.objects.filter(order_id=order["id"]).count() == 1
    assert PurchaseOrder.objects.get(id=order["id"]).amount_paid == Decimal("15.00")

    idem = IdempotencyKey.objects.get(key=key, scope="anon", path=url, method="POST")
    assert idem.response_code == 200
    assert idem.response_json == r1.json()
    assert idem.expires_at is not None

    # Same key with a different payload is a conflict
    r3 = client.post(url, {"amount": "5.00"}, format="json", HTTP_IDEMPOTENCY_KEY=key)
    assert r3.status_code == 409
    assert r3.json()["code"] == "idempotency_conflict"


@pytest.mark.django_db
def test_idempotent_failure_is_replayed_too(client):
    order = _create(client)
    url = f"{ORDERS_URL}{order['id']}/payment/"

    r1 = client.post(url, {"amount": "99.00"}, format="json", HTTP_IDEMPOTENCY_KEY="over-1")
    r2 = client.post(url, {"amount": "99.00"}, format="json", HTTP_IDEMPOTENCY_KEY="over-1")

    assert r1.status_code == r2.status_code == 400
    assert r1.json() == r2.json() == {
        "detail": "Payment of 99.00 exceeds the balance remaining of 50.00.",
        "code": "invalid_payment",
    }
    assert not Payment.objects.exists()


@pytest.mark.django_db
def test_delivery_then_completion_over_http(client):
    branch = BranchFactory()
    order = _create(client, branch=branch)
    item_id = order["items"][0]["id"]
    base = f"{ORDERS_URL}{order['id']}"

    r_early = client.post(f"{base}/delivery/", {"items": []}, format="json")
    assert r_early.status_code == 409
    assert r_early.json()["code"] == "invalid_transition"

    client.post(f"{base}/payment/", {"amount": "50.00"}, format="json")
    r_delivered = client.post(
        f"{base}/delivery/", {"items": [{"order_item_id": item_id, "quantity_received": 9}]}, format="json"
    )
    assert r_delivered.status_code == 200
    assert r_delivered.json()["status"] == "delivered"
    assert r_delivered.json()["items"][0]["quantity_received"] == 9

    r_done = client.post(f"{base}/complete/", {}, format="json")
    assert r_done.status_code == 200
    assert r_done.json()["status"] == "completed"
    assert StockItem.objects.get(branch=branch, product_id="widget").quantity_available == 9

    r_again = client.post(f"{base}/complete/", {}, format="json")
    assert r_again.status_code == 409
    assert r_again.json()["code"] == "already_completed"
    assert StockItem.objects.get(branch=branch, product_id="widget").quantity_available == 9


@pytest.mark.django_db
def test_completion_replays_with_idempotency_key(client):
    branch = BranchFactory()
    order = _create(client, branch=branch)
    url = f"{ORDERS_URL}{order['id']}/complete/"

    r1 = client.post(url, {}, format="json", HTTP_IDEMPOTENCY_KEY="complete-1")
    r2 = client.post(url, {}, format="json", HTTP_IDEMPOTENCY_KEY="complete-1")

    assert r1.status_code == r2.status_code == 200
    assert r2.json() == r1.json()
    assert StockItem.objects.get(branch=branch, product_id="widget").quantity_available == 10
    assert StockMovement.objects.filter(movement_type=StockMovement.TYPE_PURCHASE).count() == 1


@pytest.mark.django_db
def test_completion_missing_destination_and_manual_line(client):
    order = _create(client)
    r_missing = client.post(f"{ORDERS_URL}{order['id']}/complete/", {}, format="json")
    assert r_missing.status_code == 400
    assert r_missing.json()["code"] == "missing_destination"
    assert PurchaseOrder.objects.get(id=order["id"]).status == "ordered"

    branch = BranchFactory()
    itemless = PurchaseOrderFactory()
    r_manual = client.post(
        f"{ORDERS_URL}{itemless.id}/complete/",
        {
            "manual_item": {
                "product_name": "Widget",
                "quantity": 4,
                "unit_price": "2.00",
                "branch_destination_id": [branch.id],
            }
        },
        format="json",
    )
    assert r_manual.status_code == 200
    assert r_manual.json()["status"] == "completed"
    assert StockItem.objects.get(branch=branch, product_id="widget").quantity_available == 4


@pytest.mark.django_db
def test_delete_order_over_http(client):
    fresh = _create(client)
    paid = _create(client)
    client.post(f"{ORDERS_URL}{paid['id']}/payment/", {"amount": "1.00"}, format="json")

    r_ok = client.delete(f"{ORDERS_URL}{fresh['id']}/")
    assert r_ok.status_code == 204
    assert not PurchaseOrder.objects.filter(id=fresh["id"]).exists()

    r_refused = client.delete(f"{ORDERS_URL}{paid['id']}/")
    assert r_refused.status_code == 409
    assert r_refused.json()["code"] == "invalid_transition"


@pytest.mark.django_db
def test_order_summary_endpoint(client):
    order = _create(client)
    client.post(f"{ORDERS_URL}{order['id']}/payment/", {"amount": "12.50"}, format="json")
    _create(client, quantity=1, price="3.00")

    r = client.get(f"{ORDERS_URL}summary/")

    assert r.status_code == 200
    body = r.json()
    assert body["total_orders"] == 2
    assert body["pending_orders"] == 2
    assert Decimal(body["total_value"]) == Decimal("53.00")
    assert Decimal(body["total_paid"]) == Decimal("12.50")


@pytest.mark.django_db
def test_unexpected_failure_releases_idempotency_key(client, monkeypatch):
    order = _create(client)
    url = f"{ORDERS_URL}{order['id']}/payment/"

    def _db_down(**kwargs):
        raise OperationalError("connection lost")

    monkeypatch.setattr("purchasing.views.record_payment", _db_down)
    with pytest.raises(OperationalError):
        client.post(url, {"amount": "10.00"}, format="json", HTTP_IDEMPOTENCY_KEY="retry-1")
    assert not IdempotencyKey.objects.filter(key="retry-1").exists()

    monkeypatch.undo()
    r_retry = client.post(url, {"amount": "10.00"}, format="json", HTTP_IDEMPOTENCY_KEY="retry-1")
    assert r_retry.status_code == 200
    assert Decimal(r_retry.json()["amount_paid"]) == Decimal("10.00")
    assert IdempotencyKey.objects.get(key="retry-1").response_code == 200


@pytest.mark.django_db
def test_expired_idempotency_key_runs_again(client):
    order = _create(client)
    url = f"{ORDERS_URL}{order['id']}/payment/"

    r1 = client.post(url, {"amount": "10.00"}, format="json", HTTP_IDEMPOTENCY_KEY="old-1")
    assert r1.status_code == 200
    IdempotencyKey.objects.filter(key="old-1").update(expires_at=timezone.now() - timedelta(minutes=1))

    r2 = client.post(url, {"amount": "10.00"}, format="json", HTTP_IDEMPOTENCY_KEY="old-1")

    assert r2.status_code == 200
    assert Payment.objects.filter(order_id=order["id"]).count() == 2
    assert Decimal(r2.json()["amount_paid"]) == Decimal("20.00")
    idem = IdempotencyKey.objects.get(key="old-1")
    assert idem.expires_at > timezone.now()
