import datetime
from decimal import Decimal

import pytest
from common.exceptions import (
    AlreadyCompleted,
    BranchNotFound,
    InvalidOrder,
    InvalidPayment,
    InvalidQuantity,
    InvalidTransition,
    MissingDestination,
    OrderNotFound,
)
from inventory.models import StockItem, StockMovement
from inventory.tests.factories import BranchFactory, StockItemFactory
from purchasing.models import Payment, PurchaseOrder
from purchasing.services import (
    complete_order,
    create_order,
    delete_order,
    mark_delivered,
    order_summary,
    record_payment,
)
from purchasing.tests.factories import PurchaseOrderFactory

TODAY = datetime.date(2025, 3, 1)


def _order(*lines, supplier="Acme Supplies"):
    return create_order(supplier_name=supplier, order_date=TODAY, items=list(lines))


def _line(name="Widget", quantity=10, price="5.00", branch=None, product_id=""):
    return {
        "product_name": name,
        "product_id": product_id,
        "quantity_ordered": quantity,
        "purchase_price_per_unit": price,
        "branch_destination_id": branch.id if branch else None,
    }


@pytest.mark.django_db
def test_create_order_totals_and_number():
    branch = BranchFactory()

    order = _order(_line(branch=branch), _line(name="Gadget", quantity=3, price="1.25"))

    assert order.status == PurchaseOrder.STATUS_ORDERED
    assert order.total_amount == Decimal("53.75")
    assert order.amount_paid == Decimal("0.00")
    assert order.number == f"PO-{order.id:06d}"
    assert order.items.count() == 2
    assert order.items.get(product_name="Gadget").branch_destination_id is None


@pytest.mark.django_db
@pytest.mark.parametrize(
    "kwargs, error",
    [
        ({"supplier_name": "  "}, InvalidOrder),
        ({"order_date": None}, InvalidOrder),
        ({"items": []}, InvalidOrder),
        ({"items": [_line(name="")]}, InvalidOrder),
        ({"items": [_line(quantity=0)]}, InvalidQuantity),
        ({"items": [_line(quantity=-4)]}, InvalidQuantity),
        ({"items": [_line(price="0")]}, InvalidOrder),
        ({"expected_delivery_date": datetime.date(2025, 2, 1)}, InvalidOrder),
    ],
)
def test_create_order_validation(kwargs, error):
    params = {"supplier_name": "Acme", "order_date": TODAY, "items": [_line()]}
    params.update(kwargs)

    with pytest.raises(error):
        create_order(**params)
    assert not PurchaseOrder.objects.exists()


@pytest.mark.django_db
def test_create_order_unknown_destination_branch():
    line = _line()
    line["branch_destination_id"] = 999999
    with pytest.raises(BranchNotFound):
        _order(line)
    assert not PurchaseOrder.objects.exists()


@pytest.mark.django_db
def test_payments_move_status_and_balance():
    order = _order(_line(quantity=10, price="5.00"))
    assert order.total_amount == Decimal("50.00")

    order = record_payment(order_id=order.id, amount="30.00", reference="TRX-1")
    assert order.status == PurchaseOrder.STATUS_PARTIALLY_PAID
    assert order.balance_remaining == Decimal("20.00")

    order = record_payment(order_id=order.id, amount=Decimal("20.00"))
    assert order.status == PurchaseOrder.STATUS_PAID
    assert order.balance_remaining == Decimal("0.00")

    with pytest.raises(InvalidPayment):
        record_payment(order_id=order.id, amount="0.01")

    order.refresh_from_db()
    assert order.amount_paid == Decimal("50.00")
    assert list(order.payments.values_list("amount", flat=True)) == [Decimal("30.00"), Decimal("20.00")]


@pytest.mark.django_db
@pytest.mark.parametrize("amount", ["0", "-5.00", "50.01", "abc", None])
def test_invalid_payments_change_nothing(amount):
    order = _order(_line(quantity=10, price="5.00"))

    with pytest.raises(InvalidPayment):
        record_payment(order_id=order.id, amount=amount)

    order.refresh_from_db()
    assert order.amount_paid == Decimal("0.00")
    assert order.status == PurchaseOrder.STATUS_ORDERED
    assert not Payment.objects.exists()


@pytest.mark.django_db
def test_unknown_order_is_not_found():
    with pytest.raises(OrderNotFound):
        record_payment(order_id=999999, amount="1.00")
    with pytest.raises(OrderNotFound):
        mark_delivered(order_id=999999, delivered_items=[])
    with pytest.raises(OrderNotFound):
        complete_order(order_id=999999)
    with pytest.raises(OrderNotFound):
        delete_order(order_id=999999)


@pytest.mark.django_db
def test_delivery_requires_a_payment_and_records_received_quantities():
    branch = BranchFactory()
    order = _order(_line(branch=branch))
    item = order.items.get()

    with pytest.raises(InvalidTransition):
        mark_delivered(order_id=order.id, delivered_items=[])

    record_payment(order_id=order.id, amount="10.00")
    order = mark_delivered(order_id=order.id, delivered_items=[{"order_item_id": item.id, "quantity_received": 8}])

    assert order.status == PurchaseOrder.STATUS_DELIVERED
    assert order.delivered_at is not None
    item.refresh_from_db()
    assert item.quantity_received == 8
    # Delivery never credits stock
    assert not StockItem.objects.exists()


@pytest.mark.django_db
def test_delivery_rejects_bad_lines():
    order = _order(_line(quantity=5, branch=BranchFactory()))
    item = order.items.get()
    record_payment(order_id=order.id, amount="5.00")

    with pytest.raises(InvalidQuantity):
        mark_delivered(order_id=order.id, delivered_items=[{"order_item_id": item.id, "quantity_received": 6}])
    with pytest.raises(InvalidOrder):
        mark_delivered(order_id=order.id, delivered_items=[{"order_item_id": 999999, "quantity_received": 1}])

    order.refresh_from_db()
    assert order.status == PurchaseOrder.STATUS_PARTIALLY_PAID


@pytest.mark.django_db
def test_status_never_regresses_when_paying_a_delivered_order():
    order = _order(_line(quantity=10, price="5.00", branch=BranchFactory()))
    record_payment(order_id=order.id, amount="10.00")
    mark_delivered(order_id=order.id, delivered_items=[])

    order = record_payment(order_id=order.id, amount="40.00")

    assert order.status == PurchaseOrder.STATUS_DELIVERED
    assert order.balance_remaining == Decimal("0.00")


@pytest.mark.django_db
def test_complete_credits_each_line_once_and_is_idempotent():
    branch = BranchFactory()
    order = _order(_line(name="Widget", quantity=10, price="5.00", branch=branch))

    order = complete_order(order_id=order.id)

    assert order.status == PurchaseOrder.STATUS_COMPLETED
    assert order.completed_at is not None
    stock = StockItem.objects.get(branch=branch, product_id="widget")
    assert stock.quantity_available == 10
    assert stock.unit_price == Decimal("5.00")
    movement = StockMovement.objects.get(movement_type=StockMovement.TYPE_PURCHASE)
    assert movement.reference == order.number
    assert movement.status == StockMovement.STATUS_APPROVED
    assert movement.to_branch_id == branch.id

    with pytest.raises(AlreadyCompleted):
        complete_order(order_id=order.id)

    stock.refresh_from_db()
    assert stock.quantity_available == 10
    assert StockMovement.objects.filter(movement_type=StockMovement.TYPE_PURCHASE).count() == 1


@pytest.mark.django_db
def test_complete_is_all_or_nothing_when_a_destination_is_missing():
    branch = BranchFactory()
    StockItemFactory(branch=branch, product_id="widget", quantity_available=4)
    order = _order(
        _line(name="Widget", branch=branch),
        _line(name="Gadget", branch=None),
        _line(name="Sprocket", branch=branch),
    )
    record_payment(order_id=order.id, amount="1.00")

    with pytest.raises(MissingDestination):
        complete_order(order_id=order.id)

    order.refresh_from_db()
    assert order.status == PurchaseOrder.STATUS_PARTIALLY_PAID
    assert StockItem.objects.get(branch=branch, product_id="widget").quantity_available == 4
    assert not StockItem.objects.filter(product_id__in=["gadget", "sprocket"]).exists()
    assert not StockMovement.objects.exists()


@pytest.mark.django_db
def test_complete_resolves_destination_and_quantity_overrides():
    branch_a = BranchFactory()
    branch_b = BranchFactory()
    order = _order(
        _line(name="Widget", quantity=10, branch=branch_a),
        _line(name="Gadget", quantity=6, branch=None),
        _line(name="Sprocket", quantity=2, branch=branch_a),
    )
    widget, gadget, sprocket = order.items.order_by("id")
    record_payment(order_id=order.id, amount="5.00")
    mark_delivered(order_id=order.id, delivered_items=[{"order_item_id": widget.id, "quantity_received": 7}])

    complete_order(
        order_id=order.id,
        completed_items=[
            {"order_item_id": gadget.id, "branch_destination_id": branch_b.id},
            {"order_item_id": sprocket.id, "quantity_received": 0},
        ],
    )

    # Delivery's received quantity is used when completion gives none
    assert StockItem.objects.get(branch=branch_a, product_id="widget").quantity_available == 7
    assert StockItem.objects.get(branch=branch_b, product_id="gadget").quantity_available == 6
    # Nothing of the sprocket line arrived
    assert not StockItem.objects.filter(product_id="sprocket").exists()
    assert StockMovement.objects.filter(movement_type=StockMovement.TYPE_PURCHASE).count() == 2
    gadget.refresh_from_db()
    assert gadget.branch_destination_id == branch_b.id
    assert gadget.quantity_received == 6


@pytest.mark.django_db
def test_complete_rejects_receiving_more_than_ordered():
    branch = BranchFactory()
    order = _order(_line(quantity=3, branch=branch))
    item = order.items.get()

    with pytest.raises(InvalidQuantity):
        complete_order(order_id=order.id, completed_items=[{"order_item_id": item.id, "quantity_received": 4}])

    order.refresh_from_db()
    assert order.status == PurchaseOrder.STATUS_ORDERED
    assert not StockItem.objects.exists()


@pytest.mark.django_db
def test_complete_uses_product_id_as_ledger_key():
    branch = BranchFactory()
    existing = StockItemFactory(branch=branch, product_id="SKU-9", quantity_available=10, unit_price=Decimal("1.00"))
    order = _order(_line(name="Nine", product_id="SKU-9", quantity=10, price="3.00", branch=branch))

    complete_order(order_id=order.id)

    existing.refresh_from_db()
    assert existing.quantity_available == 20
    assert existing.unit_price == Decimal("2.00")


@pytest.mark.django_db
def test_itemless_order_needs_a_complete_manual_line():
    branch = BranchFactory()
    order = PurchaseOrderFactory()

    with pytest.raises(MissingDestination):
        complete_order(order_id=order.id)
    with pytest.raises(MissingDestination):
        complete_order(
            order_id=order.id,
            manual_item={"product_name": "Widget", "quantity": 5, "unit_price": "2.00"},
        )
    with pytest.raises(InvalidQuantity):
        complete_order(
            order_id=order.id,
            manual_item={"product_name": "Widget", "quantity": 0, "unit_price": "2.00", "branch_destination_id": branch.id},
        )
    assert not StockItem.objects.exists()

    order = complete_order(
        order_id=order.id,
        manual_item={"product_name": "Widget", "quantity": 5, "unit_price": "2.00", "branch_destination_id": branch.id},
    )

    assert order.status == PurchaseOrder.STATUS_COMPLETED
    stock = StockItem.objects.get()
    assert (stock.branch_id, stock.product_id, stock.quantity_available) == (branch.id, "widget", 5)
    assert StockMovement.objects.filter(movement_type=StockMovement.TYPE_PURCHASE).count() == 1


@pytest.mark.django_db
def test_manual_line_refused_when_order_has_items():
    branch = BranchFactory()
    order = _order(_line(branch=branch))

    with pytest.raises(InvalidOrder):
        complete_order(
            order_id=order.id,
            manual_item={"product_name": "Extra", "quantity": 1, "unit_price": "1.00", "branch_destination_id": branch.id},
        )
    assert not StockItem.objects.exists()


@pytest.mark.django_db
def test_delivery_not_allowed_after_completion():
    order = _order(_line(branch=BranchFactory()))
    record_payment(order_id=order.id, amount="50.00")
    complete_order(order_id=order.id)

    with pytest.raises(InvalidTransition):
        mark_delivered(order_id=order.id, delivered_items=[])


@pytest.mark.django_db
def test_delete_order_rules():
    fresh = _order(_line())
    paid = _order(_line())
    record_payment(order_id=paid.id, amount="1.00")
    done = _order(_line(branch=BranchFactory()))
    complete_order(order_id=done.id)

    delete_order(order_id=fresh.id)
    assert not PurchaseOrder.objects.filter(id=fresh.id).exists()

    with pytest.raises(InvalidTransition):
        delete_order(order_id=paid.id)
    with pytest.raises(InvalidTransition):
        delete_order(order_id=done.id)
    assert PurchaseOrder.objects.filter(id__in=[paid.id, done.id]).count() == 2


@pytest.mark.django_db
def test_order_summary():
    assert order_summary() == {
        "total_orders": 0,
        "pending_orders": 0,
        "total_value": Decimal("0.00"),
        "total_paid": Decimal("0.00"),
    }

    first = _order(_line(quantity=10, price="5.00"))
    record_payment(order_id=first.id, amount="20.00")
    second = _order(_line(quantity=2, price="5.00", branch=BranchFactory()))
    complete_order(order_id=second.id)

    summary = order_summary()
    assert summary["total_orders"] == 2
    assert summary["pending_orders"] == 1
    assert summary["total_value"] == Decimal("60.00")
    assert summary["total_paid"] == Decimal("20.00")


@pytest.mark.django_db
def test_completion_credits_lines_in_branch_and_product_order():
    north = BranchFactory()
    south = BranchFactory()
    StockItemFactory(branch=north, product_id="nut", quantity_available=2)
    order = _order(
        _line(name="Nut", quantity=1, branch=south, product_id="nut"),
        _line(name="Nut", quantity=2, branch=north, product_id="nut"),
        _line(name="Bolt", quantity=3, branch=north, product_id="bolt"),
    )

    complete_order(order_id=order.id)

    credited = list(
        StockMovement.objects.filter(movement_type=StockMovement.TYPE_PURCHASE)
        .order_by("id")
        .values_list("to_branch_id", "product_id", "quantity")
    )
    assert credited == [(north.id, "bolt", 3), (north.id, "nut", 2), (south.id, "nut", 1)]
    assert StockItem.objects.get(branch=north, product_id="nut").quantity_available == 4
