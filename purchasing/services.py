import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterable, Mapping, Optional, Tuple

from common.choices import purchase_order_status_rank
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
from common.quantities import to_amount, to_quantity
from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import Count, Q, Sum
from django.utils import timezone
from django.utils.dateparse import parse_date
from inventory.models import Branch, StockItem, StockMovement
from inventory.services import credit, product_key_for

from .models import IdempotencyKey, Payment, PurchaseOrder, PurchaseOrderItem

logger = logging.getLogger("stockflow.purchasing")

OPEN_STATUSES = (
    PurchaseOrder.STATUS_ORDERED,
    PurchaseOrder.STATUS_PARTIALLY_PAID,
    PurchaseOrder.STATUS_PAID,
)


@dataclass(frozen=True)
class CreditLine:
    """One ledger credit planned by order completion."""

    product_key: str
    product_name: str
    quantity: int
    unit_cost: Decimal
    branch_id: int
    order_item: Optional[PurchaseOrderItem] = None


def _lock_order(order_id: int) -> PurchaseOrder:
    try:
        return PurchaseOrder.objects.select_for_update().get(pk=order_id)
    except (PurchaseOrder.DoesNotExist, ValueError, TypeError):
        raise OrderNotFound(f"Purchase order {order_id} not found.")


def _advance_status(order: PurchaseOrder, target: str) -> Optional[str]:
    """Move the order forward to ``target``; never backwards.

    Returns the previous status when it changed, else None.
    """
    if purchase_order_status_rank(target) <= purchase_order_status_rank(order.status):
        return None
    prev = order.status
    order.status = target
    return prev


def _log_status_change(order: PurchaseOrder, prev: Optional[str]) -> None:
    if prev is None:
        return
    logger.info(
        "order_status_changed",
        extra={
            "event": "order_status_changed",
            "order_id": order.id,
            "order_number": order.number,
            "status_from": str(prev),
            "status_to": str(order.status),
        },
    )


def _to_date(value, *, field: str, required: bool) -> Optional[date]:
    if value in (None, ""):
        if required:
            raise InvalidOrder(f"{field} is required.")
        return None
    if isinstance(value, date):
        return value
    parsed = parse_date(str(value))
    if parsed is None:
        raise InvalidOrder(f"{field} must be a date (YYYY-MM-DD).")
    return parsed


def _resolve_branch_id(branch_id) -> Optional[int]:
    if branch_id in (None, ""):
        return None
    if not Branch.objects.filter(id=branch_id).exists():
        raise BranchNotFound(f"Branch {branch_id} does not exist.")
    return int(branch_id)


def _clean_order_line(raw: Mapping, position: int) -> dict:
    product_name = (raw.get("product_name") or "").strip()
    if not product_name:
        raise InvalidOrder(f"Item {position}: product name is required.")
    return {
        "product_name": product_name,
        "product_id": (raw.get("product_id") or "").strip(),
        "quantity_ordered": to_quantity(raw.get("quantity_ordered"), error=InvalidQuantity),
        "purchase_price_per_unit": to_amount(
            raw.get("purchase_price_per_unit"), error=InvalidOrder, label=f"Item {position}: unit price"
        ),
        "branch_destination_id": _resolve_branch_id(raw.get("branch_destination_id")),
    }


@transaction.atomic
def create_order(
    *,
    supplier_name: str,
    order_date,
    items: Iterable[Mapping],
    expected_delivery_date=None,
    notes: str = "",
) -> PurchaseOrder:
    """Create a purchase order and its lines.

    Each item mapping carries ``product_name``, ``quantity_ordered``,
    ``purchase_price_per_unit`` and optionally ``product_id`` and
    ``branch_destination_id``. The total is the sum of the line subtotals.
    """

    supplier_name = (supplier_name or "").strip()
    if not supplier_name:
        raise InvalidOrder("Supplier name is required.")
    order_date = _to_date(order_date, field="Order date", required=True)
    expected_delivery_date = _to_date(expected_delivery_date, field="Expected delivery date", required=False)
    if expected_delivery_date and expected_delivery_date < order_date:
        raise InvalidOrder("Expected delivery date cannot be before the order date.")
    lines = [_clean_order_line(raw, position) for position, raw in enumerate(items or [], start=1)]
    if not lines:
        raise InvalidOrder("A purchase order needs at least one item.")

    total = sum((line["purchase_price_per_unit"] * line["quantity_ordered"] for line in lines), Decimal("0.00"))
    order = PurchaseOrder.objects.create(
        supplier_name=supplier_name,
        order_date=order_date,
        expected_delivery_date=expected_delivery_date,
        notes=notes or "",
        total_amount=total,
    )
    PurchaseOrderItem.objects.bulk_create([PurchaseOrderItem(order=order, **line) for line in lines])
    order.number = f"PO-{int(order.id):06d}"
    order.save(update_fields=["number"])
    logger.info(
        "order_created",
        extra={
            "event": "order_created",
            "order_id": order.id,
            "order_number": order.number,
            "supplier_name": supplier_name,
            "total_amount": str(total),
            "item_count": len(lines),
        },
    )
    return order


@transaction.atomic
def record_payment(*, order_id: int, amount, reference: str = "") -> PurchaseOrder:
    """Record a payment against the order's balance.

    Over-payment is rejected rather than clamped. The status becomes ``paid``
    once the balance reaches zero, otherwise ``partially_paid``, but a
    delivered or completed order keeps its status.
    """

    amount = to_amount(amount, error=InvalidPayment, label="Payment amount")
    order = _lock_order(order_id)
    balance = order.balance_remaining
    if amount > balance:
        raise InvalidPayment(f"Payment of {amount} exceeds the balance remaining of {balance}.")

    Payment.objects.create(order=order, amount=amount, reference=reference or "")
    order.amount_paid = order.amount_paid + amount
    target = PurchaseOrder.STATUS_PAID if order.balance_remaining == 0 else PurchaseOrder.STATUS_PARTIALLY_PAID
    prev = _advance_status(order, target)
    order.save(update_fields=["amount_paid", "status", "updated_at"])
    logger.info(
        "payment_recorded",
        extra={
            "event": "payment_recorded",
            "order_id": order.id,
            "amount": str(amount),
            "balance_remaining": str(order.balance_remaining),
        },
    )
    _log_status_change(order, prev)
    return order


@transaction.atomic
def mark_delivered(*, order_id: int, delivered_items: Iterable[Mapping] = ()) -> PurchaseOrder:
    """Record received quantities and move the order to ``delivered``.

    Allowed once at least one payment has been made. Received quantities may
    be below the ordered quantity. The stock ledger is not touched; goods
    enter inventory on completion.
    """

    order = _lock_order(order_id)
    if order.status not in (PurchaseOrder.STATUS_PARTIALLY_PAID, PurchaseOrder.STATUS_PAID):
        raise InvalidTransition(f"Cannot record delivery for an order that is {order.status}.")

    lines = {line.id: line for line in order.items.select_for_update()}
    updates = {}
    for entry in delivered_items or []:
        line = lines.get(_item_id(entry))
        if line is None:
            raise InvalidOrder(f"Item {entry.get('order_item_id')} does not belong to this order.")
        if line.id in updates:
            raise InvalidOrder(f"Item {line.id} is listed more than once.")
        received = to_quantity(entry.get("quantity_received"), error=InvalidQuantity, allow_zero=True)
        if received > line.quantity_ordered:
            raise InvalidQuantity(
                f"Received {received} of '{line.product_name}' but only {line.quantity_ordered} were ordered."
            )
        updates[line.id] = (received, _resolve_branch_id(entry.get("branch_destination_id")))

    for line_id, (received, branch_id) in updates.items():
        line = lines[line_id]
        line.quantity_received = received
        fields = ["quantity_received", "updated_at"]
        if branch_id is not None:
            line.branch_destination_id = branch_id
            fields.append("branch_destination")
        line.save(update_fields=fields)

    prev = _advance_status(order, PurchaseOrder.STATUS_DELIVERED)
    order.delivered_at = timezone.now()
    order.save(update_fields=["status", "delivered_at", "updated_at"])
    _log_status_change(order, prev)
    return order


def _item_id(entry: Mapping) -> Optional[int]:
    try:
        return int(entry.get("order_item_id"))
    except (TypeError, ValueError):
        return None


def _resolve_destination(override, stored_branch_id, product_name: str) -> int:
    """Return the branch a line is credited to, or fail with MissingDestination."""
    branch_id = _resolve_branch_id(override)
    if branch_id is None:
        branch_id = stored_branch_id
    if branch_id is None:
        raise MissingDestination(f"No destination branch for '{product_name}'.")
    return int(branch_id)


def _manual_credit_line(manual: Optional[Mapping]) -> CreditLine:
    if not manual:
        raise MissingDestination("Order has no items; a manual line with product, quantity, price and branch is required.")
    product_name = (manual.get("product_name") or "").strip()
    if not product_name:
        raise InvalidOrder("Manual line: product name is required.")
    quantity = to_quantity(manual.get("quantity"), error=InvalidQuantity)
    unit_cost = to_amount(manual.get("unit_price"), error=InvalidOrder, label="Manual line: unit price")
    branch_id = _resolve_destination(manual.get("branch_destination_id"), None, product_name)
    return CreditLine(
        product_key=product_key_for(manual.get("product_id"), product_name),
        product_name=product_name,
        quantity=quantity,
        unit_cost=unit_cost,
        branch_id=branch_id,
    )


def _completion_plan(
    lines: list[PurchaseOrderItem], completed_items: Iterable[Mapping], manual_item: Optional[Mapping]
) -> list[CreditLine]:
    """Validate everything completion needs before any stock is credited."""

    if not lines:
        return [_manual_credit_line(manual_item)]
    if manual_item:
        raise InvalidOrder("Manual lines are only accepted for orders without items.")

    by_id = {line.id: line for line in lines}
    overrides = {}
    for entry in completed_items or []:
        line_id = _item_id(entry)
        if line_id not in by_id:
            raise InvalidOrder(f"Item {entry.get('order_item_id')} does not belong to this order.")
        overrides[line_id] = entry

    plan = []
    for line in lines:
        override = overrides.get(line.id, {})
        if override.get("quantity_received") is not None:
            quantity = to_quantity(override["quantity_received"], error=InvalidQuantity, allow_zero=True)
        elif line.quantity_received is not None:
            quantity = int(line.quantity_received)
        else:
            quantity = int(line.quantity_ordered)
        if quantity > line.quantity_ordered:
            raise InvalidQuantity(
                f"Cannot receive {quantity} of '{line.product_name}'; {line.quantity_ordered} were ordered."
            )
        if quantity == 0:
            # Nothing of this line arrived
            continue
        branch_id = _resolve_destination(
            override.get("branch_destination_id"), line.branch_destination_id, line.product_name
        )
        plan.append(
            CreditLine(
                product_key=product_key_for(line.product_id, line.product_name),
                product_name=line.product_name,
                quantity=quantity,
                unit_cost=line.purchase_price_per_unit,
                branch_id=branch_id,
                order_item=line,
            )
        )
    return plan


def _lock_stock_rows(plan: list[CreditLine]) -> None:
    """Lock the existing stock rows the plan credits, in id order like transfer approval."""
    targets = Q()
    for entry in plan:
        targets |= Q(branch_id=entry.branch_id, product_id=entry.product_key)
    if plan:
        list(StockItem.objects.select_for_update().filter(targets).order_by("id"))


@transaction.atomic
def complete_order(
    *,
    order_id: int,
    completed_items: Iterable[Mapping] = (),
    manual_item: Optional[Mapping] = None,
) -> PurchaseOrder:
    """Accept the order's goods into branch inventory and mark it completed.

    Every line (or the manual line of an order without items) gets exactly
    one ledger credit and one purchase movement. The whole plan is validated
    before the first credit, all credits share this transaction, and the
    status flips last; a failure leaves stock and status as they were. The
    completed check runs under the order row lock, so a repeated call fails
    with AlreadyCompleted instead of crediting again.
    """

    order = _lock_order(order_id)
    if order.status == PurchaseOrder.STATUS_COMPLETED:
        raise AlreadyCompleted(f"Purchase order {order.number or order.id} is already completed.")

    lines = list(order.items.select_for_update().order_by("id"))
    plan = _completion_plan(lines, completed_items, manual_item)
    _lock_stock_rows(plan)

    now = timezone.now()
    for entry in sorted(plan, key=lambda e: (e.branch_id, e.product_key)):
        credit(
            branch_id=entry.branch_id,
            product_key=entry.product_key,
            quantity=entry.quantity,
            unit_cost=entry.unit_cost,
            product_name=entry.product_name,
        )
        StockMovement.objects.create(
            movement_type=StockMovement.TYPE_PURCHASE,
            status=StockMovement.STATUS_APPROVED,
            product_id=entry.product_key,
            product_name=entry.product_name,
            to_branch_id=entry.branch_id,
            quantity=entry.quantity,
            unit_cost=entry.unit_cost,
            reason=f"Purchase from {order.supplier_name}",
            reference=order.number or f"PO-{order.id}",
            decided_at=now,
        )
        if entry.order_item is not None:
            entry.order_item.branch_destination_id = entry.branch_id
            entry.order_item.quantity_received = entry.quantity
            entry.order_item.save(update_fields=["branch_destination", "quantity_received", "updated_at"])

    prev = _advance_status(order, PurchaseOrder.STATUS_COMPLETED)
    order.completed_at = now
    order.save(update_fields=["status", "completed_at", "updated_at"])
    _log_status_change(order, prev)
    return order


@transaction.atomic
def delete_order(*, order_id: int) -> None:
    """Delete an order that has no payments and has not been completed."""

    order = _lock_order(order_id)
    if order.status == PurchaseOrder.STATUS_COMPLETED:
        raise InvalidTransition("Completed orders cannot be deleted.")
    if order.amount_paid > 0 or order.payments.exists():
        raise InvalidTransition("Orders with recorded payments cannot be deleted.")
    number = order.number
    order.delete()
    logger.info("order_deleted", extra={"event": "order_deleted", "order_id": order_id, "order_number": number})


def order_summary() -> dict:
    totals = PurchaseOrder.objects.aggregate(
        total_orders=Count("id"),
        pending_orders=Count("id", filter=Q(status__in=OPEN_STATUSES)),
        total_value=Sum("total_amount"),
        total_paid=Sum("amount_paid"),
    )
    return {
        "total_orders": totals["total_orders"] or 0,
        "pending_orders": totals["pending_orders"] or 0,
        "total_value": totals["total_value"] or Decimal("0.00"),
        "total_paid": totals["total_paid"] or Decimal("0.00"),
    }


def _idempotency_scope(user) -> str:
    user_id = getattr(user, "id", None)
    return f"user:{user_id}" if user_id else "anon"


def _stored_body(value):
    # JSONField storage; Decimal amounts become strings as the API renders them
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Mapping):
        return {key: _stored_body(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_stored_body(item) for item in value]
    return value


def _replay(record: IdempotencyKey, request_hash: Optional[str]) -> Tuple[dict, int]:
    if record.request_hash and request_hash and record.request_hash != request_hash:
        return {"detail": "Idempotency key reused with different request payload", "code": "idempotency_conflict"}, 409
    if record.response_code is None:
        return {"detail": "Request in progress", "code": "idempotency_in_progress"}, 409
    return record.response_json, int(record.response_code)


def with_idempotency(
    *,
    key: str,
    user,
    path: str,
    method: str,
    handler: Callable[[], Tuple[dict, int]],
    request_hash: Optional[str] = None,
) -> Tuple[dict, int]:
    """Run ``handler`` at most once per key, caller scope, path and method.

    The first call claims the key and stores the handler's response, error
    responses included, and later calls get that stored response back. A
    different payload under the same key is a 409 conflict. A key past its
    ``expires_at`` is dropped and the request runs afresh. When the handler
    raises, the claim is released so the caller can retry with the same key.
    """

    identity = {"key": key, "scope": _idempotency_scope(user), "path": str(path), "method": str(method).upper()}
    now = timezone.now()
    IdempotencyKey.objects.filter(expires_at__lte=now, **identity).delete()

    try:
        with transaction.atomic():
            record = IdempotencyKey.objects.create(
                request_hash=request_hash,
                expires_at=now + timedelta(hours=getattr(settings, "IDEMPOTENCY_TTL_HOURS", 24)),
                **identity,
            )
    except IntegrityError:
        return _replay(IdempotencyKey.objects.get(**identity), request_hash)

    try:
        body, code = handler()
    except Exception:
        IdempotencyKey.objects.filter(pk=record.pk).delete()
        logger.warning(
            "idempotency_released",
            extra={"event": "idempotency_released", "idempotency_key": key, "path": identity["path"]},
        )
        raise

    IdempotencyKey.objects.filter(pk=record.pk).update(response_json=_stored_body(body), response_code=code)
    return body, code


def compute_request_hash(data: Optional[Mapping]) -> Optional[str]:
    """SHA-256 of the request body serialised with sorted keys; None for an empty body."""
    if not data:
        return None
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
