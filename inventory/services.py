"""Inventory services (multi-branch): the stock ledger.

Every quantity change goes through :func:`credit` or :func:`debit`, which lock
the (branch, product) stock row for the duration of the caller's transaction.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from common.exceptions import (
    BranchNotFound,
    InsufficientStock,
    InvalidProduct,
    InvalidQuantity,
    StockItemNotFound,
)
from common.quantities import CENT, to_amount, to_quantity
from django.db import transaction
from django.utils import timezone
from django.utils.text import slugify

from .models import Branch, StockItem, StockMovement

logger = logging.getLogger("stockflow.inventory")


def product_key_for(product_id: str | None = None, product_name: str | None = None) -> str:
    """Resolve the ledger key of a product.

    An explicit product id wins; otherwise the slug of the product name is
    used, so unnamed-id purchases of "Blue Widget" always land on
    ``blue-widget``.
    """
    key = (product_id or "").strip()
    if key:
        return key
    key = slugify(product_name or "")
    if not key:
        raise InvalidProduct()
    return key


def get_stock_item(*, branch_id: int, product_key: str) -> StockItem:
    try:
        return StockItem.objects.select_related("branch").get(branch_id=branch_id, product_id=product_key)
    except StockItem.DoesNotExist:
        raise StockItemNotFound(f"No stock of '{product_key}' at branch {branch_id}.")


def _lock_stock_item(branch_id: int, product_key: str) -> StockItem:
    try:
        return StockItem.objects.select_for_update().get(branch_id=branch_id, product_id=product_key)
    except StockItem.DoesNotExist:
        raise StockItemNotFound(f"No stock of '{product_key}' at branch {branch_id}.")


def _lock_or_create_stock_item(*, branch_id: int, product_key: str, product_name: str, unit_cost: Decimal):
    if not Branch.objects.filter(id=branch_id).exists():
        raise BranchNotFound(f"Branch {branch_id} does not exist.")
    item, created = StockItem.objects.select_for_update().get_or_create(
        branch_id=branch_id,
        product_id=product_key,
        defaults={
            "product_name": product_name or product_key,
            "quantity_available": 0,
            "unit_price": unit_cost,
        },
    )
    return item, created


def _weighted_unit_price(item: StockItem, quantity: int, unit_cost: Decimal) -> Decimal:
    on_hand = int(item.quantity_available)
    if on_hand <= 0:
        return unit_cost
    total_value = item.unit_price * on_hand + unit_cost * quantity
    return (total_value / (on_hand + quantity)).quantize(CENT, rounding=ROUND_HALF_UP)


@transaction.atomic
def credit(
    *,
    branch_id: int,
    product_key: str,
    quantity: int,
    unit_cost,
    product_name: str = "",
    reorder_level: int | None = None,
) -> StockItem:
    """Increase stock of a product at a branch, creating the row on first use.

    The unit price becomes the quantity-weighted average of what was on hand
    and the incoming cost.
    """
    quantity = to_quantity(quantity, error=InvalidQuantity)
    unit_cost = to_amount(unit_cost, error=InvalidQuantity, label="Unit cost")
    product_key = product_key_for(product_key, product_name)

    item, created = _lock_or_create_stock_item(
        branch_id=branch_id, product_key=product_key, product_name=product_name, unit_cost=unit_cost
    )
    item.unit_price = _weighted_unit_price(item, quantity, unit_cost)
    item.quantity_available = int(item.quantity_available) + quantity
    fields = ["quantity_available", "unit_price", "updated_at"]
    if reorder_level is not None:
        item.reorder_level = to_quantity(reorder_level, error=InvalidQuantity, allow_zero=True)
        fields.append("reorder_level")
    if product_name and not item.product_name:
        item.product_name = product_name
        fields.append("product_name")
    item.save(update_fields=fields)
    logger.info(
        "stock_credited",
        extra={
            "event": "stock_credited",
            "branch_id": branch_id,
            "product_key": product_key,
            "quantity": quantity,
            "quantity_available": item.quantity_available,
            "stock_item_created": created,
        },
    )
    return item


@transaction.atomic
def debit(*, branch_id: int, product_key: str, quantity: int) -> StockItem:
    """Decrease stock of a product at a branch.

    Raises InsufficientStock when more is requested than is available at the
    time the row lock is taken.
    """
    quantity = to_quantity(quantity, error=InvalidQuantity)
    item = _lock_stock_item(branch_id, product_key)
    available = int(item.quantity_available)
    if quantity > available:
        raise InsufficientStock(
            f"Only {available} of '{product_key}' available at branch {branch_id}; {quantity} requested."
        )
    item.quantity_available = available - quantity
    item.save(update_fields=["quantity_available", "updated_at"])
    logger.info(
        "stock_debited",
        extra={
            "event": "stock_debited",
            "branch_id": branch_id,
            "product_key": product_key,
            "quantity": quantity,
            "quantity_available": item.quantity_available,
        },
    )
    return item


@transaction.atomic
def add_stock(
    *,
    branch_id: int,
    product_name: str,
    quantity: int,
    unit_price,
    product_id: str | None = None,
    reorder_level: int | None = None,
    requested_by: str = "",
    reason: str = "",
) -> StockItem:
    """Record stock received at a branch outside of a purchase order."""

    product_name = (product_name or "").strip()
    product_key = product_key_for(product_id, product_name)
    item = credit(
        branch_id=branch_id,
        product_key=product_key,
        quantity=quantity,
        unit_cost=unit_price,
        product_name=product_name,
        reorder_level=reorder_level,
    )
    StockMovement.objects.create(
        movement_type=StockMovement.TYPE_RECEIPT,
        status=StockMovement.STATUS_APPROVED,
        product_id=product_key,
        product_name=item.product_name,
        to_branch_id=branch_id,
        quantity=to_quantity(quantity, error=InvalidQuantity),
        unit_cost=to_amount(unit_price, error=InvalidQuantity, label="Unit price"),
        reason=reason or "stock added",
        requested_by=requested_by,
        decided_by=requested_by,
        decided_at=timezone.now(),
    )
    logger.info(
        "stock_added",
        extra={"event": "stock_added", "branch_id": branch_id, "product_key": product_key, "stock_item_id": item.id},
    )
    return item


@transaction.atomic
def update_stock_details(
    *,
    stock_item_id: int,
    product_name: str | None = None,
    unit_price=None,
    reorder_level: int | None = None,
) -> StockItem:
    """Edit the descriptive fields of a stock row. Quantities are ledger-only."""

    try:
        item = StockItem.objects.select_for_update().get(id=stock_item_id)
    except StockItem.DoesNotExist:
        raise StockItemNotFound()
    fields = ["updated_at"]
    if product_name is not None:
        name = product_name.strip()
        if not name:
            raise InvalidProduct("Product name cannot be blank.")
        item.product_name = name
        fields.append("product_name")
    if unit_price is not None:
        item.unit_price = to_amount(unit_price, error=InvalidQuantity, label="Unit price")
        fields.append("unit_price")
    if reorder_level is not None:
        item.reorder_level = to_quantity(reorder_level, error=InvalidQuantity, allow_zero=True)
        fields.append("reorder_level")
    item.save(update_fields=fields)
    return item


@transaction.atomic
def retire_stock(*, stock_item_id: int, reason: str = "", requested_by: str = "") -> StockItem:
    """Retire a stock row by zeroing its quantity.

    The row is kept so movement history still resolves. The removed quantity
    is written as an approved adjustment; retiring an empty row is a no-op.
    """

    try:
        item = StockItem.objects.select_for_update().select_related("branch").get(id=stock_item_id)
    except StockItem.DoesNotExist:
        raise StockItemNotFound()
    removed = int(item.quantity_available)
    if removed == 0:
        return item

    item.quantity_available = 0
    item.save(update_fields=["quantity_available", "updated_at"])
    StockMovement.objects.create(
        movement_type=StockMovement.TYPE_ADJUSTMENT,
        status=StockMovement.STATUS_APPROVED,
        product_id=item.product_id,
        product_name=item.product_name,
        from_branch_id=item.branch_id,
        quantity=removed,
        unit_cost=item.unit_price,
        reason=reason or "stock retired",
        requested_by=requested_by,
        decided_by=requested_by,
        decided_at=timezone.now(),
    )
    logger.info(
        "stock_retired",
        extra={
            "event": "stock_retired",
            "branch_id": item.branch_id,
            "product_key": item.product_id,
            "stock_item_id": item.id,
            "quantity": removed,
        },
    )
    return item


# EOF
