"""Inter-branch stock transfers: pending -> approved | rejected.

A request only records intent; no stock moves until approval, and a rejected
request never touches the ledger. Requests reserve nothing, so several pending
requests may together exceed what the source holds. The approval-time debit
is the authority: whichever approval runs out of stock fails and its request
stays pending.
"""

import logging

from common.exceptions import (
    BranchNotFound,
    InsufficientStock,
    InvalidQuantity,
    InvalidRoute,
    InvalidTransition,
    MovementNotFound,
    StockItemNotFound,
)
from common.quantities import to_quantity
from django.db import transaction
from django.utils import timezone

from .models import Branch, StockItem, StockMovement
from .services import credit, debit, get_stock_item

logger = logging.getLogger("stockflow.inventory")


def request_transfer(
    *,
    product_key: str,
    from_branch_id: int,
    to_branch_id: int,
    quantity: int,
    reason: str = "",
    requested_by: str = "",
) -> StockMovement:
    """Create a pending transfer after checking the source can cover it now."""

    quantity = to_quantity(quantity, error=InvalidQuantity)
    if int(from_branch_id) == int(to_branch_id):
        raise InvalidRoute()
    if not Branch.objects.filter(id=to_branch_id).exists():
        raise BranchNotFound(f"Branch {to_branch_id} does not exist.")

    source = get_stock_item(branch_id=from_branch_id, product_key=product_key)
    available = int(source.quantity_available)
    if quantity > available:
        raise InsufficientStock(f"Only {available} of '{product_key}' available at branch {from_branch_id}.")

    movement = StockMovement.objects.create(
        movement_type=StockMovement.TYPE_TRANSFER,
        status=StockMovement.STATUS_PENDING,
        product_id=source.product_id,
        product_name=source.product_name,
        from_branch_id=from_branch_id,
        to_branch_id=to_branch_id,
        quantity=quantity,
        reason=reason,
        requested_by=requested_by,
    )
    logger.info(
        "transfer_requested",
        extra={
            "event": "transfer_requested",
            "movement_id": movement.id,
            "product_key": movement.product_id,
            "from_branch_id": from_branch_id,
            "to_branch_id": to_branch_id,
            "quantity": quantity,
        },
    )
    return movement


def _lock_pending_transfer(movement_id: int) -> StockMovement:
    try:
        movement = StockMovement.objects.select_for_update().get(
            id=movement_id, movement_type=StockMovement.TYPE_TRANSFER
        )
    except StockMovement.DoesNotExist:
        raise MovementNotFound()
    if movement.status != StockMovement.STATUS_PENDING:
        raise InvalidTransition(f"Transfer is already {movement.status}.")
    return movement


@transaction.atomic
def approve_transfer(*, movement_id: int, approved_by: str = "") -> StockMovement:
    """Approve a pending transfer: debit the source, then credit the destination.

    Both ledger changes and the status change commit together. When the source
    no longer holds enough stock the transaction rolls back, the request stays
    pending and InsufficientStock is raised.
    """
    movement = _lock_pending_transfer(movement_id)

    # Lock both stock rows in id order so opposite-direction approvals cannot deadlock
    list(
        StockItem.objects.select_for_update()
        .filter(product_id=movement.product_id, branch_id__in=[movement.from_branch_id, movement.to_branch_id])
        .order_by("id")
    )
    try:
        source = debit(branch_id=movement.from_branch_id, product_key=movement.product_id, quantity=movement.quantity)
    except StockItemNotFound:
        raise InsufficientStock(f"Branch {movement.from_branch_id} no longer holds '{movement.product_id}'.")
    credit(
        branch_id=movement.to_branch_id,
        product_key=movement.product_id,
        quantity=movement.quantity,
        unit_cost=source.unit_price,
        product_name=source.product_name or movement.product_name,
    )

    movement.status = StockMovement.STATUS_APPROVED
    movement.unit_cost = source.unit_price
    movement.decided_by = approved_by
    movement.decided_at = timezone.now()
    movement.save(update_fields=["status", "unit_cost", "decided_by", "decided_at", "updated_at"])
    logger.info(
        "transfer_approved",
        extra={
            "event": "transfer_approved",
            "movement_id": movement.id,
            "product_key": movement.product_id,
            "from_branch_id": movement.from_branch_id,
            "to_branch_id": movement.to_branch_id,
            "quantity": movement.quantity,
        },
    )
    return movement


@transaction.atomic
def reject_transfer(*, movement_id: int, rejected_by: str = "") -> StockMovement:
    """Reject a pending transfer. No stock is touched."""

    movement = _lock_pending_transfer(movement_id)
    movement.status = StockMovement.STATUS_REJECTED
    movement.decided_by = rejected_by
    movement.decided_at = timezone.now()
    movement.save(update_fields=["status", "decided_by", "decided_at", "updated_at"])
    logger.info(
        "transfer_rejected",
        extra={"event": "transfer_rejected", "movement_id": movement.id, "product_key": movement.product_id},
    )
    return movement


# EOF
