"""Selectors for inventory domain (multi-branch)."""

from decimal import Decimal

from django.db.models import DecimalField, ExpressionWrapper, F, Q, Sum
from django.db.models.functions import Coalesce

from .models import StockItem, StockMovement


def stock_for_branch(branch_id: int):
    return StockItem.objects.filter(branch_id=branch_id).select_related("branch").order_by("product_name", "id")


def low_stock_for_branch(branch_id: int):
    return stock_for_branch(branch_id).filter(quantity_available__lte=F("reorder_level"))


def stock_value_for_branch(branch_id: int) -> Decimal:
    value = ExpressionWrapper(
        F("quantity_available") * F("unit_price"), output_field=DecimalField(max_digits=18, decimal_places=2)
    )
    total = StockItem.objects.filter(branch_id=branch_id).aggregate(
        total=Coalesce(Sum(value), Decimal("0.00"), output_field=DecimalField(max_digits=18, decimal_places=2))
    )["total"]
    return Decimal(total).quantize(Decimal("0.01"))


def branch_stock_summary(branch_id: int) -> dict:
    items = stock_for_branch(branch_id)
    return {
        "branch": branch_id,
        "product_count": items.count(),
        "low_stock_count": low_stock_for_branch(branch_id).count(),
        "stock_value": stock_value_for_branch(branch_id),
    }


def pending_transfers_for_branch(branch_id: int):
    """Transfers waiting for the destination branch to approve or reject."""
    return (
        StockMovement.objects.filter(
            movement_type=StockMovement.TYPE_TRANSFER,
            status=StockMovement.STATUS_PENDING,
            to_branch_id=branch_id,
        )
        .select_related("from_branch", "to_branch")
        .order_by("created_at", "id")
    )


def movements_for_branch(branch_id: int):
    return (
        StockMovement.objects.filter(Q(from_branch_id=branch_id) | Q(to_branch_id=branch_id))
        .select_related("from_branch", "to_branch")
        .order_by("-created_at", "-id")
    )


# EOF
