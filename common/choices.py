"""Shared enumerations and choices used across apps."""

from django.db import models


class MovementType(models.TextChoices):
    TRANSFER = "transfer", "Transfer"
    PURCHASE = "purchase", "Purchase"
    RECEIPT = "receipt", "Receipt"
    ADJUSTMENT = "adjustment", "Adjustment"


class MovementStatus(models.TextChoices):
    """Workflow states of a stock movement. Approved and rejected are terminal."""

    PENDING = "pending", "Pending"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"


class PurchaseOrderStatus(models.TextChoices):
    """Lifecycle statuses for supplier purchase orders, in lifecycle order."""

    ORDERED = "ordered", "Ordered"
    PARTIALLY_PAID = "partially_paid", "Partially paid"
    PAID = "paid", "Paid"
    DELIVERED = "delivered", "Delivered"
    COMPLETED = "completed", "Completed"


# Lifecycle position of each status; status changes only move forward.
_PURCHASE_ORDER_LIFECYCLE = [status.value for status in PurchaseOrderStatus]


def purchase_order_status_rank(status: str) -> int:
    return _PURCHASE_ORDER_LIFECYCLE.index(str(status))
