"""Inventory models (multi-branch).

Tracks stock per branch and product key, plus one movement row for every
stock change or transfer request.
"""

from decimal import Decimal

from common.choices import MovementStatus, MovementType
from django.db import models


class TimeStampedModel(models.Model):
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class Branch(TimeStampedModel):
    """A business location holding its own stock."""

    name = models.CharField(max_length=120, unique=True)
    location = models.CharField(max_length=200, blank=True)

    class Meta:
        ordering = ["name", "id"]
        verbose_name_plural = "branches"

    def __str__(self) -> str:  # pragma: no cover
        return self.name


class StockItem(TimeStampedModel):
    # Keyed by (branch, product_id); product_id is the ledger's product key
    branch = models.ForeignKey(Branch, related_name="stock_items", on_delete=models.CASCADE)
    product_id = models.CharField(max_length=120)
    product_name = models.CharField(max_length=200)
    quantity_available = models.IntegerField(default=0)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2)
    reorder_level = models.IntegerField(default=0)

    class Meta:
        ordering = ["branch_id", "product_name", "id"]
        constraints = [
            models.CheckConstraint(
                name="stock_quantity_non_negative", condition=models.Q(quantity_available__gte=0)
            ),
            models.CheckConstraint(name="stock_unit_price_positive", condition=models.Q(unit_price__gt=0)),
            models.CheckConstraint(name="stock_reorder_level_non_negative", condition=models.Q(reorder_level__gte=0)),
            models.UniqueConstraint(fields=["branch", "product_id"], name="unique_stockitem_per_branch_product"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"StockItem<{self.branch_id}:{self.product_id}> q={self.quantity_available}"

    @property
    def stock_value(self) -> Decimal:
        return (self.unit_price or Decimal("0.00")) * Decimal(int(self.quantity_available))

    @property
    def is_low_stock(self) -> bool:
        return int(self.quantity_available) <= int(self.reorder_level)


class StockMovement(TimeStampedModel):
    """Audit record of a stock change, or a transfer request awaiting approval.

    Transfers start ``pending``; purchases and receipts are written already
    ``approved``. Approved and rejected rows are never modified again.
    """

    TYPE_TRANSFER = MovementType.TRANSFER
    TYPE_PURCHASE = MovementType.PURCHASE
    TYPE_RECEIPT = MovementType.RECEIPT
    TYPE_ADJUSTMENT = MovementType.ADJUSTMENT
    TYPE_CHOICES = MovementType.choices

    STATUS_PENDING = MovementStatus.PENDING
    STATUS_APPROVED = MovementStatus.APPROVED
    STATUS_REJECTED = MovementStatus.REJECTED
    STATUS_CHOICES = MovementStatus.choices

    movement_type = models.CharField(max_length=16, choices=TYPE_CHOICES)
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_PENDING, db_index=True)
    product_id = models.CharField(max_length=120)
    product_name = models.CharField(max_length=200, blank=True)
    from_branch = models.ForeignKey(
        Branch, null=True, blank=True, related_name="outgoing_movements", on_delete=models.PROTECT
    )
    to_branch = models.ForeignKey(
        Branch, null=True, blank=True, related_name="incoming_movements", on_delete=models.PROTECT
    )
    quantity = models.PositiveIntegerField()
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    reason = models.CharField(max_length=200, blank=True)
    reference = models.CharField(max_length=120, blank=True)
    requested_by = models.CharField(max_length=120, blank=True)
    decided_by = models.CharField(max_length=120, blank=True)
    decided_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        constraints = [
            models.CheckConstraint(name="movement_quantity_positive", condition=models.Q(quantity__gt=0)),
            models.CheckConstraint(
                name="transfer_distinct_branches",
                condition=~models.Q(movement_type=MovementType.TRANSFER, from_branch=models.F("to_branch")),
            ),
        ]
        indexes = [
            models.Index(fields=["to_branch", "status"], name="movement_to_branch_status_idx"),
            models.Index(fields=["from_branch", "status"], name="movement_from_branch_status_idx"),
            models.Index(fields=["reference"], name="movement_reference_idx"),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.movement_type} {self.quantity} x {self.product_id} ({self.status})"

    @property
    def is_terminal(self) -> bool:
        return self.status in (self.STATUS_APPROVED, self.STATUS_REJECTED)


# EOF
