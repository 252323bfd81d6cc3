from decimal import Decimal

from common.choices import PurchaseOrderStatus
from django.db import models


class TimeStampedModel(models.Model):
    """Abstract base model adding created/updated timestamps."""

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True


class PurchaseOrder(TimeStampedModel):
    """Supplier order with its lines, payments and delivery/completion state.

    ``total_amount`` is fixed from the line subtotals when the order is created;
    ``amount_paid`` always equals the sum of the order's payments.
    """

    STATUS_ORDERED = PurchaseOrderStatus.ORDERED
    STATUS_PARTIALLY_PAID = PurchaseOrderStatus.PARTIALLY_PAID
    STATUS_PAID = PurchaseOrderStatus.PAID
    STATUS_DELIVERED = PurchaseOrderStatus.DELIVERED
    STATUS_COMPLETED = PurchaseOrderStatus.COMPLETED
    STATUS_CHOICES = PurchaseOrderStatus.choices

    number = models.CharField(max_length=32, unique=True, null=True, blank=True, db_index=True)
    supplier_name = models.CharField(max_length=200)
    order_date = models.DateField()
    expected_delivery_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    amount_paid = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default=STATUS_ORDERED, db_index=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-id"]
        indexes = [
            models.Index(fields=["status", "order_date"], name="po_status_order_date_idx"),
        ]
        constraints = [
            models.CheckConstraint(name="po_amount_paid_non_negative", condition=models.Q(amount_paid__gte=0)),
            models.CheckConstraint(
                name="po_amount_paid_le_total", condition=models.Q(amount_paid__lte=models.F("total_amount"))
            ),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"PurchaseOrder#{self.id} supplier={self.supplier_name} status={self.status}"

    @property
    def balance_remaining(self) -> Decimal:
        return (self.total_amount or Decimal("0.00")) - (self.amount_paid or Decimal("0.00"))


class PurchaseOrderItem(TimeStampedModel):
    """Line item within a purchase order.

    The destination branch may stay empty until delivery or completion.
    """

    order = models.ForeignKey(PurchaseOrder, related_name="items", on_delete=models.CASCADE)
    product_name = models.CharField(max_length=200)
    product_id = models.CharField(max_length=120, blank=True)
    quantity_ordered = models.PositiveIntegerField()
    purchase_price_per_unit = models.DecimalField(max_digits=12, decimal_places=2)
    branch_destination = models.ForeignKey(
        "inventory.Branch", null=True, blank=True, related_name="purchase_order_items", on_delete=models.PROTECT
    )
    quantity_received = models.PositiveIntegerField(null=True, blank=True)

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(name="poitem_quantity_positive", condition=models.Q(quantity_ordered__gt=0)),
            models.CheckConstraint(name="poitem_price_positive", condition=models.Q(purchase_price_per_unit__gt=0)),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"PurchaseOrderItem#{self.id} order={self.order_id} {self.product_name} x{self.quantity_ordered}"

    @property
    def subtotal(self) -> Decimal:
        return (self.purchase_price_per_unit or Decimal("0.00")) * Decimal(int(self.quantity_ordered))


class Payment(TimeStampedModel):
    order = models.ForeignKey(PurchaseOrder, related_name="payments", on_delete=models.PROTECT)
    amount = models.DecimalField(max_digits=14, decimal_places=2)
    reference = models.CharField(max_length=120, blank=True)

    class Meta:
        ordering = ["created_at", "id"]
        constraints = [
            models.CheckConstraint(name="payment_amount_positive", condition=models.Q(amount__gt=0)),
        ]

    def __str__(self) -> str:  # pragma: no cover
        return f"Payment#{self.id} order={self.order_id} amount={self.amount}"


class IdempotencyKey(TimeStampedModel):
    """Stores idempotent request results to prevent duplicate processing."""

    key = models.CharField(max_length=128)
    scope = models.CharField(max_length=128)
    path = models.CharField(max_length=255)
    method = models.CharField(max_length=16)
    request_hash = models.CharField(max_length=64, null=True, blank=True)
    response_code = models.IntegerField(null=True, blank=True)
    response_json = models.JSONField(null=True, blank=True)
    expires_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["key", "scope", "path", "method"], name="uniq_idem_scope_path_method"),
        ]
