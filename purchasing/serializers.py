from common.fields import BranchIdField
from rest_framework import serializers

from .models import Payment, PurchaseOrder, PurchaseOrderItem


class PurchaseOrderItemSerializer(serializers.ModelSerializer):
    branch_destination_name = serializers.CharField(source="branch_destination.name", read_only=True, default=None)
    subtotal = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = PurchaseOrderItem
        fields = [
            "id",
            "product_name",
            "product_id",
            "quantity_ordered",
            "quantity_received",
            "purchase_price_per_unit",
            "subtotal",
            "branch_destination",
            "branch_destination_name",
        ]
        read_only_fields = fields


class PaymentSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payment
        fields = ["id", "amount", "reference", "created_at"]
        read_only_fields = fields


class PurchaseOrderSerializer(serializers.ModelSerializer):
    """Read-only purchase order with its lines, payments and balance."""

    items = PurchaseOrderItemSerializer(many=True, read_only=True)
    payments = PaymentSerializer(many=True, read_only=True)
    balance_remaining = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "number",
            "supplier_name",
            "order_date",
            "expected_delivery_date",
            "notes",
            "status",
            "total_amount",
            "amount_paid",
            "balance_remaining",
            "delivered_at",
            "completed_at",
            "created_at",
            "items",
            "payments",
        ]
        read_only_fields = fields


class PurchaseOrderListSerializer(serializers.ModelSerializer):
    balance_remaining = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)
    item_count = serializers.IntegerField(read_only=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "number",
            "supplier_name",
            "order_date",
            "status",
            "total_amount",
            "amount_paid",
            "balance_remaining",
            "item_count",
        ]
        read_only_fields = fields


class OrderLineInputSerializer(serializers.Serializer):
    product_name = serializers.CharField(max_length=200)
    product_id = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")
    quantity_ordered = serializers.IntegerField()
    purchase_price_per_unit = serializers.DecimalField(max_digits=12, decimal_places=2)
    branch_destination_id = BranchIdField(required=False, allow_null=True)


class OrderCreateSerializer(serializers.Serializer):
    supplier_name = serializers.CharField(max_length=200)
    order_date = serializers.DateField()
    expected_delivery_date = serializers.DateField(required=False, allow_null=True)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    items = OrderLineInputSerializer(many=True, required=False, default=list)


class PaymentInputSerializer(serializers.Serializer):
    # Range checks happen in the service so the error carries its domain code
    amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    reference = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")


class DeliveredLineSerializer(serializers.Serializer):
    order_item_id = serializers.IntegerField()
    quantity_received = serializers.IntegerField()
    branch_destination_id = BranchIdField(required=False, allow_null=True)


class DeliverySerializer(serializers.Serializer):
    items = DeliveredLineSerializer(many=True, required=False, default=list)


class CompletedLineSerializer(serializers.Serializer):
    order_item_id = serializers.IntegerField()
    quantity_received = serializers.IntegerField(required=False, allow_null=True)
    branch_destination_id = BranchIdField(required=False, allow_null=True)


class ManualLineSerializer(serializers.Serializer):
    """Goods line supplied at completion for an order recorded without items."""

    product_name = serializers.CharField(max_length=200)
    product_id = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")
    quantity = serializers.IntegerField()
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2)
    branch_destination_id = BranchIdField(required=False, allow_null=True)


class CompletionSerializer(serializers.Serializer):
    items = CompletedLineSerializer(many=True, required=False, default=list)
    manual_item = ManualLineSerializer(required=False, allow_null=True)


class OrderSummarySerializer(serializers.Serializer):
    total_orders = serializers.IntegerField()
    pending_orders = serializers.IntegerField()
    total_value = serializers.DecimalField(max_digits=18, decimal_places=2)
    total_paid = serializers.DecimalField(max_digits=18, decimal_places=2)