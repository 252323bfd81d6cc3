"""Serializers for inventory domain.

Read-only representations of branches, stock and movements, plus the input
payloads for stock additions and transfer requests.
"""

from decimal import Decimal

from common.fields import BranchIdField
from rest_framework import serializers

from .models import Branch, StockItem, StockMovement


class BranchSerializer(serializers.ModelSerializer):
    class Meta:
        model = Branch
        fields = ["id", "name", "location"]
        read_only_fields = fields


class StockItemSerializer(serializers.ModelSerializer):
    """Read-only representation of stock held by a branch.

    Exposes computed ``stock_value`` and ``is_low_stock`` for convenience.
    """

    branch_name = serializers.CharField(source="branch.name", read_only=True)
    stock_value = serializers.DecimalField(max_digits=18, decimal_places=2, read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = StockItem
        fields = [
            "id",
            "branch",
            "branch_name",
            "product_id",
            "product_name",
            "quantity_available",
            "unit_price",
            "reorder_level",
            "stock_value",
            "is_low_stock",
            "updated_at",
        ]
        read_only_fields = fields


class StockMovementSerializer(serializers.ModelSerializer):
    """Read-only representation of stock movements and transfer requests."""

    from_branch_name = serializers.CharField(source="from_branch.name", read_only=True, default=None)
    to_branch_name = serializers.CharField(source="to_branch.name", read_only=True, default=None)

    class Meta:
        model = StockMovement
        fields = [
            "id",
            "movement_type",
            "status",
            "product_id",
            "product_name",
            "from_branch",
            "from_branch_name",
            "to_branch",
            "to_branch_name",
            "quantity",
            "unit_cost",
            "reason",
            "reference",
            "requested_by",
            "decided_by",
            "decided_at",
            "created_at",
        ]
        read_only_fields = fields


class StockAddSerializer(serializers.Serializer):
    # Accepts a scalar id or the one-element list form, e.g. branch_id: [3]
    branch_id = BranchIdField()
    product_name = serializers.CharField(max_length=200)
    product_id = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")
    quantity = serializers.IntegerField(min_value=1)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"))
    reorder_level = serializers.IntegerField(min_value=0, required=False)
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")


class StockUpdateSerializer(serializers.Serializer):
    product_name = serializers.CharField(max_length=200, required=False)
    unit_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal("0.01"), required=False)
    reorder_level = serializers.IntegerField(min_value=0, required=False)


class StockRetireSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")


class TransferRequestSerializer(serializers.Serializer):
    product_id = serializers.CharField(max_length=120)
    from_branch_id = BranchIdField()
    to_branch_id = BranchIdField()
    quantity = serializers.IntegerField()
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    requested_by = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")


class TransferDecisionSerializer(serializers.Serializer):
    decided_by = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")


# EOF
