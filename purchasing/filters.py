from django_filters import rest_framework as filters

from .models import PurchaseOrder


class PurchaseOrderFilterSet(filters.FilterSet):
    status = filters.ChoiceFilter(choices=PurchaseOrder.STATUS_CHOICES)
    supplier = filters.CharFilter(field_name="supplier_name", lookup_expr="icontains")
    number = filters.CharFilter(field_name="number")
    ordered_after = filters.DateFilter(field_name="order_date", lookup_expr="gte")
    ordered_before = filters.DateFilter(field_name="order_date", lookup_expr="lte")

    class Meta:
        model = PurchaseOrder
        fields = ["status", "supplier", "number", "ordered_after", "ordered_before"]
