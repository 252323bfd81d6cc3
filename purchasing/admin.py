from django.contrib import admin

from .models import IdempotencyKey, Payment, PurchaseOrder, PurchaseOrderItem


class PurchaseOrderItemInline(admin.TabularInline):
    model = PurchaseOrderItem
    extra = 0
    fields = ("product_name", "product_id", "quantity_ordered", "quantity_received", "purchase_price_per_unit", "branch_destination")


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    readonly_fields = ("amount", "reference", "created_at")
    can_delete = False


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(admin.ModelAdmin):
    list_display = ("id", "number", "supplier_name", "status", "total_amount", "amount_paid", "order_date")
    list_filter = ("status", "order_date")
    search_fields = ("number", "supplier_name")
    date_hierarchy = "order_date"
    # Status and money move only through the lifecycle services
    readonly_fields = ("number", "status", "total_amount", "amount_paid", "delivered_at", "completed_at")
    inlines = [PurchaseOrderItemInline, PaymentInline]


@admin.register(IdempotencyKey)
class IdempotencyKeyAdmin(admin.ModelAdmin):
    list_display = ("id", "key", "scope", "path", "method", "response_code", "created_at")
    list_filter = ("method", "response_code", "created_at")
    search_fields = ("key", "scope", "path")
    date_hierarchy = "created_at"
