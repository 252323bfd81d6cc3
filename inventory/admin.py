"""Admin registrations for inventory app.

Stock quantities and movements are read-only here; they change only through
the ledger services.
"""

from django.contrib import admin

from .models import Branch, StockItem, StockMovement


@admin.register(Branch)
class BranchAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "location", "created_at")
    search_fields = ("name", "location")


@admin.register(StockItem)
class StockItemAdmin(admin.ModelAdmin):
    list_display = ("id", "branch", "product_id", "product_name", "quantity_available", "reorder_level", "updated_at")
    list_filter = ("branch",)
    search_fields = ("product_id", "product_name")
    readonly_fields = ("quantity_available",)


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "movement_type",
        "status",
        "product_id",
        "from_branch",
        "to_branch",
        "quantity",
        "reference",
        "created_at",
    )
    list_filter = ("movement_type", "status")
    search_fields = ("product_id", "product_name", "reference")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# EOF
