from django.urls import path

from .views import (
    BranchListView,
    BranchSummaryView,
    InventoryHealthView,
    MovementListView,
    PendingTransferListView,
    StockItemDetailView,
    StockItemListView,
    TransferApproveView,
    TransferRejectView,
    TransferRequestView,
)

urlpatterns = [
    path("health/", InventoryHealthView.as_view(), name="inventory-health"),
    path("branches/", BranchListView.as_view(), name="branch-list"),
    path("branches/<int:branch_id>/summary/", BranchSummaryView.as_view(), name="branch-summary"),
    path("stock/", StockItemListView.as_view(), name="stock-item-list"),
    path("stock/<int:stock_item_id>/", StockItemDetailView.as_view(), name="stock-item-detail"),
    path("movements/", MovementListView.as_view(), name="movement-list"),
    # Transfer workflow
    path("transfers/", TransferRequestView.as_view(), name="transfer-request"),
    path("transfers/pending/<int:branch_id>/", PendingTransferListView.as_view(), name="transfer-pending"),
    path("transfers/<int:movement_id>/approve/", TransferApproveView.as_view(), name="transfer-approve"),
    path("transfers/<int:movement_id>/reject/", TransferRejectView.as_view(), name="transfer-reject"),
]

# EOF
