from django.urls import path

from .views import (
    OrderCompleteView,
    OrderDeliveryView,
    OrderPaymentView,
    OrderSummaryView,
    PurchaseOrderDetailView,
    PurchaseOrderListView,
)

app_name = "purchasing"

urlpatterns = [
    path("orders/", PurchaseOrderListView.as_view(), name="order-list"),
    path("orders/summary/", OrderSummaryView.as_view(), name="order-summary"),
    path("orders/<int:order_id>/", PurchaseOrderDetailView.as_view(), name="order-detail"),
    path("orders/<int:order_id>/payment/", OrderPaymentView.as_view(), name="order-payment"),
    path("orders/<int:order_id>/delivery/", OrderDeliveryView.as_view(), name="order-delivery"),
    path("orders/<int:order_id>/complete/", OrderCompleteView.as_view(), name="order-complete"),
]
