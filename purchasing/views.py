"""Purchasing API endpoints.

Purchase orders from creation through payment, delivery and completion.
Payment and completion are idempotent when an ``Idempotency-Key`` header is sent.
"""

from common.exceptions import EngineError, OrderNotFound, error_payload
from django.db.models import Count
from django_filters import rest_framework as filters
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import filters as drf_filters
from rest_framework import generics, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .filters import PurchaseOrderFilterSet
from .models import PurchaseOrder
from .serializers import (
    CompletionSerializer,
    DeliverySerializer,
    OrderCreateSerializer,
    OrderSummarySerializer,
    PaymentInputSerializer,
    PurchaseOrderListSerializer,
    PurchaseOrderSerializer,
)
from .services import (
    complete_order,
    compute_request_hash,
    create_order,
    delete_order,
    mark_delivered,
    order_summary,
    record_payment,
    with_idempotency,
)

IDEMPOTENCY_HEADER = OpenApiParameter(
    name="Idempotency-Key",
    location=OpenApiParameter.HEADER,
    required=False,
    description="Makes the request idempotent within scope+path+method",
    type=str,
)


def _detail_queryset():
    return PurchaseOrder.objects.prefetch_related("items__branch_destination", "payments")


def _order_response(order_id: int):
    return PurchaseOrderSerializer(_detail_queryset().get(pk=order_id)).data


def _run_mutation(request, mutate):
    """Run ``mutate`` and render its order, honouring an Idempotency-Key header."""

    def _handler():
        try:
            order = mutate()
        except EngineError as exc:
            return error_payload(exc), exc.status_code
        return _order_response(order.id), 200

    idem_key = request.headers.get("Idempotency-Key")
    if idem_key:
        body, code = with_idempotency(
            key=idem_key,
            user=request.user,
            path=str(request.path),
            method=str(request.method),
            request_hash=compute_request_hash(getattr(request, "data", None)),
            handler=_handler,
        )
        return Response(body, status=code)

    body, code = _handler()
    return Response(body, status=code)


class PurchaseOrderListView(generics.ListAPIView):
    """List purchase orders or create a new one.

    Filters: status, supplier (contains), number, ordered_after, ordered_before.
    """

    throttle_scope = "purchasing"
    serializer_class = PurchaseOrderListSerializer
    filterset_class = PurchaseOrderFilterSet
    filter_backends = [filters.DjangoFilterBackend, drf_filters.OrderingFilter, drf_filters.SearchFilter]
    ordering_fields = ["order_date", "total_amount", "id"]
    search_fields = ["number", "supplier_name", "items__product_name"]

    def get_queryset(self):
        return PurchaseOrder.objects.annotate(item_count=Count("items", distinct=True)).order_by("-id")

    def get_throttles(self):
        if self.request.method == "POST":
            self.throttle_scope = "purchasing_write"
        return super().get_throttles()

    @extend_schema(tags=["Purchasing"], summary="List purchase orders")
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @extend_schema(
        tags=["Purchasing"],
        summary="Create purchase order",
        request=OrderCreateSerializer,
        responses={201: PurchaseOrderSerializer},
        examples=[
            OpenApiExample(
                "New order",
                value={
                    "supplier_name": "Acme Supplies",
                    "order_date": "2025-03-01",
                    "items": [
                        {
                            "product_name": "Widget",
                            "quantity_ordered": 10,
                            "purchase_price_per_unit": "2.50",
                            "branch_destination_id": 1,
                        }
                    ],
                },
                request_only=True,
            )
        ],
    )
    def post(self, request):
        serializer = OrderCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        order = create_order(
            supplier_name=data["supplier_name"],
            order_date=data["order_date"],
            items=data.get("items", []),
            expected_delivery_date=data.get("expected_delivery_date"),
            notes=data.get("notes", ""),
        )
        return Response(_order_response(order.id), status=status.HTTP_201_CREATED)


class PurchaseOrderDetailView(APIView):
    throttle_scope = "purchasing"

    def get_throttles(self):
        if self.request.method == "DELETE":
            self.throttle_scope = "purchasing_write"
        return super().get_throttles()

    @extend_schema(tags=["Purchasing"], summary="Get purchase order", responses={200: PurchaseOrderSerializer})
    def get(self, request, order_id: int):
        try:
            order = _detail_queryset().get(pk=order_id)
        except PurchaseOrder.DoesNotExist:
            raise OrderNotFound(f"Purchase order {order_id} not found.")
        return Response(PurchaseOrderSerializer(order).data)

    @extend_schema(
        tags=["Purchasing"],
        summary="Delete purchase order",
        description="Only orders without payments that are not completed can be deleted.",
        responses={204: None},
    )
    def delete(self, request, order_id: int):
        delete_order(order_id=order_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class OrderPaymentView(APIView):
    """Record a payment against an order.

    Idempotent when `Idempotency-Key` is provided. Returns 409 on key reuse with different payload.
    """

    throttle_scope = "purchasing_write"

    @extend_schema(
        tags=["Purchasing"],
        summary="Record payment",
        description="Adds a payment; the order becomes partially_paid or paid. Over-payment is rejected.",
        parameters=[IDEMPOTENCY_HEADER],
        request=PaymentInputSerializer,
        responses={200: PurchaseOrderSerializer},
        examples=[
            OpenApiExample("Payment", value={"amount": "50.00", "reference": "TRX-1"}, request_only=True),
            OpenApiExample(
                "Over-payment",
                value={"detail": "Payment of 80.00 exceeds the balance remaining of 50.00.", "code": "invalid_payment"},
                response_only=True,
                status_codes=["400"],
            ),
        ],
    )
    def post(self, request, order_id: int):
        serializer = PaymentInputSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return _run_mutation(
            request,
            lambda: record_payment(order_id=order_id, amount=data["amount"], reference=data.get("reference", "")),
        )


class OrderDeliveryView(APIView):
    throttle_scope = "purchasing_write"

    @extend_schema(
        tags=["Purchasing"],
        summary="Mark order delivered",
        description="Records received quantities per line. Stock is credited only on completion.",
        request=DeliverySerializer,
        responses={200: PurchaseOrderSerializer},
    )
    def post(self, request, order_id: int):
        serializer = DeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order = mark_delivered(order_id=order_id, delivered_items=serializer.validated_data.get("items", []))
        return Response(_order_response(order.id))


class OrderCompleteView(APIView):
    """Complete an order and credit its goods into branch stock.

    A second completion fails with ``already_completed``; with an
    Idempotency-Key the first response is replayed instead.
    """

    throttle_scope = "purchasing_write"

    @extend_schema(
        tags=["Purchasing"],
        summary="Complete order",
        parameters=[IDEMPOTENCY_HEADER],
        request=CompletionSerializer,
        responses={200: PurchaseOrderSerializer},
        examples=[
            OpenApiExample(
                "Override a line",
                value={"items": [{"order_item_id": 7, "quantity_received": 8, "branch_destination_id": 2}]},
                request_only=True,
            ),
            OpenApiExample(
                "Manual line",
                value={
                    "manual_item": {
                        "product_name": "Widget",
                        "quantity": 5,
                        "unit_price": "3.00",
                        "branch_destination_id": [1],
                    }
                },
                request_only=True,
            ),
            OpenApiExample(
                "Already completed",
                value={"detail": "Purchase order PO-000007 is already completed.", "code": "already_completed"},
                response_only=True,
                status_codes=["409"],
            ),
        ],
    )
    def post(self, request, order_id: int):
        serializer = CompletionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return _run_mutation(
            request,
            lambda: complete_order(
                order_id=order_id,
                completed_items=data.get("items", []),
                manual_item=data.get("manual_item"),
            ),
        )


class OrderSummaryView(APIView):
    throttle_scope = "purchasing"

    @extend_schema(tags=["Purchasing"], summary="Purchase order summary", responses={200: OrderSummarySerializer})
    def get(self, request):
        return Response(OrderSummarySerializer(order_summary()).data)
