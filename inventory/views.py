"""Inventory API: stock per branch, movement history and transfer workflow."""

from common.exceptions import BranchNotFound
from common.fields import BranchIdField
from django.db.models import F
from django.shortcuts import get_object_or_404
from django.utils.dateparse import parse_datetime
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema
from rest_framework import generics, serializers, status
from rest_framework.response import Response
from rest_framework.views import APIView

from .models import Branch, StockItem, StockMovement
from .selectors import branch_stock_summary, movements_for_branch, pending_transfers_for_branch
from .serializers import (
    BranchSerializer,
    StockAddSerializer,
    StockItemSerializer,
    StockMovementSerializer,
    StockRetireSerializer,
    StockUpdateSerializer,
    TransferDecisionSerializer,
    TransferRequestSerializer,
)
from .services import add_stock, retire_stock, update_stock_details
from .transfers import approve_transfer, reject_transfer, request_transfer


def _actor(request, fallback: str = "") -> str:
    user = getattr(request, "user", None)
    if user is not None and user.is_authenticated:
        return user.get_username()
    return fallback


def _branch_filter(request):
    """Parse the optional ``?branch=`` query parameter; 400 when it is not an id."""
    raw = request.query_params.get("branch")
    if not raw:
        return None
    try:
        return BranchIdField().to_internal_value(raw)
    except serializers.ValidationError as exc:
        raise serializers.ValidationError({"branch": exc.detail})


class InventoryHealthView(APIView):
    throttle_classes = []

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Inventory health",
        description="Simple healthcheck endpoint for the inventory app",
        examples=[OpenApiExample("Health OK", value={"status": "ok", "app": "inventory"})],
    )
    def get(self, request):
        return Response({"status": "ok", "app": "inventory"})


class BranchListView(generics.ListAPIView):
    throttle_classes = []
    serializer_class = BranchSerializer
    queryset = Branch.objects.order_by("name", "id")

    @extend_schema(tags=["Inventory Endpoints"], summary="List branches")
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class BranchSummaryView(APIView):
    throttle_classes = []

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Branch stock summary",
        description="Product count, low-stock count and total stock value for one branch.",
        examples=[
            OpenApiExample(
                "Summary",
                value={"branch": 1, "product_count": 12, "low_stock_count": 2, "stock_value": "1540.00"},
            )
        ],
    )
    def get(self, request, branch_id: int):
        if not Branch.objects.filter(id=branch_id).exists():
            raise BranchNotFound()
        summary = branch_stock_summary(branch_id)
        summary["stock_value"] = str(summary["stock_value"])
        return Response(summary)


class StockItemListView(generics.ListAPIView):
    """List stock, or add stock to a branch.

    Filters: branch, product_id, low_stock (1/true), updated_after (ISO).
    """

    throttle_classes = []
    serializer_class = StockItemSerializer

    def get_queryset(self):
        qs = StockItem.objects.select_related("branch").order_by("branch_id", "product_name", "id")
        branch = _branch_filter(self.request)
        product_id = self.request.query_params.get("product_id")
        low_stock = self.request.query_params.get("low_stock")
        updated_after = self.request.query_params.get("updated_after")

        if branch:
            qs = qs.filter(branch_id=branch)
        if product_id:
            qs = qs.filter(product_id=product_id)
        if low_stock and low_stock.lower() in {"1", "true", "yes"}:
            qs = qs.filter(quantity_available__lte=F("reorder_level"))
        if updated_after:
            dt = parse_datetime(updated_after)
            if dt:
                qs = qs.filter(updated_at__gte=dt)
        return qs

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="List stock items",
        parameters=[
            OpenApiParameter(name="branch", description="Branch id", required=False, type=int),
            OpenApiParameter(name="product_id", description="Product key", required=False, type=str),
            OpenApiParameter(name="low_stock", description="Only items at or below reorder level", required=False, type=bool),
            OpenApiParameter(name="updated_after", description="Updated at >= (ISO)", required=False, type=str),
        ],
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Add stock",
        description="Credits the branch ledger and records a receipt movement.",
        request=StockAddSerializer,
        responses={201: StockItemSerializer},
    )
    def post(self, request):
        serializer = StockAddSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        item = add_stock(
            branch_id=data["branch_id"],
            product_name=data["product_name"],
            product_id=data.get("product_id") or None,
            quantity=data["quantity"],
            unit_price=data["unit_price"],
            reorder_level=data.get("reorder_level"),
            requested_by=_actor(request),
            reason=data.get("reason", ""),
        )
        return Response(StockItemSerializer(item).data, status=status.HTTP_201_CREATED)


class StockItemDetailView(generics.RetrieveAPIView):
    throttle_classes = []
    serializer_class = StockItemSerializer
    queryset = StockItem.objects.select_related("branch")
    lookup_url_kwarg = "stock_item_id"

    @extend_schema(tags=["Inventory Endpoints"], summary="Get stock item")
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Update stock item details",
        description="Edits name, unit price and reorder level. Quantities change only through the ledger.",
        request=StockUpdateSerializer,
        responses={200: StockItemSerializer},
    )
    def patch(self, request, stock_item_id: int):
        serializer = StockUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        item = update_stock_details(stock_item_id=stock_item_id, **serializer.validated_data)
        return Response(StockItemSerializer(item).data)

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="Retire stock item",
        description="Sets the quantity to 0 and records an adjustment movement. The row itself is kept.",
        request=StockRetireSerializer,
        responses={200: StockItemSerializer},
    )
    def delete(self, request, stock_item_id: int):
        serializer = StockRetireSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        item = retire_stock(
            stock_item_id=stock_item_id,
            reason=serializer.validated_data.get("reason", ""),
            requested_by=_actor(request),
        )
        return Response(StockItemSerializer(item).data)


class MovementListView(generics.ListAPIView):
    throttle_classes = []
    serializer_class = StockMovementSerializer

    @extend_schema(
        tags=["Inventory Endpoints"],
        summary="List stock movements",
        description=(
            "List movements (transfer/purchase/receipt/adjustment). "
            "Filters: branch (source or destination), status, movement_type, created_after (ISO)."
        ),
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)

    def get_queryset(self):
        branch = _branch_filter(self.request)
        movement_status = self.request.query_params.get("status")
        movement_type = self.request.query_params.get("movement_type")
        created_after = self.request.query_params.get("created_after")

        if branch:
            qs = movements_for_branch(branch)
        else:
            qs = StockMovement.objects.select_related("from_branch", "to_branch").order_by("-created_at", "-id")
        if movement_status:
            qs = qs.filter(status=movement_status)
        if movement_type:
            qs = qs.filter(movement_type=movement_type)
        if created_after:
            dt = parse_datetime(created_after)
            if dt:
                qs = qs.filter(created_at__gte=dt)
        return qs


class TransferRequestView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Transfers"],
        summary="Request transfer",
        description="Creates a pending transfer. No stock moves until it is approved.",
        request=TransferRequestSerializer,
        responses={201: StockMovementSerializer},
        examples=[
            OpenApiExample(
                "Transfer request",
                value={"product_id": "widget", "from_branch_id": 1, "to_branch_id": 2, "quantity": 5},
                request_only=True,
            ),
            OpenApiExample(
                "Insufficient stock",
                value={"detail": "Only 3 of 'widget' available at branch 1.", "code": "insufficient_stock"},
                response_only=True,
                status_codes=["409"],
            ),
        ],
    )
    def post(self, request):
        serializer = TransferRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        movement = request_transfer(
            product_key=data["product_id"],
            from_branch_id=data["from_branch_id"],
            to_branch_id=data["to_branch_id"],
            quantity=data["quantity"],
            reason=data.get("reason", ""),
            requested_by=_actor(request, data.get("requested_by", "")),
        )
        return Response(StockMovementSerializer(movement).data, status=status.HTTP_201_CREATED)


class PendingTransferListView(generics.ListAPIView):
    throttle_classes = []
    serializer_class = StockMovementSerializer

    def get_queryset(self):
        branch = get_object_or_404(Branch, id=self.kwargs["branch_id"])
        return pending_transfers_for_branch(branch.id)

    @extend_schema(
        tags=["Transfers"],
        summary="Pending transfers for a branch",
        description="Pending transfer requests whose destination is the given branch.",
    )
    def get(self, request, *args, **kwargs):
        return super().get(request, *args, **kwargs)


class TransferApproveView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Transfers"],
        summary="Approve transfer",
        description="Debits the source branch and credits the destination in one transaction.",
        request=TransferDecisionSerializer,
        responses={200: StockMovementSerializer},
    )
    def post(self, request, movement_id: int):
        serializer = TransferDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        movement = approve_transfer(
            movement_id=movement_id,
            approved_by=_actor(request, serializer.validated_data.get("decided_by", "")),
        )
        return Response(StockMovementSerializer(movement).data)


class TransferRejectView(APIView):
    throttle_scope = "inventory_write"

    @extend_schema(
        tags=["Transfers"],
        summary="Reject transfer",
        request=TransferDecisionSerializer,
        responses={200: StockMovementSerializer},
    )
    def post(self, request, movement_id: int):
        serializer = TransferDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        movement = reject_transfer(
            movement_id=movement_id,
            rejected_by=_actor(request, serializer.validated_data.get("decided_by", "")),
        )
        return Response(StockMovementSerializer(movement).data)


# EOF
