"""Domain errors shared by the inventory and purchasing services.

Services raise these; the DRF exception handler below turns them into
``{"detail": ..., "code": ...}`` responses with a specific status code so the
caller can tell the failures apart.
"""

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler


class EngineError(Exception):
    """Base class for recoverable stock and order failures."""

    code = "engine_error"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Unable to process request."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class InvalidQuantity(EngineError):
    code = "invalid_quantity"
    default_message = "Quantity must be positive."


class InsufficientStock(EngineError):
    code = "insufficient_stock"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Insufficient available quantity."


class InvalidPayment(EngineError):
    code = "invalid_payment"
    default_message = "Payment must be positive and not exceed the balance remaining."


class InvalidTransition(EngineError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Transition not allowed from the current status."


class InvalidRoute(EngineError):
    code = "invalid_route"
    default_message = "Source and destination branch must differ."


class MissingDestination(EngineError):
    code = "missing_destination"
    default_message = "A destination branch is required."


class AlreadyCompleted(EngineError):
    code = "already_completed"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Order is already completed."


class InvalidOrder(EngineError):
    code = "invalid_order"
    default_message = "Invalid purchase order."


class InvalidProduct(EngineError):
    code = "invalid_product"
    default_message = "A product name or product id is required."


class OrderNotFound(EngineError):
    code = "order_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Order not found."


class MovementNotFound(EngineError):
    code = "movement_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Stock movement not found."


class StockItemNotFound(EngineError):
    code = "stock_item_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Stock item not found."


class BranchNotFound(EngineError):
    code = "branch_not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Branch not found."


def error_payload(exc: EngineError) -> dict:
    return {"detail": exc.message, "code": exc.code}


def engine_exception_handler(exc, context):
    """DRF exception handler that renders :class:`EngineError` subclasses.

    Anything else falls through to DRF's default handler (and to a 500 when
    that returns ``None``).
    """
    if isinstance(exc, EngineError):
        return Response(error_payload(exc), status=exc.status_code)
    return exception_handler(exc, context)
