from django.db import DatabaseError, connection
from drf_spectacular.utils import OpenApiExample, extend_schema
from rest_framework.decorators import api_view, throttle_classes
from rest_framework.response import Response


@extend_schema(
    tags=["Health Endpoint"],
    summary="Health check",
    examples=[OpenApiExample("Healthy", value={"status": "ok", "database": "ok"})],
)
@api_view(["GET"])
@throttle_classes([])
def health(request):
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
    except DatabaseError:
        return Response({"status": "degraded", "database": "unavailable"}, status=503)
    return Response({"status": "ok", "database": "ok"})
