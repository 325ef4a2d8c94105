"""
ViewSet implementations for order operations.
Orders are created by the group buy participation flow; users only read them.
"""
from rest_framework import viewsets
from rest_framework.permissions import IsAuthenticated
from django_filters.rest_framework import DjangoFilterBackend

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
    OpenApiExample
)
from drf_spectacular.types import OpenApiTypes as Types

from .models import Order
from .serializers import OrderSerializer


@extend_schema_view(
    list=extend_schema(
        summary="List my orders",
        description="""
        Orders placed by the current user, newest first.

        **Filtering:**
        - Filter by order status
        - Filter by item type (GROUP, PRODUCT, LOTTERY)

        **Permissions:** Authenticated users only
        """,
        parameters=[
            OpenApiParameter(
                name='status',
                type=Types.STR,
                location=OpenApiParameter.QUERY,
                description='Filter by order status',
                examples=[
                    OpenApiExample('Pending orders', value='pending'),
                    OpenApiExample('Cancelled orders', value='cancelled'),
                ]
            ),
            OpenApiParameter(
                name='item_type',
                type=Types.STR,
                location=OpenApiParameter.QUERY,
                description='Filter by item type'
            ),
        ],
        tags=['Orders']
    ),
    retrieve=extend_schema(
        summary="Get order details",
        description="""
        A single order of the current user.

        **Permissions:** Order owner only
        """,
        tags=['Orders']
    ),
)
class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Read-only access to the current user's orders.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_fields = ['status', 'item_type']

    def get_queryset(self):
        return Order.objects.filter(
            user=self.request.user
        ).select_related('group').order_by('-created_at')
