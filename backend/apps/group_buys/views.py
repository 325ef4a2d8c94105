"""
ViewSet implementations for group buy participation.
All writes go through ParticipationService; views only validate input and
map service results to HTTP responses.
"""
import logging
from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated, AllowAny, IsAdminUser

from drf_spectacular.utils import (
    extend_schema,
    extend_schema_view,
    OpenApiParameter,
    OpenApiExample
)
from drf_spectacular.types import OpenApiTypes as Types

from .serializers import (
    GroupBuySerializer,
    GroupBuyWriteSerializer,
    JoinSerializer,
    ModifySerializer,
    ForceStatusSerializer,
    MoveParticipantSerializer,
    ParticipantQuantitySerializer,
    RemoveParticipantSerializer,
    ParticipantSerializer,
    MyParticipationSerializer
)
from .services.participation_service import ParticipationService

logger = logging.getLogger(__name__)


ERROR_STATUS = {
    'GROUP_NOT_FOUND': status.HTTP_404_NOT_FOUND,
    'CONCURRENCY_CONFLICT': status.HTTP_409_CONFLICT,
    'PERSISTENCE_FAILURE': status.HTTP_503_SERVICE_UNAVAILABLE,
}


def error_response(result):
    """Render a failed ServiceResult; unknown codes are client errors."""
    body = {
        'error': result.error,
        'error_code': result.error_code,
    }
    body.update(result.details)
    return Response(
        body,
        status=ERROR_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST)
    )


ERROR_RESPONSE_SCHEMA = {
    'type': 'object',
    'properties': {
        'error': {'type': 'string'},
        'error_code': {'type': 'string'},
    }
}


@extend_schema_view(
    list=extend_schema(
        summary="List group buys",
        description="""
        All group buys, newest first, with counts computed from participation.

        **Filtering:**
        - status: open, locked or ended
        - is_hot: true/false

        **Permissions:** Public (no authentication required)
        """,
        parameters=[
            OpenApiParameter(
                name='status',
                type=Types.STR,
                location=OpenApiParameter.QUERY,
                description='Filter by status',
                examples=[
                    OpenApiExample('Open groups', value='open'),
                    OpenApiExample('Full groups', value='locked'),
                ]
            ),
            OpenApiParameter(
                name='is_hot',
                type=Types.BOOL,
                location=OpenApiParameter.QUERY,
                description='Only featured (true) or non-featured (false) groups'
            ),
        ],
        responses={200: GroupBuySerializer(many=True)},
        tags=['Group Buys']
    ),
    retrieve=extend_schema(
        summary="Get group buy details",
        description="""
        Group details with live count, available slots, batch number and
        distinct participant count.

        **Permissions:** Public (no authentication required)
        """,
        responses={200: GroupBuySerializer, 404: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys']
    ),
    create=extend_schema(
        summary="Create a group buy",
        description="""
        Open a new group buy. Counts start at zero with status open.

        **Permissions:** Admin/staff only
        """,
        request=GroupBuyWriteSerializer,
        responses={201: GroupBuySerializer},
        tags=['Group Buys']
    ),
    partial_update=extend_schema(
        summary="Update a group buy",
        description="""
        Edit template fields, flags and target. A lower target cannot drop
        below the slots already reserved; status is re-derived.

        **Permissions:** Admin/staff only
        """,
        request=GroupBuyWriteSerializer,
        responses={200: GroupBuySerializer},
        tags=['Group Buys']
    ),
)
class GroupBuyViewSet(viewsets.GenericViewSet):
    """
    ViewSet for group buy participation.
    Groups are never deleted; ending one is an admin status change.
    """
    serializer_class = GroupBuySerializer
    lookup_value_regex = r'\d+'
    service = ParticipationService()

    ADMIN_ACTIONS = [
        'create', 'partial_update', 'force_status', 'release_status',
        'renew', 'participants', 'move_participant',
        'set_participant_quantity', 'remove_participant'
    ]
    PUBLIC_ACTIONS = ['list', 'retrieve', 'join']

    def get_permissions(self):
        """Configure permissions per action."""
        if self.action in self.PUBLIC_ACTIONS:
            permission_classes = [AllowAny]
        elif self.action in self.ADMIN_ACTIONS:
            permission_classes = [IsAdminUser]
        else:
            permission_classes = [IsAuthenticated]
        return [permission() for permission in permission_classes]

    def list(self, request):
        is_hot = request.query_params.get('is_hot')
        if is_hot is not None:
            is_hot = is_hot.lower() in ('true', '1', 'yes')

        result = self.service.list_groups(
            status=request.query_params.get('status') or None,
            is_hot=is_hot
        )
        if not result.success:
            return error_response(result)

        page = self.paginate_queryset(result.data)
        if page is not None:
            return self.get_paginated_response(GroupBuySerializer(page, many=True).data)
        return Response(GroupBuySerializer(result.data, many=True).data)

    def retrieve(self, request, pk=None):
        result = self.service.get_group_view(int(pk))
        if not result.success:
            return error_response(result)
        return Response(GroupBuySerializer(result.data).data)

    def create(self, request):
        serializer = GroupBuyWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.service.create_group(**serializer.validated_data)
        if not result.success:
            return error_response(result)

        logger.info(f"Admin {request.user.id} created group buy {result.data['id']}")
        return Response(GroupBuySerializer(result.data).data, status=status.HTTP_201_CREATED)

    def partial_update(self, request, pk=None):
        serializer = GroupBuyWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        result = self.service.update_group(int(pk), **serializer.validated_data)
        if not result.success:
            return error_response(result)
        return Response(GroupBuySerializer(result.data).data)

    @extend_schema(
        summary="Join a group buy",
        description="""
        Reserve slots in a group. If an earlier batch of the same series has
        room for the whole quantity, the slots land there instead and the
        response reports the migration.

        **Example Request:**
```json
        {
            "quantity": 2,
            "contact": "wechat: buyer01"
        }
```

        **Example Response:**
```json
        {
            "actual_group_id": 3,
            "migrated": true,
            "migrated_to_title": "Netflix"
        }
```

        Anonymous joins must include contact details.

        **Permissions:** Public
        """,
        request=JoinSerializer,
        responses={201: {'type': 'object'}, 400: ERROR_RESPONSE_SCHEMA, 409: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys']
    )
    @action(detail=True, methods=['post'])
    def join(self, request, pk=None):
        serializer = JoinSerializer(data=request.data, context={'request': request})
        serializer.is_valid(raise_exception=True)

        user = request.user if request.user.is_authenticated else None
        result = self.service.join(
            group_id=int(pk),
            user=user,
            quantity=serializer.validated_data['quantity'],
            contact=serializer.validated_data.get('contact', '')
        )
        if not result.success:
            return error_response(result)
        return Response(result.data, status=status.HTTP_201_CREATED)

    @extend_schema(
        summary="Change my quantity or contact details",
        description="""
        Set the total number of slots you hold in a group. Reducing to zero
        is rejected; use cancel instead. Omitting new_total only updates the
        contact details.

        **Permissions:** Authenticated users only
        """,
        request=ModifySerializer,
        responses={200: {'type': 'object'}, 400: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys']
    )
    @action(detail=True, methods=['post'])
    def modify(self, request, pk=None):
        serializer = ModifySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.service.modify_quantity(
            group_id=int(pk),
            user=request.user,
            new_total=serializer.validated_data.get('new_total'),
            contact=serializer.validated_data.get('contact')
        )
        if not result.success:
            return error_response(result)
        return Response(result.data)

    @extend_schema(
        summary="Leave a group buy",
        description="""
        Release all of your slots. Participants of the next batch may be
        moved up to fill the vacancy.

        **Permissions:** Authenticated users only
        """,
        request=None,
        responses={200: {'type': 'object'}, 400: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys']
    )
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        result = self.service.cancel(group_id=int(pk), user=request.user)
        if not result.success:
            return error_response(result)
        return Response(result.data)

    @extend_schema(
        summary="Force a group's status",
        description="""
        Set open, locked or ended regardless of counts. A forced open or
        locked status sticks until released; ended is final.

        **Permissions:** Admin/staff only
        """,
        request=ForceStatusSerializer,
        responses={200: GroupBuySerializer, 400: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys - Admin']
    )
    @action(detail=True, methods=['post'])
    def force_status(self, request, pk=None):
        serializer = ForceStatusSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.service.admin_force_status(
            group_id=int(pk),
            new_status=serializer.validated_data['status'],
            reason=serializer.validated_data.get('reason') or None
        )
        if not result.success:
            return error_response(result)
        return Response(GroupBuySerializer(result.data).data)

    @extend_schema(
        summary="Release a forced status",
        description="Re-derive open/locked from the counts. **Permissions:** Admin/staff only",
        request=None,
        responses={200: GroupBuySerializer},
        tags=['Group Buys - Admin']
    )
    @action(detail=True, methods=['post'])
    def release_status(self, request, pk=None):
        result = self.service.release_status_override(int(pk))
        if not result.success:
            return error_response(result)
        return Response(GroupBuySerializer(result.data).data)

    @extend_schema(
        summary="Open the next batch",
        description="""
        Create the next batch of a full auto-renewing group by hand. Refused
        when another batch of the series still has room.

        **Permissions:** Admin/staff only
        """,
        request=None,
        responses={201: GroupBuySerializer, 400: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys - Admin']
    )
    @action(detail=True, methods=['post'])
    def renew(self, request, pk=None):
        result = self.service.renew_group(int(pk))
        if not result.success:
            return error_response(result)
        return Response(GroupBuySerializer(result.data).data, status=status.HTTP_201_CREATED)

    @extend_schema(
        summary="List participants",
        description="Participants aggregated per user, earliest joiner first. **Permissions:** Admin/staff only",
        responses={200: ParticipantSerializer(many=True)},
        tags=['Group Buys - Admin']
    )
    @action(detail=True, methods=['get'])
    def participants(self, request, pk=None):
        result = self.service.list_participants(int(pk))
        if not result.success:
            return error_response(result)
        return Response(ParticipantSerializer(result.data, many=True).data)

    @extend_schema(
        summary="Move a participant to another batch",
        description="""
        Move all of a user's slots to another group. The whole quantity must
        fit; reservations are never split.

        **Permissions:** Admin/staff only
        """,
        request=MoveParticipantSerializer,
        responses={200: {'type': 'object'}, 400: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys - Admin']
    )
    @action(detail=True, methods=['post'])
    def move_participant(self, request, pk=None):
        serializer = MoveParticipantSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.service.move_participant(
            source_group_id=int(pk),
            user_id=serializer.validated_data['user_id'],
            target_group_id=serializer.validated_data['target_group_id']
        )
        if not result.success:
            return error_response(result)
        return Response(result.data)

    @extend_schema(
        summary="Set a participant's quantity",
        description="""
        Change the total slots a user holds in this group. Increases must fit
        the remaining capacity but ignore an admin-forced lock.

        **Permissions:** Admin/staff only
        """,
        request=ParticipantQuantitySerializer,
        responses={200: {'type': 'object'}, 400: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys - Admin']
    )
    @action(detail=True, methods=['post'])
    def set_participant_quantity(self, request, pk=None):
        serializer = ParticipantQuantitySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.service.admin_set_participant_quantity(
            int(pk),
            user_id=serializer.validated_data['user_id'],
            new_total=serializer.validated_data['new_total']
        )
        if not result.success:
            return error_response(result)
        return Response(result.data)

    @extend_schema(
        summary="Remove a participant",
        description="""
        Drop all of a user's slots, cancel their open orders for this group
        and backfill from the next batch.

        **Permissions:** Admin/staff only
        """,
        request=RemoveParticipantSerializer,
        responses={200: {'type': 'object'}, 400: ERROR_RESPONSE_SCHEMA},
        tags=['Group Buys - Admin']
    )
    @action(detail=True, methods=['post'])
    def remove_participant(self, request, pk=None):
        serializer = RemoveParticipantSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = self.service.admin_remove_participant(
            int(pk), user_id=serializer.validated_data['user_id']
        )
        if not result.success:
            return error_response(result)

        logger.info(f"Admin {request.user.id} removed user {result.data['user_id']} from group buy {pk}")
        return Response(result.data)

    @extend_schema(
        summary="My group buys",
        description="Groups you hold slots in, with your quantity. **Permissions:** Authenticated users only",
        responses={200: MyParticipationSerializer(many=True)},
        tags=['Group Buys']
    )
    @action(detail=False, methods=['get'])
    def mine(self, request):
        result = self.service.list_my_participations(request.user)
        if not result.success:
            return error_response(result)
        return Response(MyParticipationSerializer(result.data, many=True).data)
