"""
Order service for group buy side effects.
Participation owns the slots; orders only mirror them for follow-up.
"""
from decimal import Decimal
from typing import Iterable, Optional

from django.db.models import Q

from apps.core.services.base import BaseService
from apps.orders.models import Order


class OrderService(BaseService):
    """
    Service for the order records attached to group buy participation.
    Called by the participation service inside its transaction.
    """

    def create_group_order(
        self,
        user,
        group,
        quantity: int,
        contact: Optional[str] = None
    ) -> Order:
        """
        Record a GROUP order for a join.

        Args:
            user: Participant, None for anonymous joins
            group: The batch the participation landed in
            quantity: Slots reserved
            contact: Contact details given at join time

        Returns:
            The created Order
        """
        cost = (group.price or Decimal('0.00')) * quantity

        order = Order.objects.create(
            user=user,
            item_type=Order.ITEM_GROUP,
            group=group,
            item_name=group.title,
            contact_details=contact or '',
            quantity=quantity,
            cost=cost,
            status=Order.STATUS_PENDING
        )

        self.log_info(
            f"Created group order {order.reference_number}",
            order_id=order.id,
            group_id=group.id,
            user_id=getattr(user, 'id', None),
            quantity=quantity
        )

        return order

    def cancel_group_orders(self, user, group) -> int:
        """Mark a user's open GROUP orders for a group cancelled."""
        if user is None:
            return 0

        updated = Order.objects.filter(
            user=user,
            group=group,
            item_type=Order.ITEM_GROUP,
            status__in=[Order.STATUS_PENDING, Order.STATUS_CONTACTED]
        ).update(status=Order.STATUS_CANCELLED)

        if updated:
            self.log_info(
                f"Cancelled {updated} group orders",
                group_id=group.id,
                user_id=getattr(user, 'id', user)
            )

        return updated

    def reassign_group_orders(self, row_ids: Iterable[int], from_group, to_group) -> int:
        """
        Point the open GROUP orders behind migrated ledger rows at their new
        batch: orders linked to the rows themselves, plus every open order
        the rows' registered users hold in the old batch.
        """
        row_ids = list(row_ids)
        if not row_ids:
            return 0

        order_ids = list(
            Order.objects.filter(
                Q(participant_rows__id__in=row_ids)
                | Q(user__group_participations__id__in=row_ids),
                group=from_group,
                item_type=Order.ITEM_GROUP
            ).exclude(
                status=Order.STATUS_CANCELLED
            ).values_list('id', flat=True).distinct()
        )
        if not order_ids:
            return 0

        return Order.objects.filter(id__in=order_ids).update(
            group=to_group, item_name=to_group.title
        )
