"""
Participation ledger: the reservation rows every group count is derived from.

Only the participation service calls into the ledger, always inside the
transaction that also recomputes the affected groups' counters.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from django.db.models import Sum
from django.db.models.functions import Coalesce

from apps.group_buys.models import GroupBuy, GroupParticipant


@dataclass
class ParticipantBlock:
    """All rows one participant holds in a group, treated as a unit."""
    key: str
    user_id: Optional[int]
    row_ids: List[int] = field(default_factory=list)
    quantity: int = 0
    first_joined_at: Optional[datetime] = None
    contact_info: str = ''
    email: str = ''

    @property
    def is_anonymous(self):
        return self.user_id is None


class ParticipationLedger:
    """Row-level operations on GroupParticipant."""

    def rows_for(self, group: GroupBuy, user):
        """A user's rows in a group, oldest first."""
        return GroupParticipant.objects.filter(
            group=group, user=user
        ).order_by('joined_at', 'id')

    def sum_quantity(self, group: GroupBuy, exclude_user=None) -> int:
        rows = GroupParticipant.objects.filter(group=group)
        if exclude_user is not None:
            rows = rows.exclude(user=exclude_user)
        return rows.aggregate(total=Coalesce(Sum('quantity'), 0))['total']

    def user_total(self, group: GroupBuy, user) -> int:
        if user is None:
            return 0
        return self.rows_for(group, user).aggregate(
            total=Coalesce(Sum('quantity'), 0)
        )['total']

    def add_participation(self, group: GroupBuy, user, quantity: int,
                          contact: str = '', order=None) -> GroupParticipant:
        return GroupParticipant.objects.create(
            group=group,
            user=user,
            quantity=quantity,
            contact_info=contact or '',
            order=order
        )

    def adjust_quantity(self, group: GroupBuy, user, new_total: int,
                        contact: Optional[str] = None) -> int:
        """
        Bring a user's total in a group to new_total.

        Increases append one row; decreases consume the oldest rows first,
        shrinking the last touched row in place when only part of it goes.
        Returns the applied delta.
        """
        rows = list(self.rows_for(group, user))
        current = sum(row.quantity for row in rows)
        diff = new_total - current

        if diff > 0:
            if contact is None:
                contact = rows[-1].contact_info if rows else ''
            self.add_participation(group, user, diff, contact)
        elif diff < 0:
            remaining = -diff
            for row in rows:
                if remaining <= 0:
                    break
                if row.quantity <= remaining:
                    remaining -= row.quantity
                    row.delete()
                else:
                    row.quantity -= remaining
                    row.save(update_fields=['quantity'])
                    remaining = 0

        return diff

    def remove_all_for_user(self, group: GroupBuy, user) -> int:
        """Delete every row the user holds in the group; returns the quantity released."""
        if user is None:
            return 0
        rows = self.rows_for(group, user)
        released = rows.aggregate(total=Coalesce(Sum('quantity'), 0))['total']
        rows.delete()
        return released

    def update_contact(self, group: GroupBuy, user, contact: str) -> int:
        return self.rows_for(group, user).update(contact_info=contact or '')

    def reassign(self, row_ids: List[int], to_group: GroupBuy) -> int:
        """Move rows to another group, keeping quantity and join time."""
        return GroupParticipant.objects.filter(
            id__in=row_ids
        ).update(group=to_group)

    def participant_blocks(self, group: GroupBuy) -> List[ParticipantBlock]:
        """
        Aggregate a group's rows per participant, earliest joiner first.

        Rows without a user are never merged: each is its own block keyed
        by the row id.
        """
        rows = GroupParticipant.objects.filter(
            group=group
        ).select_related('user').order_by('joined_at', 'id')

        blocks = {}
        for row in rows:
            key = f"user:{row.user_id}" if row.user_id else f"row:{row.id}"
            block = blocks.get(key)
            if block is None:
                block = ParticipantBlock(
                    key=key,
                    user_id=row.user_id,
                    first_joined_at=row.joined_at,
                    contact_info=row.contact_info,
                    email=row.user.email if row.user_id else ''
                )
                blocks[key] = block
            block.row_ids.append(row.id)
            block.quantity += row.quantity

        return sorted(
            blocks.values(),
            key=lambda b: (b.first_joined_at, b.row_ids[0])
        )

    def participant_count(self, group: GroupBuy) -> int:
        """Distinct participants; every anonymous row counts on its own."""
        rows = GroupParticipant.objects.filter(group=group)
        return (
            rows.exclude(user=None).order_by().values('user').distinct().count()
            + rows.filter(user=None).count()
        )
