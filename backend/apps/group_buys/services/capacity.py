"""
Group capacity tracking.

current_count is a projection of the ledger: it is always recomputed as
the exact sum of the group's rows, never nudged by deltas, and the
Open/Locked status is re-derived from it.
"""
from typing import Any, Dict, NamedTuple, Optional

from apps.group_buys.models import GroupBuy
from apps.group_buys.services.ledger import ParticipationLedger


class CapacityChange(NamedTuple):
    group_id: int
    target_count: int
    old_count: int
    new_count: int
    old_status: str
    new_status: str

    @property
    def status_changed(self) -> bool:
        return self.old_status != self.new_status

    @property
    def filled(self) -> bool:
        """True when this change took the group from below target to full."""
        return self.old_count < self.target_count <= self.new_count

    @property
    def drift(self) -> int:
        return self.new_count - self.old_count


class CapacityTracker:
    """Keeps GroupBuy.current_count and status consistent with the ledger."""

    def __init__(self, ledger: Optional[ParticipationLedger] = None):
        self.ledger = ledger or ParticipationLedger()

    @staticmethod
    def derive_status(group: GroupBuy, count: int) -> str:
        if group.status == GroupBuy.STATUS_ENDED:
            return GroupBuy.STATUS_ENDED
        if group.status_forced:
            return group.status
        if count >= group.target_count:
            return GroupBuy.STATUS_LOCKED
        return GroupBuy.STATUS_OPEN

    @staticmethod
    def accepts_joins(group: GroupBuy) -> bool:
        """Ended and admin-locked groups take no new participants."""
        if group.status == GroupBuy.STATUS_ENDED:
            return False
        if group.status_forced and group.status == GroupBuy.STATUS_LOCKED:
            return False
        return True

    def available(self, group: GroupBuy) -> int:
        """Live vacancy, read from the ledger rather than the cached count."""
        return group.target_count - self.ledger.sum_quantity(group)

    def recompute(self, group: GroupBuy) -> CapacityChange:
        """Recalculate and persist a (locked) group's count and status."""
        old_count = group.current_count
        old_status = group.status

        new_count = self.ledger.sum_quantity(group)
        new_status = self.derive_status(group, new_count)

        if new_count != old_count or new_status != old_status:
            group.current_count = new_count
            group.status = new_status
            group.save(update_fields=['current_count', 'status', 'updated_at'])

        return CapacityChange(
            group_id=group.id,
            target_count=group.target_count,
            old_count=old_count,
            new_count=new_count,
            old_status=old_status,
            new_status=new_status,
        )

    def snapshot(self, group: GroupBuy) -> Dict[str, Any]:
        """Read-side view of a group with counts taken live from the ledger."""
        live_count = self.ledger.sum_quantity(group)
        return {
            'id': group.id,
            'title': group.title,
            'base_title': group.base_title,
            'batch_number': group.batch_number,
            'description': group.description,
            'price': group.price,
            'features': group.features or [],
            'image_url': group.image_url,
            'target_count': group.target_count,
            'current_count': live_count,
            'available': max(group.target_count - live_count, 0),
            'status': self.derive_status(group, live_count),
            'status_forced': group.status_forced,
            'auto_renew': group.auto_renew,
            'is_hot': group.is_hot,
            'parent_group_id': group.parent_group_id,
            'participants_count': self.ledger.participant_count(group),
            'created_at': group.created_at,
        }
