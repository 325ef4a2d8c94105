"""
Auto-renewal of filled group buys.

When a group with auto_renew fills, the next batch of its series is
opened, unless some other batch of the series still has room.
"""
from typing import NamedTuple, Optional

from apps.core.services.base import BaseService
from apps.group_buys.models import GroupBuy, GroupUpdate
from apps.group_buys.services.batch_chain import BatchChainResolver


class RenewalOutcome(NamedTuple):
    new_group: Optional[GroupBuy]
    reason: str

    @property
    def created(self) -> bool:
        return self.new_group is not None


class AutoRenewalEngine(BaseService):
    """Creates successor batches for filled auto-renewing groups."""

    def __init__(self, resolver: Optional[BatchChainResolver] = None):
        super().__init__()
        self.resolver = resolver or BatchChainResolver()

    def renew_if_needed(self, group: GroupBuy) -> RenewalOutcome:
        """
        Open batch #N+1 after the given group, N being the size of the
        whole series including ended batches.

        Called once per fill of a group; the sibling scan is a plain read.
        """
        if not group.auto_renew:
            return RenewalOutcome(None, "Auto renew is disabled")

        if group.status != GroupBuy.STATUS_LOCKED and group.current_count < group.target_count:
            return RenewalOutcome(None, "Group is not locked and not full")

        base_title = group.base_title

        for sibling in self.resolver.series(base_title):
            if sibling.id == group.id:
                continue
            if sibling.current_count < sibling.target_count:
                self.log_info(
                    f"Skipping renewal of group {group.id}: '{sibling.title}' still has room",
                    group_id=group.id,
                    sibling_id=sibling.id
                )
                return RenewalOutcome(
                    None, f"Active sibling group exists: {sibling.title}"
                )

        batch_number = len(self.resolver.series(base_title, include_ended=True)) + 1

        new_group = GroupBuy.objects.create(
            title=f"{base_title} #{batch_number}",
            description=group.description,
            price=group.price,
            features=list(group.features or []),
            image_url=group.image_url,
            target_count=group.target_count,
            current_count=0,
            status=GroupBuy.STATUS_OPEN,
            auto_renew=True,
            is_hot=group.is_hot,
            parent_group=group
        )

        GroupUpdate.objects.create(
            group=group,
            event_type='renewed',
            event_data={
                'new_group_id': new_group.id,
                'new_title': new_group.title,
                'batch_number': batch_number
            }
        )

        self.log_info(
            f"Opened batch '{new_group.title}' after group {group.id} filled",
            group_id=group.id,
            new_group_id=new_group.id
        )

        return RenewalOutcome(new_group, "Created")
