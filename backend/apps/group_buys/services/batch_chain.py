"""
Batch chain resolution for group buy series.

A series is every group whose title reduces to the same base title once
the ' #N' batch suffix is stripped. It is derived per request from a
title prefix query; parent_group is the only stored link.
"""
from typing import Iterable, List, Optional

from apps.group_buys.models import GroupBuy, strip_batch_suffix
from apps.group_buys.services.ledger import ParticipantBlock, ParticipationLedger


class BatchChainResolver:
    """
    Finds sibling batches for migration.

    Forward search sends a new join to the earliest earlier batch that can
    take it whole. Backward backfill pulls whole participants from a
    group's most recent child into vacancies left by a cancellation; it
    only looks one hop down the chain.
    """

    def __init__(self, ledger: Optional[ParticipationLedger] = None):
        self.ledger = ledger or ParticipationLedger()

    def series(self, base_title: str, include_ended: bool = False) -> List[GroupBuy]:
        """Groups of a series ordered by creation, oldest first."""
        queryset = GroupBuy.objects.filter(title__istartswith=base_title)
        if not include_ended:
            queryset = queryset.exclude(status=GroupBuy.STATUS_ENDED)

        # The prefix query also matches e.g. 'Plan Pro' for 'Plan';
        # membership needs the exact base title.
        wanted = base_title.casefold()
        return [
            group for group in queryset.order_by('created_at', 'id')
            if strip_batch_suffix(group.title).casefold() == wanted
        ]

    def earlier_batches(self, group: GroupBuy) -> List[GroupBuy]:
        """Non-ended siblings created strictly before the group."""
        return [
            sibling for sibling in self.series(group.base_title)
            if sibling.created_at < group.created_at
        ]

    def forward_search(self, candidates: Iterable[GroupBuy], quantity: int) -> Optional[GroupBuy]:
        """
        First candidate, in creation order, with room for the whole quantity.

        Candidates must already be locked by the caller; vacancy is read
        live from the ledger.
        """
        ordered = sorted(candidates, key=lambda g: (g.created_at, g.id))
        for candidate in ordered:
            if candidate.status == GroupBuy.STATUS_ENDED:
                continue
            if candidate.status_forced and candidate.status == GroupBuy.STATUS_LOCKED:
                continue
            if candidate.target_count - self.ledger.sum_quantity(candidate) >= quantity:
                return candidate
        return None

    def find_child(self, group: GroupBuy) -> Optional[GroupBuy]:
        """Most recently created non-ended batch spawned from the group."""
        return GroupBuy.objects.filter(
            parent_group=group
        ).exclude(
            status=GroupBuy.STATUS_ENDED
        ).order_by('-created_at', '-id').first()

    def backfill(self, group: GroupBuy, child: GroupBuy, vacancy: int) -> List[ParticipantBlock]:
        """
        Move whole participants from child into group, earliest joiner first.

        A participant whose total does not fit the remaining vacancy is
        skipped, never split; later, smaller participants may still fit.
        Returns the blocks that moved.
        """
        moved = []
        remaining = vacancy

        for block in self.ledger.participant_blocks(child):
            if remaining <= 0:
                break
            if block.quantity > remaining:
                continue
            self.ledger.reassign(block.row_ids, group)
            remaining -= block.quantity
            moved.append(block)

        return moved
