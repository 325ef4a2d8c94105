"""
Participation service for group buys.

Single entry point for every operation that touches the participation
ledger. Each operation runs in one transaction holding row locks on every
group it touches, so ledger rows, cached counts and statuses either all
commit or all roll back. WebSocket broadcasts are queued until commit.
"""
from typing import Any, Callable, Dict, Iterable, List, Optional

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError, OperationalError, transaction
from django.db.models import Min, Sum

from apps.core.services.base import BaseService, ServiceException, ServiceResult
from apps.core.utils.websocket_utils import broadcaster
from apps.group_buys.exceptions import (
    ConcurrencyConflict, GroupEnded, GroupNotFound, InsufficientSlots,
    InvalidQuantity, InvalidStatus, NotParticipant, PersistenceFailure,
    RenewalRejected
)
from apps.group_buys.models import GroupBuy, GroupParticipant, GroupUpdate
from apps.group_buys.services.auto_renew import AutoRenewalEngine
from apps.group_buys.services.batch_chain import BatchChainResolver
from apps.group_buys.services.capacity import CapacityChange, CapacityTracker
from apps.group_buys.services.ledger import ParticipationLedger
from apps.orders.services.order_service import OrderService


class ParticipationService(BaseService):
    """
    Orchestrates join, modify, cancel and the admin operations on group buys.

    Public methods never raise for expected failures; they return a
    ServiceResult whose error_code is one of the group buy error codes.
    """

    EDITABLE_FIELDS = (
        'title', 'description', 'price', 'features', 'image_url',
        'target_count', 'auto_renew', 'is_hot',
    )

    def __init__(
        self,
        ledger: Optional[ParticipationLedger] = None,
        orders: Optional[OrderService] = None
    ):
        super().__init__()
        self.ledger = ledger or ParticipationLedger()
        self.capacity = CapacityTracker(self.ledger)
        self.resolver = BatchChainResolver(self.ledger)
        self.renewer = AutoRenewalEngine(self.resolver)
        self.orders = orders or OrderService()

    # ==================== Plumbing ====================

    def _run(self, operation: str, action: Callable[[], Any], **context) -> ServiceResult:
        """
        Run action in a single transaction and convert failures to results.
        Any exception raised inside rolls back every write of the operation.
        """
        try:
            with transaction.atomic():
                data = action()
            return ServiceResult.ok(data)

        except ConcurrencyConflict as e:
            self.log_warning(
                f"Lock contention during {operation}",
                group_ids=e.details.get('group_ids'),
                **context
            )
            return ServiceResult.from_exception(e)

        except ServiceException as e:
            return ServiceResult.from_exception(e)

        except DatabaseError as e:
            self.log_error(
                f"Database error during {operation}",
                exception=e,
                **context
            )
            return ServiceResult.from_exception(PersistenceFailure())

    def _get_group(self, group_id: int) -> GroupBuy:
        try:
            return GroupBuy.objects.get(pk=group_id)
        except GroupBuy.DoesNotExist:
            raise GroupNotFound(group_id)

    def _lock(self, group_ids: Iterable[int]) -> Dict[int, GroupBuy]:
        """
        Lock groups in ascending id order and return them by id.

        With GROUP_BUY_LOCK_NOWAIT a lock held elsewhere fails immediately
        instead of queueing behind the other transaction.
        """
        ids = sorted(set(group_ids))
        nowait = getattr(settings, 'GROUP_BUY_LOCK_NOWAIT', True)
        try:
            groups = list(
                GroupBuy.objects.select_for_update(nowait=nowait)
                .filter(pk__in=ids)
                .order_by('pk')
            )
        except OperationalError as e:
            raise ConcurrencyConflict(ids) from e
        return {group.pk: group for group in groups}

    def _lock_one(self, group_id: int) -> GroupBuy:
        group = self._lock([group_id]).get(group_id)
        if group is None:
            raise GroupNotFound(group_id)
        return group

    def _record(self, group: GroupBuy, event_type: str, **event_data) -> GroupUpdate:
        return GroupUpdate.objects.create(
            group=group,
            event_type=event_type,
            event_data=event_data
        )

    @staticmethod
    def _combine(first: CapacityChange, last: CapacityChange) -> CapacityChange:
        """Net effect of two recomputes of the same group."""
        return first._replace(
            new_count=last.new_count,
            new_status=last.new_status
        )

    def _after_change(self, group: GroupBuy, change: Optional[CapacityChange] = None,
                      reason: Optional[str] = None) -> None:
        """
        Log automatic lock transitions and queue the post-commit broadcasts
        for one touched group.
        """
        if change is not None and change.status_changed and reason is None:
            if change.new_status == GroupBuy.STATUS_LOCKED:
                self._record(group, 'locked', current_count=change.new_count,
                             target_count=change.target_count)
            elif change.old_status == GroupBuy.STATUS_LOCKED:
                self._record(group, 'unlocked', current_count=change.new_count,
                             target_count=change.target_count)

        progress = {
            'group_id': group.id,
            'current_count': group.current_count,
            'target_count': group.target_count,
            'status': group.status,
            'participants_count': self.ledger.participant_count(group),
        }
        transaction.on_commit(lambda: broadcaster.broadcast_progress(**progress))

        if change is not None and change.status_changed:
            status_change = {
                'group_id': group.id,
                'old_status': change.old_status,
                'new_status': change.new_status,
                'reason': reason,
            }
            transaction.on_commit(
                lambda: broadcaster.broadcast_status_change(**status_change)
            )

    def _renew_after_fill(self, group: GroupBuy, change: CapacityChange) -> Optional[GroupBuy]:
        """Run auto-renewal when the count reached the target or the group just locked."""
        locked_now = change.status_changed and change.new_status == GroupBuy.STATUS_LOCKED
        if not (change.filled or locked_now):
            return None
        outcome = self.renewer.renew_if_needed(group)
        return outcome.new_group

    # ==================== Participant operations ====================

    def join(
        self,
        group_id: int,
        user=None,
        quantity: int = 1,
        contact: str = ''
    ) -> ServiceResult:
        """
        Reserve slots in a group, or in the earliest earlier batch of its
        series that can take the whole quantity.

        Args:
            group_id: Group the caller asked to join
            user: Joining user, None for anonymous joins
            quantity: Slots to reserve
            contact: Contact details for the organiser

        Returns:
            ServiceResult with actual_group_id, migrated and
            migrated_to_title describing where the slots landed
        """
        user_id = getattr(user, 'id', None)

        def action():
            if quantity is None or quantity < 1:
                raise InvalidQuantity()

            requested = self._get_group(group_id)
            earlier_ids = [g.id for g in self.resolver.earlier_batches(requested)]

            locked = self._lock([requested.id] + earlier_ids)
            group = locked.get(requested.id)
            if group is None:
                raise GroupNotFound(group_id)
            if group.is_ended:
                raise GroupEnded(group)

            candidates = [
                locked[pk] for pk in earlier_ids
                if pk in locked and locked[pk].created_at < group.created_at
            ]
            actual = self.resolver.forward_search(candidates, quantity)
            migrated = actual is not None

            if not migrated:
                actual = group
                if not self.capacity.accepts_joins(group):
                    raise InsufficientSlots(0, quantity)
                available = self.capacity.available(group)
                if available < quantity:
                    raise InsufficientSlots(available, quantity)

            order = self.orders.create_group_order(user, actual, quantity, contact)
            self.ledger.add_participation(actual, user, quantity, contact, order=order)
            change = self.capacity.recompute(actual)

            self._record(
                actual, 'join',
                user_id=user_id,
                quantity=quantity,
                requested_group_id=group.id,
                migrated=migrated,
                new_total=change.new_count
            )
            new_group = self._renew_after_fill(actual, change)
            self._after_change(actual, change)

            self.log_info(
                f"Joined group {actual.id} with {quantity} slots",
                group_id=actual.id,
                requested_group_id=group.id,
                user_id=user_id,
                quantity=quantity,
                migrated=migrated
            )

            return {
                'actual_group_id': actual.id,
                'actual_group_title': actual.title,
                'migrated': migrated,
                'migrated_to_title': actual.title if migrated else None,
                'quantity': quantity,
                'current_count': actual.current_count,
                'target_count': actual.target_count,
                'status': actual.status,
                'order_id': order.id,
                'renewed_group_id': new_group.id if new_group else None,
            }

        return self._run('join', action, group_id=group_id, user_id=user_id)

    def modify_quantity(
        self,
        group_id: int,
        user,
        new_total: Optional[int] = None,
        contact: Optional[str] = None
    ) -> ServiceResult:
        """
        Change a participant's total quantity and/or contact details.

        Increases must fit the group's capacity counting the user's own
        reservation as free; decreases give back the oldest slots first.
        Leaving a group entirely goes through cancel.
        """
        user_id = getattr(user, 'id', None)

        def action():
            group = self._lock_one(group_id)
            if group.is_ended:
                raise GroupEnded(group)
            if new_total is not None and new_total < 1:
                raise InvalidQuantity(
                    "Quantity must be at least 1; cancel to leave the group"
                )

            current_total = self.ledger.user_total(group, user)
            if current_total == 0:
                raise NotParticipant(group.id, user_id)

            if new_total is None:
                if contact is not None:
                    self.ledger.update_contact(group, user, contact)
                    self._record(group, 'modify', user_id=user_id, contact_updated=True)
                return {
                    'group_id': group.id,
                    'quantity': current_total,
                    'current_count': group.current_count,
                    'status': group.status,
                }

            return self._set_total(
                group, user, user_id, current_total, new_total, contact,
                enforce_forced_lock=True
            )

        return self._run('modify_quantity', action, group_id=group_id, user_id=user_id)

    def _set_total(self, group: GroupBuy, user, user_id, current_total: int,
                   new_total: int, contact: Optional[str],
                   enforce_forced_lock: bool, by_admin: bool = False) -> Dict[str, Any]:
        """
        Bring a participant's total in a locked group to new_total.
        Increases must fit counting the participant's own slots as free.
        """
        diff = new_total - current_total
        if diff > 0:
            if enforce_forced_lock and not self.capacity.accepts_joins(group):
                raise InsufficientSlots(0, diff)
            others = self.ledger.sum_quantity(group, exclude_user=user)
            if group.target_count - others < new_total:
                raise InsufficientSlots(
                    group.target_count - others - current_total, diff
                )

        self.ledger.adjust_quantity(group, user, new_total, contact)
        if contact is not None:
            self.ledger.update_contact(group, user, contact)

        change = self.capacity.recompute(group)
        self._record(
            group, 'modify',
            user_id=user_id,
            old_quantity=current_total,
            new_quantity=new_total,
            new_total=change.new_count,
            by_admin=by_admin
        )
        new_group = self._renew_after_fill(group, change)
        self._after_change(group, change)

        self.log_info(
            f"{'Admin' if by_admin else 'User'} changed quantity of user {user_id} "
            f"in group {group.id} from {current_total} to {new_total}",
            group_id=group.id,
            user_id=user_id,
            diff=diff
        )

        return {
            'group_id': group.id,
            'user_id': user_id,
            'quantity': new_total,
            'current_count': group.current_count,
            'status': group.status,
            'renewed_group_id': new_group.id if new_group else None,
        }

    def cancel(self, group_id: int, user) -> ServiceResult:
        """
        Remove all of a user's slots from a group, then backfill the vacancy
        with whole participants from the group's most recent child batch.

        Returns:
            ServiceResult with released quantity, migrated participants and
            unlocked_downstream (True when slots were freed in the child)
        """
        user_id = getattr(user, 'id', None)
        return self._run(
            'cancel',
            lambda: self._withdraw(group_id, user, user_id),
            group_id=group_id, user_id=user_id
        )

    def _withdraw(self, group_id: int, user, user_id, by_admin: bool = False) -> Dict[str, Any]:
        requested = self._get_group(group_id)
        child = self.resolver.find_child(requested)

        ids = [requested.id] + ([child.id] if child else [])
        locked = self._lock(ids)
        group = locked.get(requested.id)
        if group is None:
            raise GroupNotFound(group_id)
        if group.is_ended:
            raise GroupEnded(group)

        child = locked.get(child.id) if child else None
        if child is not None and (child.is_ended or child.parent_group_id != group.id):
            child = None

        released = self.ledger.remove_all_for_user(group, user)
        if released == 0:
            raise NotParticipant(group.id, user_id)

        self.orders.cancel_group_orders(user, group)
        change = self.capacity.recompute(group)
        self._record(
            group, 'cancel',
            user_id=user_id,
            quantity=released,
            new_total=change.new_count,
            by_admin=by_admin
        )

        moved = []
        vacancy = group.target_count - group.current_count
        if child is not None and vacancy > 0 and self.capacity.accepts_joins(group):
            moved = self.resolver.backfill(group, child, vacancy)

        child_change = None
        if moved:
            moved_quantity = sum(block.quantity for block in moved)
            change = self._combine(change, self.capacity.recompute(group))
            child_change = self.capacity.recompute(child)
            self.orders.reassign_group_orders(
                [row_id for block in moved for row_id in block.row_ids], child, group
            )
            migrated_data = {
                'from_group_id': child.id,
                'to_group_id': group.id,
                'quantity': moved_quantity,
                'participants': [block.key for block in moved],
            }
            self._record(group, 'migrated', **migrated_data)
            self._record(child, 'migrated', **migrated_data)

            self.log_info(
                f"Backfilled {moved_quantity} slots from group {child.id} into {group.id}",
                group_id=group.id,
                child_id=child.id,
                participants=len(moved)
            )

        self._after_change(group, change)
        if child_change is not None:
            self._after_change(child, child_change)

        if by_admin:
            message = f"Admin removed user {user_id} ({released} slots) from group {group.id}"
        else:
            message = f"User {user_id} cancelled {released} slots in group {group.id}"
        self.log_info(
            message,
            group_id=group.id,
            user_id=user_id,
            quantity=released
        )

        return {
            'group_id': group.id,
            'user_id': user_id,
            'released': released,
            'current_count': group.current_count,
            'status': group.status,
            'migrated_count': sum(block.quantity for block in moved),
            'migrated_from_group_id': child.id if moved else None,
            'unlocked_downstream': bool(moved),
        }

    # ==================== Admin operations ====================

    def admin_force_status(self, group_id: int, new_status: str,
                           reason: Optional[str] = None) -> ServiceResult:
        """
        Set a group's status regardless of its counts.

        A forced Open or Locked sticks until released; Ended is final.
        """
        valid = {choice for choice, _ in GroupBuy.STATUS_CHOICES}

        def action():
            if new_status not in valid:
                raise InvalidStatus(f"Unknown status '{new_status}'")

            group = self._lock_one(group_id)
            if group.is_ended:
                raise GroupEnded(group)

            old_status = group.status
            group.status = new_status
            group.status_forced = new_status != GroupBuy.STATUS_ENDED
            group.save(update_fields=['status', 'status_forced', 'updated_at'])

            self._record(
                group, 'status_change',
                old_status=old_status,
                new_status=new_status,
                forced=group.status_forced,
                reason=reason
            )
            change = CapacityChange(
                group_id=group.id,
                target_count=group.target_count,
                old_count=group.current_count,
                new_count=group.current_count,
                old_status=old_status,
                new_status=new_status,
            )
            self._after_change(group, change, reason=reason or 'admin')

            self.log_info(
                f"Admin set group {group.id} status {old_status} -> {new_status}",
                group_id=group.id,
                old_status=old_status,
                new_status=new_status
            )

            return self.capacity.snapshot(group)

        return self._run('admin_force_status', action, group_id=group_id)

    def release_status_override(self, group_id: int) -> ServiceResult:
        """Drop an admin-forced Open/Locked and re-derive status from counts."""

        def action():
            group = self._lock_one(group_id)
            if group.is_ended:
                raise GroupEnded(group)

            if group.status_forced:
                group.status_forced = False
                group.save(update_fields=['status_forced', 'updated_at'])

            change = self.capacity.recompute(group)
            if change.status_changed:
                self._record(
                    group, 'status_change',
                    old_status=change.old_status,
                    new_status=change.new_status,
                    forced=False
                )
            self._renew_after_fill(group, change)
            self._after_change(group, change, reason='override released')

            return self.capacity.snapshot(group)

        return self._run('release_status_override', action, group_id=group_id)

    def create_group(self, **fields) -> ServiceResult:
        """Create an Open batch from template fields."""

        def action():
            data = {k: v for k, v in fields.items() if k in self.EDITABLE_FIELDS}
            target = data.get('target_count')
            if target is None or target < 1:
                raise InvalidQuantity("Target count must be at least 1")

            group = GroupBuy.objects.create(
                current_count=0,
                status=GroupBuy.STATUS_OPEN,
                **data
            )

            self.log_info(
                f"Created group buy {group.id} '{group.title}'",
                group_id=group.id,
                target_count=group.target_count
            )

            return self.capacity.snapshot(group)

        return self._run('create_group', action)

    def update_group(self, group_id: int, **changes) -> ServiceResult:
        """
        Edit template fields and flags. A new target re-derives the status
        but never drops below the slots already reserved.
        """

        def action():
            group = self._lock_one(group_id)
            if group.is_ended:
                raise GroupEnded(group)

            data = {k: v for k, v in changes.items() if k in self.EDITABLE_FIELDS}
            if 'target_count' in data:
                target = data['target_count']
                reserved = self.ledger.sum_quantity(group)
                if target is None or target < 1:
                    raise InvalidQuantity("Target count must be at least 1")
                if target < reserved:
                    raise InvalidQuantity(
                        f"Target count cannot be below the {reserved} slots already reserved"
                    )

            for field_name, value in data.items():
                setattr(group, field_name, value)
            if data:
                group.save(update_fields=list(data) + ['updated_at'])

            change = self.capacity.recompute(group)
            self._renew_after_fill(group, change)
            self._after_change(group, change)

            self.log_info(
                f"Updated group buy {group.id}",
                group_id=group.id,
                fields=sorted(data)
            )

            return self.capacity.snapshot(group)

        return self._run('update_group', action, group_id=group_id)

    def move_participant(
        self,
        source_group_id: int,
        user_id: int,
        target_group_id: int
    ) -> ServiceResult:
        """
        Move all of a user's slots to another batch, only if they fit whole.
        """

        def action():
            if source_group_id == target_group_id:
                raise InvalidQuantity("Source and target group must differ")

            locked = self._lock([source_group_id, target_group_id])
            source = locked.get(source_group_id)
            target = locked.get(target_group_id)
            if source is None:
                raise GroupNotFound(source_group_id)
            if target is None:
                raise GroupNotFound(target_group_id)
            for group in (source, target):
                if group.is_ended:
                    raise GroupEnded(group)

            rows = list(self.ledger.rows_for(source, user_id))
            if not rows:
                raise NotParticipant(source.id, user_id)

            quantity = sum(row.quantity for row in rows)
            available = self.capacity.available(target)
            if quantity > available:
                raise InsufficientSlots(available, quantity)

            row_ids = [row.id for row in rows]
            self.ledger.reassign(row_ids, target)
            self.orders.reassign_group_orders(row_ids, source, target)

            source_change = self.capacity.recompute(source)
            target_change = self.capacity.recompute(target)

            moved_data = {
                'user_id': user_id,
                'quantity': quantity,
                'from_group_id': source.id,
                'to_group_id': target.id,
            }
            self._record(source, 'moved', **moved_data)
            self._record(target, 'moved', **moved_data)

            new_group = self._renew_after_fill(target, target_change)
            self._after_change(source, source_change)
            self._after_change(target, target_change)

            self.log_info(
                f"Moved user {user_id} ({quantity} slots) from group {source.id} to {target.id}",
                **moved_data
            )

            return {
                **moved_data,
                'source_count': source.current_count,
                'target_count': target.current_count,
                'renewed_group_id': new_group.id if new_group else None,
            }

        return self._run(
            'move_participant', action,
            group_id=source_group_id, user_id=user_id, target_group_id=target_group_id
        )

    def admin_set_participant_quantity(self, group_id: int, user_id: int,
                                       new_total: int) -> ServiceResult:
        """
        Set a participant's total quantity on their behalf.

        Same ledger rules as modify_quantity, except an admin-forced lock
        does not block the increase; capacity still does. Reductions free
        slots in place without pulling anyone up from the next batch.
        """

        def action():
            group = self._lock_one(group_id)
            if group.is_ended:
                raise GroupEnded(group)
            if new_total is None or new_total < 1:
                raise InvalidQuantity(
                    "Quantity must be at least 1; remove the participant instead"
                )

            user = get_user_model().objects.filter(pk=user_id).first()
            current_total = self.ledger.user_total(group, user)
            if current_total == 0:
                raise NotParticipant(group.id, user_id)

            return self._set_total(
                group, user, user_id, current_total, new_total, None,
                enforce_forced_lock=False, by_admin=True
            )

        return self._run(
            'admin_set_participant_quantity', action,
            group_id=group_id, user_id=user_id
        )

    def admin_remove_participant(self, group_id: int, user_id: int) -> ServiceResult:
        """
        Remove every slot a user holds in a group, cancel their open orders
        there and backfill the vacancy exactly as a self-service cancel does.
        """
        return self._run(
            'admin_remove_participant',
            lambda: self._withdraw(group_id, user_id, user_id, by_admin=True),
            group_id=group_id, user_id=user_id
        )

    def renew_group(self, group_id: int) -> ServiceResult:
        """Open the next batch by hand, under the same rules as auto-renewal."""

        def action():
            group = self._lock_one(group_id)
            if group.is_ended:
                raise GroupEnded(group)

            outcome = self.renewer.renew_if_needed(group)
            if not outcome.created:
                raise RenewalRejected(outcome.reason)

            return self.capacity.snapshot(outcome.new_group)

        return self._run('renew_group', action, group_id=group_id)

    def reconcile_group(self, group_id: int) -> ServiceResult:
        """Recompute a group's cached count and status from its ledger rows."""

        def action():
            group = self._lock_one(group_id)
            change = self.capacity.recompute(group)
            if change.drift:
                self.log_warning(
                    f"Corrected count drift on group {group.id}: "
                    f"{change.old_count} -> {change.new_count}",
                    group_id=group.id,
                    drift=change.drift
                )
                self._after_change(group, change)
            return change

        return self._run('reconcile_group', action, group_id=group_id)

    # ==================== Reads ====================

    def get_group_view(self, group_id: int) -> ServiceResult:
        """Group details with counts computed live from the ledger."""
        return self._run(
            'get_group_view',
            lambda: self.capacity.snapshot(self._get_group(group_id)),
            group_id=group_id
        )

    def list_groups(self, status: Optional[str] = None,
                    is_hot: Optional[bool] = None) -> ServiceResult:
        def action():
            queryset = GroupBuy.objects.all()
            if status:
                queryset = queryset.filter(status=status)
            if is_hot is not None:
                queryset = queryset.filter(is_hot=is_hot)
            return [self.capacity.snapshot(group) for group in queryset]

        return self._run('list_groups', action)

    def list_participants(self, group_id: int) -> ServiceResult:
        """Ledger rows of a group aggregated per participant, FIFO order."""

        def action():
            group = self._get_group(group_id)
            return [
                {
                    'key': block.key,
                    'user_id': block.user_id,
                    'email': block.email,
                    'quantity': block.quantity,
                    'rows': len(block.row_ids),
                    'joined_at': block.first_joined_at,
                    'contact': block.contact_info or block.email,
                }
                for block in self.ledger.participant_blocks(group)
            ]

        return self._run('list_participants', action, group_id=group_id)

    def list_my_participations(self, user) -> ServiceResult:
        """A user's reservations per group with each group's live state."""

        def action():
            totals = list(
                GroupParticipant.objects.filter(user=user)
                .values('group')
                .annotate(quantity=Sum('quantity'), joined_at=Min('joined_at'))
                .order_by('-joined_at')
            )
            groups = GroupBuy.objects.in_bulk([row['group'] for row in totals])

            participations: List[Dict[str, Any]] = []
            for row in totals:
                participations.append({
                    'group': self.capacity.snapshot(groups[row['group']]),
                    'quantity': row['quantity'],
                    'joined_at': row['joined_at'],
                })
            return participations

        return self._run('list_my_participations', action, user_id=getattr(user, 'id', None))
