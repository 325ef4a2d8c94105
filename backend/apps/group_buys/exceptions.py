"""
Error taxonomy for group buy participation.

Business-rule failures are expected and rendered to the caller;
ConcurrencyConflict and PersistenceFailure are retried by the caller
at the request level.
"""
from apps.core.services.base import (
    ServiceException, ValidationError, BusinessRuleViolation
)


class GroupNotFound(ServiceException):
    def __init__(self, group_id):
        super().__init__(
            f"Group {group_id} not found",
            code='GROUP_NOT_FOUND',
            details={'group_id': group_id}
        )


class GroupEnded(BusinessRuleViolation):
    def __init__(self, group):
        super().__init__(
            f"Group '{group.title}' has ended",
            code='GROUP_ENDED',
            details={'group_id': group.id}
        )


class InsufficientSlots(BusinessRuleViolation):
    """The request needs more slots than the group has left."""

    def __init__(self, available, requested):
        super().__init__(
            f"Not enough slots: {available} available, {requested} requested",
            code='INSUFFICIENT_SLOTS',
            details={'available': max(available, 0), 'requested': requested}
        )
        self.available = max(available, 0)


class InvalidQuantity(ValidationError):
    def __init__(self, message="Quantity must be at least 1"):
        super().__init__(message, code='INVALID_QUANTITY')


class NotParticipant(BusinessRuleViolation):
    def __init__(self, group_id, user_id):
        super().__init__(
            "You have not joined this group",
            code='NOT_PARTICIPANT',
            details={'group_id': group_id, 'user_id': user_id}
        )


class InvalidStatus(ValidationError):
    def __init__(self, message):
        super().__init__(message, code='INVALID_STATUS')


class RenewalRejected(BusinessRuleViolation):
    def __init__(self, reason):
        super().__init__(reason, code='RENEWAL_REJECTED')


class ConcurrencyConflict(ServiceException):
    """Another request holds the group lock; retry the whole operation."""

    def __init__(self, group_ids=None):
        super().__init__(
            "Group is busy, please retry",
            code='CONCURRENCY_CONFLICT',
            details={'group_ids': list(group_ids or [])}
        )


class PersistenceFailure(ServiceException):
    def __init__(self, message="Failed to save changes"):
        super().__init__(message, code='PERSISTENCE_FAILURE')
