# apps/group_buys/models.py

import re
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


BATCH_SUFFIX_RE = re.compile(r'\s*#\s*(\d+)\s*$')


def strip_batch_suffix(title):
    """Return the series base title, e.g. 'Netflix #3' -> 'Netflix'."""
    return BATCH_SUFFIX_RE.sub('', title or '').strip()


def batch_number_of(title):
    """Return the batch number encoded in a title, or 1 for the first batch."""
    match = BATCH_SUFFIX_RE.search(title or '')
    return int(match.group(1)) if match else 1


class GroupBuy(models.Model):
    """
    A pooled offer: participants reserve slots until target_count is reached.
    Batches of the same offer share a base title and link via parent_group.
    """
    STATUS_OPEN = 'open'
    STATUS_LOCKED = 'locked'
    STATUS_ENDED = 'ended'

    STATUS_CHOICES = [
        (STATUS_OPEN, 'Open for participation'),
        (STATUS_LOCKED, 'Full - locked'),
        (STATUS_ENDED, 'Ended'),
    ]

    title = models.CharField(
        max_length=200,
        db_index=True,
        help_text="Display title; successor batches carry a ' #N' suffix"
    )
    description = models.TextField(blank=True)
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    features = models.JSONField(default=list, blank=True)
    image_url = models.URLField(max_length=500, blank=True)

    target_count = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Number of slots available in this batch"
    )
    current_count = models.PositiveIntegerField(
        default=0,
        help_text="Cached sum of participant quantities"
    )

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_OPEN
    )
    status_forced = models.BooleanField(
        default=False,
        help_text="Open/Locked was set by an admin and is not re-derived from counts"
    )

    auto_renew = models.BooleanField(
        default=False,
        help_text="Open the next batch automatically when this one fills"
    )
    is_hot = models.BooleanField(default=False)
    parent_group = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='children',
        help_text="Batch this group was spawned from"
    )

    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'group_buys'
        verbose_name = _('Group Buy')
        verbose_name_plural = _('Group Buys')
        indexes = [
            models.Index(fields=['status', 'created_at']),
            models.Index(fields=['parent_group', 'status']),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.title} ({self.current_count}/{self.target_count}, {self.status})"

    @property
    def base_title(self):
        return strip_batch_suffix(self.title)

    @property
    def batch_number(self):
        return batch_number_of(self.title)

    @property
    def is_ended(self):
        return self.status == self.STATUS_ENDED


class GroupParticipant(models.Model):
    """
    One reservation row in a group. A user may hold several rows in the
    same group; their share is the sum of the quantities.
    """
    group = models.ForeignKey(
        GroupBuy,
        on_delete=models.CASCADE,
        related_name='participants'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='group_participations'
    )
    quantity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)]
    )
    contact_info = models.CharField(max_length=255, blank=True)
    order = models.ForeignKey(
        'orders.Order',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='participant_rows',
        help_text="Order recorded for the join that created this row"
    )
    joined_at = models.DateTimeField(default=timezone.now)

    class Meta:
        db_table = 'group_participants'
        verbose_name = _('Group Participant')
        verbose_name_plural = _('Group Participants')
        indexes = [
            models.Index(fields=['group', 'user']),
            models.Index(fields=['group', 'joined_at']),
        ]
        ordering = ['joined_at', 'id']

    def __str__(self):
        who = self.user.email if self.user_id else 'anonymous'
        return f"{who} x{self.quantity} in {self.group.title}"


class GroupUpdate(models.Model):
    """
    Event log of group buy activity, written inside the same transaction
    as the change it describes.
    """
    EVENT_TYPE_CHOICES = [
        ('join', 'Joined'),
        ('modify', 'Quantity Modified'),
        ('cancel', 'Participation Cancelled'),
        ('migrated', 'Participants Migrated'),
        ('moved', 'Participant Moved By Admin'),
        ('locked', 'Group Locked'),
        ('unlocked', 'Group Reopened'),
        ('renewed', 'Next Batch Created'),
        ('status_change', 'Status Changed By Admin'),
    ]

    group = models.ForeignKey(
        GroupBuy,
        on_delete=models.CASCADE,
        related_name='updates'
    )
    event_type = models.CharField(
        max_length=20,
        choices=EVENT_TYPE_CHOICES
    )
    event_data = models.JSONField(default=dict)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'group_updates'
        verbose_name = _('Group Update')
        verbose_name_plural = _('Group Updates')
        indexes = [
            models.Index(fields=['group', 'created_at']),
            models.Index(fields=['event_type']),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.group.title} - {self.event_type} - {self.created_at}"
