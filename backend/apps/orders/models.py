# apps/orders/models.py

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


def generate_order_reference():
    """Generate unique order reference number."""
    year = timezone.now().year
    random_part = uuid.uuid4().hex[:6].upper()
    return f"GB-{year}-{random_part}"


class Order(models.Model):
    """
    A purchase record. Group buy joins create GROUP orders pointing at the
    batch the participation actually landed in.
    """
    ITEM_PRODUCT = 'PRODUCT'
    ITEM_GROUP = 'GROUP'
    ITEM_LOTTERY = 'LOTTERY'

    ITEM_TYPE_CHOICES = [
        (ITEM_PRODUCT, 'Product'),
        (ITEM_GROUP, 'Group Buy'),
        (ITEM_LOTTERY, 'Lottery'),
    ]

    STATUS_PENDING = 'pending'
    STATUS_CONTACTED = 'contacted'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending Contact'),
        (STATUS_CONTACTED, 'Contacted'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    reference_number = models.CharField(
        max_length=20,
        unique=True,
        default=generate_order_reference,
        editable=False
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders'
    )
    item_type = models.CharField(
        max_length=20,
        choices=ITEM_TYPE_CHOICES,
        default=ITEM_GROUP
    )
    group = models.ForeignKey(
        'group_buys.GroupBuy',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='orders',
        help_text="Group buy batch for GROUP orders"
    )
    item_name = models.CharField(max_length=200)
    contact_details = models.CharField(max_length=255, blank=True)

    quantity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)]
    )
    cost = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[MinValueValidator(Decimal('0.00'))]
    )
    currency = models.CharField(max_length=3, default='CNY')

    status = models.CharField(
        max_length=20,
        choices=STATUS_CHOICES,
        default=STATUS_PENDING
    )
    notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'orders'
        verbose_name = _('Order')
        verbose_name_plural = _('Orders')
        indexes = [
            models.Index(fields=['reference_number']),
            models.Index(fields=['user', 'created_at']),
            models.Index(fields=['status', 'created_at']),
            models.Index(fields=['group', 'user']),
        ]
        ordering = ['-created_at']

    def __str__(self):
        return f"Order {self.reference_number} - {self.item_name}"
