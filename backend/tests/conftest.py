"""
Pytest configuration and fixtures for Storefront tests.
Provides reusable test fixtures for models, services, and common test data.
"""
from faker import Faker
from factory.django import DjangoModelFactory
import factory
from django.utils import timezone
from datetime import timedelta
from decimal import Decimal
import pytest
import os
import sys
import django
import uuid

# Add the backend directory to the Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Configure Django settings before any Django imports
os.environ.setdefault('DJANGO_SETTINGS_MODULE',
                      'storefront.settings.test')
django.setup()

# Now safe to import models
from apps.core.models import User  # noqa: E402
from apps.group_buys.models import GroupBuy, GroupParticipant  # noqa: E402
from apps.orders.models import Order  # noqa: E402

fake = Faker()


# ==================== Factory Classes ====================

class UserFactory(DjangoModelFactory):
    """Factory for creating test users."""

    class Meta:
        model = User
        skip_postgeneration_save = True

    email = factory.LazyFunction(lambda: f"buyer-{uuid.uuid4().hex[:12]}@example.com")
    username = factory.Sequence(lambda n: f'user{n}')
    first_name = factory.Faker('first_name')
    last_name = factory.Faker('last_name')
    contact_info = factory.LazyAttribute(
        lambda _: f"wechat: {fake.user_name()}")
    is_active = True

    @factory.post_generation
    def password(self, create, extracted, **kwargs):
        if not create:
            return
        if extracted:
            self.set_password(extracted)
        else:
            self.set_password('testpass123')
        self.save()


class GroupBuyFactory(DjangoModelFactory):
    """Factory for creating group buy batches."""

    class Meta:
        model = GroupBuy

    title = factory.Sequence(lambda n: f'Streaming Plan {n}')
    description = factory.LazyAttribute(lambda _: fake.sentence())
    price = Decimal('25.00')
    features = factory.LazyAttribute(lambda _: ['4K', 'Shared profile'])
    target_count = 5
    current_count = 0
    status = GroupBuy.STATUS_OPEN
    auto_renew = False
    is_hot = False

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Pin created_at exactly; batch order is decided by it."""
        custom_created_at = kwargs.pop('created_at', None)

        obj = model_class(*args, **kwargs)
        obj.save()

        if custom_created_at is not None:
            model_class.objects.filter(pk=obj.pk).update(
                created_at=custom_created_at)
            obj.refresh_from_db()

        return obj


class GroupParticipantFactory(DjangoModelFactory):
    """
    Factory for ledger rows. Does not touch the group's cached count;
    use add_rows() when the group should stay consistent.
    """

    class Meta:
        model = GroupParticipant

    group = factory.SubFactory(GroupBuyFactory)
    user = factory.SubFactory(UserFactory)
    quantity = 1
    contact_info = factory.LazyAttribute(lambda _: fake.user_name())

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        custom_joined_at = kwargs.pop('joined_at', None)

        obj = model_class(*args, **kwargs)
        obj.save()

        if custom_joined_at is not None:
            model_class.objects.filter(pk=obj.pk).update(
                joined_at=custom_joined_at)
            obj.refresh_from_db()

        return obj


class OrderFactory(DjangoModelFactory):
    """Factory for creating test orders."""

    class Meta:
        model = Order

    user = factory.SubFactory(UserFactory)
    item_type = Order.ITEM_GROUP
    group = factory.SubFactory(GroupBuyFactory)
    item_name = factory.LazyAttribute(lambda o: o.group.title)
    quantity = 1
    cost = Decimal('25.00')
    status = Order.STATUS_PENDING


# ==================== Helpers ====================

def add_rows(group, *rows):
    """
    Seed ledger rows as (user, quantity) pairs, one minute apart, and sync
    the group's cached count and status with them.
    """
    base_time = timezone.now() - timedelta(hours=1)
    start = GroupParticipant.objects.filter(group=group).count()
    created = []
    for offset, (user, quantity) in enumerate(rows, start=start):
        created.append(GroupParticipantFactory(
            group=group,
            user=user,
            quantity=quantity,
            joined_at=base_time + timedelta(minutes=offset)
        ))

    total = sum(
        row.quantity for row in GroupParticipant.objects.filter(group=group)
    )
    group.current_count = total
    if group.status != GroupBuy.STATUS_ENDED and not group.status_forced:
        group.status = (
            GroupBuy.STATUS_LOCKED if total >= group.target_count
            else GroupBuy.STATUS_OPEN
        )
    group.save()
    return created


def make_series(base_title, sizes, **kwargs):
    """
    Create consecutive batches of one series, oldest first. Each entry of
    sizes is a target_count; batch N > 1 gets the ' #N' suffix and the
    previous batch as parent.
    """
    start = timezone.now() - timedelta(days=len(sizes))
    batches = []
    for index, target in enumerate(sizes):
        title = base_title if index == 0 else f"{base_title} #{index + 1}"
        batches.append(GroupBuyFactory(
            title=title,
            target_count=target,
            parent_group=batches[-1] if batches else None,
            created_at=start + timedelta(days=index),
            **kwargs
        ))
    return batches


# ==================== Pytest Fixtures ====================

@pytest.fixture
def test_user(db):
    """Create a test user."""
    user = UserFactory()
    user.raw_password = 'testpass123'
    return user


@pytest.fixture
def other_user(db):
    return UserFactory()


@pytest.fixture
def test_group(db):
    """An open group with five slots."""
    return GroupBuyFactory(title='Netflix', target_count=5)


# ==================== Service Fixtures ====================

@pytest.fixture
def participation_service():
    """Create ParticipationService instance."""
    from apps.group_buys.services.participation_service import ParticipationService
    return ParticipationService()


@pytest.fixture
def order_service():
    """Create OrderService instance."""
    from apps.orders.services.order_service import OrderService
    return OrderService()


# ==================== Mock Fixtures ====================

@pytest.fixture
def mock_broadcaster(mocker):
    """Replace the WebSocket broadcaster used by the participation service."""
    return mocker.patch(
        'apps.group_buys.services.participation_service.broadcaster'
    )
