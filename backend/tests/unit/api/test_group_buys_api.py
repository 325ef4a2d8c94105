"""
API tests for group buy endpoints.
Tests participation, admin controls and error rendering.
"""
import pytest
from rest_framework import status
from rest_framework.test import APIClient
from django.urls import reverse

from apps.group_buys.models import GroupBuy, GroupParticipant
from apps.group_buys.views import GroupBuyViewSet
from apps.orders.models import Order
from tests.conftest import (
    GroupBuyFactory, OrderFactory, UserFactory, add_rows, make_series
)


@pytest.mark.django_db
class TestGroupBuyReadAPI:
    """Public list and detail endpoints."""

    def setup_method(self):
        self.client = APIClient()

    def test_list_is_public(self):
        GroupBuyFactory(title='Netflix')
        GroupBuyFactory(title='Spotify', is_hot=True)

        response = self.client.get(reverse('groupbuy-list'))

        assert response.status_code == status.HTTP_200_OK
        assert {item['title'] for item in response.data} == {'Netflix', 'Spotify'}

    def test_list_filters_by_hot_and_status(self):
        GroupBuyFactory(title='Netflix')
        GroupBuyFactory(title='Spotify', is_hot=True)
        GroupBuyFactory(title='Hulu', status=GroupBuy.STATUS_ENDED)

        hot = self.client.get(reverse('groupbuy-list'), {'is_hot': 'true'})
        ended = self.client.get(reverse('groupbuy-list'), {'status': 'ended'})

        assert [item['title'] for item in hot.data] == ['Spotify']
        assert [item['title'] for item in ended.data] == ['Hulu']

    def test_detail_reports_live_counts(self):
        group = GroupBuyFactory(title='Netflix #2', target_count=4)
        add_rows(group, (UserFactory(), 1), (None, 2))

        response = self.client.get(reverse('groupbuy-detail', args=[group.id]))

        assert response.status_code == status.HTTP_200_OK
        assert response.data['current_count'] == 3
        assert response.data['available'] == 1
        assert response.data['batch_number'] == 2
        assert response.data['base_title'] == 'Netflix'
        assert response.data['participants_count'] == 2

    def test_detail_not_found(self):
        response = self.client.get(reverse('groupbuy-detail', args=[987654]))

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.data['error_code'] == 'GROUP_NOT_FOUND'


@pytest.mark.django_db
class TestJoinAPI:

    def setup_method(self):
        self.client = APIClient()
        self.user = UserFactory()
        self.group = GroupBuyFactory(title='Netflix', target_count=3)

    def test_authenticated_join(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-join', args=[self.group.id]),
            {'quantity': 2},
            format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['actual_group_id'] == self.group.id
        assert response.data['current_count'] == 2
        assert response.data['migrated'] is False

    def test_anonymous_join_requires_contact(self):
        response = self.client.post(
            reverse('groupbuy-join', args=[self.group.id]),
            {'quantity': 1},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert 'contact' in response.data

    def test_anonymous_join_with_contact(self):
        response = self.client.post(
            reverse('groupbuy-join', args=[self.group.id]),
            {'quantity': 1, 'contact': 'wechat: guest'},
            format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert GroupParticipant.objects.get(group=self.group).user is None

    def test_insufficient_slots_payload(self):
        self.client.force_authenticate(self.user)
        add_rows(self.group, (UserFactory(), 2))

        response = self.client.post(
            reverse('groupbuy-join', args=[self.group.id]),
            {'quantity': 2},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_code'] == 'INSUFFICIENT_SLOTS'
        assert response.data['available'] == 1
        assert response.data['requested'] == 2

    def test_join_reports_migration(self):
        first, second = make_series('Spotify', [4, 4])
        add_rows(first, (UserFactory(), 2))
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-join', args=[second.id]),
            {'quantity': 2},
            format='json'
        )

        assert response.data['migrated'] is True
        assert response.data['actual_group_id'] == first.id
        assert response.data['migrated_to_title'] == 'Spotify'

    def test_concurrency_conflict_is_409(self, mocker):
        from apps.core.services.base import ServiceResult
        mocker.patch.object(
            GroupBuyViewSet.service,
            'join',
            return_value=ServiceResult.fail(
                'Group is busy, please retry',
                error_code='CONCURRENCY_CONFLICT',
                details={'group_ids': [self.group.id]}
            )
        )
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-join', args=[self.group.id]),
            {'quantity': 1},
            format='json'
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.data['group_ids'] == [self.group.id]


@pytest.mark.django_db
class TestModifyAndCancelAPI:

    def setup_method(self):
        self.client = APIClient()
        self.user = UserFactory()
        self.group = GroupBuyFactory(target_count=5)
        add_rows(self.group, (self.user, 2))

    def test_requires_authentication(self):
        response = self.client.post(
            reverse('groupbuy-cancel', args=[self.group.id]),
            format='json'
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_modify_quantity(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-modify', args=[self.group.id]),
            {'new_total': 4},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['quantity'] == 4
        assert response.data['current_count'] == 4

    def test_modify_to_zero_points_to_cancel(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-modify', args=[self.group.id]),
            {'new_total': 0},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_code'] == 'INVALID_QUANTITY'

    def test_modify_needs_some_change(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-modify', args=[self.group.id]),
            {},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_cancel(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-cancel', args=[self.group.id]),
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['released'] == 2
        assert response.data['unlocked_downstream'] is False

    def test_cancel_by_non_participant(self):
        self.client.force_authenticate(UserFactory())

        response = self.client.post(
            reverse('groupbuy-cancel', args=[self.group.id]),
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_code'] == 'NOT_PARTICIPANT'

    def test_mine_lists_own_groups(self):
        self.client.force_authenticate(self.user)

        response = self.client.get(reverse('groupbuy-mine'))

        assert response.status_code == status.HTTP_200_OK
        assert len(response.data) == 1
        assert response.data[0]['group']['id'] == self.group.id
        assert response.data[0]['quantity'] == 2


@pytest.mark.django_db
class TestAdminAPI:

    def setup_method(self):
        self.client = APIClient()
        self.admin = UserFactory(is_staff=True)
        self.user = UserFactory()
        self.group = GroupBuyFactory(title='Netflix', target_count=2, auto_renew=True)

    def test_regular_user_cannot_force_status(self):
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-force-status', args=[self.group.id]),
            {'status': 'locked'},
            format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    def test_force_and_release_status(self):
        self.client.force_authenticate(self.admin)

        forced = self.client.post(
            reverse('groupbuy-force-status', args=[self.group.id]),
            {'status': 'locked', 'reason': 'supplier delay'},
            format='json'
        )
        released = self.client.post(
            reverse('groupbuy-release-status', args=[self.group.id]),
            format='json'
        )

        assert forced.status_code == status.HTTP_200_OK
        assert forced.data['status'] == 'locked'
        assert forced.data['status_forced'] is True
        assert released.data['status'] == 'open'
        assert released.data['status_forced'] is False

    def test_invalid_status(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('groupbuy-force-status', args=[self.group.id]),
            {'status': 'archived'},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_code'] == 'INVALID_STATUS'

    def test_create_and_update_group(self):
        self.client.force_authenticate(self.admin)

        created = self.client.post(
            reverse('groupbuy-list'),
            {'title': ' YouTube Premium ', 'target_count': 6, 'price': '9.90', 'features': ['No ads']},
            format='json'
        )
        updated = self.client.patch(
            reverse('groupbuy-detail', args=[created.data['id']]),
            {'is_hot': True},
            format='json'
        )

        assert created.status_code == status.HTTP_201_CREATED
        assert created.data['title'] == 'YouTube Premium'
        assert created.data['status'] == 'open'
        assert updated.status_code == status.HTTP_200_OK
        assert updated.data['is_hot'] is True

    def test_renew(self):
        add_rows(self.group, (self.user, 2))
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('groupbuy-renew', args=[self.group.id]),
            format='json'
        )

        assert response.status_code == status.HTTP_201_CREATED
        assert response.data['title'] == 'Netflix #2'

    def test_renew_rejected(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('groupbuy-renew', args=[self.group.id]),
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_code'] == 'RENEWAL_REJECTED'

    def test_participants_and_move(self):
        other = GroupBuyFactory(target_count=3)
        add_rows(self.group, (self.user, 1))
        self.client.force_authenticate(self.admin)

        participants = self.client.get(
            reverse('groupbuy-participants', args=[self.group.id])
        )
        moved = self.client.post(
            reverse('groupbuy-move-participant', args=[self.group.id]),
            {'user_id': self.user.id, 'target_group_id': other.id},
            format='json'
        )

        assert participants.status_code == status.HTTP_200_OK
        assert participants.data[0]['user_id'] == self.user.id
        assert moved.status_code == status.HTTP_200_OK
        assert moved.data['to_group_id'] == other.id
        assert GroupParticipant.objects.get(user=self.user).group_id == other.id

    def test_set_participant_quantity(self):
        add_rows(self.group, (self.user, 1))
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('groupbuy-set-participant-quantity', args=[self.group.id]),
            {'user_id': self.user.id, 'new_total': 2},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['quantity'] == 2
        assert response.data['status'] == 'locked'
        assert response.data['renewed_group_id'] is not None

    def test_set_participant_quantity_over_capacity(self):
        add_rows(self.group, (self.user, 1))
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('groupbuy-set-participant-quantity', args=[self.group.id]),
            {'user_id': self.user.id, 'new_total': 3},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_code'] == 'INSUFFICIENT_SLOTS'
        assert response.data['available'] == 1

    def test_regular_user_cannot_remove_participant(self):
        add_rows(self.group, (self.user, 1))
        self.client.force_authenticate(self.user)

        response = self.client.post(
            reverse('groupbuy-remove-participant', args=[self.group.id]),
            {'user_id': self.user.id},
            format='json'
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert GroupParticipant.objects.filter(user=self.user).exists()

    def test_remove_participant_backfills_from_next_batch(self):
        parent, child = make_series('Hulu', [2, 2])
        waiting = UserFactory()
        add_rows(parent, (self.user, 1), (UserFactory(), 1))
        add_rows(child, (waiting, 1))
        order = OrderFactory(user=self.user, group=parent)
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('groupbuy-remove-participant', args=[parent.id]),
            {'user_id': self.user.id},
            format='json'
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.data['released'] == 1
        assert response.data['migrated_count'] == 1
        assert GroupParticipant.objects.get(user=waiting).group_id == parent.id
        order.refresh_from_db()
        assert order.status == Order.STATUS_CANCELLED

    def test_remove_unknown_participant(self):
        self.client.force_authenticate(self.admin)

        response = self.client.post(
            reverse('groupbuy-remove-participant', args=[self.group.id]),
            {'user_id': self.user.id},
            format='json'
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.data['error_code'] == 'NOT_PARTICIPANT'
