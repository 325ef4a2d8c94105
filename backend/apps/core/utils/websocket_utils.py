"""
WebSocket utility functions for broadcasting events.
Used by services to send real-time updates.
"""
import logging
from typing import Dict, Any, Optional
from decimal import Decimal

from channels.layers import get_channel_layer
from asgiref.sync import async_to_sync

logger = logging.getLogger(__name__)


def group_room_name(group_id) -> str:
    """Channels group name that subscribers of a group buy join."""
    return f'group_buy_{group_id}'


class GroupBuyBroadcaster:
    """
    Utility class for broadcasting group buy events via WebSockets.
    """

    def __init__(self):
        self._channel_layer = None

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def _send_to_group(self, group_id: int, event_type: str, data: Dict[str, Any]):
        """
        Send a message to all clients in a group room.

        Broadcasting is best effort: failures are logged, never raised.
        """
        try:
            room_name = group_room_name(group_id)
            data = self._prepare_data_for_json(data)

            async_to_sync(self.channel_layer.group_send)(
                room_name,
                {
                    'type': event_type,
                    'data': data
                }
            )

            logger.debug(f"Sent {event_type} to room {room_name}")

        except Exception as e:
            logger.error(f"Error broadcasting to group {group_id}: {e}")

    def _prepare_data_for_json(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Prepare data for JSON serialization.
        Converts Decimal to float and datetimes to ISO strings.
        """
        prepared = {}
        for key, value in data.items():
            if isinstance(value, Decimal):
                prepared[key] = float(value)
            elif hasattr(value, 'isoformat'):
                prepared[key] = value.isoformat()
            else:
                prepared[key] = value
        return prepared

    def broadcast_progress(
        self,
        group_id: int,
        current_count: int,
        target_count: int,
        status: str,
        participants_count: int
    ):
        """
        Broadcast a progress update for a group.

        Args:
            group_id: The group buy ID
            current_count: Reserved slots after the change
            target_count: Capacity of the group
            status: Group status after the change
            participants_count: Number of distinct participants
        """
        data = {
            'group_id': group_id,
            'current_count': current_count,
            'target_count': target_count,
            'available': max(target_count - current_count, 0),
            'status': status,
            'participants_count': participants_count,
        }

        self._send_to_group(group_id, 'group.progress', data)

    def broadcast_status_change(
        self,
        group_id: int,
        old_status: str,
        new_status: str,
        reason: Optional[str] = None
    ):
        """
        Broadcast a status change for a group.

        Args:
            group_id: The group buy ID
            old_status: Previous status
            new_status: New status
            reason: Optional reason for the change
        """
        data = {
            'group_id': group_id,
            'old_status': old_status,
            'new_status': new_status,
        }

        if reason:
            data['reason'] = reason

        if new_status == 'locked':
            data['message'] = 'Group is full and locked.'
        elif new_status == 'open':
            data['message'] = 'Group has open slots again.'
        elif new_status == 'ended':
            data['message'] = 'Group has ended.'

        self._send_to_group(group_id, 'group.status_change', data)


# Singleton instance for easy import
broadcaster = GroupBuyBroadcaster()
