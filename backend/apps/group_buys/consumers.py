"""
WebSocket consumer for real-time group buy updates.
Pushes slot progress and status changes to subscribers of a group.
"""
import logging
from typing import Dict, Any, Optional

from channels.generic.websocket import AsyncJsonWebsocketConsumer
from channels.db import database_sync_to_async

from apps.core.utils.websocket_utils import group_room_name

logger = logging.getLogger(__name__)


class GroupBuyConsumer(AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for group buy real-time updates.

    Group pages are public, so anonymous connections are accepted.

    Message Types:
    - subscribe: Join a group buy room
    - unsubscribe: Leave a group buy room
    - ping: Keep-alive message
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.group_id = None
        self.group_room_name = None

    async def connect(self):
        await self.accept()

        user = self.scope.get('user')
        authenticated = bool(user and user.is_authenticated)

        await self.send_json({
            'type': 'connection_established',
            'data': {
                'message': 'Connected to group buy updates',
                'authenticated': authenticated,
                'user_id': user.id if authenticated else None
            }
        })

    async def disconnect(self, close_code):
        if self.group_room_name:
            await self.channel_layer.group_discard(
                self.group_room_name,
                self.channel_name
            )
            logger.debug(f"Connection left room {self.group_room_name}")

    async def receive_json(self, content, **kwargs):
        message_type = content.get('type')

        if message_type == 'subscribe':
            await self.handle_subscribe(content)
        elif message_type == 'unsubscribe':
            await self.handle_unsubscribe(content)
        elif message_type == 'ping':
            await self.send_json({'type': 'pong'})
        else:
            await self.send_json({
                'type': 'error',
                'data': {'message': f'Unknown message type: {message_type}'}
            })

    async def handle_subscribe(self, content):
        """
        Subscribe to a group buy room and send its current state.
        """
        new_group_id = content.get('group_id')

        if not new_group_id:
            await self.send_json({
                'type': 'error',
                'data': {'message': 'Group ID required'}
            })
            return

        group_data = await self.get_group_data(new_group_id)
        if group_data is None:
            await self.send_json({
                'type': 'error',
                'data': {'message': 'Group not found'}
            })
            return

        # Leave previous group if any
        if self.group_room_name:
            await self.channel_layer.group_discard(
                self.group_room_name,
                self.channel_name
            )

        self.group_id = new_group_id
        self.group_room_name = group_room_name(new_group_id)

        await self.channel_layer.group_add(
            self.group_room_name,
            self.channel_name
        )

        await self.send_json({
            'type': 'subscribed',
            'data': {
                'group_id': new_group_id,
                'current_state': group_data
            }
        })

    async def handle_unsubscribe(self, content):
        if self.group_room_name:
            await self.channel_layer.group_discard(
                self.group_room_name,
                self.channel_name
            )

            await self.send_json({
                'type': 'unsubscribed',
                'data': {'group_id': self.group_id}
            })

            self.group_id = None
            self.group_room_name = None

    # Channel layer message handlers

    async def group_progress(self, event):
        await self.send_json({
            'type': 'progress_update',
            'data': event['data']
        })

    async def group_status_change(self, event):
        await self.send_json({
            'type': 'status_change',
            'data': event['data']
        })

    # Database access methods

    @database_sync_to_async
    def get_group_data(self, group_id) -> Optional[Dict[str, Any]]:
        """
        Current group state with live counts, or None if it does not exist.
        """
        from apps.group_buys.services.participation_service import ParticipationService

        try:
            group_id = int(group_id)
        except (TypeError, ValueError):
            return None

        result = ParticipationService().get_group_view(group_id)
        if not result.success:
            logger.warning(f"Group {group_id} not found: {result.error}")
            return None

        state = result.data
        return {
            'group_id': state['id'],
            'title': state['title'],
            'current_count': state['current_count'],
            'target_count': state['target_count'],
            'available': state['available'],
            'status': state['status'],
            'participants_count': state['participants_count'],
        }
