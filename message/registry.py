import logging

from channels.layers import get_channel_layer

logger = logging.getLogger(__name__)


def user_group_name(user_id) -> str:
    return f"user_{user_id}"


class ChannelRegistry:
    def __init__(self, channel_layer=None):
        self._channel_layer = channel_layer
        self._channels: dict = {}

    @property
    def channel_layer(self):
        if self._channel_layer is None:
            self._channel_layer = get_channel_layer()
        return self._channel_layer

    def __len__(self):
        return len(self._channels)

    def __contains__(self, user_id):
        return self.is_online(user_id)

    def is_online(self, user_id) -> bool:
        return user_id in self._channels

    def channel_for(self, user_id):
        return self._channels.get(user_id)

    async def join(self, user_id, channel_name: str):
        group = user_group_name(user_id)
        previous = self._channels.get(user_id)
        if previous is not None and previous != channel_name:
            # one live socket per user channel; the newest join wins
            await self.channel_layer.group_discard(group, previous)
            logger.info("User %s rejoined, dropping channel %s", user_id, previous)

        self._channels[user_id] = channel_name
        await self.channel_layer.group_add(group, channel_name)
        logger.info("User %s joined on %s (%d online)", user_id, channel_name, len(self._channels))

    async def leave(self, user_id, channel_name: str):
        if self._channels.get(user_id) == channel_name:
            del self._channels[user_id]
        await self.channel_layer.group_discard(user_group_name(user_id), channel_name)
        logger.info("User %s left %s (%d online)", user_id, channel_name, len(self._channels))

    async def deliver(self, user_id, event_type: str, payload: dict):
        await self.channel_layer.group_send(
            user_group_name(user_id),
            {"type": event_type, "data": payload},
        )
