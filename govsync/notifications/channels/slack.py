"""Slack incoming-webhook channel (send only)."""

from __future__ import annotations

from typing import Optional

from govsync.models.notification import Channel, User
from govsync.notifications.channels.base import DeliveryChannel, MessageRef, OutboundMessage


class SlackChannel(DeliveryChannel):
    channel = Channel.SLACK

    def target_for(self, user: User) -> Optional[str]:
        return user.slack_webhook or None

    async def send(self, message: OutboundMessage) -> MessageRef:
        await self._request("POST", message.target, json=message.body)
        # Incoming webhooks do not expose the posted message
        return MessageRef(target=message.target, message_id="slack")
