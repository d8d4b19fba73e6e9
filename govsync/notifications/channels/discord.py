"""Discord webhook channel."""

from __future__ import annotations

from typing import Optional

from govsync.core.errors import DeliveryRejected
from govsync.models.notification import Channel, User
from govsync.notifications.channels.base import DeliveryChannel, MessageRef, OutboundMessage


class DiscordChannel(DeliveryChannel):
    channel = Channel.DISCORD

    def target_for(self, user: User) -> Optional[str]:
        return user.discord_webhook or None

    async def send(self, message: OutboundMessage) -> MessageRef:
        # wait=true makes Discord return the created message (and its id)
        resp = await self._request("POST", message.target, params={"wait": "true"}, json=message.body)
        try:
            message_id = str(resp.json()["id"])
        except (ValueError, KeyError, TypeError) as exc:
            raise DeliveryRejected("discord did not return a message id") from exc
        return MessageRef(target=message.target, message_id=message_id)

    async def edit(self, ref: MessageRef, message: OutboundMessage) -> None:
        await self._request("PATCH", f"{ref.target}/messages/{ref.message_id}", json=message.body)

    async def delete(self, ref: MessageRef) -> None:
        await self._request("DELETE", f"{ref.target}/messages/{ref.message_id}")
