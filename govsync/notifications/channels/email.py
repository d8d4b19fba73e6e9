"""Email through Postmark templates (send only)."""

from __future__ import annotations

from typing import Optional

import httpx

from govsync.core.errors import DeliveryRejected, DeliveryTargetGone
from govsync.models.notification import Channel, User
from govsync.notifications.channels.base import DeliveryChannel, MessageRef, OutboundMessage
from govsync.notifications.pacing import AsyncPacer

POSTMARK_URL = "https://api.postmarkapp.com/email/withTemplate"
# Postmark ErrorCode for a hard-bounced / unsubscribed recipient
INACTIVE_RECIPIENT = 406


class EmailChannel(DeliveryChannel):
    channel = Channel.EMAIL

    def __init__(
        self,
        token: Optional[str],
        sender: str,
        client: Optional[httpx.AsyncClient] = None,
        pacer: Optional[AsyncPacer] = None,
        timeout: float = 60.0,
        url: str = POSTMARK_URL,
    ):
        super().__init__(client=client, pacer=pacer, timeout=timeout)
        self.token = token
        self.sender = sender
        self.url = url

    def target_for(self, user: User) -> Optional[str]:
        return user.email or None

    async def send(self, message: OutboundMessage) -> MessageRef:
        if not self.token:
            raise DeliveryRejected("POSTMARK_TOKEN is not configured")

        body = {"From": self.sender, "To": message.target, **message.body}
        resp = await self._request(
            "POST",
            self.url,
            json=body,
            headers={
                "Accept": "application/json",
                "X-Postmark-Server-Token": self.token,
            },
        )
        try:
            message_id = str(resp.json().get("MessageID") or "")
        except ValueError as exc:
            raise DeliveryRejected("postmark returned non-JSON body") from exc
        return MessageRef(target=message.target, message_id=message_id)

    def _check(self, resp: httpx.Response) -> None:
        if resp.status_code == 422:
            try:
                code = resp.json().get("ErrorCode")
            except ValueError:
                code = None
            if code == INACTIVE_RECIPIENT:
                raise DeliveryTargetGone(f"inactive recipient: {resp.text[:200]}")
        super()._check(resp)
