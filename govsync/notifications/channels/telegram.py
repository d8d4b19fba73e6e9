"""Telegram Bot API channel."""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from govsync.core.errors import DeliveryRejected, DeliveryTargetGone
from govsync.models.notification import Channel, User
from govsync.notifications.channels.base import DeliveryChannel, MessageRef, OutboundMessage
from govsync.notifications.pacing import AsyncPacer

TELEGRAM_API = "https://api.telegram.org"


class TelegramChannel(DeliveryChannel):
    channel = Channel.TELEGRAM

    def __init__(
        self,
        bot_token: Optional[str],
        client: Optional[httpx.AsyncClient] = None,
        pacer: Optional[AsyncPacer] = None,
        timeout: float = 60.0,
        api_url: str = TELEGRAM_API,
    ):
        super().__init__(client=client, pacer=pacer, timeout=timeout)
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")

    def target_for(self, user: User) -> Optional[str]:
        return user.telegram_chat_id or None

    async def send(self, message: OutboundMessage) -> MessageRef:
        result = await self._call("sendMessage", {"chat_id": message.target, **message.body})
        try:
            message_id = str(result["message_id"])
        except (KeyError, TypeError) as exc:
            raise DeliveryRejected("telegram did not return a message id") from exc
        return MessageRef(target=message.target, message_id=message_id)

    async def edit(self, ref: MessageRef, message: OutboundMessage) -> None:
        await self._call(
            "editMessageText",
            {"chat_id": ref.target, "message_id": int(ref.message_id), **message.body},
        )

    async def delete(self, ref: MessageRef) -> None:
        await self._call("deleteMessage", {"chat_id": ref.target, "message_id": int(ref.message_id)})

    async def _call(self, method: str, payload: Dict[str, Any]) -> Any:
        if not self.bot_token:
            raise DeliveryRejected("TELEGRAM_BOT_TOKEN is not configured")
        resp = await self._request("POST", f"{self.api_url}/bot{self.bot_token}/{method}", json=payload)
        try:
            return resp.json().get("result")
        except ValueError as exc:
            raise DeliveryRejected(f"telegram {method} returned non-JSON body") from exc

    def _check(self, resp: httpx.Response) -> None:
        # 403: the bot was blocked or removed from the chat
        if resp.status_code == 403:
            raise DeliveryTargetGone(f"HTTP 403: {resp.text[:200]}")
        super()._check(resp)
