"""Outbound delivery channel interface and the shared HTTP status mapping."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from govsync.core.errors import DeliveryRejected, DeliveryTargetGone, DeliveryTransient
from govsync.models.notification import Channel, User
from govsync.notifications.pacing import AsyncPacer


@dataclass(frozen=True)
class OutboundMessage:
    """Channel-specific body addressed to one target (webhook URL, chat id or email)."""

    target: str
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageRef:
    """Handle of a delivered message; ``message_id`` is what gets persisted."""

    target: str
    message_id: str


def check_delivery_status(resp: httpx.Response) -> None:
    """404/410 -> gone, 408/429/5xx -> transient, any other 4xx -> rejected."""
    code = resp.status_code
    if code < 400:
        return
    detail = f"HTTP {code}: {resp.text[:200]}"
    if code in (404, 410):
        raise DeliveryTargetGone(detail)
    if code in (408, 429) or code >= 500:
        raise DeliveryTransient(detail)
    raise DeliveryRejected(detail)


class DeliveryChannel(ABC):
    channel: Channel

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        pacer: Optional[AsyncPacer] = None,
        timeout: float = 60.0,
    ):
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.pacer = pacer or AsyncPacer(0.0)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    @abstractmethod
    def target_for(self, user: User) -> Optional[str]:
        """The user's handle on this channel, or None when not configured."""

    @abstractmethod
    async def send(self, message: OutboundMessage) -> MessageRef:
        """Deliver a new message."""

    async def edit(self, ref: MessageRef, message: OutboundMessage) -> None:
        raise DeliveryRejected(f"{self.channel.value} does not support editing messages")

    async def delete(self, ref: MessageRef) -> None:
        raise DeliveryRejected(f"{self.channel.value} does not support deleting messages")

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        await self.pacer.wait_turn()
        try:
            resp = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise DeliveryTransient(f"{self.channel.value} request timed out") from exc
        except httpx.TransportError as exc:
            raise DeliveryTransient(f"{self.channel.value} transport error: {exc}") from exc
        self._check(resp)
        return resp

    def _check(self, resp: httpx.Response) -> None:
        check_delivery_status(resp)
