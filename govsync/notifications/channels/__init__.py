from govsync.notifications.channels.base import DeliveryChannel, MessageRef, OutboundMessage
from govsync.notifications.channels.discord import DiscordChannel
from govsync.notifications.channels.email import EmailChannel
from govsync.notifications.channels.slack import SlackChannel
from govsync.notifications.channels.telegram import TelegramChannel

__all__ = [
    "DeliveryChannel",
    "MessageRef",
    "OutboundMessage",
    "DiscordChannel",
    "EmailChannel",
    "SlackChannel",
    "TelegramChannel",
]
