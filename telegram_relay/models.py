"""Inbound request shapes accepted by the relay."""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from telegram_relay.utils.telegram_client import truncate_utf16

# Telegram caps first_name and last_name at 64 characters.
SENDER_FIELD_LENGTH = 64


@dataclass(frozen=True)
class Sender:
    """The ``from`` block of a Telegram update, when present."""

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    username: Optional[str] = None

    def display(self) -> str:
        name = f"{self.first_name or 'Unknown'} {self.last_name or ''}".rstrip()
        return f"{name} (@{self.username or 'no-username'})"


@dataclass(frozen=True)
class WebhookMessage:
    """A Telegram update posted to the webhook; the chat comes from the update."""

    chat_id: str
    text: str
    sender: Sender


@dataclass(frozen=True)
class DirectMessage:
    """A call from a trusted system naming its target chat in ``chat_id``."""

    chat_id: str
    text: str


@dataclass(frozen=True)
class UnroutedMessage:
    """A message with text but no destination."""

    text: str


InboundMessage = Union[WebhookMessage, DirectMessage, UnroutedMessage]


class InvalidChatIdError(ValueError):
    def __init__(self, field: str, value: Any):
        super().__init__(f"Invalid {field}: expected an integer or non-empty string")
        self.field = field
        self.value = value


def _chat_id(value: Any, field: str) -> str:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise InvalidChatIdError(field, value)


def _sender_field(value: Any) -> Optional[str]:
    if not isinstance(value, str) or not value:
        return None
    return truncate_utf16(value, SENDER_FIELD_LENGTH)


def parse_message(payload: Dict[str, Any]) -> Optional[InboundMessage]:
    """
    Classify a decoded request body.

    Returns None when the body carries no string ``message.text``. Any
    ``message.chat.id`` makes the request a webhook update, even when a
    top-level ``chat_id`` is also present. An empty or missing top-level
    ``chat_id`` leaves the message unrouted.

    Raises InvalidChatIdError when the chosen chat id is not an integer or
    a non-empty string.
    """
    message = payload.get("message")
    if not isinstance(message, dict):
        return None

    text = message.get("text")
    if not text or not isinstance(text, str):
        return None

    chat = message.get("chat")
    if isinstance(chat, dict) and chat.get("id") is not None:
        sender = message.get("from")
        sender = sender if isinstance(sender, dict) else {}
        return WebhookMessage(
            chat_id=_chat_id(chat["id"], "chat.id"),
            text=text,
            sender=Sender(
                first_name=_sender_field(sender.get("first_name")),
                last_name=_sender_field(sender.get("last_name")),
                username=_sender_field(sender.get("username")),
            ),
        )

    direct_chat_id = payload.get("chat_id")
    if direct_chat_id is None or (isinstance(direct_chat_id, str) and not direct_chat_id.strip()):
        return UnroutedMessage(text=text)

    return DirectMessage(chat_id=_chat_id(direct_chat_id, "chat_id"), text=text)
