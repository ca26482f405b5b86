import json
import os
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import boto3

from telegram_relay.models import (
    DirectMessage,
    InboundMessage,
    InvalidChatIdError,
    WebhookMessage,
    parse_message,
)
from telegram_relay.utils.logger import get_logger
from telegram_relay.utils.parameters import (
    ConfigurationError,
    ParameterCache,
    RelayConfig,
)
from telegram_relay.utils.telegram_client import (
    MAX_MESSAGE_LENGTH,
    SendResult,
    TelegramDispatcher,
    TelegramError,
    truncate_utf16,
    utf16_length,
)

logger = get_logger("handler")

MAX_BODY_LENGTH = 10_000
ALERT_PREVIEW_LENGTH = 1000


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {"statusCode": status_code, "body": json.dumps(body)}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RelayHandler:
    """
    Validates an inbound request, authorizes its target chat and forwards
    the text to Telegram.

    Nothing is kept between requests except what ``parameters`` caches.
    """

    def __init__(
        self,
        parameters: ParameterCache,
        dispatcher: TelegramDispatcher,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self._parameters = parameters
        self._dispatcher = dispatcher
        self._clock = clock

    def handle(self, event: Any) -> Dict[str, Any]:
        try:
            return self._handle(event)
        except Exception:
            logger.exception("handler.unexpected_error")
            return _response(500, {"error": "Internal server error"})

    def _handle(self, event: Any) -> Dict[str, Any]:
        # 1) Configuration, served from cache when warm
        try:
            config = self._parameters.get_relay_config()
        except ConfigurationError as e:
            logger.error(
                "handler.config_error",
                extra={
                    "category": type(e).__name__,
                    "parameter": e.parameter_name,
                    "error": str(e),
                },
            )
            return _response(500, {"error": "Server configuration error - check logs"})

        # 2) Transport envelope
        body = event.get("body") if isinstance(event, dict) else None
        if not body or not isinstance(body, str):
            logger.error("handler.invalid_event")
            return _response(400, {"error": "Invalid request"})

        body_length = utf16_length(body)
        if body_length > MAX_BODY_LENGTH:
            logger.error("handler.body_too_large", extra={"length": body_length})
            return _response(413, {"error": "Request too large"})

        try:
            payload = json.loads(body)
        except json.JSONDecodeError:
            logger.warning("handler.invalid_json", extra={"body_preview": body[:200]})
            return _response(400, {"error": "Invalid JSON"})

        if not isinstance(payload, dict):
            logger.warning("handler.invalid_json", extra={"body_preview": body[:200]})
            return _response(400, {"error": "Invalid JSON"})

        # 3) Message content
        try:
            message = parse_message(payload)
        except InvalidChatIdError as e:
            logger.warning("handler.invalid_chat_id", extra={"field": e.field})
            return _response(400, {"error": f"Invalid {e.field}"})

        if message is None:
            logger.warning("handler.no_text")
            return _response(200, {"message": "No action taken"})

        text = message.text.strip()
        if not text:
            logger.warning("handler.empty_message")
            return _response(200, {"message": "Empty message ignored"})

        # 4) Destination and authorization
        if isinstance(message, WebhookMessage):
            if not config.is_authorized(message.chat_id):
                logger.warning(
                    "handler.unauthorized_webhook", extra={"chat_id": message.chat_id}
                )
                self._send_security_alert(message, config)
                # Unknown webhook senders get a 200 so they learn nothing about the allow-list.
                return _response(200, {"message": "Unauthorized"})
        elif isinstance(message, DirectMessage):
            if not config.is_authorized(message.chat_id):
                logger.warning(
                    "handler.unauthorized_api_call", extra={"chat_id": message.chat_id}
                )
                self._send_security_alert(message, config)
                return _response(403, {"error": "Unauthorized chat_id"})
        else:
            logger.error("handler.missing_chat_id")
            return _response(400, {"error": "chat_id is required"})

        # 5) Deliver
        try:
            self._dispatcher.send(text, message.chat_id, config.bot_token)
        except TelegramError as e:
            logger.error(
                "handler.send_failed",
                extra={"chat_id": message.chat_id, "error": str(e)},
            )
            return _response(500, {"error": "Internal server error"})

        logger.info(
            "handler.message_sent",
            extra={"chat_id": message.chat_id, "length": len(text)},
        )
        return _response(
            200, {"message": "Message sent successfully", "chat_id": message.chat_id}
        )

    def _alert_text(self, message: InboundMessage) -> str:
        timestamp = self._clock().isoformat(timespec="milliseconds")
        quoted = truncate_utf16(message.text, ALERT_PREVIEW_LENGTH)
        if isinstance(message, WebhookMessage):
            alert = (
                "🚨 Security Alert: Unauthorized bot access attempt\n\n"
                f"Chat ID: {message.chat_id}\n"
                f"User: {message.sender.display()}\n"
                f'Message: "{quoted}"\n'
                f"Time: {timestamp}"
            )
        else:
            alert = (
                "🚨 Security Alert: Unauthorized API call attempt\n\n"
                f"Chat ID: {message.chat_id}\n"
                f'Message: "{quoted}"\n'
                f"Time: {timestamp}"
            )
        # A direct caller's chat_id is free-form, so cap the whole alert too.
        return truncate_utf16(alert, MAX_MESSAGE_LENGTH)

    def _send_security_alert(self, message: InboundMessage, config: RelayConfig) -> SendResult:
        """
        Best-effort alert to the admin chat. A failure is logged and returned,
        never raised; the caller's response does not depend on it.
        """
        alert = self._alert_text(message)
        result = self._dispatcher.try_send(alert, config.admin_chat_id, config.bot_token)
        if not result.ok:
            logger.error(
                "handler.security_alert_failed", extra={"error": str(result.error)}
            )
        return result


# Reuse the SSM client and the parameter cache across warm invocations
ssm = boto3.client("ssm", region_name=os.getenv("AWS_REGION", "eu-central-1"))
relay = RelayHandler(ParameterCache(ssm), TelegramDispatcher())


def lambda_handler(event, context):
    logger.info(
        "handler.lambda_start",
        extra={"request_id": getattr(context, "aws_request_id", None)},
    )
    return relay.handle(event)
