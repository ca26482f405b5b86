"""
Outbound delivery to the Telegram Bot API.

Messages go out as plain text via POST /bot<token>/sendMessage with a JSON
body, so chat IDs and text never appear in a URL. Transient failures
(429, 5xx, network errors) are retried with backoff; any other 4xx fails
immediately.
"""

import os
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import requests

from telegram_relay.utils.logger import get_logger

logger = get_logger("telegram_client")

API_BASE_URL = os.getenv("TELEGRAM_API_BASE_URL", "https://api.telegram.org").rstrip("/")
MAX_MESSAGE_LENGTH = 4096
MAX_RETRIES = 2
BASE_BACKOFF_SECONDS = 0.5


def _load_timeout() -> float:
    timeout_str = os.getenv("TELEGRAM_TIMEOUT_SECONDS", "10")
    try:
        return float(timeout_str)
    except ValueError:
        msg = (
            f"Invalid TELEGRAM_TIMEOUT_SECONDS='{timeout_str}'. "
            "Must be a number of seconds."
        )
        logger.error(msg)
        raise RuntimeError(msg)


TIMEOUT_SECONDS = _load_timeout()


def utf16_length(text: str) -> int:
    """Length as Telegram counts it: UTF-16 code units, not code points."""
    return len(text.encode("utf-16-le")) // 2


def truncate_utf16(text: str, limit: int, suffix: str = "...") -> str:
    """Cut ``text`` to at most ``limit`` UTF-16 code units, marking the cut."""
    if utf16_length(text) <= limit:
        return text
    keep = max(limit - utf16_length(suffix), 0)
    # errors="ignore" drops a surrogate pair split by the cut
    head = text.encode("utf-16-le")[: keep * 2].decode("utf-16-le", errors="ignore")
    return head + suffix


class TelegramError(Exception):
    """Base class for everything raised by TelegramDispatcher.send."""


class MessageTooLongError(TelegramError, ValueError):
    def __init__(self, length: int):
        super().__init__(
            f"Message too long: {length} characters (limit {MAX_MESSAGE_LENGTH})"
        )
        self.length = length


class MissingBotTokenError(TelegramError, ValueError):
    def __init__(self):
        super().__init__("Bot token is not provided")


class MissingChatIdError(TelegramError, ValueError):
    def __init__(self):
        super().__init__("chat_id is required")


class DeliveryError(TelegramError):
    """The message could not be delivered."""

    def __init__(self, message: str = "Failed to send message"):
        super().__init__(message)


class TelegramAPIError(DeliveryError):
    def __init__(self, status_code: int, description: str):
        super().__init__(f"Failed to send message ({status_code}): {description}")
        self.status_code = status_code
        self.description = description


class TelegramNetworkError(DeliveryError):
    pass


@dataclass(frozen=True)
class SendResult:
    """
    Outcome of a send whose failure the caller has chosen not to propagate.
    Only security alerts use this; regular deliveries go through ``send``.
    """

    ok: bool
    error: Optional[TelegramError] = None


def _scrub(text: str, secret: str) -> str:
    # requests puts the full URL, token included, into connection errors.
    return text.replace(secret, "***") if secret else text


def _response_json(resp: requests.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _retry_after(data: Dict[str, Any]) -> Optional[float]:
    """Telegram nests retry_after under "parameters"; accept it at top level too."""
    params = data.get("parameters")
    candidates = [data.get("retry_after")]
    if isinstance(params, dict):
        candidates.append(params.get("retry_after"))
    for value in candidates:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            return float(value)
    return None


def _is_retryable(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class TelegramDispatcher:
    """
    Sends one text message to one chat, retrying transient failures.

    ``sleep`` performs the backoff delay and ``session`` performs the HTTP
    call; both are injectable so tests never wait or touch the network.
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        base_url: str = API_BASE_URL,
        timeout_seconds: float = TIMEOUT_SECONDS,
        max_retries: int = MAX_RETRIES,
        base_backoff_seconds: float = BASE_BACKOFF_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._base_backoff = base_backoff_seconds
        self._sleep = sleep

    def _backoff(self, attempt: int) -> float:
        return self._base_backoff * (2 ** attempt)

    def send(self, text: Any, chat_id: Optional[str], bot_token: Optional[str]) -> None:
        """
        Deliver ``text`` to ``chat_id``.

        A missing or non-string ``text`` is a silent no-op. Validation errors
        are raised before any network call. After the final attempt the last
        observed error is raised.
        """
        if not text or not isinstance(text, str):
            return

        length = utf16_length(text)
        if length > MAX_MESSAGE_LENGTH:
            raise MessageTooLongError(length)
        if not bot_token:
            raise MissingBotTokenError()
        if not chat_id:
            raise MissingChatIdError()

        url = f"{self._base_url}/bot{bot_token}/sendMessage"
        payload = {"chat_id": chat_id, "text": text}
        last_error: Optional[DeliveryError] = None
        attempts = self._max_retries + 1

        for attempt in range(attempts):
            try:
                resp = self._session.post(url, json=payload, timeout=self._timeout)
            except requests.RequestException as e:
                last_error = TelegramNetworkError(
                    f"Network error sending message: {_scrub(str(e), bot_token)}"
                )
                if attempt < self._max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        "telegram.network_retry",
                        extra={
                            "error": str(last_error),
                            "retry_in_seconds": delay,
                            "attempt": attempt + 1,
                            "max_retries": self._max_retries,
                        },
                    )
                    self._sleep(delay)
                    continue
                logger.error("telegram.network_error", extra={"error": str(last_error)})
                break

            status = resp.status_code
            if status == 200:
                return

            data = _response_json(resp)
            description = data.get("description") or "Unknown error"
            last_error = TelegramAPIError(status, description)

            if not _is_retryable(status):
                logger.error(
                    "telegram.send_rejected",
                    extra={"status_code": status, "error": description},
                )
                raise last_error

            if attempt < self._max_retries:
                hint = _retry_after(data) if status == 429 else None
                delay = hint if hint is not None else self._backoff(attempt)
                logger.warning(
                    "telegram.retry",
                    extra={
                        "status_code": status,
                        "retry_in_seconds": delay,
                        "attempt": attempt + 1,
                        "max_retries": self._max_retries,
                    },
                )
                self._sleep(delay)
                continue

            logger.error(
                "telegram.send_failed",
                extra={"status_code": status, "error": description},
            )

        raise last_error or DeliveryError()

    def try_send(self, text: Any, chat_id: Optional[str], bot_token: Optional[str]) -> SendResult:
        """Like ``send``, but returns the failure instead of raising it."""
        try:
            self.send(text, chat_id, bot_token)
        except TelegramError as e:
            return SendResult(ok=False, error=e)
        return SendResult(ok=True)
