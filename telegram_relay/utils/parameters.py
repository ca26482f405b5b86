import os
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, FrozenSet, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from telegram_relay.utils.logger import get_logger

logger = get_logger("parameters")

NO_CHAT_IDS = "none"
CHAT_ID_DELIMITER = ","


def _load_env() -> Tuple[str, float]:
    """
    Resolve the Parameter Store prefix and cache TTL from environment variables.

    PARAMETER_PREFIX: path under which the three relay parameters live
    PARAMETER_CACHE_TTL_SECONDS: how long a fetched value may be served

    Raises RuntimeError with a clear message if the TTL is invalid.
    """
    prefix = os.getenv("PARAMETER_PREFIX", "/telegram-notify-bot").rstrip("/")
    ttl_str = os.getenv("PARAMETER_CACHE_TTL_SECONDS", "3600")

    try:
        ttl_seconds = float(ttl_str)
    except ValueError:
        ttl_seconds = -1.0

    if ttl_seconds < 0:
        msg = (
            f"Invalid PARAMETER_CACHE_TTL_SECONDS='{ttl_str}'. "
            "Must be a non-negative number of seconds."
        )
        logger.error(msg)
        raise RuntimeError(msg)

    return prefix, ttl_seconds


PARAMETER_PREFIX, CACHE_TTL_SECONDS = _load_env()


class ConfigurationError(RuntimeError):
    """Base class for failures reading relay configuration from Parameter Store."""

    def __init__(self, message: str, parameter_name: str):
        super().__init__(message)
        self.parameter_name = parameter_name


class ParameterNotFoundError(ConfigurationError):
    pass


class ParameterAccessDeniedError(ConfigurationError):
    pass


class ParameterFetchError(ConfigurationError):
    pass


@dataclass(frozen=True)
class RelayConfig:
    """Resolved configuration snapshot for a single request."""

    bot_token: str = field(repr=False)
    admin_chat_id: str
    additional_chat_ids: FrozenSet[str] = frozenset()

    @property
    def authorized_chat_ids(self) -> FrozenSet[str]:
        return frozenset({self.admin_chat_id}) | self.additional_chat_ids

    def is_authorized(self, chat_id: str) -> bool:
        return chat_id in self.authorized_chat_ids


def parse_chat_ids(raw: str) -> FrozenSet[str]:
    """
    Parse the additional-chat-ids parameter.

    The literal "none" (the value the stack provisions by default) and
    whitespace-only strings mean no additional chats.
    """
    if raw.strip() == NO_CHAT_IDS or not raw.strip():
        return frozenset()
    return frozenset(
        chat_id.strip()
        for chat_id in raw.split(CHAT_ID_DELIMITER)
        if chat_id.strip()
    )


@dataclass
class _CacheEntry:
    value: str
    expires_at: float


class ParameterCache:
    """
    Read-through, in-process cache in front of SSM Parameter Store.

    One instance lives for the lifetime of the Lambda container so warm
    invocations skip the remote round trip. Expired entries are dropped on
    the next read of the same name; nothing sweeps them in the background.
    The cache never retries a failed fetch.
    """

    def __init__(
        self,
        ssm_client,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        prefix: str = PARAMETER_PREFIX,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ssm = ssm_client
        self._ttl = ttl_seconds
        self._prefix = prefix
        self._clock = clock
        self._entries: Dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def _cached(self, name: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(name)
            if entry is not None and self._clock() < entry.expires_at:
                return entry.value
            self._entries.pop(name, None)
            return None

    def _store(self, name: str, value: str) -> None:
        with self._lock:
            self._entries[name] = _CacheEntry(value, self._clock() + self._ttl)

    def get(self, name: str, description: Optional[str] = None) -> str:
        """
        Return the decrypted value of ``name``, fetching it on a miss or expiry.

        Raises ParameterNotFoundError, ParameterAccessDeniedError or
        ParameterFetchError; the message names the parameter but never
        includes its value.
        """
        cached = self._cached(name)
        if cached is not None:
            return cached

        description = description or name
        logger.info("parameters.fetch", extra={"parameter": name})

        try:
            resp = self._ssm.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code == "ParameterNotFound":
                raise ParameterNotFoundError(
                    f"Configuration error: {description} not found in Parameter Store ({name}). "
                    "Please ensure the parameter exists and Lambda has SSM permissions.",
                    name,
                ) from e
            if code == "AccessDeniedException":
                raise ParameterAccessDeniedError(
                    f"Permission error: Lambda function cannot access {description} ({name}). "
                    "Please check IAM role has ssm:GetParameter and kms:Decrypt permissions.",
                    name,
                ) from e
            raise ParameterFetchError(
                f"Failed to fetch {description} from Parameter Store: {e}", name
            ) from e
        except BotoCoreError as e:
            raise ParameterFetchError(
                f"Failed to fetch {description} from Parameter Store: {e}", name
            ) from e

        value = (resp.get("Parameter") or {}).get("Value")
        if not value:
            raise ParameterFetchError(
                f"Failed to fetch {description} from Parameter Store: "
                f"parameter {name} exists but has no value",
                name,
            )

        self._store(name, value)
        return value

    def get_relay_config(self) -> RelayConfig:
        """
        Resolve bot token, admin chat ID and additional chat IDs.

        Warm reads come straight from the cache. Items that need a remote
        read are fetched concurrently.
        """
        items = {
            "bot_token": (f"{self._prefix}/bot-token", "Telegram bot token"),
            "admin_chat_id": (f"{self._prefix}/admin-chat-id", "Admin chat ID"),
            "additional_chat_ids": (
                f"{self._prefix}/additional-chat-ids",
                "Additional chat IDs",
            ),
        }

        values = {key: self._cached(name) for key, (name, _) in items.items()}
        missing = {key: item for key, item in items.items() if values[key] is None}
        if len(missing) == 1:
            key, (name, description) = next(iter(missing.items()))
            values[key] = self.get(name, description)
        elif missing:
            values.update(self._fetch_all(missing))

        return RelayConfig(
            bot_token=values["bot_token"],
            admin_chat_id=values["admin_chat_id"].strip(),
            additional_chat_ids=parse_chat_ids(values["additional_chat_ids"]),
        )

    def _fetch_all(self, items: Dict[str, Tuple[str, str]]) -> Dict[str, str]:
        """
        Fetch ``items`` on a thread pool and join.

        Returns as soon as any fetch fails, raising that failure; when
        several have failed by then, the one listed first in ``items`` wins.
        Fetches still in flight finish in the background and are discarded.
        """
        executor = ThreadPoolExecutor(max_workers=len(items))
        try:
            futures = {
                key: executor.submit(self.get, name, description)
                for key, (name, description) in items.items()
            }
            wait(futures.values(), return_when=FIRST_EXCEPTION)
            for future in futures.values():
                exc = future.exception() if future.done() else None
                if exc is not None:
                    raise exc
            return {key: future.result() for key, future in futures.items()}
        finally:
            executor.shutdown(wait=False)
