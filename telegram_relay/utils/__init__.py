"""
Telegram Notify Relay Utilities
===============================

Shared helper modules for the relay Lambda:

- logger.py           → structured JSON logging
- parameters.py       → SSM Parameter Store reads behind an in-memory TTL cache
- telegram_client.py  → Telegram Bot API delivery with retry/backoff

The parameter cache is the only state that outlives a single invocation.
"""

from telegram_relay.utils.logger import get_logger

__all__ = [
    "get_logger",
]
