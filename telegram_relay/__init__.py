"""
Telegram Notify Relay
=====================

Root package for the AWS Lambda function that relays notifications to
Telegram. It accepts a Telegram webhook update or a direct API call, checks
the target chat against an allow-list kept in SSM Parameter Store, and
forwards the text through the Telegram Bot API.

Modules under this package:
- handler.py  → HTTP endpoint (lambda_handler) and request orchestration
- models.py   → inbound request shapes (webhook update / direct call)
- utils/      → shared helpers (logging, cached parameters, Telegram client)

Environment variables expected:
  • AWS_REGION                    - region of the SSM parameters (default: eu-central-1)
  • PARAMETER_PREFIX              - parameter path prefix (default: /telegram-notify-bot)
  • PARAMETER_CACHE_TTL_SECONDS   - in-memory parameter cache TTL (default: 3600)
  • TELEGRAM_API_BASE_URL         - Bot API endpoint (default: https://api.telegram.org)
  • TELEGRAM_TIMEOUT_SECONDS      - per-request timeout (default: 10)
  • LOG_LEVEL                     - log verbosity (default: INFO)
"""

__version__ = "1.0.0"
__license__ = "MIT"

__all__ = ["__version__"]
