import os
import threading

import pytest

# boto3 clients are built at import time; give them a region and dummy
# credentials so nothing looks for a real AWS profile.
os.environ.setdefault("AWS_REGION", "eu-central-1")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-central-1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")

from telegram_relay.utils.telegram_client import SendResult  # noqa: E402

PREFIX = "/telegram-notify-bot"
BOT_TOKEN = "123456:ABC-secret-token"


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class StubSSM:
    """Dict-backed stand-in for boto3's SSM client; safe to call from threads."""

    def __init__(self, values, errors=None):
        self.values = dict(values)
        self.errors = dict(errors or {})
        self.calls = []
        self._lock = threading.Lock()

    def get_parameter(self, Name, WithDecryption):
        with self._lock:
            self.calls.append((Name, WithDecryption))
        if Name in self.errors:
            raise self.errors[Name]
        return {"Parameter": {"Name": Name, "Type": "SecureString", "Value": self.values[Name]}}


class StubResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class StubSession:
    """Replays queued responses (or raises queued exceptions) for each POST."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StubDispatcher:
    def __init__(self, send_error=None, alert_error=None):
        self.send_error = send_error
        self.alert_error = alert_error
        self.sent = []
        self.alerts = []

    def send(self, text, chat_id, bot_token):
        self.sent.append({"text": text, "chat_id": chat_id, "bot_token": bot_token})
        if self.send_error is not None:
            raise self.send_error

    def try_send(self, text, chat_id, bot_token):
        self.alerts.append({"text": text, "chat_id": chat_id, "bot_token": bot_token})
        if self.alert_error is not None:
            return SendResult(ok=False, error=self.alert_error)
        return SendResult(ok=True)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


def relay_parameters(bot_token=BOT_TOKEN, admin="111", additional="-100123, -100456"):
    return {
        f"{PREFIX}/bot-token": bot_token,
        f"{PREFIX}/admin-chat-id": admin,
        f"{PREFIX}/additional-chat-ids": additional,
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()
