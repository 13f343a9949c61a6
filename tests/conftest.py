"""Pytest configuration and fixtures."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from attendance_relay.fanout import FanOutEngine
from attendance_relay.matcher.keyword import KeywordDetector
from attendance_relay.store import MemorySubscriberStore


class FakeRedis:
    """Minimal stand-in for a redis client with decode_responses=True"""

    def __init__(self):
        self.sets = {}

    def sadd(self, key, *values):
        self.sets.setdefault(key, set()).update(values)

    def srem(self, key, *values):
        self.sets.get(key, set()).difference_update(values)

    def sismember(self, key, value):
        return value in self.sets.get(key, set())

    def smembers(self, key):
        return set(self.sets.get(key, set()))


@pytest.fixture
def store():
    return MemorySubscriberStore()


@pytest.fixture
def engine(store):
    return FanOutEngine(store, send_interval=0)


@pytest.fixture
def detector():
    return KeywordDetector("Attendance")


@pytest.fixture
def bot():
    """Telegram bot double; every send succeeds unless a test sets side_effect"""
    fake = MagicMock()
    fake.send_message = AsyncMock()
    return fake


def make_chat(chat_id, chat_type, title=None, username=None):
    return SimpleNamespace(id=chat_id, type=chat_type, title=title, username=username)


def make_private_update(user_id=42):
    update = MagicMock()
    update.effective_chat = make_chat(user_id, "private")
    update.effective_user = SimpleNamespace(id=user_id)
    update.message.reply_text = AsyncMock()
    return update


def make_group_update(text, chat_id=-1001234567890, title="CS Group", username=None, message_id=77, caption=None):
    update = MagicMock()
    update.effective_chat = make_chat(chat_id, "supergroup", title=title, username=username)
    update.effective_message = SimpleNamespace(message_id=message_id, text=text, caption=caption)
    update.message.reply_text = AsyncMock()
    return update


def make_callback_update(data, user_id=42, chat_type="private"):
    update = MagicMock()
    update.effective_chat = make_chat(user_id, chat_type)
    update.effective_user = SimpleNamespace(id=user_id)
    query = MagicMock()
    query.data = data
    query.from_user = SimpleNamespace(id=user_id)
    query.answer = AsyncMock()
    query.edit_message_text = AsyncMock()
    update.callback_query = query
    return update


def make_context(bot):
    return SimpleNamespace(bot=bot, args=[])
