import itertools
import json
import os
import random
from unittest.mock import AsyncMock, MagicMock

import pytest
from cryptography.fernet import Fernet

# Переменные окружения нужны до импорта app.config и app.security
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("DATA_HASH_SALT", "test-hash-salt")
os.environ.setdefault("DATA_ENCRYPTION_KEY", Fernet.generate_key().decode())

import fakeredis  # noqa: E402

from app.moderation.captcha import ChallengeFactory  # noqa: E402
from app.moderation.logger import OutcomeLog  # noqa: E402
from app.moderation.models import InboundMessage  # noqa: E402
from app.moderation.policy import POLICY_PREFIX, PolicyProvider  # noqa: E402
from app.moderation.punishment import PunishmentExecutor  # noqa: E402
from app.moderation.scheduler import DeletionScheduler  # noqa: E402
from app.moderation.storage import (  # noqa: E402
    CounterStore,
    MessageWindowStore,
    PendingDeleteStore,
    VerificationStore,
)
from app.moderation.transport import TelegramTransport  # noqa: E402
from app.moderation.verification import VerificationStateMachine  # noqa: E402
from app.moderation.welcome import WelcomeFlow  # noqa: E402

CHAT_ID = -1001234567890
USER_ID = 123456


class FakeClock:
    """Управляемое время для тестов дедлайнов."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def bot():
    """AsyncMock вместо telegram.Bot: отправка возвращает уникальный message_id."""
    bot = AsyncMock()
    message_ids = itertools.count(1000)

    def _sent(*args, **kwargs):
        return MagicMock(message_id=next(message_ids))

    bot.send_message.side_effect = _sent
    bot.send_photo.side_effect = _sent
    bot.send_animation.side_effect = _sent
    bot.delete_message.return_value = True
    bot.restrict_chat_member.return_value = True
    bot.ban_chat_member.return_value = True
    bot.unban_chat_member.return_value = True
    bot.answer_callback_query.return_value = True
    bot.get_chat_member.return_value = MagicMock(status="member")
    return bot


@pytest.fixture
def transport(bot):
    return TelegramTransport(bot)


@pytest.fixture
def outcome_log(redis_client, transport):
    return OutcomeLog(redis_client, transport)


@pytest.fixture
def pending_store(redis_client):
    return PendingDeleteStore(redis_client)


@pytest.fixture
def scheduler(pending_store, transport, outcome_log):
    return DeletionScheduler(pending_store, transport, outcome_log)


@pytest.fixture
def counters(redis_client):
    return CounterStore(redis_client)


@pytest.fixture
def windows(redis_client):
    return MessageWindowStore(redis_client)


@pytest.fixture
def punishment(transport, counters, scheduler, outcome_log, clock):
    return PunishmentExecutor(transport, counters, scheduler, outcome_log, clock=clock)


@pytest.fixture
def policies(redis_client):
    return PolicyProvider(redis_client)


@pytest.fixture
def verification_store(redis_client):
    return VerificationStore(redis_client)


@pytest.fixture
def welcome(transport, scheduler, clock):
    return WelcomeFlow(transport, scheduler, clock=clock)


@pytest.fixture
def challenges():
    return ChallengeFactory(random.Random(7))


@pytest.fixture
def verification(verification_store, transport, scheduler, outcome_log, welcome, policies, challenges, clock):
    return VerificationStateMachine(
        verification_store,
        transport,
        scheduler,
        outcome_log,
        welcome,
        policies,
        challenges=challenges,
        clock=clock,
    )


@pytest.fixture
def store_policy(redis_client, policies):
    """Записать документ политики в Redis и вернуть скомпилированный снимок."""

    def _store(data, chat_id=CHAT_ID):
        redis_client.set(f"{POLICY_PREFIX}{chat_id}", json.dumps(data, ensure_ascii=False))
        return policies.load(chat_id)

    return _store


@pytest.fixture
def make_message():
    message_ids = itertools.count(1)

    def _make(text="привет", **overrides):
        fields = {
            "chat_id": CHAT_ID,
            "user_id": USER_ID,
            "message_id": next(message_ids),
            "text": text,
            "first_name": "Alex",
            "username": "alex",
            "chat_title": "Test Group",
        }
        fields.update(overrides)
        return InboundMessage(**fields)

    return _make
