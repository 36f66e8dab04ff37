"""Интеграционные тесты контроллера поверх fakeredis и AsyncMock бота."""
import json
import random
from unittest.mock import MagicMock

import pytest

from app.moderation.controller import ModerationController
from app.moderation.policy import POLICY_PREFIX
from app.moderation.verification import AnswerStatus

from conftest import CHAT_ID, USER_ID


@pytest.fixture
def controller(redis_client, bot, clock):
    return ModerationController(redis_client, bot, clock=clock, rng=random.Random(5))


@pytest.fixture
def set_policy(redis_client):
    def _set(data):
        redis_client.set(f"{POLICY_PREFIX}{CHAT_ID}", json.dumps(data, ensure_ascii=False))

    return _set


class TestModerationController:
    @pytest.mark.asyncio
    async def test_ad_message_is_deleted(self, controller, set_policy, bot, make_message):
        set_policy({"antiAds": {"enabled": True, "keywords": ["加群"], "action": "delete"}})
        bot.get_chat_member.return_value = MagicMock(status="member")
        message = make_message("加群点我")

        outcome = await controller.on_message(message)

        assert outcome.success
        bot.delete_message.assert_awaited_once_with(chat_id=CHAT_ID, message_id=message.message_id)

    @pytest.mark.parametrize("broken", [
        {"sensitiveWords": {"enabled": True, "words": 5}},
        {"autoDelete": {"enabled": True, "rules": 5}},
        {"verification": {"enabled": True, "bypassUsers": 5}},
    ])
    @pytest.mark.asyncio
    async def test_wrong_typed_policy_value_keeps_ads_working(self, controller, set_policy, bot, make_message, broken):
        set_policy({**broken, "antiAds": {"enabled": True, "keywords": ["加群"]}})
        message = make_message("加群点我")

        outcome = await controller.on_message(message)

        assert outcome is not None and outcome.success
        bot.delete_message.assert_awaited_once_with(chat_id=CHAT_ID, message_id=message.message_id)

    @pytest.mark.asyncio
    async def test_admins_are_exempt(self, controller, set_policy, bot, make_message):
        set_policy({"antiAds": {"enabled": True, "keywords": ["加群"]}})
        bot.get_chat_member.return_value = MagicMock(status="administrator")

        assert await controller.on_message(make_message("加群点我")) is None
        assert await controller.on_message(make_message("加群点我")) is None

        bot.delete_message.assert_not_awaited()
        # Статус администратора берётся из кэша
        bot.get_chat_member.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exemption_can_be_disabled(self, controller, set_policy, bot, make_message):
        set_policy({"antiAds": {"enabled": True, "keywords": ["加群"]}, "exemptAdmins": False})
        bot.get_chat_member.return_value = MagicMock(status="creator")

        assert await controller.on_message(make_message("加群点我")) is not None
        bot.get_chat_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_enabled_detectors_skips_everything(self, controller, bot, make_message):
        assert await controller.on_message(make_message("加群点我")) is None
        bot.get_chat_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_join_without_verification_sends_welcome(self, controller, set_policy, bot):
        set_policy({"welcome": {"enabled": True, "message": "Привет, {user_name}!"}})

        record = await controller.on_join(CHAT_ID, USER_ID, first_name="Alex", chat_title="Test")

        assert record is None
        assert bot.send_message.await_args.kwargs["text"] == "Привет, Alex!"
        bot.restrict_chat_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_full_verification_round_trip(self, controller, set_policy, redis_client, bot):
        set_policy({"verification": {"enabled": True, "type": "math"}})

        record = await controller.on_join(CHAT_ID, USER_ID, first_name="Alex")
        answer = controller.verification.store.get(record.id).challenge_data["answer"]
        result = await controller.on_private_answer(USER_ID, answer)

        assert result.status == AnswerStatus.PASSED
        actions = [json.loads(raw)["action"] for raw in redis_client.lrange(f"modlog:{CHAT_ID}", 0, -1)]
        assert actions == ["verify_passed", "verify_started"]

    @pytest.mark.asyncio
    async def test_bots_are_ignored_on_join(self, controller, set_policy, bot):
        set_policy({"verification": {"enabled": True}})

        assert await controller.on_join(CHAT_ID, 999, is_bot=True) is None
        bot.restrict_chat_member.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_channel_callback_with_foreign_data(self, controller):
        result = await controller.on_channel_callback("something_else:1", USER_ID)

        assert result.status == AnswerStatus.INVALID

    @pytest.mark.asyncio
    async def test_sweep_runs_scheduler(self, controller, clock, bot):
        controller.scheduler.schedule(CHAT_ID, 42, 10, "command", now=clock.now)

        result = await controller.sweep(now=clock.now + 11)

        assert result.succeeded == 1
        bot.delete_message.assert_awaited_once_with(chat_id=CHAT_ID, message_id=42)

    def test_mod_log_and_reset_warns(self, controller, redis_client):
        redis_client.set(f"warns:{CHAT_ID}:{USER_ID}", 2)

        controller.reset_warns(CHAT_ID, USER_ID)

        assert redis_client.get(f"warns:{CHAT_ID}:{USER_ID}") is None
        assert controller.get_mod_log(CHAT_ID) == []
