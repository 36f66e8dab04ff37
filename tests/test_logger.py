"""Тесты журнала исходов и приветствий."""
import pytest
from telegram.error import Forbidden

from app.moderation.logger import MAX_MODLOG_ENTRIES, format_outcome
from app.moderation.models import OutcomeRecord
from app.moderation.policy import WelcomePolicy
from app.moderation.welcome import format_welcome_message

from conftest import CHAT_ID, USER_ID


def _record(action="mute", user_id=USER_ID, **kwargs):
    return OutcomeRecord.create(CHAT_ID, action, user_id, "anti_spam", "flood:6", **kwargs)


class TestOutcomeLog:
    def test_recent_is_newest_first_and_filtered(self, outcome_log):
        outcome_log.save(_record("warn"))
        outcome_log.save(_record("mute", user_id=999))
        outcome_log.save(_record("kick"))

        assert [r.action for r in outcome_log.recent(CHAT_ID)] == ["kick", "mute", "warn"]
        assert [r.action for r in outcome_log.recent(CHAT_ID, user_id=USER_ID)] == ["kick", "warn"]
        assert len(outcome_log.recent(CHAT_ID, limit=1)) == 1

    def test_list_is_capped(self, outcome_log, redis_client):
        for _ in range(MAX_MODLOG_ENTRIES + 5):
            outcome_log.save(_record())

        assert redis_client.llen(f"modlog:{CHAT_ID}") == MAX_MODLOG_ENTRIES

    @pytest.mark.asyncio
    async def test_forward_to_log_channel(self, outcome_log, bot):
        await outcome_log.record(_record(), log_channel_id=-100777)

        kwargs = bot.send_message.await_args.kwargs
        assert kwargs["chat_id"] == -100777
        assert "flood:6" in kwargs["text"]

    @pytest.mark.asyncio
    async def test_log_channel_failure_keeps_record(self, outcome_log, bot):
        bot.send_message.side_effect = Forbidden("bot was kicked")

        await outcome_log.record(_record(), log_channel_id=-100777)

        assert len(outcome_log.recent(CHAT_ID)) == 1

    def test_format_outcome_escapes_reason(self):
        text = format_outcome(OutcomeRecord.create(CHAT_ID, "delete", None, "ads", "<b>ad</b>", success=False))

        assert "&lt;b&gt;ad&lt;/b&gt;" in text
        assert "Пользователь" not in text
        assert "не полностью" in text


class TestWelcome:
    def test_placeholders(self):
        text = format_welcome_message(
            "{user_name} ({user_id}) в {group_name}: {mention}",
            USER_ID,
            "<Alex>",
            None,
            "Клуб",
        )

        assert text.startswith(f"&lt;Alex&gt; ({USER_ID}) в Клуб: ")
        assert f"tg://user?id={USER_ID}" in text

    @pytest.mark.asyncio
    async def test_disabled_welcome_sends_nothing(self, welcome, bot):
        assert await welcome.greet(CHAT_ID, USER_ID, WelcomePolicy(enabled=False)) is None
        bot.send_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_welcome_is_scheduled_for_deletion(self, welcome, pending_store, clock):
        message_id = await welcome.greet(CHAT_ID, USER_ID, WelcomePolicy(enabled=True, delete_after=30))

        assert message_id is not None
        assert pending_store.count() == 1
        assert not pending_store.due_ids(clock.now + 29, 10)
        assert pending_store.due_ids(clock.now + 30, 10)
