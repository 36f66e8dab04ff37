# Copyright (c) 2025 sprowii
"""Исполнение наказаний по вердикту пайплайна.

Действия:
- delete: удалить сообщение
- warn: удалить + предупреждение; на warn_limit пользователь кикается, счётчик обнуляется
- mute: удалить + запрет писать на mute_duration
- kick / ban: удалить + выгнать или забанить

Ошибки Telegram не пробрасываются: наказание выполняется насколько получилось,
а исход в любом случае попадает в журнал.
"""
import time
from typing import Callable, Optional

import redis
from telegram.error import TelegramError

from app.logging_config import log
from app.moderation.logger import OutcomeLog
from app.moderation.models import (
    InboundMessage,
    OutcomeRecord,
    PunishmentKind,
    PunishmentOutcome,
    Verdict,
)
from app.moderation.policy import ModerationPolicy
from app.moderation.scheduler import DeletionScheduler
from app.moderation.storage import CounterStore, warns_key
from app.moderation.transport import TelegramTransport
from app.security.data_protection import pseudonymize_id
from app.utils.text import format_duration, user_mention

# Предупреждения сгорают через неделю без новых нарушений
WARN_COUNTER_TTL_SEC = 7 * 24 * 3600
# Уведомления бота в группе удаляются через минуту
NOTICE_TTL_SEC = 60

DETECTOR_TITLES = {
    "sensitive_words": "запрещённые слова",
    "flood": "флуд",
    "duplicate": "повтор сообщений",
    "ads": "реклама",
    "auto_delete": "автоудаление",
}


class PunishmentExecutor:
    def __init__(
        self,
        transport: TelegramTransport,
        counters: CounterStore,
        scheduler: DeletionScheduler,
        outcome_log: OutcomeLog,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.transport = transport
        self.counters = counters
        self.scheduler = scheduler
        self.outcome_log = outcome_log
        self.clock = clock or time.time

    async def apply(
        self,
        verdict: Verdict,
        policy: ModerationPolicy,
        message: InboundMessage,
    ) -> PunishmentOutcome:
        """Применить наказание, настроенное для сработавшего детектора.

        Args:
            verdict: Положительный вердикт пайплайна
            policy: Политика группы
            message: Сообщение-нарушение

        Returns:
            PunishmentOutcome с тем, что реально удалось сделать
        """
        settings = policy.punishment_for(verdict.detector)
        action = verdict.suggested_action
        if action == PunishmentKind.NONE:
            action = settings.action

        outcome = PunishmentOutcome(action=action, success=True)
        if action == PunishmentKind.NONE:
            return outcome

        await self._remove_message(message, verdict, outcome)

        if action == PunishmentKind.WARN:
            await self._warn(message, verdict, settings.warn_limit, outcome)
        elif action == PunishmentKind.MUTE:
            await self._mute(message, verdict, settings.mute_duration, outcome)
        elif action == PunishmentKind.KICK:
            await self._call(outcome, "kick", self.transport.kick(message.chat_id, message.user_id))
        elif action == PunishmentKind.BAN:
            await self._call(outcome, "ban", self.transport.ban(message.chat_id, message.user_id))

        if outcome.escalated:
            action_name = PunishmentKind.KICK.value
        elif action == PunishmentKind.DELETE and outcome.delete_scheduled:
            action_name = "delete_scheduled"
        else:
            action_name = action.value
        forward = verdict.detector != "sensitive_words" or policy.sensitive_words.notify_admin
        await self.outcome_log.record(
            OutcomeRecord.create(
                chat_id=message.chat_id,
                action=action_name,
                target_user_id=message.user_id,
                source=verdict.detector,
                reason=verdict.reason,
                success=outcome.success,
                details="; ".join(outcome.details) or None,
            ),
            log_channel_id=policy.log_channel_id if forward else None,
        )
        return outcome

    def reset_warns(self, chat_id: int, user_id: int) -> None:
        """Сбросить предупреждения пользователя (решение администратора)."""
        self.counters.reset(warns_key(chat_id, user_id))
        log.info(f"Предупреждения пользователя {pseudonymize_id(user_id)} сброшены")

    async def _call(self, outcome: PunishmentOutcome, label: str, call) -> bool:
        try:
            await call
            return True
        except TelegramError as exc:
            log.error(f"Не удалось выполнить {label}: {exc}")
            outcome.success = False
            outcome.details.append(f"{label} failed: {exc}")
            return False

    async def _remove_message(self, message: InboundMessage, verdict: Verdict, outcome: PunishmentOutcome) -> None:
        if verdict.delay_seconds > 0:
            record = self.scheduler.schedule(
                message.chat_id,
                message.message_id,
                verdict.delay_seconds,
                verdict.reason,
                now=self.clock(),
            )
            outcome.delete_scheduled = record is not None
            if record is None:
                outcome.success = False
                outcome.details.append("schedule failed")
            return

        outcome.message_deleted = await self._call(
            outcome,
            "delete",
            self.transport.delete_message(message.chat_id, message.message_id),
        )

    async def _warn(self, message: InboundMessage, verdict: Verdict, warn_limit: int, outcome: PunishmentOutcome) -> None:
        key = warns_key(message.chat_id, message.user_id)
        try:
            count = self.counters.increment(key, WARN_COUNTER_TTL_SEC)
        except redis.RedisError as exc:
            log.error(f"Не удалось увеличить счётчик предупреждений: {exc}")
            outcome.success = False
            outcome.details.append("warn counter unavailable")
            return
        outcome.warn_count = count

        mention = user_mention(message.user_id, message.first_name or message.username)
        title = DETECTOR_TITLES.get(verdict.detector, verdict.detector)
        if count >= warn_limit:
            kicked = await self._call(outcome, "kick", self.transport.kick(message.chat_id, message.user_id))
            # Счётчик обнуляется и при неудачном кике
            try:
                self.counters.reset(key)
            except redis.RedisError as exc:
                log.error(f"Не удалось сбросить счётчик предупреждений: {exc}")
                outcome.success = False
                outcome.details.append("warn counter reset failed")
            outcome.escalated = True
            text = f"👢 {mention}: {count}/{warn_limit} предупреждений ({title}), участник исключён."
            if not kicked:
                text = f"⚠️ {mention}: {count}/{warn_limit} предупреждений, исключить не удалось."
        else:
            text = f"⚠️ {mention}, предупреждение {count}/{warn_limit}: {title}."
        await self._notify(message.chat_id, text)

    async def _mute(self, message: InboundMessage, verdict: Verdict, duration: int, outcome: PunishmentOutcome) -> None:
        until = self.clock() + duration
        muted = await self._call(outcome, "mute", self.transport.restrict(message.chat_id, message.user_id, until))
        if muted:
            mention = user_mention(message.user_id, message.first_name or message.username)
            title = DETECTOR_TITLES.get(verdict.detector, verdict.detector)
            await self._notify(message.chat_id, f"🔇 {mention} не может писать {format_duration(duration)} ({title}).")

    async def _notify(self, chat_id: int, text: str) -> None:
        try:
            message_id = await self.transport.send_message(chat_id, text)
        except TelegramError as exc:
            log.warning(f"Не удалось отправить уведомление о наказании: {exc}")
            return
        self.scheduler.schedule(chat_id, message_id, NOTICE_TTL_SEC, "notice", now=self.clock())
