# Copyright (c) 2025 sprowii
"""Проверка новых участников группы.

Жизненный цикл записи: pending -> passed | failed | expired (все три конечные).

1. Вход в группу: участник ограничивается на сутки, создаётся запись pending и
   в группу отправляется задание с дедлайном. Сообщение с заданием удаляется
   через отложенные удаления в момент дедлайна.
2. Ответ в личке (math, image, gif) или нажатие кнопки (channel): запись
   меняется через compare-and-set, поэтому параллельные ответы не выведут её
   из конечного состояния дважды.
3. Passed: ограничение снимается, отправляется приветствие.
   Failed: применяется наказание из политики (kick, ban или mute на сутки).
   Expired: наказания нет, ограничение истечёт само.

Фоновых таймеров нет: просроченная запись становится expired при первом чтении.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from telegram import InlineKeyboardButton, InlineKeyboardMarkup
from telegram.error import TelegramError

from app.logging_config import log
from app.moderation.captcha import Challenge, ChallengeFactory
from app.moderation.logger import OutcomeLog
from app.moderation.models import OutcomeRecord, PunishmentKind, VerificationRecord, VerificationStatus, VerificationType
from app.moderation.policy import ModerationPolicy, PolicyProvider
from app.moderation.scheduler import DeletionScheduler
from app.moderation.storage import VerificationStore
from app.moderation.transport import MEMBER_STATUSES, TelegramTransport
from app.moderation.welcome import WelcomeFlow
from app.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from app.utils.text import format_duration, user_mention

# Ограничение на время проверки
VERIFICATION_RESTRICT_SEC = 86400
# Мут за проваленную проверку
FAILED_MUTE_SEC = 86400

CHANNEL_CALLBACK_PREFIX = "verify_channel:"

# Типы, ответ на которые приходит текстом в личку
TEXT_ANSWER_TYPES = [VerificationType.MATH.value, VerificationType.IMAGE.value, VerificationType.GIF.value]


class AnswerStatus(str, Enum):
    PASSED = "passed"
    WRONG = "wrong"
    FAILED = "failed"
    EXPIRED = "expired"
    ENDED = "ended"      # проверка уже завершена
    INVALID = "invalid"  # проверки нет или она чужая


ANSWER_MESSAGES = {
    AnswerStatus.PASSED: "✅ Проверка пройдена, добро пожаловать!",
    AnswerStatus.WRONG: "❌ Неверно. Осталось попыток: {remaining}",
    AnswerStatus.FAILED: "⛔ Попытки закончились, проверка не пройдена.",
    AnswerStatus.EXPIRED: "⌛ Время на проверку истекло.",
    AnswerStatus.ENDED: "Эта проверка уже завершена.",
    AnswerStatus.INVALID: "Активная проверка не найдена.",
}


@dataclass
class AnswerResult:
    status: AnswerStatus
    record: Optional[VerificationRecord] = None

    @property
    def remaining_attempts(self) -> int:
        return self.record.remaining_attempts if self.record else 0

    @property
    def message(self) -> str:
        return ANSWER_MESSAGES[self.status].format(remaining=self.remaining_attempts)


def _normalize_answer(value: str) -> str:
    return (value or "").strip().lower()


class VerificationStateMachine:
    def __init__(
        self,
        store: VerificationStore,
        transport: TelegramTransport,
        scheduler: DeletionScheduler,
        outcome_log: OutcomeLog,
        welcome: WelcomeFlow,
        policies: PolicyProvider,
        challenges: Optional[ChallengeFactory] = None,
        clock: Optional[Callable[[], float]] = None,
        bot_username: Optional[str] = None,
    ):
        self.store = store
        self.transport = transport
        self.scheduler = scheduler
        self.outcome_log = outcome_log
        self.welcome = welcome
        self.policies = policies
        self.challenges = challenges or ChallengeFactory()
        self.clock = clock or time.time
        self.bot_username = bot_username

    # ========================================================================
    # ВХОД В ГРУППУ
    # ========================================================================

    async def start(
        self,
        chat_id: int,
        user_id: int,
        policy: ModerationPolicy,
        first_name: Optional[str] = None,
        username: Optional[str] = None,
        chat_title: Optional[str] = None,
        is_bot: bool = False,
    ) -> Optional[VerificationRecord]:
        """Начать проверку нового участника.

        Returns:
            Активная запись проверки (новая или уже существующая),
            None если проверка не нужна
        """
        settings = policy.verification
        if not settings.enabled or is_bot:
            return None
        if user_id in settings.bypass_users:
            log.info(f"Пользователь {pseudonymize_id(user_id)} в списке исключений проверки")
            return None

        now = self.clock()
        for existing in self.store.open_in_chat(chat_id, user_id):
            if not existing.is_expired(now):
                log.info(f"У пользователя {pseudonymize_id(user_id)} уже есть активная проверка")
                return existing
            await self._expire(existing.id, now)

        challenge = self.challenges.create(settings)
        data = challenge.challenge_data()
        data["group_name"] = chat_title or ""
        record = VerificationRecord.create(
            chat_id=chat_id,
            user_id=user_id,
            verification_type=challenge.type,
            challenge_data=data,
            timeout_sec=settings.timeout_seconds,
            max_attempts=settings.max_attempts,
            now=now,
        )

        conflict_id = self.store.try_create(record)
        if conflict_id is not None:
            # Параллельный вход успел занять индекс
            return self.store.get(conflict_id)

        try:
            await self.transport.restrict(chat_id, user_id, now + VERIFICATION_RESTRICT_SEC)
        except TelegramError as exc:
            log.warning(f"Не удалось ограничить участника {pseudonymize_id(user_id)} на время проверки: {exc}")

        message_id = await self._send_challenge(record, challenge, settings.timeout_seconds, first_name or username)
        if message_id is not None:
            self.store.set_message_id(record.id, message_id)
            record.message_id = message_id
            self.scheduler.schedule(chat_id, message_id, record.expires_at - now, "verification", now=now)

        await self.outcome_log.record(OutcomeRecord.create(
            chat_id=chat_id,
            action="verify_started",
            target_user_id=user_id,
            source="verification",
            reason=record.type,
        ))
        return record

    def _challenge_markup(self, record: VerificationRecord) -> Optional[InlineKeyboardMarkup]:
        buttons = []
        if record.type == VerificationType.CHANNEL.value:
            channel_id = record.challenge_data.get("channel_id", "")
            if channel_id.startswith("@"):
                buttons.append([InlineKeyboardButton("📢 Открыть канал", url=f"https://t.me/{channel_id[1:]}")])
            buttons.append([InlineKeyboardButton(
                "✅ Я подписался",
                callback_data=f"{CHANNEL_CALLBACK_PREFIX}{record.id}",
            )])
        elif self.bot_username:
            buttons.append([InlineKeyboardButton(
                "✍️ Ответить боту",
                url=f"https://t.me/{self.bot_username}?start=verify",
            )])
        return InlineKeyboardMarkup(buttons) if buttons else None

    async def _send_challenge(
        self,
        record: VerificationRecord,
        challenge: Challenge,
        timeout_sec: int,
        name: Optional[str],
    ) -> Optional[int]:
        lines = [f"🔐 {user_mention(record.user_id, name)}, подтвердите, что вы не бот.", "", challenge.prompt]
        if record.type != VerificationType.CHANNEL.value:
            lines.append("Ответ отправьте боту в личные сообщения.")
        lines.append(f"⏰ Время на ответ: {format_duration(timeout_sec)}, попыток: {record.max_attempts}")
        text = "\n".join(lines)
        markup = self._challenge_markup(record)

        try:
            if challenge.image is not None:
                return await self.transport.send_photo(record.chat_id, challenge.image, text, reply_markup=markup)
            if challenge.animation is not None:
                return await self.transport.send_animation(record.chat_id, challenge.animation, text)
            return await self.transport.send_message(record.chat_id, text, reply_markup=markup)
        except TelegramError as exc:
            log.error(f"Не удалось отправить задание в чат {pseudonymize_chat_id(record.chat_id)}: {exc}")
            return None

    # ========================================================================
    # ОТВЕТЫ
    # ========================================================================

    async def submit_answer(
        self,
        user_id: int,
        answer: str,
        record_id: Optional[str] = None,
        first_name: Optional[str] = None,
        username: Optional[str] = None,
    ) -> AnswerResult:
        """Проверить текстовый ответ участника.

        Args:
            user_id: Кто отвечает
            answer: Текст ответа
            record_id: ID проверки; если не указан, берётся самая свежая
                активная проверка пользователя с текстовым ответом
        """
        if record_id is not None:
            record = self.store.get(record_id)
        else:
            record = self.store.latest_pending_for_user(user_id, TEXT_ANSWER_TYPES)
        if record is None or record.user_id != user_id:
            return AnswerResult(AnswerStatus.INVALID)
        if record.type == VerificationType.CHANNEL.value:
            return AnswerResult(AnswerStatus.INVALID, record)

        expected = _normalize_answer(record.challenge_data.get("answer", ""))
        correct = bool(expected) and _normalize_answer(answer) == expected
        return await self._resolve(record.id, correct, first_name, username)

    async def check_channel(
        self,
        record_id: str,
        user_id: int,
        first_name: Optional[str] = None,
        username: Optional[str] = None,
    ) -> AnswerResult:
        """Обработать нажатие кнопки «Я подписался»."""
        record = self.store.get(record_id)
        if record is None or record.user_id != user_id or record.type != VerificationType.CHANNEL.value:
            return AnswerResult(AnswerStatus.INVALID)
        if not record.is_pending:
            return AnswerResult(AnswerStatus.ENDED, record)
        if record.is_expired(self.clock()):
            return await self._resolve(record.id, False, first_name, username)

        channel_id = record.challenge_data.get("channel_id", "")
        try:
            status = await self.transport.get_member_status(channel_id, user_id)
            subscribed = status in MEMBER_STATUSES
        except TelegramError as exc:
            log.warning(f"Не удалось проверить подписку на канал {channel_id}: {exc}")
            subscribed = False
        return await self._resolve(record.id, subscribed, first_name, username)

    async def _resolve(
        self,
        record_id: str,
        correct: bool,
        first_name: Optional[str],
        username: Optional[str],
    ) -> AnswerResult:
        now = self.clock()
        transition = {}

        def _apply(current: VerificationRecord) -> Optional[VerificationRecord]:
            transition.clear()
            if not current.is_pending:
                transition["status"] = AnswerStatus.ENDED
                return None
            if current.is_expired(now):
                current.status = VerificationStatus.EXPIRED.value
                current.completed_at = now
                transition["status"] = AnswerStatus.EXPIRED
                return current
            if correct:
                current.status = VerificationStatus.PASSED.value
                current.completed_at = now
                transition["status"] = AnswerStatus.PASSED
                return current

            current.attempt_count += 1
            if current.attempt_count >= current.max_attempts:
                current.status = VerificationStatus.FAILED.value
                current.completed_at = now
                transition["status"] = AnswerStatus.FAILED
            else:
                transition["status"] = AnswerStatus.WRONG
            return current

        record = self.store.update(record_id, _apply)
        if record is None:
            return AnswerResult(AnswerStatus.INVALID)

        status = transition["status"]
        if status == AnswerStatus.PASSED:
            await self._on_passed(record, first_name, username)
        elif status == AnswerStatus.FAILED:
            await self._on_failed(record)
        elif status == AnswerStatus.EXPIRED:
            await self._log_expired(record)
        return AnswerResult(status, record)

    async def _expire(self, record_id: str, now: float) -> None:
        """Пометить просроченную запись, чтобы освободить место для новой."""

        def _apply(current: VerificationRecord) -> Optional[VerificationRecord]:
            if not current.is_pending:
                return None
            current.status = VerificationStatus.EXPIRED.value
            current.completed_at = now
            return current

        record = self.store.update(record_id, _apply)
        if record is not None and record.status == VerificationStatus.EXPIRED.value:
            await self._log_expired(record)

    # ========================================================================
    # ИСХОДЫ
    # ========================================================================

    async def _on_passed(self, record: VerificationRecord, first_name: Optional[str], username: Optional[str]) -> None:
        success = True
        try:
            await self.transport.unrestrict(record.chat_id, record.user_id)
        except TelegramError as exc:
            log.error(f"Не удалось снять ограничение с {pseudonymize_id(record.user_id)}: {exc}")
            success = False

        policy = self.policies.load(record.chat_id)
        await self.welcome.greet(
            record.chat_id,
            record.user_id,
            policy.welcome,
            first_name=first_name,
            username=username,
            chat_title=record.challenge_data.get("group_name") or None,
        )
        await self.outcome_log.record(
            OutcomeRecord.create(
                chat_id=record.chat_id,
                action="verify_passed",
                target_user_id=record.user_id,
                source="verification",
                reason=record.type,
                success=success,
            ),
            log_channel_id=policy.log_channel_id,
        )

    async def _on_failed(self, record: VerificationRecord) -> None:
        policy = self.policies.load(record.chat_id)
        punishment = policy.verification.punishment
        details = None
        try:
            if punishment == PunishmentKind.BAN:
                await self.transport.ban(record.chat_id, record.user_id)
            elif punishment == PunishmentKind.MUTE:
                await self.transport.restrict(record.chat_id, record.user_id, self.clock() + FAILED_MUTE_SEC)
            else:
                await self.transport.kick(record.chat_id, record.user_id)
            success = True
        except TelegramError as exc:
            log.error(f"Не удалось наказать {pseudonymize_id(record.user_id)} за проваленную проверку: {exc}")
            success = False
            details = f"{punishment.value} failed: {exc}"

        await self.outcome_log.record(
            OutcomeRecord.create(
                chat_id=record.chat_id,
                action="verify_failed",
                target_user_id=record.user_id,
                source="verification",
                reason=f"{record.attempt_count}/{record.max_attempts} attempts, {punishment.value}",
                success=success,
                details=details,
            ),
            log_channel_id=policy.log_channel_id,
        )

    async def _log_expired(self, record: VerificationRecord) -> None:
        await self.outcome_log.record(OutcomeRecord.create(
            chat_id=record.chat_id,
            action="verify_expired",
            target_user_id=record.user_id,
            source="verification",
            reason=record.type,
        ))
