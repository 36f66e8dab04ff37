# Copyright (c) 2025 sprowii
import random
import time
from typing import Callable, List, Optional

import redis
from telegram import Bot

from app.logging_config import log
from app.moderation.captcha import ChallengeFactory
from app.moderation.logger import OutcomeLog
from app.moderation.models import (
    InboundMessage,
    OutcomeRecord,
    PunishmentOutcome,
    SweepResult,
    VerificationRecord,
)
from app.moderation.permissions import AdminCache
from app.moderation.pipeline import ModerationPipeline, default_detectors
from app.moderation.policy import ModerationPolicy, PolicyProvider
from app.moderation.punishment import PunishmentExecutor
from app.moderation.scheduler import DeletionScheduler
from app.moderation.storage import (
    CounterStore,
    MessageWindowStore,
    PendingDeleteStore,
    VerificationStore,
)
from app.moderation.transport import TelegramTransport
from app.moderation.verification import (
    CHANNEL_CALLBACK_PREFIX,
    AnswerResult,
    AnswerStatus,
    VerificationStateMachine,
)
from app.moderation.welcome import WelcomeFlow


class ModerationController:
    """Центральный контроллер модерации.

    Собирает компоненты вокруг одного клиента Redis и одного Bot и даёт
    единую точку входа для событий Telegram. Глобального состояния нет:
    обработчики получают контроллер из bot_data приложения.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        bot: Bot,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
        bot_username: Optional[str] = None,
    ):
        self.clock = clock or time.time
        self.transport = TelegramTransport(bot)
        self.policies = PolicyProvider(redis_client)
        self.outcome_log = OutcomeLog(redis_client, self.transport)
        self.scheduler = DeletionScheduler(PendingDeleteStore(redis_client), self.transport, self.outcome_log)
        self.admins = AdminCache(self.transport, clock=self.clock)
        self.pipeline = ModerationPipeline(default_detectors(MessageWindowStore(redis_client)))
        self.punishment = PunishmentExecutor(
            self.transport,
            CounterStore(redis_client),
            self.scheduler,
            self.outcome_log,
            clock=self.clock,
        )
        self.welcome = WelcomeFlow(self.transport, self.scheduler, clock=self.clock)
        self.verification = VerificationStateMachine(
            VerificationStore(redis_client),
            self.transport,
            self.scheduler,
            self.outcome_log,
            self.welcome,
            self.policies,
            challenges=ChallengeFactory(rng),
            clock=self.clock,
            bot_username=bot_username,
        )

    def _screens_messages(self, policy: ModerationPolicy) -> bool:
        return any(detector.is_enabled(policy) for detector in self.pipeline.detectors)

    # ========================================================================
    # СООБЩЕНИЯ ГРУППЫ
    # ========================================================================

    async def on_message(self, message: InboundMessage) -> Optional[PunishmentOutcome]:
        """Проверить сообщение группы и наказать нарушителя.

        Returns:
            PunishmentOutcome если сработал детектор, иначе None
        """
        policy = await self.policies.load_async(message.chat_id)
        if not self._screens_messages(policy):
            return None
        if policy.exempt_admins and await self.admins.is_admin(message.chat_id, message.user_id):
            return None

        outcome = self.pipeline.evaluate(message, policy)
        if not outcome.matched:
            return None
        return await self.punishment.apply(outcome.verdict, policy, message)

    # ========================================================================
    # НОВЫЕ УЧАСТНИКИ
    # ========================================================================

    async def on_join(
        self,
        chat_id: int,
        user_id: int,
        first_name: Optional[str] = None,
        username: Optional[str] = None,
        chat_title: Optional[str] = None,
        is_bot: bool = False,
    ) -> Optional[VerificationRecord]:
        """Обработка входа нового участника.

        Если проверка включена, участник получает задание. Если выключена,
        сразу отправляется приветствие.
        """
        if is_bot:
            return None
        policy = await self.policies.load_async(chat_id)
        if policy.verification.enabled:
            return await self.verification.start(
                chat_id,
                user_id,
                policy,
                first_name=first_name,
                username=username,
                chat_title=chat_title,
            )

        await self.welcome.greet(
            chat_id,
            user_id,
            policy.welcome,
            first_name=first_name,
            username=username,
            chat_title=chat_title,
        )
        return None

    async def on_private_answer(
        self,
        user_id: int,
        text: str,
        first_name: Optional[str] = None,
        username: Optional[str] = None,
    ) -> AnswerResult:
        """Ответ на задание, присланный боту в личку."""
        return await self.verification.submit_answer(
            user_id,
            text,
            first_name=first_name,
            username=username,
        )

    async def on_channel_callback(
        self,
        data: str,
        user_id: int,
        first_name: Optional[str] = None,
        username: Optional[str] = None,
    ) -> AnswerResult:
        """Нажатие кнопки verify_channel:{record_id}."""
        if not data.startswith(CHANNEL_CALLBACK_PREFIX):
            return AnswerResult(AnswerStatus.INVALID)
        record_id = data[len(CHANNEL_CALLBACK_PREFIX):]
        return await self.verification.check_channel(record_id, user_id, first_name=first_name, username=username)

    # ========================================================================
    # АДМИНИСТРИРОВАНИЕ
    # ========================================================================

    async def is_admin(self, chat_id: int, user_id: int) -> bool:
        return await self.admins.is_admin(chat_id, user_id)

    def reset_warns(self, chat_id: int, user_id: int) -> None:
        self.punishment.reset_warns(chat_id, user_id)

    def get_mod_log(self, chat_id: int, limit: int = 20, user_id: Optional[int] = None) -> List[OutcomeRecord]:
        """Последние записи журнала модерации группы."""
        return self.outcome_log.recent(chat_id, limit, user_id)

    async def sweep(self, now: Optional[float] = None) -> SweepResult:
        """Выполнить наступившие отложенные удаления."""
        result = await self.scheduler.sweep(now)
        log.debug(f"Очистка завершена: {result.as_dict()}")
        return result
