# Copyright (c) 2025 sprowii
"""Модуль модерации групп.

Компоненты:
- ModerationController: Центральная точка входа для событий Telegram
- ModerationPipeline: Детекторы в фиксированном порядке с остановкой на первом срабатывании
- PunishmentExecutor: Наказания и эскалация предупреждений
- VerificationStateMachine: Проверка новых участников
- DeletionScheduler: Отложенные удаления с очисткой по внешнему триггеру
- OutcomeLog: Журнал исходов модерации
"""

from app.moderation.controller import ModerationController
from app.moderation.logger import OutcomeLog
from app.moderation.models import (
    InboundMessage,
    OutcomeRecord,
    PendingDelete,
    PunishmentKind,
    PunishmentOutcome,
    SweepResult,
    Verdict,
    VerificationRecord,
    VerificationStatus,
)
from app.moderation.pipeline import ModerationPipeline, default_detectors
from app.moderation.policy import ModerationPolicy, PolicyError, PolicyProvider
from app.moderation.punishment import PunishmentExecutor
from app.moderation.scheduler import DeletionScheduler
from app.moderation.verification import AnswerResult, AnswerStatus, VerificationStateMachine

__all__ = [
    # Controller
    "ModerationController",
    # Models
    "InboundMessage",
    "OutcomeRecord",
    "PendingDelete",
    "PunishmentKind",
    "PunishmentOutcome",
    "SweepResult",
    "Verdict",
    "VerificationRecord",
    "VerificationStatus",
    # Policy
    "ModerationPolicy",
    "PolicyError",
    "PolicyProvider",
    # Pipeline
    "ModerationPipeline",
    "default_detectors",
    # Punishment
    "PunishmentExecutor",
    # Verification
    "AnswerResult",
    "AnswerStatus",
    "VerificationStateMachine",
    # Scheduler
    "DeletionScheduler",
    # Logger
    "OutcomeLog",
]
