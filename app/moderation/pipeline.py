# Copyright (c) 2025 sprowii
"""Пайплайн модерации сообщений.

Детекторы выполняются в фиксированном порядке:
запрещённые слова -> флуд -> повторы -> реклама -> автоудаление.
Первый сработавший детектор останавливает проверку.
"""
from typing import Iterable, List

import redis

from app.logging_config import log
from app.moderation.ads import AdDetector
from app.moderation.auto_delete import AutoDeleteRuleMatcher
from app.moderation.base import Detector
from app.moderation.content_filter import SensitiveWordDetector
from app.moderation.models import InboundMessage, PipelineOutcome
from app.moderation.policy import ModerationPolicy, PolicyError
from app.moderation.spam import DuplicateDetector, FloodDetector
from app.moderation.storage import MessageWindowStore
from app.security.data_protection import pseudonymize_chat_id


def default_detectors(windows: MessageWindowStore) -> List[Detector]:
    """Стандартный набор детекторов в порядке приоритета."""
    return [
        SensitiveWordDetector(),
        FloodDetector(windows),
        DuplicateDetector(windows),
        AdDetector(),
        AutoDeleteRuleMatcher(),
    ]


class ModerationPipeline:
    def __init__(self, detectors: Iterable[Detector]):
        self.detectors = list(detectors)

    def evaluate(self, message: InboundMessage, policy: ModerationPolicy) -> PipelineOutcome:
        """Прогнать сообщение через детекторы.

        Ошибка в одном детекторе (битая политика, недоступный Redis) не ломает
        проверку: детектор пропускается, ошибка пишется в лог.

        Returns:
            PipelineOutcome с первым положительным вердиктом или без вердикта
        """
        outcome = PipelineOutcome()
        for detector in self.detectors:
            if not detector.is_enabled(policy):
                continue
            try:
                verdict = detector.evaluate(message, policy)
            except PolicyError as exc:
                log.warning(
                    f"Детектор {detector.name} пропущен в чате {pseudonymize_chat_id(message.chat_id)}: "
                    f"ошибка политики: {exc}"
                )
                outcome.skipped.append(detector.name)
                continue
            except redis.RedisError as exc:
                log.error(f"Детектор {detector.name} пропущен, ошибка Redis: {exc}")
                outcome.skipped.append(detector.name)
                continue

            outcome.evaluated.append(detector.name)
            if verdict.matched:
                outcome.verdict = verdict
                log.info(
                    f"Сработал детектор {detector.name} в чате {pseudonymize_chat_id(message.chat_id)}: "
                    f"{verdict.reason} ({verdict.confidence:.2f})"
                )
                return outcome
        return outcome
