# Copyright (c) 2025 sprowii
"""Антиспам: флуд и повторяющиеся сообщения.

Окна хранятся в Redis (MessageWindowStore), поэтому параллельные обработчики
одного пользователя видят общее состояние.
"""
import re
import time
from typing import Callable, Optional

from app.moderation.base import Detector
from app.moderation.models import InboundMessage, Verdict
from app.moderation.policy import ModerationPolicy, raise_on_errors
from app.moderation.storage import MessageWindowStore

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_body(text: str) -> str:
    """Привести текст к виду, в котором почти одинаковые сообщения совпадают."""
    return _WHITESPACE_RE.sub(" ", text).strip().lower()


class FloodDetector(Detector):
    """Флуд: maxMessages и больше сообщений за windowSeconds.

    Сам детектор не наказывает, наказание берётся из политики antiSpam.
    """

    name = "flood"

    def __init__(self, windows: MessageWindowStore, clock: Optional[Callable[[], float]] = None):
        self.windows = windows
        self.clock = clock or time.time

    def is_enabled(self, policy: ModerationPolicy) -> bool:
        return policy.anti_spam.enabled

    def evaluate(self, message: InboundMessage, policy: ModerationPolicy) -> Verdict:
        part = policy.anti_spam
        raise_on_errors(part)
        count = self.windows.record_and_count(
            message.chat_id,
            message.user_id,
            message.message_id,
            part.window_seconds,
            timestamp=self.clock(),
        )
        if count < part.max_messages:
            return Verdict.no_match(self.name)
        return Verdict(
            detector=self.name,
            matched=True,
            reason=f"flood:{count}/{part.window_seconds}s",
            confidence=min(count / part.max_messages, 1.0),
            suggested_action=part.action,
        )


class DuplicateDetector(Detector):
    """Повторы: одно и то же сообщение больше duplicateThreshold раз за окно."""

    name = "duplicate"

    def __init__(self, windows: MessageWindowStore):
        self.windows = windows

    def is_enabled(self, policy: ModerationPolicy) -> bool:
        return policy.anti_spam.enabled and policy.anti_spam.duplicate_threshold > 0

    def evaluate(self, message: InboundMessage, policy: ModerationPolicy) -> Verdict:
        part = policy.anti_spam
        raise_on_errors(part)
        body = normalize_body(message.text)
        if not body:
            return Verdict.no_match(self.name)

        count = self.windows.count_duplicate(
            message.chat_id,
            message.user_id,
            body,
            part.window_seconds,
        )
        if count <= part.duplicate_threshold:
            return Verdict.no_match(self.name)
        return Verdict(
            detector=self.name,
            matched=True,
            reason=f"duplicate:{count}",
            confidence=min(count / (part.duplicate_threshold + 1), 1.0),
            suggested_action=part.action,
        )
