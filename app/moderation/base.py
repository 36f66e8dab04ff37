# Copyright (c) 2025 sprowii
from abc import ABC, abstractmethod

from app.moderation.models import InboundMessage, Verdict
from app.moderation.policy import ModerationPolicy


class Detector(ABC):
    """Общий интерфейс детектора нарушений.

    Детектор смотрит только на сообщение и свою часть политики и возвращает Verdict.
    Ошибки конфигурации сообщаются через PolicyError, пайплайн пропускает такой детектор.
    """

    name: str = "detector"

    @abstractmethod
    def is_enabled(self, policy: ModerationPolicy) -> bool:
        """Включён ли детектор в политике группы."""

    @abstractmethod
    def evaluate(self, message: InboundMessage, policy: ModerationPolicy) -> Verdict:
        """Проверить сообщение."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"
