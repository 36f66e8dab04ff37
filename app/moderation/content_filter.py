# Copyright (c) 2025 sprowii
from app.moderation.base import Detector
from app.moderation.models import InboundMessage, Verdict
from app.moderation.policy import ModerationPolicy, raise_on_errors


class SensitiveWordDetector(Detector):
    """Фильтр запрещённых слов и паттернов.

    Слова ищутся как подстрока без учёта регистра, паттерны уже скомпилированы
    с IGNORECASE при загрузке политики. Срабатывает первое совпадение.
    """

    name = "sensitive_words"

    def is_enabled(self, policy: ModerationPolicy) -> bool:
        part = policy.sensitive_words
        return part.enabled and bool(part.words or part.patterns or part.errors)

    def evaluate(self, message: InboundMessage, policy: ModerationPolicy) -> Verdict:
        part = policy.sensitive_words
        raise_on_errors(part)

        text = message.text
        if not text:
            return Verdict.no_match(self.name)

        lowered = text.lower()
        for word in part.words:
            if word in lowered:
                return Verdict(
                    detector=self.name,
                    matched=True,
                    reason=f"sensitive_word:{word}",
                    confidence=1.0,
                    suggested_action=part.action,
                )

        for source, pattern in part.patterns:
            if pattern.search(text):
                return Verdict(
                    detector=self.name,
                    matched=True,
                    reason=f"sensitive_pattern:{source}",
                    confidence=1.0,
                    suggested_action=part.action,
                )

        return Verdict.no_match(self.name)
