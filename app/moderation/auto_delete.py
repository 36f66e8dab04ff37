# Copyright (c) 2025 sprowii
"""Правила автоудаления сообщений.

Сначала общие переключатели deleteCommands/deleteMedia (с исключениями по словам),
затем правила по порядку. Первое сработавшее правило определяет задержку удаления.
"""
import re
from typing import Callable, Dict, Optional, Tuple

from app.moderation.base import Detector
from app.moderation.models import InboundMessage, PunishmentKind, Verdict
from app.moderation.policy import AutoDeletePolicy, AutoDeleteRule, ModerationPolicy, raise_on_errors

EXECUTABLE_EXTENSIONS = (".exe", ".bat", ".cmd", ".sh", ".ps1", ".vbs", ".js", ".jar")
ARCHIVE_EXTENSIONS = (".zip", ".rar", ".7z", ".tar", ".gz")
URL_REGEX = re.compile(r"https?://\S+", re.IGNORECASE)


def _contains_any(text: str, words: Tuple[str, ...]) -> bool:
    lowered = text.lower()
    return any(word.lower() in lowered for word in words)


def _is_document_with(message: InboundMessage, extensions: Tuple[str, ...]) -> bool:
    return message.has_document and (message.document_name or "").lower().endswith(extensions)


# Проверки по типу правила: (сообщение, правило) -> причина или None
_TYPE_CHECKS: Dict[str, Callable[[InboundMessage, AutoDeleteRule], Optional[str]]] = {
    "command": lambda m, r: "command" if m.is_command else None,
    "media": lambda m, r: "media" if m.has_media else None,
    "sticker": lambda m, r: "sticker" if m.is_sticker else None,
    "video": lambda m, r: "video" if m.has_video or m.has_video_note else None,
    "document": lambda m, r: (
        "document" if m.has_document and not (m.document_mime or "").startswith("image/") else None
    ),
    "executable": lambda m, r: "executable" if _is_document_with(m, EXECUTABLE_EXTENSIONS) else None,
    "archive": lambda m, r: "archive" if _is_document_with(m, ARCHIVE_EXTENSIONS) else None,
    "forward": lambda m, r: "forward" if m.is_forward else None,
    "contact": lambda m, r: "contact" if m.has_contact else None,
    "premium_emoji": lambda m, r: "premium_emoji" if m.has_custom_emoji else None,
    "long": lambda m, r: "long_message" if len(m.text) > r.max_length else None,
    "all": lambda m, r: "all_messages",
    # keyword и regex проверяются общими условиями правила ниже
    "keyword": lambda m, r: None,
    "regex": lambda m, r: None,
}

_TYPE_ALIASES = {"doc": "document", "exec": "executable"}


def _check_link_rule(message: InboundMessage, rule: AutoDeleteRule) -> Optional[str]:
    if not message.text or not URL_REGEX.search(message.text):
        return None
    # Для ссылок ключевые слова работают как белый список
    if rule.keywords and _contains_any(message.text, rule.keywords):
        return None
    return "link"


def match_rule(message: InboundMessage, rule: AutoDeleteRule) -> Optional[str]:
    """Проверить одно правило. Возвращает причину удаления или None."""
    rule_type = _TYPE_ALIASES.get(rule.type, rule.type)
    if rule_type == "link":
        return _check_link_rule(message, rule)

    check = _TYPE_CHECKS.get(rule_type)
    if check is not None:
        reason = check(message, rule)
        if reason:
            return reason

    if rule.keywords and message.text and _contains_any(message.text, rule.keywords):
        return "keyword_match"
    if rule.regex is not None and message.text and rule.regex.search(message.text):
        return "regex_match"
    return None


class AutoDeleteRuleMatcher(Detector):
    name = "auto_delete"

    def is_enabled(self, policy: ModerationPolicy) -> bool:
        return policy.auto_delete.enabled

    def _verdict(self, reason: str, delay: int) -> Verdict:
        return Verdict(
            detector=self.name,
            matched=True,
            reason=reason,
            confidence=1.0,
            suggested_action=PunishmentKind.DELETE,
            delay_seconds=max(delay, 0),
        )

    def _match_switches(self, message: InboundMessage, part: AutoDeletePolicy) -> Optional[str]:
        if part.exceptions and message.text and _contains_any(message.text, part.exceptions):
            return None
        if part.delete_commands and message.is_command:
            return "command"
        if part.delete_media and message.has_media:
            return "media"
        return None

    def evaluate(self, message: InboundMessage, policy: ModerationPolicy) -> Verdict:
        part = policy.auto_delete
        raise_on_errors(part)

        reason = self._match_switches(message, part)
        if reason:
            return self._verdict(reason, part.delete_after_seconds)

        for rule in part.rules:
            reason = match_rule(message, rule)
            if reason:
                delay = rule.delete_after if rule.delete_after is not None else part.delete_after_seconds
                return self._verdict(reason, delay)

        return Verdict.no_match(self.name)
