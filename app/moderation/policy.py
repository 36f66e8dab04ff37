# Copyright (c) 2025 sprowii
"""Политика модерации группы и её загрузка из Redis.

Ключи:
- mod_policy:{chat_id} - JSON документ политики (пишется внешней админкой)

Документ компилируется один раз: регулярные выражения собираются при загрузке,
ошибки в них запоминаются и всплывают как PolicyError только у детектора,
которому принадлежит сломанное значение.
"""
import asyncio
import json
import re
from dataclasses import dataclass, field, fields
from typing import Any, Dict, FrozenSet, List, Optional, Pattern, Tuple

import redis

from app.logging_config import log
from app.moderation.models import PunishmentKind, VerificationType
from app.utils.text import parse_duration

POLICY_PREFIX = "mod_policy:"

DEFAULT_WARN_LIMIT = 3
DEFAULT_MUTE_DURATION_SEC = 300
DEFAULT_LONG_TEXT_LENGTH = 1000


class PolicyError(Exception):
    """Некорректное значение в политике группы."""


# ============================================================================
# ПРИВЕДЕНИЕ ТИПОВ
# ============================================================================

def _as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _as_list(value: Any, name: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise TypeError(f"{name}: ожидался список, получено {type(value).__name__}")
    return list(value)


def _as_str_list(value: Any, name: str = "значение") -> Tuple[str, ...]:
    if isinstance(value, str):
        value = [value]
    return tuple(str(item).strip() for item in _as_list(value, name) if str(item).strip())


def raise_on_errors(part: Any) -> None:
    """Поднять PolicyError, если в части политики есть ошибки."""
    errors = getattr(part, "errors", ())
    if errors:
        raise PolicyError("; ".join(errors))


def _compile_patterns(sources: Tuple[str, ...]) -> Tuple[Tuple[Tuple[str, Pattern], ...], Tuple[str, ...]]:
    compiled = []
    errors = []
    for source in sources:
        try:
            compiled.append((source, re.compile(source, re.IGNORECASE)))
        except re.error as exc:
            errors.append(f"{source!r}: {exc}")
    return tuple(compiled), tuple(errors)


@dataclass(frozen=True)
class PunishmentSettings:
    """Настройки наказания, которые исполнитель берёт из части политики."""
    action: PunishmentKind
    warn_limit: int = DEFAULT_WARN_LIMIT
    mute_duration: int = DEFAULT_MUTE_DURATION_SEC


# ============================================================================
# ЧАСТИ ПОЛИТИКИ
# ============================================================================

@dataclass(frozen=True)
class SensitiveWordsPolicy:
    enabled: bool = False
    words: Tuple[str, ...] = ()
    patterns: Tuple[Tuple[str, Pattern], ...] = ()
    errors: Tuple[str, ...] = ()
    action: PunishmentKind = PunishmentKind.DELETE
    notify_admin: bool = False
    warn_limit: int = DEFAULT_WARN_LIMIT
    mute_duration: int = DEFAULT_MUTE_DURATION_SEC

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SensitiveWordsPolicy":
        patterns, errors = _compile_patterns(_as_str_list(data.get("patterns"), "patterns"))
        return cls(
            enabled=_as_bool(data.get("enabled")),
            words=tuple(word.lower() for word in _as_str_list(data.get("words"), "words")),
            patterns=patterns,
            errors=errors,
            action=PunishmentKind.parse(data.get("action"), PunishmentKind.DELETE),
            notify_admin=_as_bool(data.get("notifyAdmin")),
            warn_limit=max(_as_int(data.get("warnLimit"), DEFAULT_WARN_LIMIT), 1),
            mute_duration=parse_duration(data.get("muteDuration"), DEFAULT_MUTE_DURATION_SEC),
        )


@dataclass(frozen=True)
class SpamPolicy:
    enabled: bool = False
    max_messages: int = 5
    window_seconds: int = 10
    duplicate_threshold: int = 3
    action: PunishmentKind = PunishmentKind.MUTE
    mute_duration: int = DEFAULT_MUTE_DURATION_SEC
    warn_limit: int = DEFAULT_WARN_LIMIT
    errors: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpamPolicy":
        return cls(
            enabled=_as_bool(data.get("enabled")),
            max_messages=max(_as_int(data.get("maxMessages"), 5), 1),
            window_seconds=max(_as_int(data.get("windowSeconds"), 10), 1),
            duplicate_threshold=max(_as_int(data.get("duplicateThreshold"), 3), 0),
            action=PunishmentKind.parse(data.get("action"), PunishmentKind.MUTE),
            mute_duration=parse_duration(data.get("muteDurationSeconds"), DEFAULT_MUTE_DURATION_SEC),
            warn_limit=max(_as_int(data.get("warnLimit"), DEFAULT_WARN_LIMIT), 1),
        )


@dataclass(frozen=True)
class AdsPolicy:
    enabled: bool = False
    keywords: Tuple[str, ...] = ()
    sticker_ads: bool = True
    keyword_ads: bool = True
    link_ads: bool = True
    action: PunishmentKind = PunishmentKind.DELETE
    warn_limit: int = DEFAULT_WARN_LIMIT
    mute_duration: int = DEFAULT_MUTE_DURATION_SEC
    errors: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AdsPolicy":
        return cls(
            enabled=_as_bool(data.get("enabled")),
            keywords=_as_str_list(data.get("keywords"), "keywords"),
            sticker_ads=_as_bool(data.get("stickerAds"), True),
            keyword_ads=_as_bool(data.get("keywordAds"), True),
            link_ads=_as_bool(data.get("linkAds"), True),
            action=PunishmentKind.parse(data.get("action"), PunishmentKind.DELETE),
            warn_limit=max(_as_int(data.get("warnLimit"), DEFAULT_WARN_LIMIT), 1),
            mute_duration=parse_duration(data.get("muteDuration"), DEFAULT_MUTE_DURATION_SEC),
        )


@dataclass(frozen=True)
class AutoDeleteRule:
    type: str
    keywords: Tuple[str, ...] = ()
    regex: Optional[Pattern] = None
    delete_after: Optional[int] = None
    max_length: int = DEFAULT_LONG_TEXT_LENGTH


@dataclass(frozen=True)
class AutoDeletePolicy:
    enabled: bool = False
    delete_commands: bool = False
    delete_media: bool = False
    exceptions: Tuple[str, ...] = ()
    delete_after_seconds: int = 0
    rules: Tuple[AutoDeleteRule, ...] = ()
    errors: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutoDeletePolicy":
        rules: List[AutoDeleteRule] = []
        errors: List[str] = []
        for raw_rule in _as_list(data.get("rules"), "rules"):
            if not isinstance(raw_rule, dict) or not raw_rule.get("type"):
                errors.append(f"правило без типа: {raw_rule!r}")
                continue
            regex = None
            source = raw_rule.get("regex")
            if source:
                try:
                    regex = re.compile(str(source), re.IGNORECASE)
                except re.error as exc:
                    errors.append(f"{source!r}: {exc}")
                    continue
            delete_after = raw_rule.get("deleteAfter")
            rules.append(AutoDeleteRule(
                type=str(raw_rule["type"]).lower(),
                keywords=_as_str_list(raw_rule.get("keywords"), "rules.keywords"),
                regex=regex,
                delete_after=parse_duration(delete_after) if delete_after is not None else None,
                max_length=max(_as_int(raw_rule.get("maxLength"), DEFAULT_LONG_TEXT_LENGTH), 1),
            ))
        return cls(
            enabled=_as_bool(data.get("enabled")),
            delete_commands=_as_bool(data.get("deleteCommands")),
            delete_media=_as_bool(data.get("deleteMedia")),
            exceptions=_as_str_list(data.get("exceptions"), "exceptions"),
            delete_after_seconds=parse_duration(data.get("deleteAfterSeconds"), 0),
            rules=tuple(rules),
            errors=tuple(errors),
        )


@dataclass(frozen=True)
class VerificationPolicy:
    enabled: bool = False
    type: str = VerificationType.MATH.value
    timeout_seconds: int = 300
    punishment: PunishmentKind = PunishmentKind.KICK
    channel_id: Optional[str] = None
    difficulty: str = "medium"
    bypass_users: FrozenSet[int] = frozenset()
    captcha_length: int = 4
    max_attempts: int = 3

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationPolicy":
        verification_type = str(data.get("type") or VerificationType.MATH.value).lower()
        if verification_type not in {t.value for t in VerificationType}:
            log.warning(f"Неизвестный тип проверки {verification_type!r}, используется math")
            verification_type = VerificationType.MATH.value
        channel_id = data.get("channelId")
        if verification_type == VerificationType.CHANNEL.value and not channel_id:
            log.warning("Проверка подпиской на канал без channelId, используется math")
            verification_type = VerificationType.MATH.value

        punishment = PunishmentKind.parse(data.get("punishment"), PunishmentKind.KICK)
        if punishment not in (PunishmentKind.KICK, PunishmentKind.BAN, PunishmentKind.MUTE):
            punishment = PunishmentKind.KICK

        bypass = set()
        raw_bypass = data.get("bypassUsers")
        if raw_bypass is not None and not isinstance(raw_bypass, (list, tuple)):
            log.warning(f"bypassUsers должен быть списком, получено {type(raw_bypass).__name__}: игнорируется")
            raw_bypass = None
        for raw_id in raw_bypass or []:
            user_id = _as_int(raw_id, 0)
            if user_id:
                bypass.add(user_id)

        return cls(
            enabled=_as_bool(data.get("enabled")),
            type=verification_type,
            timeout_seconds=max(parse_duration(data.get("timeoutSeconds"), 300), 1),
            punishment=punishment,
            channel_id=str(channel_id) if channel_id else None,
            difficulty=str(data.get("difficulty") or "medium").lower(),
            bypass_users=frozenset(bypass),
            captcha_length=min(max(_as_int(data.get("captchaLength"), 4), 3), 8),
            max_attempts=max(_as_int(data.get("maxAttempts"), 3), 1),
        )


@dataclass(frozen=True)
class WelcomePolicy:
    enabled: bool = False
    message: str = "Добро пожаловать, {mention}!"
    delete_after: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WelcomePolicy":
        return cls(
            enabled=_as_bool(data.get("enabled")),
            message=str(data.get("message") or cls.message),
            delete_after=parse_duration(data.get("deleteAfter"), 0),
        )


@dataclass(frozen=True)
class ModerationPolicy:
    """Неизменяемый снимок настроек модерации группы."""
    chat_id: int
    sensitive_words: SensitiveWordsPolicy = field(default_factory=SensitiveWordsPolicy)
    anti_spam: SpamPolicy = field(default_factory=SpamPolicy)
    anti_ads: AdsPolicy = field(default_factory=AdsPolicy)
    auto_delete: AutoDeletePolicy = field(default_factory=AutoDeletePolicy)
    verification: VerificationPolicy = field(default_factory=VerificationPolicy)
    welcome: WelcomePolicy = field(default_factory=WelcomePolicy)
    log_channel_id: Optional[int] = None
    exempt_admins: bool = True

    @classmethod
    def from_dict(cls, chat_id: int, data: Dict[str, Any]) -> "ModerationPolicy":
        """Собрать политику из JSON документа.

        Args:
            chat_id: ID группы
            data: Документ политики (ключи в camelCase, все необязательные)
        """
        def section(name: str) -> Dict[str, Any]:
            value = data.get(name)
            return value if isinstance(value, dict) else {}

        def part(part_cls, name: str):
            # Сломанная часть не должна ломать остальные: её детектор поднимет PolicyError
            raw = section(name)
            try:
                return part_cls.from_dict(raw)
            except (TypeError, ValueError, AttributeError) as exc:
                message = f"{name}: {exc}"
                if "errors" in {f.name for f in fields(part_cls)}:
                    return part_cls(enabled=_as_bool(raw.get("enabled")), errors=(message,))
                log.warning(f"Ошибка в политике чата {chat_id}: {message}, используются значения по умолчанию")
                return part_cls()

        log_channel = data.get("logChannelId")
        policy = cls(
            chat_id=chat_id,
            sensitive_words=part(SensitiveWordsPolicy, "sensitiveWords"),
            anti_spam=part(SpamPolicy, "antiSpam"),
            anti_ads=part(AdsPolicy, "antiAds"),
            auto_delete=part(AutoDeletePolicy, "autoDelete"),
            verification=part(VerificationPolicy, "verification"),
            welcome=part(WelcomePolicy, "welcome"),
            log_channel_id=_as_int(log_channel, 0) or None,
            exempt_admins=_as_bool(data.get("exemptAdmins"), True),
        )
        for error in policy.errors:
            log.warning(f"Ошибка в политике чата {chat_id}: {error}")
        return policy

    @property
    def errors(self) -> Tuple[str, ...]:
        return self.sensitive_words.errors + self.anti_spam.errors + self.anti_ads.errors + self.auto_delete.errors

    def punishment_for(self, detector: str) -> PunishmentSettings:
        """Настройки наказания для сработавшего детектора."""
        if detector == "sensitive_words":
            part = self.sensitive_words
        elif detector in ("flood", "duplicate"):
            part = self.anti_spam
        elif detector == "ads":
            part = self.anti_ads
        else:
            # Автоудаление только удаляет сообщение
            return PunishmentSettings(action=PunishmentKind.DELETE)
        return PunishmentSettings(
            action=part.action,
            warn_limit=part.warn_limit,
            mute_duration=part.mute_duration,
        )


# ============================================================================
# ПРОВАЙДЕР ПОЛИТИК
# ============================================================================

class PolicyProvider:
    """Читает политики групп из Redis и кэширует скомпилированные снимки.

    Снимок пересобирается только когда меняется сам JSON документ.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client
        self._compiled: Dict[int, Tuple[str, ModerationPolicy]] = {}

    def _policy_key(self, chat_id: int) -> str:
        return f"{POLICY_PREFIX}{chat_id}"

    def load(self, chat_id: int) -> ModerationPolicy:
        """Загрузить политику группы.

        Если документа нет или он повреждён, возвращает политику по умолчанию
        (все проверки выключены).
        """
        try:
            raw_value = self.redis.get(self._policy_key(chat_id))
        except redis.RedisError as exc:
            log.error(f"Ошибка загрузки политики для чата {chat_id}: {exc}")
            return ModerationPolicy(chat_id=chat_id)

        if not raw_value:
            return ModerationPolicy(chat_id=chat_id)

        cached = self._compiled.get(chat_id)
        if cached and cached[0] == raw_value:
            return cached[1]

        try:
            data = json.loads(raw_value)
        except json.JSONDecodeError as exc:
            log.warning(f"Некорректный JSON политики для чата {chat_id}: {exc}")
            return ModerationPolicy(chat_id=chat_id)
        if not isinstance(data, dict):
            log.warning(f"Политика чата {chat_id} должна быть объектом")
            return ModerationPolicy(chat_id=chat_id)

        policy = ModerationPolicy.from_dict(chat_id, data)
        self._compiled[chat_id] = (raw_value, policy)
        return policy

    async def load_async(self, chat_id: int) -> ModerationPolicy:
        """Асинхронно загрузить политику."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.load, chat_id)
