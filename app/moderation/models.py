# Copyright (c) 2025 sprowii
"""Модели данных для системы модерации."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import time
import uuid

from telegram import Message
from telegram.constants import MessageEntityType


class PunishmentKind(str, Enum):
    """Действие, которое применяется к нарушителю."""
    NONE = "none"
    DELETE = "delete"
    WARN = "warn"
    MUTE = "mute"
    KICK = "kick"
    BAN = "ban"

    @classmethod
    def parse(cls, value: Optional[str], default: "PunishmentKind") -> "PunishmentKind":
        try:
            return cls(str(value).lower())
        except ValueError:
            return default


class VerificationStatus(str, Enum):
    PENDING = "pending"
    PASSED = "passed"
    FAILED = "failed"
    EXPIRED = "expired"


class VerificationType(str, Enum):
    MATH = "math"
    IMAGE = "image"
    GIF = "gif"
    CHANNEL = "channel"


@dataclass(frozen=True)
class InboundMessage:
    """Входящее сообщение группы в виде, не зависящем от Telegram API.

    Детекторы работают только с этим объектом.
    """
    chat_id: int
    user_id: int
    message_id: int
    text: str = ""
    username: Optional[str] = None
    first_name: Optional[str] = None
    chat_title: Optional[str] = None
    has_photo: bool = False
    has_video: bool = False
    has_video_note: bool = False
    has_audio: bool = False
    has_voice: bool = False
    has_contact: bool = False
    is_forward: bool = False
    is_sticker: bool = False
    sticker_set_name: Optional[str] = None
    document_name: Optional[str] = None
    document_mime: Optional[str] = None
    has_custom_emoji: bool = False

    @property
    def is_command(self) -> bool:
        return self.text.startswith("/")

    @property
    def has_document(self) -> bool:
        return self.document_name is not None or self.document_mime is not None

    @property
    def has_media(self) -> bool:
        return (
            self.has_photo
            or self.has_video
            or self.has_document
            or self.has_audio
            or self.has_voice
        )

    @classmethod
    def from_telegram(cls, message: Message) -> Optional["InboundMessage"]:
        """Собрать InboundMessage из telegram.Message.

        Returns:
            None для сообщений без отправителя (посты каналов, служебные)
        """
        user = message.from_user
        if user is None:
            return None

        entities = tuple(message.entities or ()) + tuple(message.caption_entities or ())
        document = message.document
        sticker = message.sticker
        return cls(
            chat_id=message.chat_id,
            user_id=user.id,
            message_id=message.message_id,
            text=message.text or message.caption or "",
            username=user.username,
            first_name=user.first_name,
            chat_title=message.chat.title,
            has_photo=bool(message.photo),
            has_video=message.video is not None,
            has_video_note=message.video_note is not None,
            has_audio=message.audio is not None,
            has_voice=message.voice is not None,
            has_contact=message.contact is not None,
            is_forward=message.forward_origin is not None,
            is_sticker=sticker is not None,
            sticker_set_name=sticker.set_name if sticker else None,
            document_name=(document.file_name or "") if document else None,
            document_mime=document.mime_type if document else None,
            has_custom_emoji=any(e.type == MessageEntityType.CUSTOM_EMOJI for e in entities),
        )


@dataclass(frozen=True)
class Verdict:
    """Результат проверки сообщения одним детектором."""
    detector: str
    matched: bool
    reason: str = ""
    confidence: float = 0.0
    suggested_action: PunishmentKind = PunishmentKind.NONE
    # Для правил автоудаления: удалить не сразу, а через N секунд
    delay_seconds: int = 0

    @classmethod
    def no_match(cls, detector: str) -> "Verdict":
        return cls(detector=detector, matched=False)


@dataclass
class PipelineOutcome:
    """Результат прогона сообщения через все детекторы."""
    verdict: Optional[Verdict] = None
    evaluated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def matched(self) -> bool:
        return self.verdict is not None and self.verdict.matched


@dataclass
class PunishmentOutcome:
    """Что фактически удалось сделать с нарушителем."""
    action: PunishmentKind
    success: bool
    message_deleted: bool = False
    delete_scheduled: bool = False
    warn_count: int = 0
    escalated: bool = False
    details: List[str] = field(default_factory=list)


@dataclass
class VerificationRecord:
    """Проверка нового участника группы.

    Статус pending единственный нетерминальный; passed, failed и expired конечные.
    """
    id: str
    chat_id: int
    user_id: int
    type: str
    challenge_data: Dict[str, str]
    status: str
    attempt_count: int
    max_attempts: int
    created_at: float
    expires_at: float
    completed_at: Optional[float] = None
    message_id: Optional[int] = None  # сообщение с заданием в группе

    @classmethod
    def create(
        cls,
        chat_id: int,
        user_id: int,
        verification_type: str,
        challenge_data: Dict[str, str],
        timeout_sec: int,
        max_attempts: int = 3,
        now: Optional[float] = None,
    ) -> "VerificationRecord":
        """Создать новую проверку с автоматическим ID и временем истечения."""
        now = time.time() if now is None else now
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            user_id=user_id,
            type=verification_type,
            challenge_data=challenge_data,
            status=VerificationStatus.PENDING.value,
            attempt_count=0,
            max_attempts=max_attempts,
            created_at=now,
            expires_at=now + timeout_sec,
        )

    @property
    def is_pending(self) -> bool:
        return self.status == VerificationStatus.PENDING.value

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now > self.expires_at

    @property
    def remaining_attempts(self) -> int:
        return max(self.max_attempts - self.attempt_count, 0)


@dataclass
class PendingDelete:
    """Отложенное удаление сообщения, которое выполнит очистка по расписанию."""
    id: str
    chat_id: int
    message_id: int
    delete_at: float
    reason: str
    created_at: float

    @classmethod
    def create(
        cls,
        chat_id: int,
        message_id: int,
        delay_sec: float,
        reason: str,
        now: Optional[float] = None,
    ) -> "PendingDelete":
        now = time.time() if now is None else now
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            message_id=message_id,
            delete_at=now + max(delay_sec, 0),
            reason=reason,
            created_at=now,
        )


@dataclass
class OutcomeRecord:
    """Запись аудита: наказание, проверка или отложенное удаление."""
    id: str
    chat_id: int
    action: str  # delete, warn, mute, kick, ban, verify_passed, verify_failed, deferred_delete ...
    target_user_id: Optional[int]
    source: str  # детектор, verification или sweep
    reason: str
    success: bool
    timestamp: float
    details: Optional[str] = None

    @classmethod
    def create(
        cls,
        chat_id: int,
        action: str,
        target_user_id: Optional[int],
        source: str,
        reason: str,
        success: bool = True,
        details: Optional[str] = None,
    ) -> "OutcomeRecord":
        """Создать запись с автоматическим ID и timestamp."""
        return cls(
            id=str(uuid.uuid4()),
            chat_id=chat_id,
            action=action,
            target_user_id=target_user_id,
            source=source,
            reason=reason,
            success=success,
            timestamp=time.time(),
            details=details,
        )


@dataclass
class SweepResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }
