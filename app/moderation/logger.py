# Copyright (c) 2025 sprouee
"""Журнал исходов модерации.

Каждое наказание, результат проверки и отложенное удаление записывается в
Redis (modlog:{chat_id}, новые записи в начале, не больше 1000) и в лог приложения.
Если в политике задан logChannelId, запись пересылается в лог-канал.

БЕЗОПАСНОСТЬ:
- В лог приложения попадают псевдонимы ID
- В лог-канал отправляются реальные ID (для работы модераторов)
"""
import html
import json
from dataclasses import asdict
from datetime import datetime
from typing import List, Optional

import redis
from telegram.error import TelegramError

from app.logging_config import log
from app.moderation.models import OutcomeRecord
from app.moderation.transport import TelegramTransport
from app.security.data_protection import safe_log_action

MODLOG_PREFIX = "modlog:"

# Максимальное количество записей в журнале группы
MAX_MODLOG_ENTRIES = 1000

ACTION_ICONS = {
    "warn": "⚠️",
    "mute": "🔇",
    "ban": "🚫",
    "kick": "👢",
    "delete": "🗑",
    "delete_scheduled": "⏳",
    "verify_started": "🔐",
    "verify_passed": "✅",
    "verify_failed": "⛔",
    "verify_expired": "⌛",
    "deferred_delete": "🧹",
}


class OutcomeLog:
    def __init__(self, redis_client: redis.Redis, transport: Optional[TelegramTransport] = None):
        self.redis = redis_client
        self.transport = transport

    def _modlog_key(self, chat_id: int) -> str:
        return f"{MODLOG_PREFIX}{chat_id}"

    def save(self, record: OutcomeRecord) -> None:
        """Сохранить запись в Redis и в лог приложения.

        Ошибки Redis не пробрасываются: журнал не должен ломать модерацию.
        """
        log.info(safe_log_action(
            record.action,
            record.target_user_id,
            record.chat_id,
            record.reason,
            record.success,
        ))
        key = self._modlog_key(record.chat_id)
        try:
            with self.redis.pipeline() as pipe:
                pipe.lpush(key, json.dumps(asdict(record), ensure_ascii=False))
                pipe.ltrim(key, 0, MAX_MODLOG_ENTRIES - 1)
                pipe.execute()
        except redis.RedisError as exc:
            log.error(f"Не удалось сохранить запись журнала модерации: {exc}")

    async def record(self, record: OutcomeRecord, log_channel_id: Optional[int] = None) -> None:
        """Сохранить запись и, если нужно, переслать её в лог-канал."""
        self.save(record)
        if log_channel_id and self.transport is not None:
            try:
                await self.transport.send_message(log_channel_id, format_outcome(record))
            except TelegramError as exc:
                log.warning(f"Не удалось переслать запись в лог-канал: {exc}")

    def recent(self, chat_id: int, limit: int = 20, user_id: Optional[int] = None) -> List[OutcomeRecord]:
        """Последние записи журнала группы.

        Args:
            chat_id: ID чата
            limit: Максимальное количество записей
            user_id: Если указан, фильтровать по пользователю
        """
        fetch_limit = limit * 5 if user_id else limit
        records = []
        for raw in self.redis.lrange(self._modlog_key(chat_id), 0, fetch_limit - 1):
            try:
                entry = OutcomeRecord(**json.loads(raw))
            except (json.JSONDecodeError, TypeError) as exc:
                log.warning(f"Некорректная запись журнала модерации: {exc}")
                continue
            if user_id is not None and entry.target_user_id != user_id:
                continue
            records.append(entry)
            if len(records) >= limit:
                break
        return records


def format_outcome(record: OutcomeRecord) -> str:
    """Форматировать запись для отправки в лог-канал."""
    icon = ACTION_ICONS.get(record.action, "📋")
    time_str = datetime.fromtimestamp(record.timestamp).strftime("%d.%m.%Y %H:%M:%S")
    lines = [
        f"{icon} <b>{html.escape(record.action)}</b> ({html.escape(record.source)})",
        "",
    ]
    if record.target_user_id:
        lines.append(f"👤 Пользователь: <code>{record.target_user_id}</code>")
    lines.extend([
        f"📝 Причина: {html.escape(record.reason) if record.reason else 'Не указана'}",
        f"🕐 Время: {time_str}",
        f"💬 Чат: <code>{record.chat_id}</code>",
    ])
    if not record.success:
        lines.append("❗ Действие выполнено не полностью")
    if record.details:
        lines.append(f"ℹ️ {html.escape(record.details)}")
    return "\n".join(lines)
