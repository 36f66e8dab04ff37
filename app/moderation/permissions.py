# Copyright (c) 2025 sprowii
"""Проверка прав администратора с кэшированием.

Статус администратора кэшируется на 5 минут, чтобы не дёргать getChatMember
на каждое сообщение группы.
"""
import time
from typing import Callable, Dict, Optional, Tuple

from telegram.error import TelegramError

from app.logging_config import log
from app.moderation.transport import ADMIN_STATUSES, TelegramTransport
from app.security.data_protection import pseudonymize_chat_id, pseudonymize_id

# Время жизни кэша в секундах (5 минут)
ADMIN_CACHE_TTL = 300


class AdminCache:
    def __init__(self, transport: TelegramTransport, clock: Optional[Callable[[], float]] = None):
        self.transport = transport
        self.clock = clock or time.time
        # {(chat_id, user_id): (is_admin, timestamp)}
        self._cache: Dict[Tuple[int, int], Tuple[bool, float]] = {}
        self._last_prune = self.clock()

    def get_cached(self, chat_id: int, user_id: int) -> Optional[bool]:
        """Закэшированный статус или None, если кэш отсутствует или истёк."""
        key = (chat_id, user_id)
        cached = self._cache.get(key)
        if cached is None:
            return None

        is_admin, timestamp = cached
        if self.clock() - timestamp >= ADMIN_CACHE_TTL:
            del self._cache[key]
            return None
        return is_admin

    def prune(self) -> int:
        """Удалить истёкшие записи. Возвращает количество удалённых."""
        now = self.clock()
        expired = [key for key, (_, timestamp) in self._cache.items() if now - timestamp >= ADMIN_CACHE_TTL]
        for key in expired:
            del self._cache[key]
        self._last_prune = now
        return len(expired)

    async def is_admin(self, chat_id: int, user_id: int) -> bool:
        """Проверить, является ли пользователь администратором чата.

        При ошибке Telegram пользователь считается обычным участником,
        результат ошибки не кэшируется.
        """
        cached = self.get_cached(chat_id, user_id)
        if cached is not None:
            return cached

        try:
            status = await self.transport.get_member_status(chat_id, user_id)
        except TelegramError as exc:
            log.error(
                f"Ошибка проверки статуса админа для {pseudonymize_id(user_id)} "
                f"в чате {pseudonymize_chat_id(chat_id)}: {exc}"
            )
            return False

        is_admin = status in ADMIN_STATUSES
        now = self.clock()
        if now - self._last_prune >= ADMIN_CACHE_TTL:
            self.prune()
        self._cache[(chat_id, user_id)] = (is_admin, now)
        return is_admin
