# Copyright (c) 2025 sprouee
"""Хранилища модерации в Redis.

Ключи:
- warns:{chat_id}:{user_id} - счётчик предупреждений (INCR + TTL)
- flood_ts:{chat_id}:{user_id} - ZSET timestamps сообщений пользователя
- dup:{chat_id}:{user_id}:{hash} - счётчик одинаковых сообщений
- pending_deletes - ZSET id отложенных удалений (score = delete_at)
- pending_delete:{id} - JSON отложенного удаления
- verification:{id} - JSON проверки нового участника
- verification_pending:{chat_id}:{user_id} - id единственной активной проверки
- verification_user:{user_id} - ZSET id проверок пользователя (score = created_at)

Все хранилища получают клиент Redis снаружи, чтобы в тестах подставлять fakeredis.
"""
import hashlib
import json
import time
from dataclasses import asdict
from typing import Callable, List, Optional

import redis

from app.logging_config import log
from app.moderation.models import PendingDelete, VerificationRecord
from app.security.data_protection import seal_value, unseal_value

# Префиксы ключей
WARNS_PREFIX = "warns:"
FLOOD_TIMESTAMPS_PREFIX = "flood_ts:"
DUPLICATE_PREFIX = "dup:"
PENDING_DELETES_KEY = "pending_deletes"
PENDING_DELETE_PREFIX = "pending_delete:"
VERIFICATION_PREFIX = "verification:"
VERIFICATION_PENDING_PREFIX = "verification_pending:"
VERIFICATION_USER_PREFIX = "verification_user:"

# Записи проверок живут неделю после создания
VERIFICATION_RECORD_TTL_SEC = 7 * 24 * 3600
# Сколько раз повторять транзакцию при конкурентной записи
MAX_TRANSACTION_RETRIES = 10


# ============================================================================
# COUNTER STORE
# ============================================================================

class CounterStore:
    """Счётчики с истечением срока (предупреждения)."""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def increment(self, key: str, ttl_sec: int) -> int:
        """Атомарно увеличить счётчик и продлить его TTL.

        Returns:
            Значение счётчика после увеличения
        """
        with self.redis.pipeline() as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl_sec)
            count, _ = pipe.execute()
        return int(count)

    def get(self, key: str) -> int:
        value = self.redis.get(key)
        return int(value) if value else 0

    def reset(self, key: str) -> None:
        self.redis.delete(key)


def warns_key(chat_id: int, user_id: int) -> str:
    """Получить ключ счётчика предупреждений пользователя."""
    return f"{WARNS_PREFIX}{chat_id}:{user_id}"


# ============================================================================
# MESSAGE WINDOW STORE (флуд и повторы)
# ============================================================================

class MessageWindowStore:
    """Скользящие окна сообщений пользователя для антиспама."""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def record_and_count(
        self,
        chat_id: int,
        user_id: int,
        message_id: int,
        window_sec: int,
        timestamp: Optional[float] = None,
    ) -> int:
        """Записать сообщение и вернуть число сообщений пользователя в окне.

        Запись, очистка старых значений и подсчёт идут одной транзакцией.
        """
        if timestamp is None:
            timestamp = time.time()

        key = f"{FLOOD_TIMESTAMPS_PREFIX}{chat_id}:{user_id}"
        with self.redis.pipeline() as pipe:
            # member уникален для сообщения, score = время
            pipe.zadd(key, {f"{message_id}:{timestamp}": timestamp})
            pipe.zremrangebyscore(key, "-inf", timestamp - window_sec)
            pipe.zcount(key, timestamp - window_sec, "+inf")
            pipe.expire(key, window_sec * 2)
            _, _, count, _ = pipe.execute()
        return int(count)

    def count_duplicate(self, chat_id: int, user_id: int, body: str, window_sec: int) -> int:
        """Увеличить счётчик одинаковых сообщений и вернуть его значение.

        Args:
            body: Нормализованный текст сообщения
        """
        digest = hashlib.sha1(body.encode("utf-8")).hexdigest()
        key = f"{DUPLICATE_PREFIX}{chat_id}:{user_id}:{digest}"
        with self.redis.pipeline() as pipe:
            # TTL ставится только новому ключу, INCR его сохраняет
            pipe.set(key, 0, nx=True, ex=window_sec)
            pipe.incr(key)
            _, count = pipe.execute()
        return int(count)


# ============================================================================
# PENDING DELETE STORE
# ============================================================================

class PendingDeleteStore:
    """Отложенные удаления сообщений."""

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _record_key(self, record_id: str) -> str:
        return f"{PENDING_DELETE_PREFIX}{record_id}"

    def add(self, record: PendingDelete) -> None:
        """Сохранить отложенное удаление."""
        with self.redis.pipeline() as pipe:
            pipe.set(self._record_key(record.id), json.dumps(asdict(record), ensure_ascii=False))
            pipe.zadd(PENDING_DELETES_KEY, {record.id: record.delete_at})
            pipe.execute()

    def due_ids(self, now: float, limit: int) -> List[str]:
        """ID записей, у которых delete_at <= now, от самых старых."""
        return self.redis.zrangebyscore(PENDING_DELETES_KEY, "-inf", now, start=0, num=limit)

    def claim(self, record_id: str) -> Optional[PendingDelete]:
        """Забрать запись для выполнения.

        Запись удаляется из индекса через ZREM; только вызов, для которого ZREM
        вернул 1, получает запись. Параллельная очистка её уже не увидит.
        """
        if not self.redis.zrem(PENDING_DELETES_KEY, record_id):
            return None
        with self.redis.pipeline() as pipe:
            pipe.get(self._record_key(record_id))
            pipe.delete(self._record_key(record_id))
            raw_value, _ = pipe.execute()
        if not raw_value:
            log.warning(f"Отложенное удаление {record_id} без данных")
            return None
        try:
            return PendingDelete(**json.loads(raw_value))
        except (json.JSONDecodeError, TypeError) as exc:
            log.warning(f"Некорректные данные отложенного удаления {record_id}: {exc}")
            return None

    def get(self, record_id: str) -> Optional[PendingDelete]:
        raw_value = self.redis.get(self._record_key(record_id))
        if not raw_value:
            return None
        return PendingDelete(**json.loads(raw_value))

    def count(self) -> int:
        return self.redis.zcard(PENDING_DELETES_KEY)


# ============================================================================
# VERIFICATION STORE
# ============================================================================

class VerificationConflict(Exception):
    """Не удалось записать проверку из-за конкурентных изменений."""


class VerificationStore:
    """Проверки новых участников.

    На пару (чат, пользователь) существует не больше одной активной проверки:
    индекс verification_pending занимается через SET NX.
    """

    def __init__(self, redis_client: redis.Redis):
        self.redis = redis_client

    def _record_key(self, record_id: str) -> str:
        return f"{VERIFICATION_PREFIX}{record_id}"

    def _pending_key(self, chat_id: int, user_id: int) -> str:
        return f"{VERIFICATION_PENDING_PREFIX}{chat_id}:{user_id}"

    def _user_key(self, user_id: int) -> str:
        return f"{VERIFICATION_USER_PREFIX}{user_id}"

    def _dump(self, record: VerificationRecord) -> str:
        data = asdict(record)
        data["challenge_data"] = {
            name: seal_value(value) if name == "answer" else value
            for name, value in record.challenge_data.items()
        }
        return json.dumps(data, ensure_ascii=False)

    def _load(self, raw_value: Optional[str]) -> Optional[VerificationRecord]:
        if not raw_value:
            return None
        try:
            data = json.loads(raw_value)
            challenge = data.get("challenge_data") or {}
            if "answer" in challenge:
                challenge["answer"] = unseal_value(challenge["answer"]) or ""
            data["challenge_data"] = challenge
            return VerificationRecord(**data)
        except (json.JSONDecodeError, TypeError) as exc:
            log.warning(f"Некорректные данные проверки: {exc}")
            return None

    def try_create(self, record: VerificationRecord) -> Optional[str]:
        """Создать проверку, если у пользователя нет активной.

        Returns:
            None если запись создана, иначе id уже существующей активной проверки
        """
        pending_key = self._pending_key(record.chat_id, record.user_id)
        ttl = max(int(record.expires_at - record.created_at), 1) + 60
        if not self.redis.set(pending_key, record.id, nx=True, ex=ttl):
            return self.redis.get(pending_key)

        with self.redis.pipeline() as pipe:
            pipe.set(self._record_key(record.id), self._dump(record), ex=VERIFICATION_RECORD_TTL_SEC)
            pipe.zadd(self._user_key(record.user_id), {record.id: record.created_at})
            pipe.expire(self._user_key(record.user_id), VERIFICATION_RECORD_TTL_SEC)
            pipe.execute()
        return None

    def get(self, record_id: str) -> Optional[VerificationRecord]:
        return self._load(self.redis.get(self._record_key(record_id)))

    def get_pending(self, chat_id: int, user_id: int) -> Optional[VerificationRecord]:
        """Активная проверка пользователя в чате (возможно, уже просроченная)."""
        record_id = self.redis.get(self._pending_key(chat_id, user_id))
        if not record_id:
            return None
        record = self.get(record_id)
        if record is None or not record.is_pending:
            return None
        return record

    def open_in_chat(self, chat_id: int, user_id: int) -> List[VerificationRecord]:
        """Все незакрытые проверки пользователя в чате, новые первыми.

        Кроме записи из индекса сюда попадают записи, чей индекс уже истёк
        по TTL: их статус остаётся pending, пока их явно не закроют.
        """
        candidates = [self.redis.get(self._pending_key(chat_id, user_id))]
        candidates.extend(self.redis.zrevrange(self._user_key(user_id), 0, -1))
        records = []
        for record_id in dict.fromkeys(filter(None, candidates)):
            record = self.get(record_id)
            if record is not None and record.is_pending and record.chat_id == chat_id:
                records.append(record)
        return records

    def latest_pending_for_user(self, user_id: int, types: Optional[List[str]] = None) -> Optional[VerificationRecord]:
        """Самая свежая активная проверка пользователя во всех группах.

        Нужна для ответов в личке, где чат проверки неизвестен.
        """
        for record_id in self.redis.zrevrange(self._user_key(user_id), 0, 20):
            record = self.get(record_id)
            if record is None or not record.is_pending:
                continue
            if types and record.type not in types:
                continue
            return record
        return None

    def update(
        self,
        record_id: str,
        mutate: Callable[[VerificationRecord], Optional[VerificationRecord]],
    ) -> Optional[VerificationRecord]:
        """Изменить проверку через compare-and-set.

        mutate получает текущую запись и возвращает новую версию или None,
        если менять ничего не нужно. При конкурентной записи попытка повторяется
        с перечитанной записью.

        Returns:
            Сохранённая запись, текущая запись если mutate вернул None,
            или None если записи нет
        """
        key = self._record_key(record_id)
        for _ in range(MAX_TRANSACTION_RETRIES):
            with self.redis.pipeline() as pipe:
                try:
                    pipe.watch(key)
                    current = self._load(pipe.get(key))
                    if current is None:
                        return None
                    pending_key = self._pending_key(current.chat_id, current.user_id)
                    pipe.watch(pending_key)
                    pending_id = pipe.get(pending_key)
                    ttl = pipe.ttl(key)

                    updated = mutate(current)
                    if updated is None:
                        return current

                    pipe.multi()
                    pipe.set(key, self._dump(updated), ex=ttl if ttl and ttl > 0 else VERIFICATION_RECORD_TTL_SEC)
                    # Индекс снимаем только если он указывает на эту запись
                    if not updated.is_pending and pending_id == updated.id:
                        pipe.delete(pending_key)
                    pipe.execute()
                    return updated
                except redis.WatchError:
                    continue
        raise VerificationConflict(f"Не удалось обновить проверку {record_id}")

    def set_message_id(self, record_id: str, message_id: int) -> None:
        def _apply(record: VerificationRecord) -> VerificationRecord:
            record.message_id = message_id
            return record

        self.update(record_id, _apply)
