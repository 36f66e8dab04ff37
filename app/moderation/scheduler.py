# Copyright (c) 2025 sprowii
"""Отложенные удаления сообщений.

В процессе нет таймеров: всё, что должно произойти позже, сохраняется в Redis,
а внешний cron периодически вызывает sweep(). Запись забирается из хранилища
до попытки удаления, поэтому неудачное удаление не повторяется и одну запись
не выполнят две параллельные очистки.
"""
import time
from typing import Optional

import redis
from telegram.error import TelegramError

from app.logging_config import log
from app.moderation.logger import OutcomeLog
from app.moderation.models import OutcomeRecord, PendingDelete, SweepResult
from app.moderation.storage import PendingDeleteStore
from app.moderation.transport import TelegramTransport
from app.security.data_protection import pseudonymize_chat_id

SWEEP_BATCH_SIZE = 100


class DeletionScheduler:
    def __init__(
        self,
        store: PendingDeleteStore,
        transport: TelegramTransport,
        outcome_log: Optional[OutcomeLog] = None,
        batch_size: int = SWEEP_BATCH_SIZE,
    ):
        self.store = store
        self.transport = transport
        self.outcome_log = outcome_log
        self.batch_size = batch_size

    def schedule(
        self,
        chat_id: int,
        message_id: int,
        delay_seconds: float,
        reason: str,
        now: Optional[float] = None,
    ) -> Optional[PendingDelete]:
        """Запланировать удаление сообщения через delay_seconds.

        Returns:
            Созданная запись или None, если сохранить не удалось
        """
        record = PendingDelete.create(chat_id, message_id, delay_seconds, reason, now=now)
        try:
            self.store.add(record)
        except redis.RedisError as exc:
            log.error(f"Не удалось запланировать удаление {message_id} в чате {pseudonymize_chat_id(chat_id)}: {exc}")
            return None
        log.debug(f"Удаление {message_id} запланировано на {record.delete_at:.0f} ({reason})")
        return record

    async def sweep(self, now: Optional[float] = None) -> SweepResult:
        """Выполнить все удаления, срок которых наступил.

        Args:
            now: Текущее время (по умолчанию time.time())

        Returns:
            SweepResult со счётчиками processed/succeeded/failed
        """
        if now is None:
            now = time.time()

        result = SweepResult()
        for record_id in self.store.due_ids(now, self.batch_size):
            record = self.store.claim(record_id)
            if record is None:
                # Забрала параллельная очистка
                continue

            result.processed += 1
            success = await self._delete(record)
            if success:
                result.succeeded += 1
            else:
                result.failed += 1

            if self.outcome_log is not None:
                self.outcome_log.save(OutcomeRecord.create(
                    chat_id=record.chat_id,
                    action="deferred_delete",
                    target_user_id=None,
                    source="sweep",
                    reason=record.reason,
                    success=success,
                    details=f"message_id={record.message_id}",
                ))

        if result.processed:
            log.info(
                f"Очистка: обработано {result.processed}, "
                f"удалено {result.succeeded}, ошибок {result.failed}"
            )
        return result

    async def _delete(self, record: PendingDelete) -> bool:
        try:
            return bool(await self.transport.delete_message(record.chat_id, record.message_id))
        except TelegramError as exc:
            log.warning(
                f"Не удалось удалить сообщение {record.message_id} "
                f"в чате {pseudonymize_chat_id(record.chat_id)}: {exc}"
            )
            return False
