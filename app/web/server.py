# Copyright (c) 2025 sprouee
"""HTTP сторона бота: страница здоровья и триггер очистки для внешнего cron.

POST /cron/process-deletes
    Authorization: Bearer <CRON_SECRET>
    -> {"success": true, "message": "...", "processed": N, "succeeded": N, "failed": N}
"""
import asyncio
import secrets
from typing import Callable, Optional

import redis
from flask import Flask, jsonify, render_template_string, request
from telegram import Bot
from telegram.error import TelegramError

from app.logging_config import log
from app.moderation.logger import OutcomeLog
from app.moderation.models import SweepResult
from app.moderation.scheduler import DeletionScheduler
from app.moderation.storage import PendingDeleteStore
from app.moderation.transport import TelegramTransport

SweepRunner = Callable[[], SweepResult]

HTML_TEMPLATE = """
<!DOCTYPE html>
<html lang="ru">
<head>
    <meta charset="UTF-8">
    <title>groupguard</title>
</head>
<body>
    <h1>Бот модерации запущен</h1>
    <p>Отложенных удалений в очереди: {{ pending }}</p>
</body>
</html>
""".strip()


def make_sweep_runner(redis_client: redis.Redis, token: str) -> SweepRunner:
    """Очистка для вызова из потока Flask.

    Каждый вызов открывает свой Bot и свой event loop: у потока Flask нет
    общего цикла с приложением PTB.
    """

    async def _sweep() -> SweepResult:
        async with Bot(token) as bot:
            transport = TelegramTransport(bot)
            scheduler = DeletionScheduler(
                PendingDeleteStore(redis_client),
                transport,
                OutcomeLog(redis_client, transport),
            )
            return await scheduler.sweep()

    def run() -> SweepResult:
        return asyncio.run(_sweep())

    return run


def _authorized(cron_secret: Optional[str]) -> bool:
    if not cron_secret:
        return False
    provided = request.headers.get("Authorization", "")
    return secrets.compare_digest(provided, f"Bearer {cron_secret}")


def create_app(
    cron_secret: Optional[str],
    sweep_runner: SweepRunner,
    pending_counter: Optional[Callable[[], int]] = None,
) -> Flask:
    """Собрать Flask приложение.

    Args:
        cron_secret: Общий секрет внешнего cron; без него очистка недоступна
        sweep_runner: Синхронный вызов очистки
        pending_counter: Размер очереди для страницы здоровья
    """
    flask_app = Flask(__name__)

    @flask_app.route("/")
    def home():
        pending = "?"
        if pending_counter is not None:
            try:
                pending = pending_counter()
            except redis.RedisError as exc:
                log.warning(f"Не удалось получить размер очереди удалений: {exc}")
        return render_template_string(HTML_TEMPLATE, pending=pending)

    @flask_app.route("/cron/process-deletes", methods=["POST"])
    def process_deletes():
        if not _authorized(cron_secret):
            log.warning("Запрос очистки без корректного секрета")
            return jsonify({"success": False, "error": "Unauthorized"}), 401

        try:
            result = sweep_runner()
        except (redis.RedisError, TelegramError) as exc:
            log.error(f"Ошибка очистки отложенных удалений: {exc}", exc_info=True)
            return jsonify({"success": False, "error": str(exc)}), 500

        payload = {
            "success": True,
            "message": f"Processed {result.processed} pending deletes",
        }
        payload.update(result.as_dict())
        return jsonify(payload)

    @flask_app.errorhandler(405)
    def method_not_allowed(_error):
        return jsonify({"success": False, "error": "Method not allowed"}), 405

    return flask_app
