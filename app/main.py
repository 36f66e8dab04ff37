# Copyright (c) 2025 sprouee
import threading

import redis
from telegram import Update

from app import config
from app.bot.handlers import build_application
from app.logging_config import log
from app.moderation.storage import PendingDeleteStore
from app.web.server import create_app, make_sweep_runner


def run_flask(redis_client: redis.Redis):
    flask_app = create_app(
        config.CRON_SECRET,
        make_sweep_runner(redis_client, config.TG_TOKEN),
        pending_counter=PendingDeleteStore(redis_client).count,
    )
    flask_app.run(host=config.FLASK_HOST, port=config.FLASK_PORT)


def main() -> None:
    if not config.TG_TOKEN:
        raise RuntimeError("Переменная окружения TG_TOKEN должна быть установлена")
    if not config.CRON_SECRET:
        log.warning("CRON_SECRET не задан: очистка через HTTP недоступна")

    redis_client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)

    flask_thread = threading.Thread(target=run_flask, args=(redis_client,), daemon=True)
    flask_thread.start()

    application = build_application(config.TG_TOKEN, redis_client)
    log.info(f"Бот запущен, HTTP на порту {config.FLASK_PORT}")
    application.run_polling(allowed_updates=Update.ALL_TYPES, drop_pending_updates=True)


if __name__ == "__main__":
    main()
