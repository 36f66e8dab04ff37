# Copyright (c) 2025 sprouee
from telegram.ext import CallbackContext

from app.logging_config import log
from app.moderation.controller import ModerationController


async def sweep_job(context: CallbackContext):
    """Очистка отложенных удалений в режиме polling, без внешнего cron."""
    controller: ModerationController = context.application.bot_data["moderation"]
    result = await controller.sweep()
    if result.processed:
        log.info(f"Плановая очистка: {result.as_dict()}")
