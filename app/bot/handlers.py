# Copyright (c) 2025 sprouee
import html

import redis
from telegram import Update
from telegram.constants import ChatType, ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from app import config
from app.bot.jobs import sweep_job
from app.logging_config import log
from app.moderation.controller import ModerationController
from app.moderation.logger import ACTION_ICONS
from app.moderation.models import InboundMessage
from app.moderation.verification import CHANNEL_CALLBACK_PREFIX, AnswerStatus

GROUP_TYPES = (ChatType.GROUP, ChatType.SUPERGROUP)

START_TEXT = (
    "🛡 Я бот модерации групп.\n\n"
    "Если группа попросила пройти проверку, отправьте ответ на задание сюда."
)


def _controller(context: ContextTypes.DEFAULT_TYPE) -> ModerationController:
    return context.application.bot_data["moderation"]


# ============================================================================
# СООБЩЕНИЯ ГРУППЫ
# ============================================================================

async def handle_group_message(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    if not message or message.chat.type not in GROUP_TYPES:
        return
    inbound = InboundMessage.from_telegram(message)
    if inbound is None:
        return
    await _controller(context).on_message(inbound)


async def handle_new_members(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    if not message or not message.new_chat_members:
        return
    chat = message.chat
    for user in message.new_chat_members:
        await _controller(context).on_join(
            chat.id,
            user.id,
            first_name=user.first_name,
            username=user.username,
            chat_title=chat.title,
            is_bot=user.is_bot,
        )


# ============================================================================
# ПРОВЕРКА НОВЫХ УЧАСТНИКОВ
# ============================================================================

async def handle_private_answer(update: Update, context: ContextTypes.DEFAULT_TYPE):
    message = update.effective_message
    user = update.effective_user
    if not message or not user or not message.text:
        return
    result = await _controller(context).on_private_answer(
        user.id,
        message.text,
        first_name=user.first_name,
        username=user.username,
    )
    await message.reply_text(result.message)


async def handle_channel_callback(update: Update, context: ContextTypes.DEFAULT_TYPE):
    query = update.callback_query
    if not query or not query.data:
        return
    user = query.from_user
    controller = _controller(context)
    result = await controller.on_channel_callback(
        query.data,
        user.id,
        first_name=user.first_name,
        username=user.username,
    )
    try:
        await controller.transport.answer_callback(
            query.id,
            result.message,
            show_alert=result.status != AnswerStatus.WRONG,
        )
    except TelegramError as exc:
        log.warning(f"Не удалось ответить на нажатие кнопки проверки: {exc}")


async def cmd_start(update: Update, context: ContextTypes.DEFAULT_TYPE):
    if update.message:
        await update.message.reply_text(START_TEXT)


# ============================================================================
# КОМАНДЫ АДМИНИСТРАТОРОВ
# ============================================================================

async def _require_admin(update: Update, context: ContextTypes.DEFAULT_TYPE) -> bool:
    message = update.effective_message
    user = update.effective_user
    if not message or not user:
        return False
    if message.chat.type not in GROUP_TYPES:
        await message.reply_text("⚠️ Команды модерации работают только в группах.")
        return False
    if not await _controller(context).is_admin(message.chat.id, user.id):
        await message.reply_text("⚠️ Эта команда доступна только администраторам чата.")
        return False
    return True


async def cmd_unwarn(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """/unwarn ответом на сообщение: сбросить предупреждения автора."""
    if not await _require_admin(update, context):
        return
    message = update.effective_message
    target = message.reply_to_message.from_user if message.reply_to_message else None
    if target is None:
        await message.reply_text("Ответьте этой командой на сообщение пользователя.")
        return
    try:
        _controller(context).reset_warns(message.chat.id, target.id)
    except redis.RedisError as exc:
        log.error(f"Не удалось сбросить предупреждения: {exc}")
        await message.reply_text("⚠️ Не удалось сбросить предупреждения, попробуйте позже.")
        return
    await message.reply_text(
        f"✅ Предупреждения {html.escape(target.first_name or 'участника')} сброшены.",
        parse_mode=ParseMode.HTML,
    )


async def cmd_modlog(update: Update, context: ContextTypes.DEFAULT_TYPE):
    """/modlog: последние 10 записей журнала модерации."""
    if not await _require_admin(update, context):
        return
    message = update.effective_message
    entries = _controller(context).get_mod_log(message.chat.id, limit=10)
    if not entries:
        await message.reply_text("📋 Журнал модерации пуст.")
        return
    lines = ["📋 <b>Журнал модерации</b>", ""]
    for entry in entries:
        icon = ACTION_ICONS.get(entry.action, "📋")
        target = f" <code>{entry.target_user_id}</code>" if entry.target_user_id else ""
        lines.append(f"{icon} {html.escape(entry.action)}{target}: {html.escape(entry.reason or '')}")
    await message.reply_text("\n".join(lines), parse_mode=ParseMode.HTML)


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE):
    log.error(f"Ошибка обработки обновления: {context.error}", exc_info=context.error)


# ============================================================================
# СБОРКА ПРИЛОЖЕНИЯ
# ============================================================================

async def _post_init(application: Application):
    controller: ModerationController = application.bot_data["moderation"]
    controller.verification.bot_username = application.bot.username
    log.info(f"Бот @{application.bot.username} готов к работе")


def build_application(token: str, redis_client: redis.Redis) -> Application:
    application = Application.builder().token(token).post_init(_post_init).build()
    application.bot_data["moderation"] = ModerationController(redis_client, application.bot)
    application.add_error_handler(error_handler)

    application.add_handler(CommandHandler("start", cmd_start, filters=filters.ChatType.PRIVATE))
    application.add_handler(CommandHandler("unwarn", cmd_unwarn))
    application.add_handler(CommandHandler("modlog", cmd_modlog))

    application.add_handler(CallbackQueryHandler(
        handle_channel_callback,
        pattern=f"^{CHANNEL_CALLBACK_PREFIX}",
    ))
    application.add_handler(MessageHandler(filters.StatusUpdate.NEW_CHAT_MEMBERS, handle_new_members))
    application.add_handler(MessageHandler(
        filters.ChatType.PRIVATE & filters.TEXT & ~filters.COMMAND,
        handle_private_answer,
    ))
    # Прочие команды в группе тоже проверяются: их может удалять автоудаление
    application.add_handler(MessageHandler(
        filters.ChatType.GROUPS & ~filters.StatusUpdate.ALL,
        handle_group_message,
    ))

    if config.SWEEP_INTERVAL_SEC > 0:
        application.job_queue.run_repeating(sweep_job, interval=config.SWEEP_INTERVAL_SEC, first=config.SWEEP_INTERVAL_SEC)
        log.info(f"Очистка отложенных удалений каждые {config.SWEEP_INTERVAL_SEC} сек")
    return application
