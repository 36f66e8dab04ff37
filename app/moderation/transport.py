# Copyright (c) 2025 sprowii
"""Исходящие вызовы Telegram Bot API.

Тонкая обёртка над telegram.Bot: методы пробрасывают TelegramError,
решение что делать с ошибкой принимает вызывающий код.
"""
import io
import time
from typing import Optional

from telegram import Bot, ChatPermissions, InlineKeyboardMarkup
from telegram.constants import ParseMode

# Права, которые снимаются на время проверки или мута
_SEND_PERMISSION_FIELDS = (
    "can_send_messages",
    "can_send_audios",
    "can_send_documents",
    "can_send_photos",
    "can_send_videos",
    "can_send_video_notes",
    "can_send_voice_notes",
    "can_send_polls",
    "can_send_other_messages",
    "can_add_web_page_previews",
)

MUTED_PERMISSIONS = ChatPermissions(**{name: False for name in _SEND_PERMISSION_FIELDS})
SEND_PERMISSIONS = ChatPermissions(**{name: True for name in _SEND_PERMISSION_FIELDS})

MEMBER_STATUSES = ("member", "administrator", "creator")
ADMIN_STATUSES = ("administrator", "creator")


class TelegramTransport:
    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_message(
        self,
        chat_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> int:
        """Отправить HTML сообщение. Возвращает message_id."""
        sent = await self.bot.send_message(
            chat_id=chat_id,
            text=text,
            reply_markup=reply_markup,
            parse_mode=ParseMode.HTML,
        )
        return sent.message_id

    async def send_photo(
        self,
        chat_id: int,
        image: bytes,
        caption: str,
        filename: str = "captcha.png",
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> int:
        buffer = io.BytesIO(image)
        buffer.name = filename
        sent = await self.bot.send_photo(
            chat_id=chat_id,
            photo=buffer,
            caption=caption,
            reply_markup=reply_markup,
            parse_mode=ParseMode.HTML,
        )
        return sent.message_id

    async def send_animation(self, chat_id: int, animation: bytes, caption: str) -> int:
        buffer = io.BytesIO(animation)
        buffer.name = "captcha.gif"
        sent = await self.bot.send_animation(
            chat_id=chat_id,
            animation=buffer,
            caption=caption,
            parse_mode=ParseMode.HTML,
        )
        return sent.message_id

    async def delete_message(self, chat_id: int, message_id: int) -> bool:
        return await self.bot.delete_message(chat_id=chat_id, message_id=message_id)

    async def restrict(self, chat_id: int, user_id: int, until: Optional[float] = None) -> bool:
        """Запретить пользователю писать до указанного момента (unix time)."""
        return await self.bot.restrict_chat_member(
            chat_id=chat_id,
            user_id=user_id,
            permissions=MUTED_PERMISSIONS,
            until_date=int(until) if until else None,
        )

    async def unrestrict(self, chat_id: int, user_id: int) -> bool:
        return await self.bot.restrict_chat_member(
            chat_id=chat_id,
            user_id=user_id,
            permissions=SEND_PERMISSIONS,
        )

    async def kick(self, chat_id: int, user_id: int) -> bool:
        """Выгнать пользователя без бана: бан и сразу разбан."""
        await self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id, until_date=int(time.time()) + 60)
        return await self.bot.unban_chat_member(chat_id=chat_id, user_id=user_id, only_if_banned=True)

    async def ban(self, chat_id: int, user_id: int) -> bool:
        return await self.bot.ban_chat_member(chat_id=chat_id, user_id=user_id)

    async def get_member_status(self, chat_id, user_id: int) -> str:
        """Статус пользователя в чате или канале (member, administrator, left ...)."""
        member = await self.bot.get_chat_member(chat_id=chat_id, user_id=user_id)
        return str(member.status)

    async def answer_callback(self, callback_query_id: str, text: str, show_alert: bool = False) -> bool:
        return await self.bot.answer_callback_query(
            callback_query_id=callback_query_id,
            text=text,
            show_alert=show_alert,
        )
