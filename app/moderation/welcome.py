# Copyright (c) 2025 sprowii
"""Приветствие участников, прошедших проверку.

Плейсхолдеры шаблона: {user_name}, {user_id}, {group_name}, {mention}.
Автоудаление приветствия идёт через отложенные удаления, без asyncio.sleep:
процесс может завершиться раньше, чем истечёт задержка.
"""
import html
import time
from typing import Callable, Optional

from telegram.error import TelegramError

from app.logging_config import log
from app.moderation.policy import WelcomePolicy
from app.moderation.scheduler import DeletionScheduler
from app.moderation.transport import TelegramTransport
from app.security.data_protection import pseudonymize_chat_id, pseudonymize_id
from app.utils.text import render_template, user_mention


def format_welcome_message(
    template: str,
    user_id: int,
    first_name: Optional[str],
    username: Optional[str],
    chat_title: Optional[str],
) -> str:
    """Подставить данные участника в шаблон приветствия.

    Returns:
        Текст с HTML-экранированием подставленных значений
    """
    if username:
        display = f"@{username}"
    else:
        display = first_name or "Участник"

    return render_template(template, {
        "user_name": html.escape(display),
        "user_id": str(user_id),
        "group_name": html.escape(chat_title or "Чат"),
        "mention": user_mention(user_id, first_name or username),
    })


class WelcomeFlow:
    def __init__(
        self,
        transport: TelegramTransport,
        scheduler: DeletionScheduler,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.transport = transport
        self.scheduler = scheduler
        self.clock = clock or time.time

    async def greet(
        self,
        chat_id: int,
        user_id: int,
        policy: WelcomePolicy,
        first_name: Optional[str] = None,
        username: Optional[str] = None,
        chat_title: Optional[str] = None,
    ) -> Optional[int]:
        """Отправить приветствие в группу.

        Returns:
            message_id приветствия или None, если оно выключено или не отправилось
        """
        if not policy.enabled:
            return None

        text = format_welcome_message(policy.message, user_id, first_name, username, chat_title)
        try:
            message_id = await self.transport.send_message(chat_id, text)
        except TelegramError as exc:
            log.error(f"Ошибка отправки приветствия в чат {pseudonymize_chat_id(chat_id)}: {exc}")
            return None

        if policy.delete_after > 0:
            self.scheduler.schedule(chat_id, message_id, policy.delete_after, "welcome", now=self.clock())

        log.info(f"Приветствие отправлено пользователю {pseudonymize_id(user_id)} в чате {pseudonymize_chat_id(chat_id)}")
        return message_id
