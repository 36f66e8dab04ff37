# Copyright (c) 2025 sprowii
"""Защита персональных данных.

Модуль обеспечивает:
- Псевдонимизацию user_id/chat_id в логах (HMAC с солью)
- Шифрование ответов на проверки, хранящихся в Redis

При утечке Redis злоумышленник не получит правильные ответы на активные проверки,
а в логах приложения нет реальных идентификаторов.
"""
import base64
import hashlib
import hmac
import os
import re
import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from app.logging_config import log

SEALED_PREFIX = "enc:"


# ============================================================================
# КОНФИГУРАЦИЯ
# ============================================================================

_HASH_SALT = os.getenv("DATA_HASH_SALT")
if not _HASH_SALT:
    log.warning("DATA_HASH_SALT не задан, псевдонимы в логах будут меняться после рестарта")
    _HASH_SALT = secrets.token_hex(32)

_ENCRYPTION_KEY = os.getenv("DATA_ENCRYPTION_KEY")
_fernet: Optional[Fernet] = None

if _ENCRYPTION_KEY:
    try:
        # Ключ уже в формате Fernet
        _fernet = Fernet(_ENCRYPTION_KEY.encode())
    except ValueError:
        # Обычный пароль, деривируем ключ
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=_HASH_SALT.encode()[:16],
            iterations=100000,
        )
        _fernet = Fernet(base64.urlsafe_b64encode(kdf.derive(_ENCRYPTION_KEY.encode())))


# ============================================================================
# ПСЕВДОНИМИЗАЦИЯ
# ============================================================================

def pseudonymize_id(user_id: int, context: str = "default") -> str:
    """Псевдоним для user_id в формате "u_<hash[:16]>"."""
    message = f"{context}:{user_id}".encode()
    h = hmac.new(_HASH_SALT.encode(), message, hashlib.sha256)
    return f"u_{h.hexdigest()[:16]}"


def pseudonymize_chat_id(chat_id: int) -> str:
    return pseudonymize_id(chat_id, context="chat")


def safe_log_action(
    action_type: str,
    target_user_id: Optional[int],
    chat_id: int,
    reason: Optional[str] = None,
    success: bool = True,
) -> str:
    """Формирует строку для лога действия модерации без реальных ID."""
    target = pseudonymize_id(target_user_id) if target_user_id else "-"
    chat = pseudonymize_chat_id(chat_id)
    # @username тоже персональные данные
    safe_reason = re.sub(r"@\w+", "@***", reason)[:50] if reason else ""
    status = "ok" if success else "failed"
    return f"[{action_type}] target={target} chat={chat} status={status} reason={safe_reason}"


# ============================================================================
# ШИФРОВАНИЕ ОТВЕТОВ
# ============================================================================

def seal_value(value: str) -> str:
    """Шифрует строку для хранения в Redis.

    Без DATA_ENCRYPTION_KEY значение сохраняется как есть.
    """
    if not _fernet:
        return value
    return SEALED_PREFIX + _fernet.encrypt(value.encode()).decode()


def unseal_value(value: Optional[str]) -> Optional[str]:
    """Расшифровывает значение, сохранённое через seal_value.

    Returns:
        Исходная строка или None, если расшифровать не удалось
    """
    if not value or not value.startswith(SEALED_PREFIX):
        return value
    if not _fernet:
        log.warning("Попытка расшифровать данные без ключа шифрования")
        return None
    try:
        return _fernet.decrypt(value[len(SEALED_PREFIX):].encode()).decode()
    except InvalidToken as exc:
        log.error(f"Ошибка расшифровки: {exc}")
        return None


def generate_encryption_key() -> str:
    """Генерирует новый ключ Fernet для DATA_ENCRYPTION_KEY."""
    return Fernet.generate_key().decode()
