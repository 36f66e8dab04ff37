# Copyright (c) 2025 sprouee
"""Security-related helpers.

Модули:
- data_protection: Псевдонимизация ID в логах и шифрование ответов проверок
"""
from app.security.data_protection import (
    generate_encryption_key,
    pseudonymize_chat_id,
    pseudonymize_id,
    safe_log_action,
    seal_value,
    unseal_value,
)

__all__ = [
    "generate_encryption_key",
    "pseudonymize_chat_id",
    "pseudonymize_id",
    "safe_log_action",
    "seal_value",
    "unseal_value",
]
