# Copyright (c) 2025 sprouee
import html
import re
from typing import Dict, Optional, Union

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhdw]?)\s*$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
_UNIT_NAMES = (
    (604800, "нед"),
    (86400, "д"),
    (3600, "ч"),
    (60, "мин"),
    (1, "сек"),
)


def parse_duration(value: Union[int, float, str, None], default: int = 0) -> int:
    """Переводит длительность ("90", "10m", "2h", "1w") в секунды.

    Некорректное значение заменяется на default.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return max(int(value), 0)
    if not isinstance(value, str):
        return default
    match = _DURATION_RE.match(value)
    if not match:
        return default
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit.lower()]


def format_duration(seconds: int) -> str:
    if seconds <= 0:
        return "0 сек"
    parts = []
    for size, name in _UNIT_NAMES:
        if seconds >= size:
            amount, seconds = divmod(seconds, size)
            parts.append(f"{amount} {name}")
    return " ".join(parts[:2])


def user_mention(user_id: int, name: Optional[str]) -> str:
    return f'<a href="tg://user?id={user_id}">{html.escape(name or "Участник")}</a>'


def render_template(template: str, values: Dict[str, str]) -> str:
    """Подставляет плейсхолдеры вида {name}; неизвестные остаются как есть."""
    result = template
    for key, value in values.items():
        result = result.replace("{" + key + "}", value)
    return result
