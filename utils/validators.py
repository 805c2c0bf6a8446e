"""
Модуль: `utils/validators.py`.
Назначение: Нормализация и проверка регистрационных данных пользователей.
"""

import json
import re

from flask_babel import gettext as _

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,20}$")
MIN_PASSWORD_LENGTH = 6


def normalize_email(value: str | None) -> str:
    """Возвращает email без пробелов по краям или пустую строку, если он некорректен."""
    if not value:
        return ""
    email = value.strip()
    if not EMAIL_RE.fullmatch(email):
        return ""
    return email


def validate_username(username: str) -> str | None:
    if not username:
        return _("Имя пользователя обязательно")
    if not USERNAME_RE.fullmatch(username):
        return _("Имя пользователя: от 3 до 20 символов, только латиница, цифры и подчёркивание")
    return None


def validate_password(password: str) -> str | None:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        return _("Пароль должен содержать не менее %(count)s символов", count=MIN_PASSWORD_LENGTH)
    return None


def _decode_json_text(raw):
    if isinstance(raw, str) and raw.strip()[:1] in ("[", "{"):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def parse_tags(raw) -> list[str]:
    """Теги приходят списком, JSON-массивом или строкой через запятую; пустые отбрасываются."""
    raw = _decode_json_text(raw)
    if raw is None:
        return []
    if isinstance(raw, str):
        items = raw.split(",")
    elif isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        return []
    return [str(tag).strip() for tag in items if str(tag).strip()]


def parse_print_settings(raw) -> dict[str, str]:
    """Настройки печати – отображение строка→строка; нестроковые значения приводятся к str."""
    raw = _decode_json_text(raw)
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items() if str(key).strip() and value not in (None, "")}
