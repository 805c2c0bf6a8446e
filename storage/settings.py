"""
Модуль: `storage/settings.py`.
Назначение: Настройки сайта, общие для обоих хранилищ: значения по умолчанию,
схема для панели администратора, приведение типов при сохранении и чтении.
"""

import json

DEFAULT_SETTINGS = {
    # Сайт
    "site_name": "Community 3D Model Vault",
    "site_tagline": "Share. Print. Play.",
    "site_description": "A community-driven platform for sharing 3D printable models",
    "contact_email": "admin@example.com",
    "maintenance_mode": False,
    "maintenance_message": "We are currently performing maintenance. Please check back soon.",
    # Регистрация и пользователи
    "allow_registration": True,
    "require_admin_approval": False,
    "require_email_verification": False,
    "default_user_role": "user",
    # Загрузки
    "max_file_size": 50,
    "max_files_per_model": 10,
    "max_photos_per_model": 5,
    "allowed_extensions": "stl,obj",
    # Функции
    "enable_downloads": True,
    "enable_likes": True,
    "enable_favorites": True,
    "enable_comments": False,
    "enable_user_profiles": True,
    # Отображение
    "items_per_page": 12,
    "default_license": "CC BY-NC",
    "default_sort": "newest",
    "show_download_count": True,
    "show_like_count": True,
    "show_view_count": True,
    # 3D-просмотрщик
    "default_model_color": "#00ffff",
    "enable_auto_rotate": False,
    "enable_wireframe_toggle": True,
    "enable_grid": True,
}

SETTINGS_SCHEMA = {
    "site": {
        "label": "Site Configuration",
        "icon": "fa-globe",
        "settings": {
            "site_name": {"label": "Site Name", "type": "text"},
            "site_tagline": {"label": "Tagline", "type": "text"},
            "site_description": {"label": "Description", "type": "textarea"},
            "contact_email": {"label": "Contact Email", "type": "email"},
            "maintenance_mode": {"label": "Maintenance Mode", "type": "toggle"},
            "maintenance_message": {"label": "Maintenance Message", "type": "textarea"},
        },
    },
    "users": {
        "label": "Users & Registration",
        "icon": "fa-users",
        "settings": {
            "allow_registration": {"label": "Allow Registration", "type": "toggle"},
            "require_admin_approval": {"label": "Require Admin Approval", "type": "toggle"},
            "require_email_verification": {"label": "Require Email Verification", "type": "toggle"},
            "enable_user_profiles": {"label": "Enable User Profiles", "type": "toggle"},
        },
    },
    "uploads": {
        "label": "Upload Settings",
        "icon": "fa-upload",
        "settings": {
            "max_file_size": {"label": "Max File Size (MB)", "type": "number", "min": 1, "max": 500},
            "max_files_per_model": {"label": "Max Files per Model", "type": "number", "min": 1, "max": 50},
            "max_photos_per_model": {"label": "Max Photos per Model", "type": "number", "min": 1, "max": 20},
            "allowed_extensions": {"label": "Allowed File Types", "type": "text"},
        },
    },
    "features": {
        "label": "Features",
        "icon": "fa-toggle-on",
        "settings": {
            "enable_downloads": {"label": "Enable Downloads", "type": "toggle"},
            "enable_likes": {"label": "Enable Likes", "type": "toggle"},
            "enable_favorites": {"label": "Enable Favorites", "type": "toggle"},
            "enable_comments": {"label": "Enable Comments", "type": "toggle"},
        },
    },
    "display": {
        "label": "Display Settings",
        "icon": "fa-desktop",
        "settings": {
            "items_per_page": {"label": "Items Per Page", "type": "select", "options": [6, 12, 24, 48]},
            "default_sort": {
                "label": "Default Sort",
                "type": "select",
                "options": ["newest", "oldest", "popular", "likes"],
            },
            "default_license": {
                "label": "Default License",
                "type": "select",
                "options": ["CC BY", "CC BY-SA", "CC BY-NC", "CC BY-NC-SA", "CC0", "MIT", "GPL"],
            },
            "show_download_count": {"label": "Show Download Count", "type": "toggle"},
            "show_like_count": {"label": "Show Like Count", "type": "toggle"},
            "show_view_count": {"label": "Show View Count", "type": "toggle"},
        },
    },
    "viewer": {
        "label": "3D Viewer",
        "icon": "fa-cube",
        "settings": {
            "default_model_color": {"label": "Default Model Color", "type": "color"},
            "enable_auto_rotate": {"label": "Auto-Rotate by Default", "type": "toggle"},
            "enable_wireframe_toggle": {"label": "Wireframe Toggle", "type": "toggle"},
            "enable_grid": {"label": "Show Grid", "type": "toggle"},
        },
    },
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _schema_entry(key: str) -> dict:
    for group in SETTINGS_SCHEMA.values():
        if key in group["settings"]:
            return group["settings"][key]
    return {}


def setting_type(value) -> str:
    # bool проверяется раньше int: bool – подкласс int
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "float"
    if isinstance(value, (list, dict)):
        return "json"
    return "string"


def setting_to_string(value, value_type: str) -> str:
    if value_type == "boolean":
        return "1" if value else "0"
    if value_type == "json":
        return json.dumps(value)
    return str(value)


def cast_setting_value(value: str, value_type: str):
    """Восстанавливает значение, сохранённое строкой в таблице settings."""
    if value_type == "boolean":
        return value in ("1", "true")
    if value_type == "integer":
        return int(value)
    if value_type == "float":
        return float(value)
    if value_type == "json":
        return json.loads(value)
    return value


def coerce_setting(key: str, value):
    """Приводит присланное значение к типу настройки по умолчанию.

    Возвращает (значение, None) или (None, причина), если ключ неизвестен
    или значение не подходит.
    """
    if key not in DEFAULT_SETTINGS:
        return None, "unknown"

    default = DEFAULT_SETTINGS[key]
    entry = _schema_entry(key)

    if isinstance(default, bool):
        if isinstance(value, bool):
            return value, None
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True, None
        if text in _FALSE_VALUES:
            return False, None
        return None, "type"

    if isinstance(default, int):
        if isinstance(value, bool):
            return None, "type"
        try:
            number = int(str(value).strip())
        except (TypeError, ValueError):
            return None, "type"
        if "min" in entry and number < entry["min"]:
            return None, "range"
        if "max" in entry and number > entry["max"]:
            return None, "range"
        if entry.get("options") and number not in entry["options"]:
            return None, "range"
        return number, None

    text = "" if value is None else str(value).strip()
    if entry.get("options") and text not in entry["options"]:
        return None, "range"
    return text, None


def coerce_settings(values: dict):
    """Пакетный вариант coerce_setting: всё или ничего."""
    cleaned = {}
    for key, value in values.items():
        coerced, problem = coerce_setting(key, value)
        if problem:
            return None, key
        cleaned[key] = coerced
    return cleaned, None


def merged_settings(stored: dict) -> dict:
    """Значения по умолчанию, перекрытые сохранёнными."""
    settings = dict(DEFAULT_SETTINGS)
    settings.update(stored)
    return settings
