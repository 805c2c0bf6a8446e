"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: config.py – конфигурация приложения.

Назначение модуля:
- Определение базовых параметров приложения Flask (секретный ключ, строка подключения к БД).
- Выбор каталога для JSON-хранилища на случай, когда база данных не настроена.
- Настройка параметров загрузки файлов (папка, максимальный размер, допустимые расширения).
"""

import os
import warnings


def _get_env_bool(name: str, default: bool = False) -> bool:
    """Преобразует переменную окружения в bool."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env_int(name: str, default: int) -> int:
    """Преобразует переменную окружения в int."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _get_env_list(name: str, default: list[str] | None = None) -> list[str]:
    """Преобразует переменную окружения вида 'a,b,c' в список."""
    value = os.environ.get(name)
    if value is None:
        return list(default or [])
    return [item.strip() for item in value.split(",") if item.strip()]


def _is_production() -> bool:
    """Определяет production-режим по FLASK_ENV."""
    return os.environ.get("FLASK_ENV", "").strip().lower() == "production"


_MB = 1024 * 1024


class Config:
    """Базовая конфигурация приложения."""

    _PRODUCTION = _is_production()

    SECRET_KEY = os.environ.get("SECRET_KEY")
    if not SECRET_KEY:
        if _PRODUCTION:
            raise RuntimeError(
                "SECRET_KEY environment variable is required in production. "
                "Set a strong random value before starting the app."
            )
        SECRET_KEY = "dev-insecure-secret-key"
        warnings.warn(
            "SECRET_KEY is not set. Using insecure development fallback key.",
            RuntimeWarning,
            stacklevel=1,
        )

    # Пустая строка означает работу на JSON-файлах
    DATABASE_URL = os.environ.get("DATABASE_URL", "").strip()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DATA_DIR = os.environ.get("DATA_DIR", "data")

    SEED_DEFAULTS = _get_env_bool("SEED_DEFAULTS", default=True)
    ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "admin123")

    SESSION_COOKIE_SECURE = _get_env_bool("SESSION_COOKIE_SECURE", default=_PRODUCTION)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.environ.get("SESSION_COOKIE_SAMESITE", "Lax")
    REMEMBER_COOKIE_SECURE = SESSION_COOKIE_SECURE
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = SESSION_COOKIE_SAMESITE
    CSRF_ENABLED = _get_env_bool("CSRF_ENABLED", default=True)
    RATE_LIMIT_ENABLED = _get_env_bool("RATE_LIMIT_ENABLED", default=True)

    CORS_ENABLED = _get_env_bool("CORS_ENABLED", default=False)
    CORS_ORIGINS = _get_env_list(
        "CORS_ORIGINS",
        default=[
            "http://127.0.0.1:5000",
            "http://localhost:5000",
        ],
    )

    UPLOAD_FOLDER = os.environ.get("UPLOAD_FOLDER", "uploads")
    MAX_FILE_SIZE = _get_env_int("MAX_FILE_SIZE_MB", 50) * _MB
    MAX_PHOTO_SIZE = _get_env_int("MAX_PHOTO_SIZE_MB", 10) * _MB
    MAX_AVATAR_SIZE = _get_env_int("MAX_AVATAR_SIZE_MB", 2) * _MB
    MAX_FILES_PER_MODEL = _get_env_int("MAX_FILES_PER_MODEL", 10)
    MAX_PHOTOS_PER_MODEL = _get_env_int("MAX_PHOTOS_PER_MODEL", 5)
    # Верхняя граница тела запроса: все файлы и фото одной модели
    MAX_CONTENT_LENGTH = MAX_FILE_SIZE * MAX_FILES_PER_MODEL + MAX_PHOTO_SIZE * MAX_PHOTOS_PER_MODEL
    ALLOWED_EXTENSIONS = {ext.lower() for ext in _get_env_list("ALLOWED_EXTENSIONS", default=["stl", "obj"])}
    ALLOWED_PHOTO_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
    ALLOWED_IMAGE_FORMATS = {"jpeg", "png", "gif", "webp"}
    COLOR_CAPABLE_EXTENSIONS = {"obj", "ply", "gltf", "glb", "3mf"}

    DEFAULT_LICENSE = os.environ.get("DEFAULT_LICENSE", "CC BY-NC")
    ITEMS_PER_PAGE = _get_env_int("ITEMS_PER_PAGE", 20)
    MAX_ITEMS_PER_PAGE = _get_env_int("MAX_ITEMS_PER_PAGE", 50)

    SUPPORTED_LANGUAGES = ("ru", "en")
    DEFAULT_LANGUAGE = os.environ.get("DEFAULT_LANGUAGE", "en").strip().lower() or "en"
    LANG_COOKIE_NAME = os.environ.get("LANG_COOKIE_NAME", "site_lang").strip() or "site_lang"

