"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: storage/base.py – единый контракт слоя доступа к данным.

Назначение модуля:
- Описание интерфейса CatalogRepository, который реализуют SQL- и JSON-хранилища.
- Перечисление Status: результат изменяющих операций без выбрасывания исключений.
- Общая логика, не зависящая от способа хранения: аутентификация, начальные данные,
  подготовка записи модели, удаление физических файлов.
- Правила одобрения регистраций и проверки кодов приглашений поверх примитивов хранилищ.
"""

import enum
import logging
from abc import ABC, abstractmethod

from werkzeug.security import check_password_hash, generate_password_hash

from storage.helpers import (
    DEFAULT_CATEGORIES,
    DEFAULT_LICENSE,
    generate_id,
    invite_problem,
    normalize_files,
    normalize_invite_code,
    normalize_photos,
)
from storage.settings import DEFAULT_SETTINGS
from utils.formatting import format_timestamp, utcnow
from utils.uploads import remove_file

logger = logging.getLogger(__name__)


class Status(enum.Enum):
    """Результат изменяющей операции; истинен только OK."""

    OK = "ok"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    INVALID = "invalid"
    FAILED = "failed"

    def __bool__(self) -> bool:
        return self is Status.OK


def hash_password(password: str) -> str:
    return generate_password_hash(password, method="scrypt")


class CatalogRepository(ABC):
    """Контракт хранилища каталога.

    Все методы возвращают простые словари и списки словарей одинакового вида
    в обеих реализациях. Отсутствующая запись – это None или Status.NOT_FOUND,
    ошибка записи – None или Status.FAILED (с записью в журнал).
    """

    name = "abstract"

    def __init__(self, upload_folder: str, default_license: str = DEFAULT_LICENSE):
        self.upload_folder = upload_folder
        self.default_license = default_license

    # Пользователи

    @abstractmethod
    def list_users(self) -> list[dict]: ...

    @abstractmethod
    def get_user(self, user_id: str) -> dict | None: ...

    @abstractmethod
    def get_user_by_username(self, username: str) -> dict | None: ...

    @abstractmethod
    def get_user_by_email(self, email: str) -> dict | None: ...

    @abstractmethod
    def create_user(self, data: dict) -> str | None: ...

    @abstractmethod
    def update_user(self, user_id: str, data: dict) -> Status: ...

    @abstractmethod
    def change_password(self, user_id: str, new_password: str) -> Status: ...

    @abstractmethod
    def delete_user(self, user_id: str) -> Status: ...

    @abstractmethod
    def toggle_favorite(self, user_id: str, model_id: str) -> Status: ...

    @abstractmethod
    def _password_hash(self, user_id: str) -> str | None: ...

    def authenticate(self, login: str, password: str) -> dict | None:
        """Ищет пользователя по имени, затем по email и проверяет пароль.

        Не различает «нет такого пользователя» и «неверный пароль».
        """
        if not login or not password:
            return None
        user = self.get_user_by_username(login) or self.get_user_by_email(login)
        if user is None:
            return None
        stored_hash = self._password_hash(user["id"])
        if stored_hash and check_password_hash(stored_hash, password):
            return user
        return None

    # Категории

    @abstractmethod
    def list_categories(self) -> list[dict]: ...

    @abstractmethod
    def get_category(self, category_id: str) -> dict | None: ...

    @abstractmethod
    def create_category(self, data: dict) -> str | None: ...

    @abstractmethod
    def update_category(self, category_id: str, data: dict) -> Status: ...

    @abstractmethod
    def delete_category(self, category_id: str) -> Status: ...

    @abstractmethod
    def adjust_category_count(self, category_id: str, delta: int) -> Status: ...

    @abstractmethod
    def recalculate_counts(self) -> int: ...

    # Модели

    @abstractmethod
    def list_models(self) -> list[dict]: ...

    @abstractmethod
    def get_model(self, model_id: str) -> dict | None: ...

    @abstractmethod
    def list_models_by_user(self, user_id: str) -> list[dict]: ...

    @abstractmethod
    def list_models_by_category(self, category_id: str) -> list[dict]: ...

    @abstractmethod
    def search_models(self, query: str = "", category: str | None = None, sort: str = "newest") -> list[dict]: ...

    @abstractmethod
    def create_model(self, data: dict) -> str | None: ...

    @abstractmethod
    def update_model(self, model_id: str, data: dict) -> Status: ...

    @abstractmethod
    def delete_model(self, model_id: str) -> Status: ...

    @abstractmethod
    def increment_stat(self, model_id: str, stat: str) -> Status: ...

    @abstractmethod
    def add_model_file(self, model_id: str, file_data: dict) -> Status: ...

    @abstractmethod
    def remove_model_file(self, model_id: str, filename: str) -> Status: ...

    @abstractmethod
    def add_model_photo(self, model_id: str, filename: str) -> Status: ...

    @abstractmethod
    def remove_model_photo(self, model_id: str, filename: str) -> Status: ...

    # Одобрение регистраций

    @abstractmethod
    def list_pending_users(self) -> list[dict]: ...

    def approve_user(self, user_id: str) -> Status:
        if self.get_user(user_id) is None:
            return Status.NOT_FOUND
        return self.update_user(user_id, {"approved": True})

    def reject_user(self, user_id: str) -> Status:
        """Отклонение – это удаление учётной записи со всеми её данными."""
        return self.delete_user(user_id)

    def is_user_approved(self, user_id: str) -> bool:
        user = self.get_user(user_id)
        return bool(user and user.get("approved", True))

    # Настройки сайта

    @abstractmethod
    def get_settings(self) -> dict:
        """Все настройки: значения по умолчанию, перекрытые сохранёнными."""

    @abstractmethod
    def set_settings(self, values: dict) -> Status:
        """Сохраняет несколько настроек разом; неизвестный ключ или значение – INVALID."""

    def get_setting(self, key: str, default=None):
        return self.get_settings().get(key, DEFAULT_SETTINGS.get(key, default))

    def set_setting(self, key: str, value) -> Status:
        return self.set_settings({key: value})

    # Приглашения

    @abstractmethod
    def list_invites(self) -> list[dict]: ...

    @abstractmethod
    def get_invite(self, invite_id: str) -> dict | None: ...

    @abstractmethod
    def get_invite_by_code(self, code: str) -> dict | None: ...

    @abstractmethod
    def create_invite(self, data: dict) -> str | None:
        """Создаёт приглашение и возвращает его код."""

    @abstractmethod
    def _consume_invite(self, code: str) -> Status: ...

    @abstractmethod
    def toggle_invite(self, invite_id: str) -> Status: ...

    @abstractmethod
    def delete_invite(self, invite_id: str) -> Status: ...

    def validate_invite_code(self, code: str) -> tuple[dict | None, str | None]:
        """Возвращает (приглашение, None) или (None, причина отказа)."""
        invite = self.get_invite_by_code(normalize_invite_code(code))
        problem = invite_problem(invite)
        if problem:
            return None, problem
        return invite, None

    def use_invite_code(self, code: str) -> Status:
        invite, problem = self.validate_invite_code(code)
        if problem == "not_found":
            return Status.NOT_FOUND
        if problem:
            return Status.INVALID
        return self._consume_invite(invite["code"])

    # Статистика

    def get_stats(self) -> dict:
        """Агрегаты считаются заново при каждом вызове."""
        models = self.list_models()
        return {
            "total_models": len(models),
            "total_users": len(self.list_users()),
            "total_downloads": sum(model.get("downloads") or 0 for model in models),
            "total_categories": len(self.list_categories()),
        }

    # Общие служебные операции

    def seed_defaults(self, admin_password: str) -> None:
        """Создаёт стандартные категории и администратора в пустом хранилище."""
        if not self.list_categories():
            for category in DEFAULT_CATEGORIES:
                self.create_category(category)
            logger.info("Созданы стандартные категории (%s)", len(DEFAULT_CATEGORIES))

        if not self.list_users():
            admin_id = self.create_user(
                {
                    "username": "admin",
                    "email": "admin@example.com",
                    "password": admin_password,
                    "is_admin": True,
                }
            )
            if admin_id:
                self.update_user(admin_id, {"bio": "Site Administrator", "location": "HQ"})
                logger.info("Создан администратор по умолчанию")

    def referenced_uploads(self) -> set[str]:
        """Имена всех файлов в папке загрузок, на которые ссылаются записи."""
        names: set[str] = set()
        for model in self.list_models():
            names.update(entry["filename"] for entry in model["files"])
            names.update(model["photos"])
        for user in self.list_users():
            if user.get("avatar"):
                names.add(user["avatar"])
        return names

    def _prepare_model_record(self, data: dict) -> dict | None:
        """Проверяет обязательные поля и собирает полную запись новой модели."""
        files = normalize_files(data)
        title = (data.get("title") or "").strip()
        if not data.get("user_id") or not title or not data.get("category") or not files:
            return None

        photos = normalize_photos(data)
        now = format_timestamp(utcnow())
        return {
            "id": generate_id(),
            "user_id": data["user_id"],
            "title": title,
            "description": data.get("description") or "",
            "category": data["category"],
            "tags": list(data.get("tags") or []),
            "license": data.get("license") or self.default_license,
            "print_settings": dict(data.get("print_settings") or {}),
            "files": files,
            "filename": files[0]["filename"],
            "filesize": sum(entry["filesize"] for entry in files),
            "file_count": len(files),
            "photos": photos,
            "photo": photos[0] if photos else None,
            "primary_display": str(data.get("primary_display") or "auto"),
            "downloads": 0,
            "likes": 0,
            "views": 0,
            "featured": False,
            "created_at": now,
            "updated_at": now,
        }

    def _remove_physical_files(self, filenames) -> None:
        """Удаляет файлы после того, как запись уже изменена; ошибки только пишутся в журнал."""
        for filename in filenames:
            if not filename:
                continue
            try:
                removed = remove_file(self.upload_folder, filename)
            except OSError:
                logger.warning("Не удалось удалить файл %s", filename, exc_info=True)
                continue
            if not removed:
                logger.warning("Файл %s уже отсутствует в хранилище загрузок", filename)
