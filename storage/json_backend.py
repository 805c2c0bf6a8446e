"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: storage/json_backend.py – хранилище на плоских JSON-файлах.

Назначение модуля:
- Резервный вариант хранения, когда база данных не настроена или недоступна.
- Файлы users.json, categories.json, models.json и invites.json – JSON-массивы,
  settings.json – JSON-объект; каждый перезаписывается целиком при изменении.
- Денормализованные счётчики (count категории, model_count пользователя) после
  изменения моделей пересчитываются по списку моделей, а не сдвигаются на ±1.
- Нечитаемый файл не считается пустым: операция завершается ошибкой и ничего не пишет.
"""

import json
import logging
import os
import tempfile
from functools import wraps

from storage.base import CatalogRepository, Status, hash_password
from storage.helpers import (
    ALLOWED_STATS,
    CATEGORY_MUTABLE_FIELDS,
    DEFAULT_CATEGORY_ICON,
    MODEL_MUTABLE_FIELDS,
    USER_MUTABLE_FIELDS,
    generate_id,
    generate_invite_code,
    matches_query,
    new_invite_record,
    newest_first,
    normalize_file_entry,
    normalize_invite_code,
    slugify,
    sort_models,
    unique_slug,
)
from storage.settings import coerce_settings, merged_settings
from utils.formatting import format_timestamp, utcnow

logger = logging.getLogger(__name__)


class JsonStoreError(Exception):
    """Файл хранилища существует, но его нельзя прочитать или разобрать."""


def _guarded(fallback):
    """Переводит JsonStoreError в результат операции по умолчанию.

    fallback – значение (Status.FAILED, None, 0) или фабрика вроде list/dict.
    """

    def decorator(method):
        @wraps(method)
        def wrapper(self, *args, **kwargs):
            try:
                return method(self, *args, **kwargs)
            except JsonStoreError:
                logger.exception("Операция %s не выполнена: хранилище повреждено", method.__name__)
                return fallback() if callable(fallback) else fallback

        return wrapper

    return decorator


def _find(records: list[dict], record_id: str) -> dict | None:
    for record in records:
        if record.get("id") == record_id:
            return record
    return None


def _public_user(record: dict) -> dict:
    user = {key: value for key, value in record.items() if key != "password"}
    user["favorites"] = list(record.get("favorites") or [])
    user["is_admin"] = bool(record.get("is_admin", False))
    # Записи без поля approved появились до введения одобрения и считаются одобренными
    user["approved"] = record.get("approved") is not False
    return user


def _refresh_derived(model: dict) -> None:
    files = model.get("files") or []
    photos = model.get("photos") or []
    model["filename"] = files[0]["filename"] if files else ""
    model["filesize"] = sum(entry.get("filesize") or 0 for entry in files)
    model["file_count"] = len(files)
    model["photo"] = photos[0] if photos else None
    model["updated_at"] = format_timestamp(utcnow())


class JsonRepository(CatalogRepository):
    """Реализация CatalogRepository поверх JSON-файлов в каталоге data_dir."""

    name = "json"

    def __init__(self, data_dir: str, upload_folder: str, **kwargs):
        super().__init__(upload_folder, **kwargs)
        self.data_dir = data_dir
        self.users_file = os.path.join(data_dir, "users.json")
        self.categories_file = os.path.join(data_dir, "categories.json")
        self.models_file = os.path.join(data_dir, "models.json")
        self.invites_file = os.path.join(data_dir, "invites.json")
        self.settings_file = os.path.join(data_dir, "settings.json")

        os.makedirs(data_dir, exist_ok=True)
        for path in (self.users_file, self.categories_file, self.models_file, self.invites_file):
            if not os.path.exists(path):
                self._write(path, [])

    # Работа с файлами

    def _read(self, path: str, kind=list):
        """Содержимое файла; отсутствующий файл – пустое значение, повреждённый – JsonStoreError."""
        if not os.path.exists(path):
            return kind()
        try:
            with open(path, encoding="utf-8") as handle:
                data = json.load(handle)
        except (OSError, ValueError) as error:
            raise JsonStoreError(path) from error
        if not isinstance(data, kind):
            raise JsonStoreError(f"{path}: ожидался {kind.__name__}")
        return data

    def _write(self, path: str, records) -> bool:
        """Пишет через временный файл и os.replace, чтобы не оставить обрезанный JSON."""
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=os.path.dirname(path) or ".",
                suffix=".tmp",
                delete=False,
            ) as handle:
                tmp_path = handle.name
                json.dump(records, handle, ensure_ascii=False, indent=2)
            os.replace(tmp_path, path)
            return True
        except (OSError, TypeError, ValueError):
            logger.exception("Не удалось записать %s", path)
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            return False

    def _status(self, path: str, records) -> Status:
        return Status.OK if self._write(path, records) else Status.FAILED

    # Пользователи

    @_guarded(list)
    def list_users(self) -> list[dict]:
        return newest_first(_public_user(record) for record in self._read(self.users_file))

    @_guarded(None)
    def get_user(self, user_id: str) -> dict | None:
        record = _find(self._read(self.users_file), user_id)
        return _public_user(record) if record else None

    def _find_user_by(self, field: str, value: str) -> dict | None:
        if not value:
            return None
        needle = value.lower()
        for record in self._read(self.users_file):
            if (record.get(field) or "").lower() == needle:
                return record
        return None

    @_guarded(None)
    def get_user_by_username(self, username: str) -> dict | None:
        record = self._find_user_by("username", username)
        return _public_user(record) if record else None

    @_guarded(None)
    def get_user_by_email(self, email: str) -> dict | None:
        record = self._find_user_by("email", email)
        return _public_user(record) if record else None

    @_guarded(None)
    def create_user(self, data: dict) -> str | None:
        username = (data.get("username") or "").strip()
        email = (data.get("email") or "").strip()
        password = data.get("password") or ""
        if not username or not email or not password:
            return None
        if self._find_user_by("username", username) or self._find_user_by("email", email):
            return None

        users = self._read(self.users_file)
        user_id = generate_id()
        users.append(
            {
                "id": user_id,
                "username": username,
                "email": email,
                "password": hash_password(password),
                "is_admin": bool(data.get("is_admin", False)),
                "approved": not data.get("needs_approval", False),
                "avatar": None,
                "bio": "",
                "location": "",
                "website": "",
                "twitter": "",
                "github": "",
                "created_at": format_timestamp(utcnow()),
                "model_count": 0,
                "download_count": 0,
                "favorites": [],
            }
        )
        return user_id if self._write(self.users_file, users) else None

    @_guarded(Status.FAILED)
    def update_user(self, user_id: str, data: dict) -> Status:
        users = self._read(self.users_file)
        user = _find(users, user_id)
        if user is None:
            return Status.NOT_FOUND

        changes = {key: value for key, value in data.items() if key in USER_MUTABLE_FIELDS}
        for field in ("username", "email"):
            if field in changes:
                other = self._find_user_by(field, changes[field] or "")
                if not changes[field] or (other and other["id"] != user_id):
                    return Status.CONFLICT

        user.update(changes)
        return self._status(self.users_file, users)

    @_guarded(Status.FAILED)
    def change_password(self, user_id: str, new_password: str) -> Status:
        if not new_password:
            return Status.INVALID
        users = self._read(self.users_file)
        user = _find(users, user_id)
        if user is None:
            return Status.NOT_FOUND
        user["password"] = hash_password(new_password)
        return self._status(self.users_file, users)

    @_guarded(Status.FAILED)
    def delete_user(self, user_id: str) -> Status:
        """Удаляет пользователя вместе со всеми его моделями, их файлами и аватаром."""
        user = _find(self._read(self.users_file), user_id)
        if user is None:
            return Status.NOT_FOUND

        for model in [m for m in self._read(self.models_file) if m.get("user_id") == user_id]:
            status = self.delete_model(model["id"])
            if status is Status.FAILED:
                return status

        users = [record for record in self._read(self.users_file) if record.get("id") != user_id]
        if not self._write(self.users_file, users):
            return Status.FAILED

        if user.get("avatar"):
            self._remove_physical_files([user["avatar"]])
        return Status.OK

    @_guarded(Status.FAILED)
    def toggle_favorite(self, user_id: str, model_id: str) -> Status:
        users = self._read(self.users_file)
        user = _find(users, user_id)
        if user is None:
            return Status.NOT_FOUND

        favorites = list(user.get("favorites") or [])
        if model_id in favorites:
            favorites.remove(model_id)
        else:
            if _find(self._read(self.models_file), model_id) is None:
                return Status.NOT_FOUND
            favorites.append(model_id)
        user["favorites"] = favorites
        return self._status(self.users_file, users)

    @_guarded(None)
    def _password_hash(self, user_id: str) -> str | None:
        record = _find(self._read(self.users_file), user_id)
        return record.get("password") if record else None

    @_guarded(list)
    def list_pending_users(self) -> list[dict]:
        return [user for user in self.list_users() if not user["approved"]]

    # Категории

    @_guarded(list)
    def list_categories(self) -> list[dict]:
        categories = self._read(self.categories_file)
        return sorted(categories, key=lambda category: (category.get("name") or "").lower())

    @_guarded(None)
    def get_category(self, category_id: str) -> dict | None:
        return _find(self._read(self.categories_file), category_id)

    @_guarded(None)
    def create_category(self, data: dict) -> str | None:
        name = (data.get("name") or "").strip()
        base_id = slugify(name)
        if not name or not base_id:
            return None

        categories = self._read(self.categories_file)
        category_id = unique_slug(base_id, lambda candidate: _find(categories, candidate) is not None)
        categories.append(
            {
                "id": category_id,
                "name": name,
                "icon": data.get("icon") or DEFAULT_CATEGORY_ICON,
                "description": data.get("description") or "",
                "count": 0,
            }
        )
        return category_id if self._write(self.categories_file, categories) else None

    @_guarded(Status.FAILED)
    def update_category(self, category_id: str, data: dict) -> Status:
        categories = self._read(self.categories_file)
        category = _find(categories, category_id)
        if category is None:
            return Status.NOT_FOUND

        changes = {key: value for key, value in data.items() if key in CATEGORY_MUTABLE_FIELDS}
        if "name" in changes and not (changes["name"] or "").strip():
            return Status.INVALID
        category.update(changes)
        category["id"] = category_id
        return self._status(self.categories_file, categories)

    @_guarded(Status.FAILED)
    def delete_category(self, category_id: str) -> Status:
        categories = self._read(self.categories_file)
        category = _find(categories, category_id)
        if category is None:
            return Status.NOT_FOUND
        in_use = any(model.get("category") == category_id for model in self._read(self.models_file))
        if (category.get("count") or 0) > 0 or in_use:
            return Status.CONFLICT

        remaining = [record for record in categories if record.get("id") != category_id]
        return self._status(self.categories_file, remaining)

    @_guarded(Status.FAILED)
    def adjust_category_count(self, category_id: str, delta: int) -> Status:
        categories = self._read(self.categories_file)
        category = _find(categories, category_id)
        if category is None:
            return Status.NOT_FOUND
        category["count"] = max(0, (category.get("count") or 0) + delta)
        return self._status(self.categories_file, categories)

    def _sync_counts(self, models: list[dict], category_ids=(), user_ids=()) -> int:
        """Выставляет счётчики указанных категорий и пользователей по списку моделей.

        Возвращает число исправленных записей. Вызывается после того, как models.json
        уже записан, поэтому сбой здесь только журналируется: расхождение счётчиков
        исправит `flask recount`.
        """
        corrected = 0
        try:
            if category_ids:
                categories = self._read(self.categories_file)
                for category in categories:
                    if category.get("id") not in category_ids:
                        continue
                    actual = sum(1 for model in models if model.get("category") == category["id"])
                    if category.get("count") != actual:
                        category["count"] = actual
                        corrected += 1
                if corrected:
                    self._write(self.categories_file, categories)

            if user_ids:
                users = self._read(self.users_file)
                user_corrections = 0
                for user in users:
                    if user.get("id") not in user_ids:
                        continue
                    actual = sum(1 for model in models if model.get("user_id") == user["id"])
                    if user.get("model_count") != actual:
                        user["model_count"] = actual
                        user_corrections += 1
                if user_corrections:
                    self._write(self.users_file, users)
                corrected += user_corrections
        except JsonStoreError:
            logger.exception("Счётчики не пересчитаны")
        return corrected

    @_guarded(0)
    def recalculate_counts(self) -> int:
        models = self._read(self.models_file)
        category_ids = {category["id"] for category in self._read(self.categories_file)}
        user_ids = {user["id"] for user in self._read(self.users_file)}
        return self._sync_counts(models, category_ids, user_ids)

    # Модели

    @_guarded(list)
    def list_models(self) -> list[dict]:
        return newest_first(self._read(self.models_file))

    @_guarded(None)
    def get_model(self, model_id: str) -> dict | None:
        return _find(self._read(self.models_file), model_id)

    def list_models_by_user(self, user_id: str) -> list[dict]:
        return [model for model in self.list_models() if model.get("user_id") == user_id]

    def list_models_by_category(self, category_id: str) -> list[dict]:
        return [model for model in self.list_models() if model.get("category") == category_id]

    def search_models(self, query: str = "", category: str | None = None, sort: str = "newest") -> list[dict]:
        models = self.list_models()
        if query:
            models = [model for model in models if matches_query(model, query)]
        if category:
            models = [model for model in models if model.get("category") == category]
        return sort_models(models, sort)

    @_guarded(None)
    def create_model(self, data: dict) -> str | None:
        record = self._prepare_model_record(data)
        if record is None:
            return None
        known_user = _find(self._read(self.users_file), record["user_id"]) is not None
        known_category = _find(self._read(self.categories_file), record["category"]) is not None
        if not known_user or not known_category:
            logger.warning(
                "Модель не создана: нет пользователя %s или категории %s",
                record["user_id"],
                record["category"],
            )
            return None

        models = self._read(self.models_file)
        models.append(record)
        if not self._write(self.models_file, models):
            return None

        self._sync_counts(models, {record["category"]}, {record["user_id"]})
        return record["id"]

    @_guarded(Status.FAILED)
    def update_model(self, model_id: str, data: dict) -> Status:
        models = self._read(self.models_file)
        model = _find(models, model_id)
        if model is None:
            return Status.NOT_FOUND

        changes = {key: value for key, value in data.items() if key in MODEL_MUTABLE_FIELDS}
        if "title" in changes and not (changes["title"] or "").strip():
            return Status.INVALID
        old_category = model.get("category")
        new_category = changes.get("category", old_category)
        if new_category != old_category and _find(self._read(self.categories_file), new_category) is None:
            return Status.INVALID
        if "tags" in changes:
            changes["tags"] = list(changes["tags"] or [])
        if "print_settings" in changes:
            changes["print_settings"] = dict(changes["print_settings"] or {})

        model.update(changes)
        model["updated_at"] = format_timestamp(utcnow())
        if not self._write(self.models_file, models):
            return Status.FAILED

        if new_category != old_category:
            # Обе категории обновляются одной записью categories.json
            self._sync_counts(models, {old_category, new_category})
        return Status.OK

    @_guarded(Status.FAILED)
    def delete_model(self, model_id: str) -> Status:
        models = self._read(self.models_file)
        model = _find(models, model_id)
        if model is None:
            return Status.NOT_FOUND
        users = self._read(self.users_file)

        remaining = [record for record in models if record.get("id") != model_id]
        if not self._write(self.models_file, remaining):
            return Status.FAILED

        touched = False
        for user in users:
            if model_id in (user.get("favorites") or []):
                user["favorites"] = [fav for fav in user["favorites"] if fav != model_id]
                touched = True
        if touched:
            self._write(self.users_file, users)

        self._sync_counts(remaining, {model.get("category")}, {model.get("user_id")})
        self._remove_physical_files(
            [entry.get("filename") for entry in model.get("files") or []] + list(model.get("photos") or [])
        )
        return Status.OK

    @_guarded(Status.FAILED)
    def increment_stat(self, model_id: str, stat: str) -> Status:
        if stat not in ALLOWED_STATS:
            return Status.INVALID
        models = self._read(self.models_file)
        model = _find(models, model_id)
        if model is None:
            return Status.NOT_FOUND
        model[stat] = (model.get(stat) or 0) + 1
        return self._status(self.models_file, models)

    @_guarded(Status.FAILED)
    def add_model_file(self, model_id: str, file_data: dict) -> Status:
        models = self._read(self.models_file)
        model = _find(models, model_id)
        if model is None:
            return Status.NOT_FOUND

        entry = normalize_file_entry(file_data)
        files = model.setdefault("files", [])
        if any(existing["filename"] == entry["filename"] for existing in files):
            return Status.CONFLICT
        files.append(entry)
        _refresh_derived(model)
        return self._status(self.models_file, models)

    @_guarded(Status.FAILED)
    def remove_model_file(self, model_id: str, filename: str) -> Status:
        models = self._read(self.models_file)
        model = _find(models, model_id)
        if model is None:
            return Status.NOT_FOUND

        files = model.get("files") or []
        if not any(entry["filename"] == filename for entry in files):
            return Status.NOT_FOUND
        if len(files) <= 1:
            return Status.CONFLICT

        model["files"] = [entry for entry in files if entry["filename"] != filename]
        _refresh_derived(model)
        if not self._write(self.models_file, models):
            return Status.FAILED
        self._remove_physical_files([filename])
        return Status.OK

    @_guarded(Status.FAILED)
    def add_model_photo(self, model_id: str, filename: str) -> Status:
        models = self._read(self.models_file)
        model = _find(models, model_id)
        if model is None:
            return Status.NOT_FOUND

        photos = model.setdefault("photos", [])
        if filename in photos:
            return Status.CONFLICT
        photos.append(filename)
        _refresh_derived(model)
        return self._status(self.models_file, models)

    @_guarded(Status.FAILED)
    def remove_model_photo(self, model_id: str, filename: str) -> Status:
        models = self._read(self.models_file)
        model = _find(models, model_id)
        if model is None:
            return Status.NOT_FOUND

        photos = model.get("photos") or []
        if filename not in photos:
            return Status.NOT_FOUND
        model["photos"] = [photo for photo in photos if photo != filename]
        _refresh_derived(model)
        if not self._write(self.models_file, models):
            return Status.FAILED
        self._remove_physical_files([filename])
        return Status.OK

    # Настройки

    @_guarded(lambda: merged_settings({}))
    def get_settings(self) -> dict:
        return merged_settings(self._read(self.settings_file, dict))

    @_guarded(Status.FAILED)
    def set_settings(self, values: dict) -> Status:
        cleaned, bad_key = coerce_settings(values)
        if bad_key is not None:
            return Status.INVALID
        stored = self._read(self.settings_file, dict)
        stored.update(cleaned)
        return self._status(self.settings_file, stored)

    # Приглашения

    @_guarded(list)
    def list_invites(self) -> list[dict]:
        invites = self._read(self.invites_file)
        return sorted(invites, key=lambda invite: invite.get("created_at") or "", reverse=True)

    @_guarded(None)
    def get_invite(self, invite_id: str) -> dict | None:
        return _find(self._read(self.invites_file), invite_id)

    @_guarded(None)
    def get_invite_by_code(self, code: str) -> dict | None:
        code = normalize_invite_code(code)
        if not code:
            return None
        return next((invite for invite in self._read(self.invites_file) if invite.get("code") == code), None)

    @_guarded(None)
    def create_invite(self, data: dict) -> str | None:
        invites = self._read(self.invites_file)
        used_codes = {invite.get("code") for invite in invites}
        code = generate_invite_code()
        while code in used_codes:
            code = generate_invite_code()

        record = new_invite_record(data, code, generate_id())
        if record is None:
            return None
        invites.append(record)
        return code if self._write(self.invites_file, invites) else None

    @_guarded(Status.FAILED)
    def _consume_invite(self, code: str) -> Status:
        invites = self._read(self.invites_file)
        invite = next((record for record in invites if record.get("code") == code), None)
        if invite is None:
            return Status.NOT_FOUND
        invite["uses"] = (invite.get("uses") or 0) + 1
        return self._status(self.invites_file, invites)

    @_guarded(Status.FAILED)
    def toggle_invite(self, invite_id: str) -> Status:
        invites = self._read(self.invites_file)
        invite = _find(invites, invite_id)
        if invite is None:
            return Status.NOT_FOUND
        invite["active"] = not invite.get("active", True)
        return self._status(self.invites_file, invites)

    @_guarded(Status.FAILED)
    def delete_invite(self, invite_id: str) -> Status:
        invites = self._read(self.invites_file)
        if _find(invites, invite_id) is None:
            return Status.NOT_FOUND
        remaining = [invite for invite in invites if invite.get("id") != invite_id]
        return self._status(self.invites_file, remaining)

    # Служебное

    def referenced_uploads(self) -> set[str]:
        """Читает файлы напрямую: при повреждённом хранилище очистка должна упасть, а не удалить всё."""
        names: set[str] = set()
        for model in self._read(self.models_file):
            names.update(entry.get("filename") for entry in model.get("files") or [])
            names.update(model.get("photos") or [])
        for user in self._read(self.users_file):
            if user.get("avatar"):
                names.add(user["avatar"])
        names.discard(None)
        return names
