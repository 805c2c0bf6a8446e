"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: storage/sql_backend.py – хранилище на реляционной БД через Flask-SQLAlchemy.

Назначение модуля:
- Реализация CatalogRepository поверх ORM-моделей из пакета models.
- Изменения, затрагивающие несколько таблиц (модель + счётчики категории и автора),
  фиксируются одним коммитом.
- Ошибки БД перехватываются здесь: откат транзакции, запись в журнал, Status.FAILED.
"""

import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import Category, Favorite, Invite, ModelFile, ModelPhoto, PrintModel, Setting, User
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
    normalize_file_entry,
    normalize_invite_code,
    slugify,
    unique_slug,
)
from storage.settings import (
    cast_setting_value,
    coerce_settings,
    merged_settings,
    setting_to_string,
    setting_type,
)
from utils.formatting import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

_ORDERINGS = {
    "oldest": (PrintModel.created_at.asc(),),
    "popular": (PrintModel.downloads.desc(), PrintModel.created_at.desc()),
    "likes": (PrintModel.likes.desc(), PrintModel.created_at.desc()),
    "newest": (PrintModel.created_at.desc(),),
}


class SqlRepository(CatalogRepository):
    """Реализация CatalogRepository; требует контекста Flask-приложения."""

    name = "sql"

    def _commit(self, action: str) -> bool:
        try:
            db.session.commit()
            return True
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Ошибка БД при операции: %s", action)
            return False

    def _commit_status(self, action: str) -> Status:
        return Status.OK if self._commit(action) else Status.FAILED

    # Пользователи

    def _user_by(self, column, value: str) -> User | None:
        if not value:
            return None
        return User.query.filter(func.lower(column) == value.lower()).first()

    def list_users(self) -> list[dict]:
        users = User.query.order_by(User.created_at.desc()).all()
        return [user.to_dict() for user in users]

    def get_user(self, user_id: str) -> dict | None:
        user = db.session.get(User, user_id)
        return user.to_dict() if user else None

    def get_user_by_username(self, username: str) -> dict | None:
        user = self._user_by(User.username, username)
        return user.to_dict() if user else None

    def get_user_by_email(self, email: str) -> dict | None:
        user = self._user_by(User.email, email)
        return user.to_dict() if user else None

    def create_user(self, data: dict) -> str | None:
        username = (data.get("username") or "").strip()
        email = (data.get("email") or "").strip()
        password = data.get("password") or ""
        if not username or not email or not password:
            return None
        if self._user_by(User.username, username) or self._user_by(User.email, email):
            return None

        user = User(
            id=self._new_id(User),
            username=username,
            email=email,
            password=hash_password(password),
            is_admin=bool(data.get("is_admin", False)),
            approved=not data.get("needs_approval", False),
            created_at=utcnow(),
        )
        db.session.add(user)
        return user.id if self._commit("create_user") else None

    def update_user(self, user_id: str, data: dict) -> Status:
        user = db.session.get(User, user_id)
        if user is None:
            return Status.NOT_FOUND

        changes = {key: value for key, value in data.items() if key in USER_MUTABLE_FIELDS}
        for field, column in (("username", User.username), ("email", User.email)):
            if field in changes:
                other = self._user_by(column, changes[field] or "")
                if not changes[field] or (other is not None and other.id != user_id):
                    return Status.CONFLICT

        for key, value in changes.items():
            setattr(user, key, value)
        return self._commit_status("update_user")

    def change_password(self, user_id: str, new_password: str) -> Status:
        if not new_password:
            return Status.INVALID
        user = db.session.get(User, user_id)
        if user is None:
            return Status.NOT_FOUND
        user.password = hash_password(new_password)
        return self._commit_status("change_password")

    def delete_user(self, user_id: str) -> Status:
        """Удаляет пользователя, его модели (с избранным на них) и файлы одним коммитом.

        Строки удаляются пакетными запросами: каскады ORM по user.models и
        user.favorites пересекаются на избранном и дали бы повторные DELETE.
        """
        user = db.session.get(User, user_id)
        if user is None:
            return Status.NOT_FOUND

        filenames = [user.avatar] if user.avatar else []
        model_ids = []
        for model in user.models:
            model_ids.append(model.id)
            filenames.extend(self._model_filenames(model))
            if model.category_ref is not None:
                model.category_ref.count = max(0, (model.category_ref.count or 0) - 1)

        try:
            Favorite.query.filter(
                or_(Favorite.user_id == user_id, Favorite.model_id.in_(model_ids))
            ).delete(synchronize_session="fetch")
            if model_ids:
                ModelFile.query.filter(ModelFile.model_id.in_(model_ids)).delete(synchronize_session="fetch")
                ModelPhoto.query.filter(ModelPhoto.model_id.in_(model_ids)).delete(synchronize_session="fetch")
                PrintModel.query.filter(PrintModel.id.in_(model_ids)).delete(synchronize_session="fetch")
            User.query.filter_by(id=user_id).delete(synchronize_session="fetch")
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Ошибка БД при удалении пользователя %s", user_id)
            return Status.FAILED

        if not self._commit("delete_user"):
            return Status.FAILED
        self._remove_physical_files(filenames)
        return Status.OK

    def toggle_favorite(self, user_id: str, model_id: str) -> Status:
        if db.session.get(User, user_id) is None:
            return Status.NOT_FOUND

        favorite = db.session.get(Favorite, (user_id, model_id))
        if favorite is not None:
            db.session.delete(favorite)
        else:
            if db.session.get(PrintModel, model_id) is None:
                return Status.NOT_FOUND
            db.session.add(Favorite(user_id=user_id, model_id=model_id, created_at=utcnow()))
        return self._commit_status("toggle_favorite")

    def _password_hash(self, user_id: str) -> str | None:
        user = db.session.get(User, user_id)
        return user.password if user else None

    # Категории

    def list_categories(self) -> list[dict]:
        categories = Category.query.order_by(func.lower(Category.name)).all()
        return [category.to_dict() for category in categories]

    def get_category(self, category_id: str) -> dict | None:
        category = db.session.get(Category, category_id) if category_id else None
        return category.to_dict() if category else None

    def create_category(self, data: dict) -> str | None:
        name = (data.get("name") or "").strip()
        base_id = slugify(name)
        if not name or not base_id:
            return None

        category_id = unique_slug(base_id, lambda candidate: db.session.get(Category, candidate) is not None)
        db.session.add(
            Category(
                id=category_id,
                name=name,
                icon=data.get("icon") or DEFAULT_CATEGORY_ICON,
                description=data.get("description") or "",
                count=0,
            )
        )
        return category_id if self._commit("create_category") else None

    def update_category(self, category_id: str, data: dict) -> Status:
        category = db.session.get(Category, category_id)
        if category is None:
            return Status.NOT_FOUND

        changes = {key: value for key, value in data.items() if key in CATEGORY_MUTABLE_FIELDS}
        if "name" in changes and not (changes["name"] or "").strip():
            return Status.INVALID
        for key, value in changes.items():
            setattr(category, key, value)
        return self._commit_status("update_category")

    def delete_category(self, category_id: str) -> Status:
        category = db.session.get(Category, category_id)
        if category is None:
            return Status.NOT_FOUND
        in_use = PrintModel.query.filter_by(category=category_id).count() > 0
        if (category.count or 0) > 0 or in_use:
            return Status.CONFLICT

        db.session.delete(category)
        return self._commit_status("delete_category")

    def adjust_category_count(self, category_id: str, delta: int) -> Status:
        category = db.session.get(Category, category_id)
        if category is None:
            return Status.NOT_FOUND
        category.count = max(0, (category.count or 0) + delta)
        return self._commit_status("adjust_category_count")

    def recalculate_counts(self) -> int:
        per_category = dict(
            db.session.query(PrintModel.category, func.count(PrintModel.id)).group_by(PrintModel.category).all()
        )
        per_user = dict(
            db.session.query(PrintModel.user_id, func.count(PrintModel.id)).group_by(PrintModel.user_id).all()
        )

        corrected = 0
        for category in Category.query.all():
            actual = per_category.get(category.id, 0)
            if category.count != actual:
                category.count = actual
                corrected += 1
        for user in User.query.all():
            actual = per_user.get(user.id, 0)
            if user.model_count != actual:
                user.model_count = actual
                corrected += 1

        if corrected and not self._commit("recalculate_counts"):
            return 0
        return corrected

    # Модели

    def list_models(self) -> list[dict]:
        models = PrintModel.query.order_by(PrintModel.created_at.desc()).all()
        return [model.to_dict() for model in models]

    def get_model(self, model_id: str) -> dict | None:
        model = db.session.get(PrintModel, model_id) if model_id else None
        return model.to_dict() if model else None

    def list_models_by_user(self, user_id: str) -> list[dict]:
        models = PrintModel.query.filter_by(user_id=user_id).order_by(PrintModel.created_at.desc()).all()
        return [model.to_dict() for model in models]

    def list_models_by_category(self, category_id: str) -> list[dict]:
        models = PrintModel.query.filter_by(category=category_id).order_by(PrintModel.created_at.desc()).all()
        return [model.to_dict() for model in models]

    def search_models(self, query: str = "", category: str | None = None, sort: str = "newest") -> list[dict]:
        statement = PrintModel.query
        if category:
            statement = statement.filter_by(category=category)
        statement = statement.order_by(*_ORDERINGS.get(sort, _ORDERINGS["newest"]))

        models = [model.to_dict() for model in statement.all()]
        # Теги хранятся в JSON-колонке, поэтому текстовое совпадение проверяется в Python
        if query:
            models = [model for model in models if matches_query(model, query)]
        return models

    def create_model(self, data: dict) -> str | None:
        record = self._prepare_model_record(data)
        if record is None:
            return None

        user = db.session.get(User, record["user_id"])
        category = db.session.get(Category, record["category"])
        if user is None or category is None:
            logger.warning(
                "Модель не создана: нет пользователя %s или категории %s",
                record["user_id"],
                record["category"],
            )
            return None

        created_at = parse_timestamp(record["created_at"])
        model = PrintModel(
            id=record["id"],
            user_id=record["user_id"],
            title=record["title"],
            description=record["description"],
            category=record["category"],
            tags=record["tags"],
            license=record["license"],
            print_settings=record["print_settings"],
            primary_display=record["primary_display"],
            downloads=0,
            likes=0,
            views=0,
            featured=False,
            created_at=created_at,
            updated_at=created_at,
        )
        model.files = [
            ModelFile(file_order=index, **entry) for index, entry in enumerate(record["files"])
        ]
        model.photos = [
            ModelPhoto(filename=photo, photo_order=index, is_primary=index == 0)
            for index, photo in enumerate(record["photos"])
        ]
        model.refresh_derived()

        db.session.add(model)
        category.count = (category.count or 0) + 1
        user.model_count = (user.model_count or 0) + 1
        return model.id if self._commit("create_model") else None

    def update_model(self, model_id: str, data: dict) -> Status:
        model = db.session.get(PrintModel, model_id)
        if model is None:
            return Status.NOT_FOUND

        changes = {key: value for key, value in data.items() if key in MODEL_MUTABLE_FIELDS}
        if "title" in changes and not (changes["title"] or "").strip():
            return Status.INVALID

        new_category_id = changes.get("category", model.category)
        if new_category_id != model.category:
            new_category = db.session.get(Category, new_category_id) if new_category_id else None
            if new_category is None:
                return Status.INVALID
            old_category = model.category_ref
            if old_category is not None:
                old_category.count = max(0, (old_category.count or 0) - 1)
            new_category.count = (new_category.count or 0) + 1

        if "tags" in changes:
            changes["tags"] = list(changes["tags"] or [])
        if "print_settings" in changes:
            changes["print_settings"] = dict(changes["print_settings"] or {})

        for key, value in changes.items():
            setattr(model, key, value)
        model.updated_at = utcnow()
        return self._commit_status("update_model")

    def delete_model(self, model_id: str) -> Status:
        model = db.session.get(PrintModel, model_id)
        if model is None:
            return Status.NOT_FOUND

        filenames = self._model_filenames(model)
        if model.category_ref is not None:
            model.category_ref.count = max(0, (model.category_ref.count or 0) - 1)
        if model.owner is not None:
            model.owner.model_count = max(0, (model.owner.model_count or 0) - 1)
        db.session.delete(model)

        if not self._commit("delete_model"):
            return Status.FAILED
        self._remove_physical_files(filenames)
        return Status.OK

    def increment_stat(self, model_id: str, stat: str) -> Status:
        if stat not in ALLOWED_STATS:
            return Status.INVALID
        column = getattr(PrintModel, stat)
        try:
            updated = PrintModel.query.filter_by(id=model_id).update(
                {column: column + 1}, synchronize_session=False
            )
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Ошибка БД при увеличении счётчика %s", stat)
            return Status.FAILED
        if not updated:
            db.session.rollback()
            return Status.NOT_FOUND
        return self._commit_status("increment_stat")

    def add_model_file(self, model_id: str, file_data: dict) -> Status:
        model = db.session.get(PrintModel, model_id)
        if model is None:
            return Status.NOT_FOUND

        entry = normalize_file_entry(file_data)
        if any(model_file.filename == entry["filename"] for model_file in model.files):
            return Status.CONFLICT
        model.files.append(ModelFile(file_order=len(model.files), **entry))
        model.refresh_derived()
        model.updated_at = utcnow()
        return self._commit_status("add_model_file")

    def remove_model_file(self, model_id: str, filename: str) -> Status:
        model = db.session.get(PrintModel, model_id)
        if model is None:
            return Status.NOT_FOUND

        target = next((model_file for model_file in model.files if model_file.filename == filename), None)
        if target is None:
            return Status.NOT_FOUND
        if len(model.files) <= 1:
            return Status.CONFLICT

        model.files.remove(target)
        model.refresh_derived()
        model.updated_at = utcnow()
        if not self._commit("remove_model_file"):
            return Status.FAILED
        self._remove_physical_files([filename])
        return Status.OK

    def add_model_photo(self, model_id: str, filename: str) -> Status:
        model = db.session.get(PrintModel, model_id)
        if model is None:
            return Status.NOT_FOUND

        if any(model_photo.filename == filename for model_photo in model.photos):
            return Status.CONFLICT
        model.photos.append(ModelPhoto(filename=filename, photo_order=len(model.photos)))
        model.refresh_derived()
        model.updated_at = utcnow()
        return self._commit_status("add_model_photo")

    def remove_model_photo(self, model_id: str, filename: str) -> Status:
        model = db.session.get(PrintModel, model_id)
        if model is None:
            return Status.NOT_FOUND

        target = next((model_photo for model_photo in model.photos if model_photo.filename == filename), None)
        if target is None:
            return Status.NOT_FOUND

        model.photos.remove(target)
        model.refresh_derived()
        model.updated_at = utcnow()
        if not self._commit("remove_model_photo"):
            return Status.FAILED
        self._remove_physical_files([filename])
        return Status.OK

    # Одобрение регистраций

    def list_pending_users(self) -> list[dict]:
        users = User.query.filter_by(approved=False).order_by(User.created_at.desc()).all()
        return [user.to_dict() for user in users]

    # Настройки

    def get_settings(self) -> dict:
        stored = {}
        for setting in Setting.query.all():
            try:
                stored[setting.key] = cast_setting_value(setting.value, setting.value_type)
            except (TypeError, ValueError):
                logger.warning("Настройка %s хранит некорректное значение %r", setting.key, setting.value)
        return merged_settings(stored)

    def set_settings(self, values: dict) -> Status:
        cleaned, bad_key = coerce_settings(values)
        if bad_key is not None:
            return Status.INVALID

        for key, value in cleaned.items():
            value_type = setting_type(value)
            setting = db.session.get(Setting, key)
            if setting is None:
                setting = Setting(key=key)
                db.session.add(setting)
            setting.value = setting_to_string(value, value_type)
            setting.value_type = value_type
            setting.updated_at = utcnow()
        return self._commit_status("set_settings")

    # Приглашения

    def list_invites(self) -> list[dict]:
        invites = Invite.query.order_by(Invite.created_at.desc()).all()
        return [invite.to_dict() for invite in invites]

    def get_invite(self, invite_id: str) -> dict | None:
        invite = db.session.get(Invite, invite_id) if invite_id else None
        return invite.to_dict() if invite else None

    def get_invite_by_code(self, code: str) -> dict | None:
        code = normalize_invite_code(code)
        if not code:
            return None
        invite = Invite.query.filter_by(code=code).first()
        return invite.to_dict() if invite else None

    def create_invite(self, data: dict) -> str | None:
        code = generate_invite_code()
        while Invite.query.filter_by(code=code).first() is not None:
            code = generate_invite_code()

        record = new_invite_record(data, code, self._new_id(Invite))
        if record is None:
            return None
        record["created_at"] = parse_timestamp(record["created_at"])
        if record["expires_at"]:
            record["expires_at"] = parse_timestamp(record["expires_at"])
        db.session.add(Invite(**record))
        return code if self._commit("create_invite") else None

    def _consume_invite(self, code: str) -> Status:
        try:
            updated = Invite.query.filter_by(code=code).update(
                {Invite.uses: Invite.uses + 1}, synchronize_session=False
            )
        except SQLAlchemyError:
            db.session.rollback()
            logger.exception("Ошибка БД при использовании приглашения")
            return Status.FAILED
        if not updated:
            db.session.rollback()
            return Status.NOT_FOUND
        return self._commit_status("use_invite_code")

    def toggle_invite(self, invite_id: str) -> Status:
        invite = db.session.get(Invite, invite_id)
        if invite is None:
            return Status.NOT_FOUND
        invite.active = not invite.active
        return self._commit_status("toggle_invite")

    def delete_invite(self, invite_id: str) -> Status:
        invite = db.session.get(Invite, invite_id)
        if invite is None:
            return Status.NOT_FOUND
        db.session.delete(invite)
        return self._commit_status("delete_invite")

    # Статистика

    def get_stats(self) -> dict:
        return {
            "total_models": db.session.query(func.count(PrintModel.id)).scalar() or 0,
            "total_users": db.session.query(func.count(User.id)).scalar() or 0,
            "total_downloads": int(db.session.query(func.coalesce(func.sum(PrintModel.downloads), 0)).scalar() or 0),
            "total_categories": db.session.query(func.count(Category.id)).scalar() or 0,
        }

    # Служебное

    @staticmethod
    def _new_id(model_class) -> str:
        while True:
            candidate = generate_id()
            if db.session.get(model_class, candidate) is None:
                return candidate

    @staticmethod
    def _model_filenames(model: PrintModel) -> list[str]:
        return [model_file.filename for model_file in model.files] + [
            model_photo.filename for model_photo in model.photos
        ]
