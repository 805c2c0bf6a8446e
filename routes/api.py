"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: routes/api.py – единая JSON-точка входа /api.

Назначение модуля:
- Диспетчеризация запросов по параметру action.
- Публикация, редактирование и удаление моделей, их файлов и фотографий.
- Скачивание, лайки и избранное.
- Управление категориями и пользователями (с проверкой прав).
- Одобрение регистраций, коды приглашений и настройки сайта.
- Сводная статистика каталога.
"""

import os

from flask import current_app, request, session
from flask_babel import gettext as _

from routes.auth import AUTH_ACTIONS
from routes.helpers import (
    admin_required,
    api_error,
    api_success,
    bool_param,
    can_manage,
    feature_required,
    int_param,
    is_admin,
    login_required_api,
    request_params,
    session_user,
    status_error,
)
from storage import get_repository
from storage.settings import DEFAULT_SETTINGS, SETTINGS_SCHEMA
from utils.formatting import format_file_size, time_ago
from utils.rate_limit import is_rate_limited
from utils.uploads import (
    UploadTooLarge,
    avatar_storage_name,
    extension_of,
    model_storage_name,
    photo_storage_name,
    remove_file,
    remove_files,
    save_upload,
    validate_model_file,
    validate_photo,
)
from utils.validators import parse_print_settings, parse_tags

# Действия, которые можно вызывать GET-запросом: они ничего не изменяют,
# кроме счётчика просмотров
READ_ACTIONS = frozenset(
    {
        "check_auth",
        "csrf_token",
        "get_models",
        "get_model",
        "check_liked",
        "get_categories",
        "get_users",
        "get_user",
        "get_stats",
        "get_settings",
        "get_settings_schema",
        "get_pending_users",
        "get_invites",
    }
)

# В режиме обслуживания остальные действия доступны только администратору
MAINTENANCE_ACTIONS = frozenset({"login", "logout", "check_auth", "csrf_token", "get_settings"})


def _model_or_404(model_id: str):
    model = get_repository().get_model(model_id) if model_id else None
    if model is None:
        return None, api_error(_("Модель не найдена"), 404)
    return model, None


def _managed_model(model_id: str):
    """Модель, которую текущий пользователь может изменять (владелец или администратор)."""
    model, error = _model_or_404(model_id)
    if error is not None:
        return None, error
    if not can_manage(model["user_id"]):
        return None, api_error(_("Недостаточно прав для изменения этой модели"), 403)
    return model, None


def _enrich(model: dict, users: dict, categories: dict) -> dict:
    author = users.get(model["user_id"])
    category = categories.get(model["category"])
    enriched = dict(model)
    enriched["author"] = author["username"] if author else "Unknown"
    enriched["category_name"] = category["name"] if category else ""
    enriched["category_icon"] = category["icon"] if category else "fa-cube"
    enriched["time_ago"] = time_ago(model["created_at"])
    enriched["filesize_formatted"] = format_file_size(model["filesize"])
    return enriched


def _uploaded_files(*field_names) -> list:
    files = []
    for name in field_names:
        files.extend(item for item in request.files.getlist(name) if item and item.filename)
    return files


def _file_entry(file_storage, stored_name: str, size: int) -> dict:
    extension = extension_of(file_storage.filename)
    return {
        "filename": stored_name,
        "filesize": size,
        "original_name": os.path.splitext(os.path.basename(file_storage.filename))[0] or stored_name,
        "extension": extension,
        "has_color": extension in current_app.config["COLOR_CAPABLE_EXTENSIONS"],
    }


# Модели


def get_models():
    params = request_params()
    config = current_app.config
    page = max(1, int_param("page", 1))
    limit = min(config["MAX_ITEMS_PER_PAGE"], max(1, int_param("limit", config["ITEMS_PER_PAGE"])))

    repository = get_repository()
    models = repository.search_models(
        (params.get("query") or params.get("q") or "").strip(),
        params.get("category") or None,
        params.get("sort") or "newest",
    )

    total = len(models)
    offset = (page - 1) * limit
    users = {user["id"]: user for user in repository.list_users()}
    categories = {category["id"]: category for category in repository.list_categories()}
    page_models = [_enrich(model, users, categories) for model in models[offset : offset + limit]]

    return api_success(
        models=page_models,
        pagination={
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    )


def get_model():
    model_id = request_params().get("id") or ""
    model, error = _model_or_404(model_id)
    if error is not None:
        return error

    repository = get_repository()
    if repository.increment_stat(model_id, "views"):
        model["views"] += 1

    author = repository.get_user(model["user_id"])
    model["author"] = author["username"] if author else "Unknown"
    model["author_avatar"] = author.get("avatar") if author else None
    model["time_ago"] = time_ago(model["created_at"])

    user = session_user()
    model["is_favorited"] = bool(user and model_id in user.get("favorites", []))
    return api_success(model=model)


@login_required_api
def upload_model():
    if is_rate_limited("upload", limit=30, window_seconds=10 * 60):
        return api_error(_("Слишком много загрузок. Попробуйте позже."), 429)

    config = current_app.config
    params = request_params()
    title = (params.get("title") or "").strip()
    category = params.get("category") or ""
    if not title or not category:
        return api_error(_("Название и категория обязательны"), 400)

    repository = get_repository()
    if repository.get_category(category) is None:
        return api_error(_("Категория не найдена"), 400)

    model_files = _uploaded_files("model_files", "files", "model_file", "stl_file")
    if not model_files:
        return api_error(_("Файл не выбран"), 400)
    if len(model_files) > config["MAX_FILES_PER_MODEL"]:
        return api_error(_("Слишком много файлов (максимум %(count)s)", count=config["MAX_FILES_PER_MODEL"]), 400)

    photos = _uploaded_files("photos", "photo")
    if len(photos) > config["MAX_PHOTOS_PER_MODEL"]:
        return api_error(_("Слишком много фото (максимум %(count)s)", count=config["MAX_PHOTOS_PER_MODEL"]), 400)

    # Всё проверяется до первой записи на диск
    for file_storage in model_files:
        error = validate_model_file(file_storage, config["ALLOWED_EXTENSIONS"], config["MAX_FILE_SIZE"])
        if error:
            return api_error(error, 400)
    photo_extensions = []
    for file_storage in photos:
        extension, error = validate_photo(
            file_storage,
            config["ALLOWED_PHOTO_EXTENSIONS"],
            config["ALLOWED_IMAGE_FORMATS"],
            config["MAX_PHOTO_SIZE"],
        )
        if error:
            return api_error(error, 400)
        photo_extensions.append(extension)

    upload_folder = config["UPLOAD_FOLDER"]
    written: list[str] = []
    file_entries = []
    photo_names = []
    try:
        for file_storage in model_files:
            stored_name = model_storage_name(file_storage.filename)
            size = save_upload(file_storage, upload_folder, stored_name, config["MAX_FILE_SIZE"])
            written.append(stored_name)
            file_entries.append(_file_entry(file_storage, stored_name, size))
        for file_storage, extension in zip(photos, photo_extensions):
            stored_name = photo_storage_name(extension)
            save_upload(file_storage, upload_folder, stored_name, config["MAX_PHOTO_SIZE"])
            written.append(stored_name)
            photo_names.append(stored_name)
    except UploadTooLarge:
        remove_files(upload_folder, written)
        return api_error(_("Файл слишком большой"), 413)
    except OSError:
        remove_files(upload_folder, written)
        current_app.logger.exception("Не удалось сохранить загруженные файлы")
        return api_error(_("Не удалось сохранить файл"), 500)

    model_id = repository.create_model(
        {
            "user_id": session_user()["id"],
            "title": title,
            "description": params.get("description") or "",
            "category": category,
            "tags": parse_tags(params.get("tags")),
            "license": params.get("license") or config["DEFAULT_LICENSE"],
            "print_settings": parse_print_settings(params.get("print_settings")),
            "primary_display": params.get("primary_display") or "auto",
            "files": file_entries,
            "photos": photo_names,
        }
    )
    if not model_id:
        remove_files(upload_folder, written)
        return api_error(_("Не удалось создать модель"), 500)

    current_app.logger.info("Опубликована модель %s (%s файлов)", model_id, len(file_entries))
    return api_success(model_id=model_id)


@login_required_api
def update_model():
    params = request_params()
    model, error = _managed_model(params.get("id") or "")
    if error is not None:
        return error

    data = {}
    if "title" in params:
        data["title"] = (params.get("title") or "").strip()
        if not data["title"]:
            return api_error(_("Название не может быть пустым"), 400)
    for field in ("description", "category", "license", "primary_display"):
        if field in params:
            data[field] = params.get(field) or ""
    if "tags" in params:
        data["tags"] = parse_tags(params.get("tags"))
    if "print_settings" in params:
        data["print_settings"] = parse_print_settings(params.get("print_settings"))
    if "featured" in params and is_admin():
        data["featured"] = bool_param(params.get("featured"))

    status = get_repository().update_model(model["id"], data)
    if not status:
        return status_error(status, _("Модель не найдена"), invalid=_("Категория не найдена"))
    return api_success()


@login_required_api
def delete_model():
    model, error = _managed_model(request_params().get("id") or "")
    if error is not None:
        return error

    status = get_repository().delete_model(model["id"])
    if not status:
        return status_error(status, _("Модель не найдена"))
    current_app.logger.info("Удалена модель %s", model["id"])
    return api_success()


@login_required_api
def add_model_file():
    config = current_app.config
    params = request_params()
    model, error = _managed_model(params.get("model_id") or params.get("id") or "")
    if error is not None:
        return error

    file_storage = request.files.get("file")
    validation_error = validate_model_file(file_storage, config["ALLOWED_EXTENSIONS"], config["MAX_FILE_SIZE"])
    if validation_error:
        return api_error(validation_error, 400)
    if len(model["files"]) >= config["MAX_FILES_PER_MODEL"]:
        return api_error(_("Слишком много файлов (максимум %(count)s)", count=config["MAX_FILES_PER_MODEL"]), 400)

    upload_folder = config["UPLOAD_FOLDER"]
    stored_name = model_storage_name(file_storage.filename)
    try:
        size = save_upload(file_storage, upload_folder, stored_name, config["MAX_FILE_SIZE"])
    except UploadTooLarge:
        return api_error(_("Файл слишком большой"), 413)

    entry = _file_entry(file_storage, stored_name, size)
    status = get_repository().add_model_file(model["id"], entry)
    if not status:
        remove_file(upload_folder, stored_name)
        return status_error(status, _("Модель не найдена"))
    return api_success(file=entry)


@login_required_api
def remove_model_file():
    params = request_params()
    model, error = _managed_model(params.get("model_id") or params.get("id") or "")
    if error is not None:
        return error

    status = get_repository().remove_model_file(model["id"], params.get("filename") or "")
    if not status:
        return status_error(
            status,
            _("Файл не найден"),
            conflict=_("Нельзя удалить последний файл модели"),
        )
    return api_success()


@login_required_api
def add_model_photo():
    config = current_app.config
    params = request_params()
    model, error = _managed_model(params.get("model_id") or params.get("id") or "")
    if error is not None:
        return error

    file_storage = request.files.get("photo")
    extension, validation_error = validate_photo(
        file_storage,
        config["ALLOWED_PHOTO_EXTENSIONS"],
        config["ALLOWED_IMAGE_FORMATS"],
        config["MAX_PHOTO_SIZE"],
    )
    if validation_error:
        return api_error(validation_error, 400)
    if len(model["photos"]) >= config["MAX_PHOTOS_PER_MODEL"]:
        return api_error(_("Слишком много фото (максимум %(count)s)", count=config["MAX_PHOTOS_PER_MODEL"]), 400)

    upload_folder = config["UPLOAD_FOLDER"]
    stored_name = photo_storage_name(extension)
    try:
        save_upload(file_storage, upload_folder, stored_name, config["MAX_PHOTO_SIZE"])
    except UploadTooLarge:
        return api_error(_("Фото слишком большое"), 413)

    status = get_repository().add_model_photo(model["id"], stored_name)
    if not status:
        remove_file(upload_folder, stored_name)
        return status_error(status, _("Модель не найдена"))
    return api_success(photo=stored_name)


@login_required_api
def remove_model_photo():
    params = request_params()
    model, error = _managed_model(params.get("model_id") or params.get("id") or "")
    if error is not None:
        return error

    status = get_repository().remove_model_photo(model["id"], params.get("filename") or "")
    if not status:
        return status_error(status, _("Фото не найдено"))
    return api_success()


def record_download(model: dict) -> None:
    """Увеличивает счётчик скачиваний модели и её автора."""
    repository = get_repository()
    repository.increment_stat(model["id"], "downloads")
    author = repository.get_user(model["user_id"])
    if author:
        repository.update_user(author["id"], {"download_count": (author.get("download_count") or 0) + 1})


@login_required_api
@feature_required("downloads")
def download_model():
    model, error = _model_or_404(request_params().get("id") or "")
    if error is not None:
        return error

    record_download(model)
    download_file = model["files"][0]["filename"] if model["files"] else model["filename"]
    extension = extension_of(download_file) or "stl"
    return api_success(
        download_url=f"uploads/{download_file}",
        filename=f"{model['title']}.{extension}",
    )


@feature_required("likes")
def like_model():
    model_id = request_params().get("id") or ""
    model, error = _model_or_404(model_id)
    if error is not None:
        return error

    # Один лайк на модель в пределах сессии
    liked = list(session.get("liked_models", []))
    if model_id in liked:
        return api_error(_("Вы уже отметили эту модель"), 200, likes=model["likes"], already_liked=True)

    status = get_repository().increment_stat(model_id, "likes")
    if not status:
        return status_error(status, _("Модель не найдена"))
    session["liked_models"] = liked + [model_id]
    return api_success(likes=model["likes"] + 1, already_liked=False)


def check_liked():
    model_id = request_params().get("id") or ""
    return api_success(is_liked=model_id in session.get("liked_models", []))


@login_required_api
@feature_required("favorites")
def favorite_model():
    model, error = _model_or_404(request_params().get("id") or "")
    if error is not None:
        return error

    repository = get_repository()
    user_id = session_user()["id"]
    status = repository.toggle_favorite(user_id, model["id"])
    if not status:
        return status_error(status, _("Модель не найдена"))

    user = repository.get_user(user_id)
    return api_success(is_favorited=model["id"] in (user or {}).get("favorites", []))


# Категории


def get_categories():
    return api_success(categories=get_repository().list_categories())


@admin_required
def create_category():
    params = request_params()
    name = (params.get("name") or "").strip()
    if not name:
        return api_error(_("Название обязательно"), 400)

    category_id = get_repository().create_category(
        {
            "name": name,
            "icon": params.get("icon") or "fa-cube",
            "description": params.get("description") or "",
        }
    )
    if not category_id:
        return api_error(_("Не удалось создать категорию"), 400)
    return api_success(category_id=category_id)


@admin_required
def update_category():
    params = request_params()
    data = {field: params[field] for field in ("name", "icon", "description") if field in params}
    if "name" in data:
        data["name"] = (data["name"] or "").strip()

    status = get_repository().update_category(params.get("id") or "", data)
    if not status:
        return status_error(status, _("Категория не найдена"), invalid=_("Название обязательно"))
    return api_success()


@admin_required
def delete_category():
    status = get_repository().delete_category(request_params().get("id") or "")
    if not status:
        return status_error(
            status,
            _("Категория не найдена"),
            conflict=_("Нельзя удалить категорию, в которой есть модели"),
        )
    return api_success()


# Пользователи


@admin_required
def get_users():
    return api_success(users=get_repository().list_users())


def get_user():
    user_id = request_params().get("id") or ""
    repository = get_repository()
    user = repository.get_user(user_id) if user_id else None
    if user is None:
        return api_error(_("Пользователь не найден"), 404)

    viewer = session_user()
    if not (viewer and (viewer["id"] == user_id or viewer.get("is_admin"))):
        user.pop("email", None)
    user["models"] = repository.list_models_by_user(user_id)
    return api_success(user=user)


@login_required_api
def update_user():
    params = request_params()
    user_id = params.get("id") or session_user()["id"]
    if not can_manage(user_id):
        return api_error(_("Недостаточно прав"), 403)

    data = {field: params[field] or "" for field in ("bio", "location", "website", "twitter", "github") if field in params}
    if "is_admin" in params and is_admin():
        data["is_admin"] = bool_param(params.get("is_admin"))

    status = get_repository().update_user(user_id, data)
    if not status:
        return status_error(status, _("Пользователь не найден"))
    return api_success()


@login_required_api
def upload_avatar():
    config = current_app.config
    file_storage = request.files.get("avatar")
    extension, validation_error = validate_photo(
        file_storage,
        config["ALLOWED_PHOTO_EXTENSIONS"],
        config["ALLOWED_IMAGE_FORMATS"],
        config["MAX_AVATAR_SIZE"],
    )
    if validation_error:
        return api_error(validation_error, 400)

    user = session_user()
    upload_folder = config["UPLOAD_FOLDER"]
    stored_name = avatar_storage_name(user["id"], extension)
    try:
        save_upload(file_storage, upload_folder, stored_name, config["MAX_AVATAR_SIZE"])
    except UploadTooLarge:
        return api_error(_("Файл слишком большой"), 413)

    status = get_repository().update_user(user["id"], {"avatar": stored_name})
    if not status:
        remove_file(upload_folder, stored_name)
        return status_error(status, _("Пользователь не найден"))

    # Старый аватар удаляется только после успешного обновления профиля
    if user.get("avatar") and user["avatar"] != stored_name:
        remove_file(upload_folder, user["avatar"])
    return api_success(avatar=stored_name)


@admin_required
def delete_user():
    user_id = request_params().get("id") or ""
    if user_id == session_user()["id"]:
        return api_error(_("Нельзя удалить собственный аккаунт"), 400)

    status = get_repository().delete_user(user_id)
    if not status:
        return status_error(status, _("Пользователь не найден"))
    current_app.logger.info("Удалён пользователь %s", user_id)
    return api_success()


# Одобрение регистраций


@admin_required
def get_pending_users():
    return api_success(users=get_repository().list_pending_users())


@admin_required
def approve_user():
    status = get_repository().approve_user(request_params().get("id") or "")
    if not status:
        return status_error(status, _("Пользователь не найден"))
    return api_success()


@admin_required
def reject_user():
    user_id = request_params().get("id") or ""
    if user_id == session_user()["id"]:
        return api_error(_("Нельзя удалить собственный аккаунт"), 400)

    status = get_repository().reject_user(user_id)
    if not status:
        return status_error(status, _("Пользователь не найден"))
    current_app.logger.info("Отклонена регистрация пользователя %s", user_id)
    return api_success()


# Настройки сайта


def get_settings():
    return api_success(settings=get_repository().get_settings())


@admin_required
def get_settings_schema():
    return api_success(schema=SETTINGS_SCHEMA, settings=get_repository().get_settings())


@admin_required
def save_settings():
    params = request_params()
    values = params.get("settings")
    if not isinstance(values, dict):
        values = {key: value for key, value in params.items() if key in DEFAULT_SETTINGS}
    if not values:
        return api_error(_("Нет настроек для сохранения"), 400)

    status = get_repository().set_settings(values)
    if not status:
        return status_error(status, _("Настройка не найдена"), invalid=_("Некорректное значение настройки"))
    current_app.logger.info("Изменены настройки сайта: %s", ", ".join(sorted(values)))
    return api_success(settings=get_repository().get_settings())


# Приглашения


@admin_required
def get_invites():
    return api_success(invites=get_repository().list_invites())


@admin_required
def create_invite():
    params = request_params()
    try:
        max_uses = int(params.get("max_uses", 1))
        expires_days = int(params.get("expires_days") or 0)
    except (TypeError, ValueError):
        return api_error(_("Некорректные параметры приглашения"), 400)
    if max_uses < 0 or expires_days < 0:
        return api_error(_("Некорректные параметры приглашения"), 400)

    repository = get_repository()
    code = repository.create_invite(
        {
            "created_by": session_user()["id"],
            "max_uses": max_uses,
            "expires_days": expires_days,
            "note": params.get("note") or "",
        }
    )
    if not code:
        return api_error(_("Не удалось создать приглашение"), 500)
    return api_success(code=code, invite=repository.get_invite_by_code(code))


@admin_required
def toggle_invite():
    repository = get_repository()
    invite_id = request_params().get("id") or ""
    status = repository.toggle_invite(invite_id)
    if not status:
        return status_error(status, _("Приглашение не найдено"))
    return api_success(active=repository.get_invite(invite_id)["active"])


@admin_required
def delete_invite():
    status = get_repository().delete_invite(request_params().get("id") or "")
    if not status:
        return status_error(status, _("Приглашение не найдено"))
    return api_success()


# Статистика


def get_stats():
    return api_success(stats=get_repository().get_stats())


ACTIONS = {
    **AUTH_ACTIONS,
    "get_models": get_models,
    "get_model": get_model,
    "upload_model": upload_model,
    "update_model": update_model,
    "delete_model": delete_model,
    "add_model_file": add_model_file,
    "remove_model_file": remove_model_file,
    "add_model_photo": add_model_photo,
    "remove_model_photo": remove_model_photo,
    "download_model": download_model,
    "like_model": like_model,
    "check_liked": check_liked,
    "favorite_model": favorite_model,
    "get_categories": get_categories,
    "create_category": create_category,
    "update_category": update_category,
    "delete_category": delete_category,
    "get_users": get_users,
    "get_user": get_user,
    "update_user": update_user,
    "upload_avatar": upload_avatar,
    "delete_user": delete_user,
    "get_pending_users": get_pending_users,
    "approve_user": approve_user,
    "reject_user": reject_user,
    "get_settings": get_settings,
    "get_settings_schema": get_settings_schema,
    "save_settings": save_settings,
    "get_invites": get_invites,
    "create_invite": create_invite,
    "toggle_invite": toggle_invite,
    "delete_invite": delete_invite,
    "get_stats": get_stats,
}


def register_routes(app):
    @app.route("/api", methods=["GET", "POST"])
    @app.route("/api.php", methods=["GET", "POST"])
    def api():
        """Единая точка входа: выбирает обработчик по параметру action."""
        action = request_params().get("action") or ""
        handler = ACTIONS.get(action)
        if handler is None:
            return api_error(_("Неизвестное действие"), 400)
        if request.method == "GET" and action not in READ_ACTIONS:
            return api_error(_("Это действие требует POST-запроса"), 405)

        try:
            if action not in MAINTENANCE_ACTIONS and not is_admin():
                settings = get_repository().get_settings()
                if settings["maintenance_mode"]:
                    return api_error(settings["maintenance_message"], 503, maintenance=True)
            return handler()
        except Exception:
            current_app.logger.exception("Ошибка обработки действия %s", action)
            return api_error(_("Внутренняя ошибка сервера"), 500)
