"""
Модуль: `routes/helpers.py`.
Назначение: Общие помощники обработчиков API: разбор параметров, ответы об ошибках,
проверка прав и перевод Status хранилища в HTTP-ответ.
"""

from functools import wraps

from flask import jsonify, request
from flask_babel import gettext as _
from flask_login import current_user

from storage import Status, get_repository


def api_error(message: str, status: int = 400, **extra):
    return jsonify({"success": False, "error": message, **extra}), status


def api_success(**payload):
    return jsonify({"success": True, **payload})


def request_params() -> dict:
    """Параметры запроса: query string, затем форма, затем JSON-тело (последнее важнее)."""
    params = request.args.to_dict()
    params.update(request.form.to_dict())
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        params.update(body)
    return params


def param(name: str, default=None):
    return request_params().get(name, default)


def int_param(name: str, default: int) -> int:
    try:
        return int(param(name, default))
    except (TypeError, ValueError):
        return default


def bool_param(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def session_user() -> dict | None:
    """Словарь текущего пользователя или None для анонима."""
    if current_user.is_authenticated:
        return current_user.data
    return None


def is_admin() -> bool:
    user = session_user()
    return bool(user and user.get("is_admin"))


def can_manage(owner_id: str) -> bool:
    user = session_user()
    return bool(user and (user["id"] == owner_id or user.get("is_admin")))


def login_required_api(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return api_error(_("Требуется вход в систему"), 401)
        return view(*args, **kwargs)

    return wrapper


def admin_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        if not is_admin():
            return api_error(_("Требуются права администратора"), 403)
        return view(*args, **kwargs)

    return wrapper


def feature_enabled(feature: str) -> bool:
    """Включена ли функция сайта (enable_likes, enable_favorites, enable_downloads)."""
    return get_repository().get_setting(f"enable_{feature}", True) is True


def feature_required(feature: str):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            if not feature_enabled(feature):
                return api_error(_("Эта функция отключена администратором"), 403)
            return view(*args, **kwargs)

        return wrapper

    return decorator


def status_error(status: Status, not_found: str, conflict: str | None = None, invalid: str | None = None):
    """Переводит неуспешный Status хранилища в ответ API."""
    if status is Status.NOT_FOUND:
        return api_error(not_found, 404)
    if status is Status.CONFLICT:
        return api_error(conflict or _("Операция противоречит текущему состоянию данных"), 400)
    if status is Status.INVALID:
        return api_error(invalid or _("Некорректные данные"), 400)
    return api_error(_("Внутренняя ошибка сервера"), 500)
