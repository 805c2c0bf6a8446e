"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: routes/auth.py – аутентификация и управление сессиями.

Назначение модуля:
- Регистрация новых пользователей с проверкой имени, email и пароля,
  кодов приглашений и необходимости одобрения администратором.
- Вход и выход из системы с использованием Flask-Login.
- Смена пароля текущим пользователем.
- Загрузка пользователя из хранилища по идентификатору сессии.
- Выдача и проверка CSRF-токена сессии.
"""

import hmac
import secrets

from flask import current_app, request, session
from flask_babel import gettext as _
from flask_login import UserMixin, current_user, login_user, logout_user

from extensions import login_manager
from routes.helpers import (
    api_error,
    api_success,
    bool_param,
    login_required_api,
    request_params,
    status_error,
)
from storage import get_repository
from utils.rate_limit import is_rate_limited
from utils.validators import normalize_email, validate_password, validate_username


class LoginUser(UserMixin):
    """Обёртка словаря пользователя из хранилища для Flask-Login."""

    def __init__(self, data: dict):
        self.data = data
        self.id = data["id"]

    @property
    def username(self) -> str:
        return self.data["username"]

    @property
    def is_admin(self) -> bool:
        return bool(self.data.get("is_admin"))


@login_manager.user_loader
def load_user(user_id):
    user = get_repository().get_user(user_id)
    if user is None or not (user.get("approved", True) or user.get("is_admin")):
        return None
    return LoginUser(user)


@login_manager.unauthorized_handler
def handle_unauthorized():
    return api_error(_("Требуется вход в систему"), 401)


def session_payload(user: dict) -> dict:
    return {"id": user["id"], "username": user["username"], "is_admin": bool(user.get("is_admin"))}


def ensure_csrf_token() -> str:
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def is_csrf_valid() -> bool:
    expected = session.get("csrf_token")
    provided = request.headers.get("X-CSRF-Token") or request.form.get("csrf_token")
    if not provided:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            provided = body.get("csrf_token")
    if not expected or not provided or not isinstance(provided, str):
        return False
    return hmac.compare_digest(expected, provided)


def login():
    if is_rate_limited("login", limit=10, window_seconds=5 * 60):
        return api_error(_("Слишком много попыток входа. Попробуйте через несколько минут."), 429)

    params = request_params()
    username = (params.get("username") or "").strip()
    password = params.get("password") or ""
    if not username or not password:
        return api_error(_("Пожалуйста, заполните все поля"), 400)

    user = get_repository().authenticate(username, password)
    if user is None:
        current_app.logger.info("Неудачная попытка входа для %s", username)
        return api_error(_("Неверное имя пользователя или пароль"), 401)

    if not user.get("approved", True) and not user.get("is_admin"):
        return api_error(_("Аккаунт ожидает одобрения администратора"), 403, pending_approval=True)

    login_user(LoginUser(user), remember=bool_param(params.get("remember", False)))
    return api_success(user=session_payload(user))


def _invite_error(problem: str) -> str:
    messages = {
        "inactive": _("Этот код приглашения отключён"),
        "exhausted": _("Этот код приглашения уже использован максимальное число раз"),
        "expired": _("Срок действия кода приглашения истёк"),
    }
    return messages.get(problem, _("Неверный код приглашения"))


def register():
    if is_rate_limited("register", limit=10, window_seconds=15 * 60):
        return api_error(_("Слишком много попыток регистрации. Попробуйте через несколько минут."), 429)

    params = request_params()
    username = (params.get("username") or "").strip()
    raw_email = params.get("email") or ""
    password = params.get("password") or ""
    invite_code = (params.get("invite_code") or "").strip()

    repository = get_repository()
    settings = repository.get_settings()

    # Действующее приглашение открывает закрытую регистрацию и снимает одобрение администратором
    invite, invite_problem = repository.validate_invite_code(invite_code) if invite_code else (None, None)
    if not settings["allow_registration"] and invite is None:
        if invite_problem:
            return api_error(_invite_error(invite_problem), 403)
        return api_error(_("Регистрация возможна только по коду приглашения"), 403)
    if invite_problem:
        return api_error(_invite_error(invite_problem), 400)

    if not username or not raw_email.strip() or not password:
        return api_error(_("Пожалуйста, заполните все поля"), 400)

    username_error = validate_username(username)
    if username_error:
        return api_error(username_error, 400)

    email = normalize_email(raw_email)
    if not email:
        return api_error(_("Введите корректный email"), 400)

    password_error = validate_password(password)
    if password_error:
        return api_error(password_error, 400)

    if repository.get_user_by_username(username):
        return api_error(_("Пользователь с таким именем уже существует"), 400)
    if repository.get_user_by_email(email):
        return api_error(_("Этот email уже используется другим аккаунтом"), 400)

    needs_approval = bool(settings["require_admin_approval"]) and invite is None
    user_id = repository.create_user(
        {"username": username, "email": email, "password": password, "needs_approval": needs_approval}
    )
    if not user_id:
        return api_error(_("Не удалось создать аккаунт"), 500)

    if invite is not None and not repository.use_invite_code(invite["code"]):
        current_app.logger.warning("Не удалось отметить использование приглашения %s", invite["id"])

    current_app.logger.info("Зарегистрирован пользователь %s", username)
    if needs_approval:
        return api_success(
            user_id=user_id,
            pending_approval=True,
            message=_("Аккаунт создан и ожидает одобрения администратора"),
        )

    login_user(LoginUser(repository.get_user(user_id)))
    return api_success(user_id=user_id)


def logout():
    logout_user()
    session.pop("liked_models", None)
    return api_success()


def check_auth():
    if current_user.is_authenticated:
        return api_success(
            authenticated=True,
            user=session_payload(current_user.data),
            csrf_token=ensure_csrf_token(),
        )
    return api_success(authenticated=False, csrf_token=ensure_csrf_token())


def csrf_token():
    return api_success(csrf_token=ensure_csrf_token())


@login_required_api
def change_password():
    params = request_params()
    current_password = params.get("current_password") or ""
    new_password = params.get("new_password") or ""

    repository = get_repository()
    if repository.authenticate(current_user.username, current_password) is None:
        return api_error(_("Текущий пароль указан неверно"), 400)

    password_error = validate_password(new_password)
    if password_error:
        return api_error(password_error, 400)

    status = repository.change_password(current_user.id, new_password)
    if not status:
        return status_error(status, _("Пользователь не найден"))
    return api_success()


AUTH_ACTIONS = {
    "login": login,
    "register": register,
    "logout": logout,
    "check_auth": check_auth,
    "csrf_token": csrf_token,
    "change_password": change_password,
}
