"""
Название: «Model Vault»
Язык: Python (Flask)
Краткое описание: каталог 3D-моделей для печати: загрузка моделей с фото и настройками печати,
поиск по общей библиотеке, избранное и лайки, модерация категорий и пользователей.
"""

import os

from flask import Flask, g, jsonify, request
from flask_babel import gettext as _
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from cli import register_commands
from config import Config
from extensions import babel, cors, login_manager
import models  # noqa: F401 - регистрирует модели для db.create_all()
from routes.api import register_routes as register_api_routes
from routes.auth import is_csrf_valid
from routes.files import register_routes as register_file_routes
from storage import select_repository
from utils.i18n import resolve_request_language
from utils.rate_limit import InMemoryRateLimiter


def create_app(config_object=None) -> Flask:
    """Фабрика приложения, собирающая все модули воедино.

    config_object – класс/объект конфигурации или словарь, переопределяющий Config
    (используется в тестах).
    """
    app = Flask(__name__)
    app.config.from_object(Config)
    if isinstance(config_object, dict):
        app.config.from_mapping(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)

    # Инициализация расширений
    login_manager.init_app(app)

    def select_locale() -> str:
        return getattr(g, "lang", app.config["DEFAULT_LANGUAGE"])

    babel.init_app(app, locale_selector=select_locale)

    if app.config["CORS_ENABLED"]:
        cors.init_app(
            app,
            resources={r"/api*": {"origins": app.config["CORS_ORIGINS"]}},
            supports_credentials=True,
        )

    app.extensions["rate_limiter"] = InMemoryRateLimiter()

    # Гарантируем наличие служебных директорий и выбираем хранилище
    os.makedirs(app.instance_path, exist_ok=True)
    select_repository(app)

    # Регистрация роутов по модулям
    register_api_routes(app)
    register_file_routes(app)
    register_commands(app)

    @app.before_request
    def resolve_request_language_middleware():
        g.lang = resolve_request_language(
            request=request,
            supported_languages=app.config["SUPPORTED_LANGUAGES"],
            cookie_name=app.config["LANG_COOKIE_NAME"],
            default_language=app.config["DEFAULT_LANGUAGE"],
        )

    @app.before_request
    def enforce_csrf():
        if not app.config["CSRF_ENABLED"]:
            return None
        if request.method in {"GET", "HEAD", "OPTIONS", "TRACE"}:
            return None
        if request.endpoint in {"healthz"}:
            return None
        if is_csrf_valid():
            return None

        return (
            jsonify(
                {
                    "success": False,
                    "error": _("Недействительный CSRF-токен. Обновите страницу и повторите попытку."),
                }
            ),
            403,
        )

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(error):
        return jsonify({"success": False, "error": _("Слишком большой запрос")}), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        if error.code is None or error.code < 400:
            return error
        return jsonify({"success": False, "error": error.description}), error.code

    @app.after_request
    def apply_security_headers(response):
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Permissions-Policy", "camera=(), microphone=(), geolocation=()")
        return response

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "storage": app.extensions["catalog"].name}, 200

    return app


if __name__ == "__main__":
    is_production = os.environ.get("FLASK_ENV", "").lower() == "production"
    create_app().run(debug=not is_production)
