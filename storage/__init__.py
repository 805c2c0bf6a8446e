"""
Модуль: `storage/__init__.py`.
Назначение: Выбор хранилища при запуске приложения.

Если задан DATABASE_URL и база отвечает, используется SqlRepository,
иначе – JsonRepository в каталоге DATA_DIR. Выбор делается один раз,
результат лежит в app.extensions["catalog"].
"""

import logging
import os

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from storage.base import CatalogRepository, Status
from storage.helpers import DEFAULT_LICENSE
from storage.json_backend import JsonRepository
from storage.sql_backend import SqlRepository

logger = logging.getLogger(__name__)

__all__ = ["CatalogRepository", "Status", "select_repository", "get_repository"]


def _database_available(app) -> bool:
    database_url = app.config.get("DATABASE_URL")
    if not database_url:
        return False

    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    try:
        db.init_app(app)
        with app.app_context():
            db.session.execute(text("SELECT 1"))
            db.create_all()
    except (SQLAlchemyError, ImportError):
        logger.warning("База данных недоступна, используется JSON-хранилище", exc_info=True)
        return False
    return True


def select_repository(app) -> CatalogRepository:
    upload_folder = app.config["UPLOAD_FOLDER"]
    os.makedirs(upload_folder, exist_ok=True)
    options = {"default_license": app.config.get("DEFAULT_LICENSE") or DEFAULT_LICENSE}

    if _database_available(app):
        repository = SqlRepository(upload_folder, **options)
    else:
        repository = JsonRepository(app.config["DATA_DIR"], upload_folder, **options)

    app.extensions["catalog"] = repository
    app.logger.info("Хранилище каталога: %s", repository.name)

    if app.config.get("SEED_DEFAULTS"):
        with app.app_context():
            repository.seed_defaults(app.config["ADMIN_PASSWORD"])
    return repository


def get_repository() -> CatalogRepository:
    return current_app.extensions["catalog"]
