"""
Модуль: `cli.py`.
Назначение: Служебные команды Flask CLI: начальные данные, пересчёт счётчиков,
очистка папки загрузок от файлов без ссылок.
"""

import click
from flask import current_app

from storage import get_repository
from utils.cleanup import cleanup_orphan_uploads


def register_commands(app):
    @app.cli.command("seed")
    @click.option("--admin-password", default=None, help="Пароль администратора по умолчанию.")
    def seed(admin_password):
        """Создаёт стандартные категории и администратора, если хранилище пусто."""
        get_repository().seed_defaults(admin_password or current_app.config["ADMIN_PASSWORD"])
        click.echo("Начальные данные на месте.")

    @app.cli.command("recount")
    def recount():
        """Пересчитывает число моделей в категориях и у пользователей."""
        corrected = get_repository().recalculate_counts()
        click.echo(f"Исправлено записей: {corrected}")

    @app.cli.command("cleanup-uploads")
    def cleanup_uploads():
        """Удаляет из папки загрузок файлы, на которые не ссылается ни одна запись."""
        removed = cleanup_orphan_uploads(get_repository(), current_app.config["UPLOAD_FOLDER"])
        for name in removed:
            click.echo(name)
        click.echo(f"Удалено файлов: {len(removed)}")
