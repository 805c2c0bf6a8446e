"""
Модуль: `utils/cleanup.py`.
Назначение: Очистка папки загрузок от файлов, на которые не ссылается ни одна запись.
"""

import logging
import os

logger = logging.getLogger(__name__)


def cleanup_orphan_uploads(repository, upload_folder: str) -> list[str]:
    """Удаляет файлы-сироты и возвращает их имена."""
    if not os.path.isdir(upload_folder):
        return []

    referenced = repository.referenced_uploads()
    removed = []
    for name in sorted(os.listdir(upload_folder)):
        path = os.path.join(upload_folder, name)
        if name in referenced or not os.path.isfile(path) or name.startswith("."):
            continue
        try:
            os.remove(path)
        except OSError:
            logger.exception("Не удалось удалить файл %s", path)
            continue
        removed.append(name)

    if removed:
        logger.info("Удалено файлов без ссылок: %s", len(removed))
    return removed
