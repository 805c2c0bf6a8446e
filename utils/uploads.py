"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: utils/uploads.py – приём и хранение загруженных файлов.

Назначение модуля:
- Проверка расширения и размера файла до записи на диск.
- Формирование безопасных уникальных имён файлов.
- Потоковая запись с прерыванием при превышении лимита.
- Проверка фотографий и аватаров средствами Pillow.
- Удаление физических файлов при удалении записей и откате загрузки.
"""

import os
import re
import secrets
import time

from PIL import Image, UnidentifiedImageError
from flask_babel import gettext as _

_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9._-]")
_CHUNK_SIZE = 64 * 1024


class UploadTooLarge(Exception):
    """Файл превысил допустимый размер во время записи."""


def sanitize_filename(filename: str) -> str:
    cleaned = _UNSAFE_CHARS_RE.sub("", os.path.basename(filename or ""))
    return cleaned.lstrip(".") or "file"


def extension_of(filename: str) -> str:
    if not filename or "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def model_storage_name(original_name: str) -> str:
    """Имя файла модели на диске: случайный префикс + очищенное исходное имя."""
    return f"{secrets.token_hex(8)}_{sanitize_filename(original_name)}"


def photo_storage_name(extension: str) -> str:
    return f"photo_{secrets.token_hex(8)}.{extension}"


def avatar_storage_name(user_id: str, extension: str) -> str:
    return f"avatar_{sanitize_filename(user_id)}_{int(time.time())}.{extension}"


def stream_size(file_storage) -> int:
    """Размер загруженного файла по его потоку (позиция потока восстанавливается)."""
    stream = file_storage.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def validate_model_file(file_storage, allowed_extensions: set[str], max_size: int) -> str | None:
    """Возвращает текст ошибки или None, если файл можно сохранять."""
    if file_storage is None or not file_storage.filename:
        return _("Файл не выбран")

    extension = extension_of(file_storage.filename)
    if extension not in allowed_extensions:
        allowed = ", ".join(sorted(ext.upper() for ext in allowed_extensions))
        return _("Неподдерживаемый формат файла. Допустимо: %(allowed)s", allowed=allowed)

    if stream_size(file_storage) > max_size:
        return _("Файл слишком большой (максимум %(size)s МБ)", size=max_size // (1024 * 1024))

    return None


def validate_photo(file_storage, allowed_extensions: set[str], allowed_formats: set[str], max_size: int):
    """Проверяет фото: расширение, размер и то, что это действительно изображение.

    Возвращает пару (расширение, None) или (None, текст ошибки).
    """
    if file_storage is None or not file_storage.filename:
        return None, _("Фото не выбрано")

    extension = extension_of(file_storage.filename)
    if extension not in allowed_extensions:
        return None, _("Допустимы только изображения JPG, PNG, GIF, WebP")

    if stream_size(file_storage) > max_size:
        return None, _("Фото слишком большое (максимум %(size)s МБ)", size=max_size // (1024 * 1024))

    file_storage.stream.seek(0)
    try:
        with Image.open(file_storage.stream) as image:
            image_format = (image.format or "").lower()
            image.verify()
    except (UnidentifiedImageError, OSError):
        return None, _("Файл не является корректным изображением")
    finally:
        file_storage.stream.seek(0)

    if image_format not in allowed_formats:
        return None, _("Недопустимый формат изображения")

    return extension, None


def save_upload(file_storage, folder: str, filename: str, max_size: int) -> int:
    """Записывает файл по частям и возвращает его размер.

    При превышении max_size недописанный файл удаляется и выбрасывается UploadTooLarge.
    """
    os.makedirs(folder, exist_ok=True)
    path = os.path.join(folder, filename)
    written = 0
    file_storage.stream.seek(0)
    try:
        with open(path, "wb") as target:
            while True:
                chunk = file_storage.stream.read(_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_size:
                    raise UploadTooLarge(filename)
                target.write(chunk)
    except BaseException:
        remove_file(folder, filename)
        raise
    return written


def remove_file(folder: str, filename: str) -> bool:
    """Удаляет файл из папки загрузок; False, если файла уже нет."""
    path = os.path.join(folder, os.path.basename(filename))
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    return True


def remove_files(folder: str, filenames) -> None:
    for filename in filenames:
        remove_file(folder, filename)
