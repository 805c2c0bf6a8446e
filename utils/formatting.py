"""
Модуль: `utils/formatting.py`.
Назначение: Единый формат меток времени и человекочитаемые подписи для API.
"""

from datetime import datetime, timezone

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"
_LEGACY_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    """Текущее время UTC без tzinfo (так время хранится в обоих хранилищах)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime:
    """Разбирает метку времени; записи старого формата хранятся без микросекунд."""
    if not value:
        return datetime.min
    for fmt in (TIMESTAMP_FORMAT, _LEGACY_FORMAT):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    return datetime.fromisoformat(value)


def time_ago(value: str, now: datetime | None = None) -> str:
    """Относительное время в стиле «5m ago» для карточек моделей."""
    moment = parse_timestamp(value)
    diff = int(((now or utcnow()) - moment).total_seconds())

    if diff < 60:
        return "just now"
    if diff < 3600:
        return f"{diff // 60}m ago"
    if diff < 86400:
        return f"{diff // 3600}h ago"
    if diff < 604800:
        return f"{diff // 86400}d ago"
    if diff < 2592000:
        return f"{diff // 604800}w ago"
    return f"{moment:%b} {moment.day}, {moment.year}"


def format_file_size(size: int) -> str:
    if size >= 1024 ** 3:
        return f"{size / 1024 ** 3:.2f} GB"
    if size >= 1024 ** 2:
        return f"{size / 1024 ** 2:.2f} MB"
    if size >= 1024:
        return f"{size / 1024:.2f} KB"
    return f"{size} bytes"
