"""
Модуль: `storage/helpers.py`.
Назначение: Общие для обоих хранилищ правила: идентификаторы, slug категорий,
нормализация списка файлов, текстовый поиск и сортировка выдачи.
"""

import re
import secrets
from datetime import datetime, timedelta
from typing import Callable, Iterable

from utils.formatting import format_timestamp, parse_timestamp, utcnow

SORT_OPTIONS = ("newest", "oldest", "popular", "likes")
ALLOWED_STATS = frozenset({"downloads", "likes", "views"})

USER_MUTABLE_FIELDS = frozenset(
    {
        "username",
        "email",
        "is_admin",
        "avatar",
        "bio",
        "location",
        "website",
        "twitter",
        "github",
        "model_count",
        "download_count",
        "approved",
    }
)
CATEGORY_MUTABLE_FIELDS = frozenset({"name", "icon", "description"})
MODEL_MUTABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "tags",
        "license",
        "print_settings",
        "primary_display",
        "featured",
    }
)

DEFAULT_CATEGORY_ICON = "fa-cube"
DEFAULT_LICENSE = "CC BY-NC"

DEFAULT_CATEGORIES = [
    {"name": "Arcade Parts", "icon": "fa-gamepad", "description": "Buttons, joysticks, bezels, and arcade cabinet components"},
    {"name": "Redemption Games", "icon": "fa-ticket", "description": "Parts for ticket and prize redemption machines"},
    {"name": "Signage & Displays", "icon": "fa-sign", "description": "Signs, toppers, marquees, and display pieces"},
    {"name": "Coin-Op & Tokens", "icon": "fa-coins", "description": "Coin mechanisms, token holders, and cash handling"},
    {"name": "Maintenance Tools", "icon": "fa-wrench", "description": "Tools and jigs for maintenance and repairs"},
    {"name": "Prize Displays", "icon": "fa-gift", "description": "Prize shelving, holders, and display units"},
    {"name": "Accessories", "icon": "fa-puzzle-piece", "description": "Cup holders, phone stands, and misc accessories"},
    {"name": "Other", "icon": "fa-cube", "description": "Miscellaneous 3D printable models"},
]

_SLUG_STRIP_RE = re.compile(r"[^a-z0-9-]")


def generate_id() -> str:
    """Непрозрачный идентификатор: 16 шестнадцатеричных символов."""
    return secrets.token_hex(8)


def slugify(name: str) -> str:
    return _SLUG_STRIP_RE.sub("", name.strip().lower().replace(" ", "-"))


def unique_slug(base: str, exists: Callable[[str], bool]) -> str:
    """Добавляет -1, -2, … к slug, пока он не станет свободным."""
    candidate = base
    counter = 1
    while exists(candidate):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate


def file_extension(filename: str) -> str:
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[1].lower()


def normalize_file_entry(entry: dict) -> dict:
    filename = entry["filename"]
    return {
        "filename": filename,
        "filesize": int(entry.get("filesize") or 0),
        "original_name": entry.get("original_name") or filename,
        "extension": (entry.get("extension") or file_extension(filename)).lower(),
        "has_color": bool(entry.get("has_color", False)),
    }


def normalize_files(data: dict) -> list[dict]:
    """Приводит список файлов или одиночный файл старого формата к списку files."""
    files = data.get("files") or []
    if not files and data.get("filename"):
        files = [
            {
                "filename": data["filename"],
                "filesize": data.get("filesize", 0),
                "original_name": data.get("original_name") or data["filename"],
            }
        ]
    return [normalize_file_entry(entry) for entry in files if entry.get("filename")]


def normalize_photos(data: dict) -> list[str]:
    photos = data.get("photos") or []
    if not photos and data.get("photo"):
        photos = [data["photo"]]
    return [photo for photo in photos if photo]


def matches_query(model: dict, query: str) -> bool:
    """Подстрока без учёта регистра в названии, описании или любом теге."""
    needle = query.lower()
    if needle in (model.get("title") or "").lower():
        return True
    if needle in (model.get("description") or "").lower():
        return True
    return any(needle in str(tag).lower() for tag in model.get("tags") or [])


def newest_first(models: Iterable[dict]) -> list[dict]:
    return sorted(models, key=lambda m: parse_timestamp(m.get("created_at")), reverse=True)


def sort_models(models: list[dict], sort: str) -> list[dict]:
    """Сортирует выдачу; на входе список от новых к старым, порядок равных сохраняется."""
    if sort == "oldest":
        return sorted(models, key=lambda m: parse_timestamp(m.get("created_at")))
    if sort == "popular":
        return sorted(models, key=lambda m: m.get("downloads") or 0, reverse=True)
    if sort == "likes":
        return sorted(models, key=lambda m: m.get("likes") or 0, reverse=True)
    return list(models)


def generate_invite_code() -> str:
    """Код приглашения: 8 шестнадцатеричных символов в верхнем регистре."""
    return secrets.token_hex(4).upper()


def new_invite_record(data: dict, code: str, invite_id: str) -> dict | None:
    """Собирает запись приглашения; None, если не указан создатель."""
    if not data.get("created_by"):
        return None
    try:
        max_uses = max(0, int(data.get("max_uses", 1) or 0))
        expires_days = int(data.get("expires_days") or 0)
    except (TypeError, ValueError):
        return None

    now = utcnow()
    return {
        "id": invite_id,
        "code": code,
        "created_by": data["created_by"],
        "created_at": format_timestamp(now),
        "expires_at": format_timestamp(now + timedelta(days=expires_days)) if expires_days > 0 else None,
        "max_uses": max_uses,
        "uses": 0,
        "note": (data.get("note") or "").strip(),
        "active": True,
    }


def invite_problem(invite: dict | None, now: datetime | None = None) -> str | None:
    """Причина, по которой приглашение нельзя использовать, или None.

    max_uses = 0 означает неограниченное число использований.
    """
    if invite is None:
        return "not_found"
    if not invite.get("active"):
        return "inactive"
    max_uses = invite.get("max_uses") or 0
    if max_uses > 0 and (invite.get("uses") or 0) >= max_uses:
        return "exhausted"
    expires_at = invite.get("expires_at")
    if expires_at and parse_timestamp(expires_at) < (now or utcnow()):
        return "expired"
    return None


def normalize_invite_code(code: str) -> str:
    return (code or "").strip().upper()
