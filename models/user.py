"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: models/user.py – модель пользователя системы.

Назначение модуля:
- Описание ORM-модели User для таблицы users.
- Хранение учётных записей (логин, email, хеш пароля), профиля и денормализованных счётчиков.
"""

from extensions import db
from utils.formatting import format_timestamp, utcnow


class User(db.Model):
    """Класс `User` описывает зарегистрированного участника каталога."""
    __tablename__ = "users"

    id = db.Column(db.String(32), primary_key=True)
    username = db.Column(db.String(50), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password = db.Column(db.String(255), nullable=False)
    is_admin = db.Column(db.Boolean, default=False, nullable=False)
    # Учётные записи, ожидающие одобрения администратора, имеют approved = False
    approved = db.Column(db.Boolean, default=True, nullable=False, index=True)
    avatar = db.Column(db.String(255), nullable=True)
    bio = db.Column(db.Text, nullable=True, default="")
    location = db.Column(db.String(255), nullable=True, default="")
    website = db.Column(db.String(255), nullable=True, default="")
    twitter = db.Column(db.String(100), nullable=True, default="")
    github = db.Column(db.String(100), nullable=True, default="")
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    model_count = db.Column(db.Integer, default=0, nullable=False)
    download_count = db.Column(db.Integer, default=0, nullable=False)

    models = db.relationship(
        "PrintModel",
        back_populates="owner",
        cascade="all, delete-orphan",
    )
    favorites = db.relationship(
        "Favorite",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Favorite.created_at",
    )

    def to_dict(self) -> dict:
        """Публичное представление без хеша пароля."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "is_admin": bool(self.is_admin),
            "approved": self.approved is not False,
            "avatar": self.avatar,
            "bio": self.bio or "",
            "location": self.location or "",
            "website": self.website or "",
            "twitter": self.twitter or "",
            "github": self.github or "",
            "created_at": format_timestamp(self.created_at),
            "model_count": self.model_count or 0,
            "download_count": self.download_count or 0,
            "favorites": [favorite.model_id for favorite in self.favorites],
        }
