"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: models/favorite.py – избранные модели пользователей (связь многие-ко-многим).
"""

from extensions import db
from utils.formatting import utcnow


class Favorite(db.Model):
    """Пара (пользователь, модель); уникальность обеспечивает составной ключ."""
    __tablename__ = "favorites"

    user_id = db.Column(
        db.String(32),
        db.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    model_id = db.Column(
        db.String(32),
        db.ForeignKey("models.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    )
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    user = db.relationship("User", back_populates="favorites")
    model = db.relationship("PrintModel", back_populates="favorited_by")
