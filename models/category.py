"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: models/category.py – категория каталога.
"""

from extensions import db


class Category(db.Model):
    """Класс `Category` описывает раздел каталога; id – slug от названия."""
    __tablename__ = "categories"

    id = db.Column(db.String(50), primary_key=True)
    name = db.Column(db.String(100), nullable=False, index=True)
    icon = db.Column(db.String(50), default="fa-cube", nullable=False)
    description = db.Column(db.Text, nullable=True, default="")
    # Денормализованное число моделей в категории
    count = db.Column(db.Integer, default=0, nullable=False)

    models = db.relationship("PrintModel", back_populates="category_ref", passive_deletes="all")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "icon": self.icon or "fa-cube",
            "description": self.description or "",
            "count": self.count or 0,
        }
