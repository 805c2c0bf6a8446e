"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: models/setting.py – настройки сайта, изменяемые администратором.
"""

from extensions import db
from utils.formatting import utcnow


class Setting(db.Model):
    """Одна настройка: значение хранится строкой вместе с типом для обратного приведения."""
    __tablename__ = "settings"

    key = db.Column(db.String(100), primary_key=True)
    value = db.Column(db.Text, nullable=True)
    value_type = db.Column(db.String(20), nullable=False, default="string")
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
