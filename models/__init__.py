"""
Модуль: `models/__init__.py`.
Назначение: Импорт моделей для корректной регистрации в SQLAlchemy metadata.
"""

from .user import User
from .category import Category
from .printable_model import PrintModel, ModelFile, ModelPhoto
from .favorite import Favorite
from .setting import Setting
from .invite import Invite

__all__ = ["User", "Category", "PrintModel", "ModelFile", "ModelPhoto", "Favorite", "Setting", "Invite"]
