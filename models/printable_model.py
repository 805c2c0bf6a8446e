"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: models/printable_model.py – опубликованная 3D-модель, её файлы и фотографии.

Назначение модуля:
- Описание ORM-модели PrintModel (таблица models) с тегами и настройками печати в JSON.
- Описание упорядоченных списков файлов (model_files) и фотографий (model_photos).
- Преобразование записи в словарь того же вида, что хранит JSON-хранилище.
"""

from extensions import db
from utils.formatting import format_timestamp, utcnow


class PrintModel(db.Model):
    """Класс `PrintModel` описывает модель, загруженную пользователем."""
    __tablename__ = "models"

    id = db.Column(db.String(32), primary_key=True)
    user_id = db.Column(
        db.String(32),
        db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True, default="")
    category = db.Column(
        db.String(50),
        db.ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    tags = db.Column(db.JSON, nullable=False, default=list)
    # Основной файл и суммарный размер хранятся для совместимости со старыми записями
    filename = db.Column(db.String(255), nullable=False, default="")
    filesize = db.Column(db.BigInteger, nullable=False, default=0)
    file_count = db.Column(db.Integer, nullable=False, default=0)
    photo = db.Column(db.String(255), nullable=True)
    primary_display = db.Column(db.String(20), nullable=False, default="auto")
    license = db.Column(db.String(50), nullable=False, default="CC BY-NC")
    print_settings = db.Column(db.JSON, nullable=False, default=dict)
    downloads = db.Column(db.Integer, nullable=False, default=0)
    likes = db.Column(db.Integer, nullable=False, default=0)
    views = db.Column(db.Integer, nullable=False, default=0)
    featured = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    owner = db.relationship("User", back_populates="models")
    category_ref = db.relationship("Category", back_populates="models")
    files = db.relationship(
        "ModelFile",
        back_populates="model",
        cascade="all, delete-orphan",
        order_by="ModelFile.file_order",
    )
    photos = db.relationship(
        "ModelPhoto",
        back_populates="model",
        cascade="all, delete-orphan",
        order_by="ModelPhoto.photo_order",
    )
    favorited_by = db.relationship(
        "Favorite",
        back_populates="model",
        cascade="all, delete-orphan",
    )

    def refresh_derived(self) -> None:
        """Пересчитывает основной файл, размер, число файлов и основное фото."""
        for index, model_file in enumerate(self.files):
            model_file.file_order = index
        for index, model_photo in enumerate(self.photos):
            model_photo.photo_order = index
            model_photo.is_primary = index == 0
        self.filename = self.files[0].filename if self.files else ""
        self.filesize = sum(model_file.filesize or 0 for model_file in self.files)
        self.file_count = len(self.files)
        self.photo = self.photos[0].filename if self.photos else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description or "",
            "category": self.category,
            "tags": list(self.tags or []),
            "license": self.license,
            "print_settings": dict(self.print_settings or {}),
            "files": [model_file.to_dict() for model_file in self.files],
            "filename": self.filename,
            "filesize": self.filesize or 0,
            "file_count": self.file_count or 0,
            "photos": [model_photo.filename for model_photo in self.photos],
            "photo": self.photo,
            "primary_display": self.primary_display,
            "downloads": self.downloads or 0,
            "likes": self.likes or 0,
            "views": self.views or 0,
            "featured": bool(self.featured),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
        }


class ModelFile(db.Model):
    """Файл 3D-модели; порядок задаёт file_order, первый файл – основной."""
    __tablename__ = "model_files"
    __table_args__ = (db.UniqueConstraint("model_id", "filename", name="unique_model_file"),)

    id = db.Column(db.Integer, primary_key=True)
    model_id = db.Column(
        db.String(32),
        db.ForeignKey("models.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename = db.Column(db.String(255), nullable=False)
    filesize = db.Column(db.BigInteger, nullable=False, default=0)
    original_name = db.Column(db.String(255), nullable=False)
    extension = db.Column(db.String(10), nullable=False)
    has_color = db.Column(db.Boolean, nullable=False, default=False)
    file_order = db.Column(db.Integer, nullable=False, default=0)

    model = db.relationship("PrintModel", back_populates="files")

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "filesize": self.filesize or 0,
            "original_name": self.original_name,
            "extension": self.extension,
            "has_color": bool(self.has_color),
        }


class ModelPhoto(db.Model):
    """Фотография напечатанной модели."""
    __tablename__ = "model_photos"
    __table_args__ = (db.UniqueConstraint("model_id", "filename", name="unique_model_photo"),)

    id = db.Column(db.Integer, primary_key=True)
    model_id = db.Column(
        db.String(32),
        db.ForeignKey("models.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    filename = db.Column(db.String(255), nullable=False)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    photo_order = db.Column(db.Integer, nullable=False, default=0)

    model = db.relationship("PrintModel", back_populates="photos")
