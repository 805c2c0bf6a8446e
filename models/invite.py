"""
Программа: «Model Vault» – каталог 3D-моделей для печати.
Модуль: models/invite.py – коды приглашений для регистрации.
"""

from extensions import db
from utils.formatting import format_timestamp, utcnow


class Invite(db.Model):
    """Код приглашения; max_uses = 0 – без ограничения числа использований."""
    __tablename__ = "invites"

    id = db.Column(db.String(32), primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False, index=True)
    created_by = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    expires_at = db.Column(db.DateTime, nullable=True)
    max_uses = db.Column(db.Integer, nullable=False, default=1)
    uses = db.Column(db.Integer, nullable=False, default=0)
    note = db.Column(db.String(255), nullable=False, default="")
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "created_by": self.created_by,
            "created_at": format_timestamp(self.created_at),
            "expires_at": format_timestamp(self.expires_at),
            "max_uses": self.max_uses or 0,
            "uses": self.uses or 0,
            "note": self.note or "",
            "active": bool(self.active),
        }
