"""
Модуль: `extensions.py`.
Назначение: Экземпляры Flask-расширений каталога (БД, сессии входа, CORS, переводы).
"""

from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_cors import CORS
from flask_babel import Babel

# Расширения создаются здесь, а привязываются к приложению в фабрике.
# db инициализируется только если задан DATABASE_URL
db = SQLAlchemy()
login_manager = LoginManager()
cors = CORS()
babel = Babel()
