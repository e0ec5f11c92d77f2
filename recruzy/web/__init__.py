# recruzy/web/__init__.py

from flask import Blueprint

# Регистрация, вход и служебные маршруты (без /api префикса)
web_bp = Blueprint("web", __name__)

# Импортируем файл с маршрутами ПОСЛЕ создания Blueprint'а
from . import routes  # noqa: E402,F401
