# recruzy/api/__init__.py

from flask import Blueprint

api_bp = Blueprint("api", __name__)

# Маршруты импортируются ПОСЛЕ создания Blueprint'а
from . import admin_routes, routes, websocket  # noqa: E402,F401
