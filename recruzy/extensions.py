from flask_caching import Cache
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_login import LoginManager
from flask_socketio import SocketIO
from flask_sqlalchemy import SQLAlchemy
from flask_wtf.csrf import CSRFProtect

# Database
db = SQLAlchemy()

# CSRF Protection
csrf = CSRFProtect()

# CORS
cors = CORS()

# Сессии пользователей (и администраторов, и тестируемых)
login_manager = LoginManager()

# Caching
cache = Cache()

# Rate Limiting
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["2000 per day", "300 per hour"],
)

# WebSocket
socketio = SocketIO()
