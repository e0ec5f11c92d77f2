import os

from dotenv import load_dotenv

# Загружаем переменные окружения из .env файла
load_dotenv()

from recruzy import create_app  # noqa: E402
from recruzy.extensions import socketio  # noqa: E402

# Создаем приложение, используя переменную окружения FLASK_ENV
app = create_app(os.getenv("FLASK_ENV") or "development")

if __name__ == "__main__":
    # Используем SocketIO для запуска, чтобы WebSocket работал
    socketio.run(app, host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", 5000)))
