# recruzy/auth/actor.py
from typing import Optional

from flask_login import current_user
from pydantic import BaseModel, ConfigDict

from recruzy.models import ROLE_ADMIN, ROLE_USER


class Actor(BaseModel):
    """
    Кто выполняет операцию. Передается в обработчики и сервисы явно,
    вместо чтения cookie/сессии в глубине кода.
    """

    model_config = ConfigDict(frozen=True)

    user_id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_user(self) -> bool:
        return self.role == ROLE_USER

    def owns(self, user_id: int) -> bool:
        return self.user_id == user_id


def current_actor() -> Optional[Actor]:
    """Builds the Actor for the logged-in session user, if any."""
    if not current_user or not current_user.is_authenticated:
        return None
    return Actor(user_id=current_user.id, role=current_user.role)
