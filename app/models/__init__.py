from .base import Base
from .session import UserSession
from .usage_log import UsageLog
from .user import User

__all__ = [
    "Base",
    "User",
    "UserSession",
    "UsageLog",
]
