"""
路由模块
"""
from .robots import router as robots_router
from .users import router as users_router
from .auth import router as auth_router
from .messages import router as messages_router
from .groups import router as groups_router
from .bills import router as bills_router

__all__ = [
    "robots_router",
    "users_router",
    "auth_router",
    "messages_router",
    "groups_router",
    "bills_router",
]
