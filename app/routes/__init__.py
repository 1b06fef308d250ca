from .auth import router as auth_router
from .posts import router as posts_router
from .competitors import router as competitors_router
from .engagement import router as engagement_router
from .social_accounts import router as social_accounts_router
from .health import router as health_router

__all__ = [
    "auth_router",
    "posts_router",
    "competitors_router",
    "engagement_router",
    "social_accounts_router",
    "health_router",
]
