"""API routers."""
from .checkout import paypal_router, stripe_router
from .downloads import router as downloads_router
from .messages import router as messages_router
from .monitoring import router as monitoring_router
from .notifications import router as notifications_router
from .orders import router as orders_router
from .posts import router as posts_router
from .services import router as services_router
from .users import follow_router
from .users import router as users_router
from .wallet import admin_router
from .wallet import router as wallet_router
from .webhooks import router as webhook_router

__all__ = [
    "admin_router",
    "downloads_router",
    "follow_router",
    "messages_router",
    "monitoring_router",
    "notifications_router",
    "orders_router",
    "paypal_router",
    "posts_router",
    "services_router",
    "stripe_router",
    "users_router",
    "wallet_router",
    "webhook_router",
]
