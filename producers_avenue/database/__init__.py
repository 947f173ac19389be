"""Database package for the marketplace ledger store."""
from .connection import close_db, get_db, init_db
from .models import (
    Base,
    Checkout,
    Conversation,
    Message,
    Notification,
    Order,
    OrderItem,
    Payout,
    Post,
    PostComment,
    PostLike,
    Product,
    ProductDownload,
    Service,
    Transaction,
    UserFollow,
    UserProfile,
    Wallet,
)

__all__ = [
    "Base",
    "Checkout",
    "Conversation",
    "Message",
    "Notification",
    "Order",
    "OrderItem",
    "Payout",
    "Post",
    "PostComment",
    "PostLike",
    "Product",
    "ProductDownload",
    "Service",
    "Transaction",
    "UserFollow",
    "UserProfile",
    "Wallet",
    "close_db",
    "get_db",
    "init_db",
]
