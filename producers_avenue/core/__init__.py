"""Core marketplace logic: orders, ledger, wallets, downloads, catalog and the social features."""
from .catalog import ServiceCatalog, service_catalog
from .downloads import DownloadService, download_service
from .errors import MarketplaceError
from .ledger import TransactionLedger, ledger
from .messaging import MessagingService, messaging_service
from .notifications import NotificationEmitter, notifier
from .orders import OrderService, order_service
from .posts import PostService, post_service
from .profiles import FollowService, ProfileService, follow_service, profile_service
from .wallet import PayoutService, WalletQueries, WalletTracker, payout_service, wallet_tracker

__all__ = [
    "DownloadService",
    "FollowService",
    "MarketplaceError",
    "MessagingService",
    "NotificationEmitter",
    "OrderService",
    "PayoutService",
    "PostService",
    "ProfileService",
    "ServiceCatalog",
    "TransactionLedger",
    "WalletQueries",
    "WalletTracker",
    "download_service",
    "follow_service",
    "ledger",
    "messaging_service",
    "notifier",
    "order_service",
    "payout_service",
    "post_service",
    "profile_service",
    "service_catalog",
    "wallet_tracker",
]
