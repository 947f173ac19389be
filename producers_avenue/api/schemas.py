"""
Pydantic schemas for API request/response models.

Amounts are stored as ``Decimal`` and rendered as JSON numbers.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Orders


class OrderItemResponse(ORMModel):
    id: str
    item_id: str
    item_type: str
    item_name: Optional[str] = None
    seller_id: str
    price: float
    quantity: int


class OrderResponse(ORMModel):
    id: str
    order_number: str
    buyer_id: str
    status: str
    payment_status: str
    payment_method: Optional[str] = None
    amount: float
    currency: str
    cancel_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemResponse] = Field(default_factory=list)


class OrderStatusUpdateRequest(BaseModel):
    """Request schema for a buyer/seller status change."""

    order_id: Optional[str] = None
    status: Optional[str] = None
    cancel_reason: Optional[str] = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "order_id": "5b0c3f9e-2b7c-4d55-9c43-6a3e0d7f1a21",
                    "status": "cancelled",
                    "cancel_reason": "Buyer changed their mind",
                }
            ]
        }
    }


# Wallet


class TransactionResponse(ORMModel):
    id: str
    user_id: str
    order_id: Optional[str] = None
    type: str
    amount: float
    status: str
    description: Optional[str] = None
    reference_id: Optional[str] = None
    provider: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class WalletResponse(ORMModel):
    id: str
    user_id: str
    balance: float
    pending_balance: float
    total_earned: float
    total_withdrawn: float
    updated_at: datetime


class PayoutResponse(ORMModel):
    id: str
    user_id: str
    amount: float
    status: str
    payout_method: str
    payout_details: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime


class WalletActionRequest(BaseModel):
    """Body of ``POST /wallet``; amount is validated by the payout service."""

    action: Optional[str] = None
    amount: Optional[Any] = None
    payout_method: Optional[str] = None
    payout_details: Optional[Dict[str, Any]] = None


class PayoutCancelRequest(BaseModel):
    payout_id: Optional[str] = None
    action: Optional[str] = None


# Notifications


class NotificationResponse(ORMModel):
    id: str
    type: str
    title: str
    message: str
    link: Optional[str] = None
    read: bool
    created_at: datetime


class MarkReadRequest(BaseModel):
    notification_ids: Optional[List[str]] = Field(
        default=None, description="Ids to mark read; all unread when omitted"
    )


# Checkout


class CartItem(BaseModel):
    id: str
    type: str
    price: Decimal = Field(..., ge=0)
    seller_id: str
    title: Optional[str] = None
    image_url: Optional[str] = None


class CheckoutRequest(BaseModel):
    items: List[CartItem] = Field(default_factory=list)


class PayPalCaptureRequest(BaseModel):
    orderId: Optional[str] = None


# Services


class ServiceResponse(ORMModel):
    id: str
    user_id: str
    name: str
    description: str
    category: str
    subcategory: Optional[str] = None
    starting_price: float
    delivery_time: Optional[int] = None
    delivery_time_unit: str
    images: List[str] = Field(default_factory=list)
    portfolio_items: List[Any] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    features: List[Any] = Field(default_factory=list)
    requirements: Optional[str] = None
    pricing_tiers: List[Any] = Field(default_factory=list)
    status: str
    views: int
    orders_count: int
    created_at: datetime
    updated_at: datetime


class ServiceFields(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    starting_price: Optional[Decimal] = None
    delivery_time: Optional[int] = None
    delivery_time_unit: Optional[str] = None
    images: Optional[List[str]] = None
    portfolio_items: Optional[List[Any]] = None
    tags: Optional[List[str]] = None
    features: Optional[List[Any]] = None
    requirements: Optional[str] = None
    pricing_tiers: Optional[List[Any]] = None


class ServiceUpdateRequest(ServiceFields):
    service_id: Optional[str] = None
    status: Optional[str] = None


# Posts


class PostResponse(ORMModel):
    id: str
    user_id: str
    content: str
    media_urls: List[str] = Field(default_factory=list)
    media_type: Optional[str] = None
    likes_count: int
    comments_count: int
    created_at: datetime


class CommentResponse(ORMModel):
    id: str
    post_id: str
    user_id: str
    content: str
    created_at: datetime


class PostActionRequest(BaseModel):
    """Body of ``POST /posts``; ``action`` defaults to create."""

    action: str = "create"
    post_id: Optional[str] = None
    content: Optional[str] = None
    media_urls: Optional[List[str]] = None
    media_type: Optional[str] = None


# Profiles and messages


class ProfileResponse(ORMModel):
    id: str
    username: str
    full_name: Optional[str] = None
    bio: Optional[str] = None
    location: Optional[str] = None
    website: Optional[str] = None
    user_type: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    avatar_url: Optional[str] = None
    banner_url: Optional[str] = None
    social_links: Dict[str, Any] = Field(default_factory=dict)
    rolink_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProfileUpdateRequest(BaseModel):
    """Fields left out of the body are not changed."""

    username: Optional[str] = Field(default=None, max_length=50)
    full_name: Optional[str] = Field(default=None, max_length=255)
    bio: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=255)
    website: Optional[str] = Field(default=None, max_length=255)
    user_type: Optional[str] = Field(default=None, max_length=50)
    skills: Optional[List[str]] = None
    avatar_url: Optional[str] = Field(default=None, max_length=512)
    banner_url: Optional[str] = Field(default=None, max_length=512)
    social_links: Optional[Dict[str, Any]] = None
    rolink_url: Optional[str] = Field(default=None, max_length=512)


class FollowRequest(BaseModel):
    action: Optional[str] = None
    targetUserId: Optional[str] = None


class MessageResponse(ORMModel):
    id: str
    conversation_id: str
    sender_id: str
    receiver_id: str
    content: str
    read: bool
    created_at: datetime


class SendMessageRequest(BaseModel):
    conversation_id: Optional[str] = None
    content: Optional[str] = None


# Monitoring


class HealthCheckResponse(BaseModel):
    """Response schema for health check."""

    status: str = Field(..., description="Overall health status")
    checks: Dict[str, Any] = Field(..., description="Individual component checks")
