"""FastAPI dependencies: caller identity, admin key and provider clients."""
import secrets
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

import jwt
import redis.asyncio as aioredis
import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from producers_avenue.config import get_settings
from producers_avenue.core.errors import AuthenticationError
from producers_avenue.integrations.paypal_client import PayPalClient
from producers_avenue.integrations.stripe_client import StripeClient

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: str
    email: Optional[str] = None


def decode_access_token(token: str) -> CurrentUser:
    """
    Verify a backend-issued access token.

    Raises:
        AuthenticationError: Invalid, expired or subject-less token
    """
    settings = get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            algorithms=[settings.auth_jwt_algorithm],
            audience=settings.auth_jwt_audience,
            options={"require": ["exp", "sub"]},
        )
    except jwt.PyJWTError as e:
        logger.warning("access_token_rejected", error=str(e))
        raise AuthenticationError()
    return CurrentUser(id=claims["sub"], email=claims.get("email"))


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    user = decode_access_token(credentials.credentials)
    structlog.contextvars.bind_contextvars(user_id=user.id)
    return user


async def require_admin_key(request: Request) -> None:
    settings = get_settings()
    provided = request.headers.get(settings.api_key_header, "")
    if not settings.admin_api_key or not secrets.compare_digest(provided, settings.admin_api_key):
        logger.warning("admin_key_rejected", path=request.url.path)
        raise AuthenticationError()


def get_stripe_client() -> StripeClient:
    return StripeClient()


async def get_paypal_client() -> AsyncGenerator[PayPalClient, Any]:
    client = PayPalClient()
    try:
        yield client
    finally:
        await client.close()


async def get_redis() -> AsyncGenerator[aioredis.Redis, Any]:
    """Per-request Redis client for webhook deduplication."""
    client = aioredis.from_url(get_settings().redis_url, decode_responses=True)
    try:
        yield client
    finally:
        await client.aclose()
