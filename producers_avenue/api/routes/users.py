"""Profile and follow endpoints."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user
from producers_avenue.api.schemas import FollowRequest, ProfileResponse, ProfileUpdateRequest
from producers_avenue.core.errors import ValidationError
from producers_avenue.core.profiles import follow_service, profile_service
from producers_avenue.database.connection import get_db

router = APIRouter(prefix="/users", tags=["users"])
follow_router = APIRouter(prefix="/follow", tags=["users"])


def _profile(profile: Any) -> Dict[str, Any]:
    return ProfileResponse.model_validate(profile).model_dump(mode="json")


@router.get("", summary="Get a profile, a follow list or search users")
async def get_users(
    username: Optional[str] = None,
    user_id: Optional[str] = None,
    type: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if username:
        found = await profile_service.get_by_username(db, username)
        profile = found.pop("profile")
        return {
            "profile": _profile(profile),
            **found,
            "isFollowing": await follow_service.is_following(db, user.id, profile.id),
        }

    # Follow lists take precedence over a plain lookup by id
    if type == "followers" and user_id:
        return {"followers": await follow_service.followers(db, user_id, limit=limit)}
    if type == "following" and user_id:
        return {"following": await follow_service.following(db, user_id, limit=limit)}

    if user_id:
        return {"profile": _profile(await profile_service.get_profile(db, user_id))}

    if search:
        profiles = await profile_service.search(db, search)
        return {"users": [_profile(p) for p in profiles]}

    raise ValidationError("Invalid request parameters")


@router.patch("", summary="Update the caller's profile")
async def update_profile(
    request: ProfileUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    profile = await profile_service.update_profile(
        db, user.id, request.model_dump(exclude_unset=True)
    )
    return {"success": True, "profile": _profile(profile)}


@router.post("", summary="Create the caller's profile")
async def create_profile(
    request: ProfileUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    data = request.model_dump(exclude_unset=True)
    data.setdefault("username", user.id)
    profile = await profile_service.update_profile(db, user.id, data)
    return {"success": True, "profile": _profile(profile)}


@follow_router.post("", summary="Follow or unfollow a user")
async def follow_action(
    request: FollowRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if not request.action or not request.targetUserId:
        raise ValidationError("action and targetUserId are required")

    if request.action == "follow":
        await follow_service.follow(db, user.id, request.targetUserId)
        return {"success": True, "message": "Followed successfully", "isFollowing": True}

    if request.action == "unfollow":
        await follow_service.unfollow(db, user.id, request.targetUserId)
        return {"success": True, "message": "Unfollowed successfully", "isFollowing": False}

    raise ValidationError('Invalid action. Use "follow" or "unfollow"')
