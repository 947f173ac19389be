"""Community feed endpoints."""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.api.dependencies import CurrentUser, get_current_user
from producers_avenue.api.schemas import CommentResponse, PostActionRequest, PostResponse
from producers_avenue.core.errors import ValidationError
from producers_avenue.core.posts import post_service
from producers_avenue.database.connection import get_db

router = APIRouter(prefix="/posts", tags=["posts"])


def _post(post: Any) -> Dict[str, Any]:
    return PostResponse.model_validate(post).model_dump(mode="json")


@router.get("", summary="Get a post or a feed")
async def get_posts(
    id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = Query(default=20, ge=1, le=100),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if id:
        post = await post_service.get_post(db, id)
        data = _post(post)
        data["liked"] = await post_service.liked_by(db, id, user.id)
        return {"post": data}

    posts = await post_service.list_posts(db, user_id=user_id, limit=limit)
    return {"posts": [_post(p) for p in posts]}


@router.post("", summary="Create, like, unlike or comment")
async def post_action(
    request: PostActionRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    if request.action == "create":
        post = await post_service.create_post(
            db, user.id, request.content, request.media_urls, request.media_type
        )
        return {"success": True, "post": _post(post), "message": "Post created successfully"}

    if request.action == "like":
        await post_service.like(db, user.id, request.post_id)
        return {"success": True, "message": "Post liked successfully"}

    if request.action == "unlike":
        await post_service.unlike(db, user.id, request.post_id)
        return {"success": True, "message": "Post unliked successfully"}

    if request.action == "comment":
        comment = await post_service.comment(db, user.id, request.post_id, request.content)
        return {
            "success": True,
            "comment": CommentResponse.model_validate(comment).model_dump(mode="json"),
            "message": "Comment added successfully",
        }

    raise ValidationError("Invalid action")


@router.delete("", summary="Delete a post")
async def delete_post(
    id: Optional[str] = None,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, Any]:
    await post_service.delete_post(db, user.id, id)
    return {"success": True, "message": "Post deleted successfully"}
