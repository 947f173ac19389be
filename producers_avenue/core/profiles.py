"""User profiles and the follow graph."""
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import delete, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.core.errors import NotFoundError, ValidationError
from producers_avenue.core.notifications import notifier
from producers_avenue.database.models import Product, Service, UserFollow, UserProfile

logger = structlog.get_logger(__name__)

# Fields a user may change on their own profile
PROFILE_FIELDS = (
    "username",
    "full_name",
    "bio",
    "location",
    "website",
    "user_type",
    "skills",
    "avatar_url",
    "banner_url",
    "social_links",
    "rolink_url",
)


def profile_summary(user_id: str, profile: Optional[UserProfile]) -> Dict[str, Any]:
    """Short public card for a user; users without a profile get just their id."""
    if profile is None:
        return {"id": user_id}
    return {
        "id": profile.id,
        "username": profile.username,
        "full_name": profile.full_name,
        "avatar_url": profile.avatar_url,
        "bio": profile.bio,
        "user_type": profile.user_type,
    }


class ProfileService:
    async def get_profile(self, db: AsyncSession, user_id: str) -> UserProfile:
        profile = await db.get(UserProfile, user_id)
        if profile is None:
            raise NotFoundError("Profile not found")
        return profile

    async def get_by_username(self, db: AsyncSession, username: str) -> Dict[str, Any]:
        """A profile with its follower, following, product and service counts."""
        result = await db.execute(select(UserProfile).where(UserProfile.username == username))
        profile = result.scalar_one_or_none()
        if profile is None:
            raise NotFoundError("Profile not found")

        async def count(stmt: Any) -> int:
            return (await db.execute(stmt)).scalar_one()

        return {
            "profile": profile,
            "followers_count": await count(
                select(func.count(UserFollow.id)).where(UserFollow.following_id == profile.id)
            ),
            "following_count": await count(
                select(func.count(UserFollow.id)).where(UserFollow.follower_id == profile.id)
            ),
            "products_count": await count(
                select(func.count(Product.id)).where(Product.user_id == profile.id)
            ),
            "services_count": await count(
                select(func.count(Service.id)).where(
                    Service.user_id == profile.id, Service.status == "active"
                )
            ),
        }

    async def search(self, db: AsyncSession, term: str, limit: int = 20) -> List[UserProfile]:
        pattern = f"%{term.lower()}%"
        result = await db.execute(
            select(UserProfile)
            .where(
                or_(
                    func.lower(UserProfile.username).like(pattern),
                    func.lower(UserProfile.full_name).like(pattern),
                )
            )
            .order_by(UserProfile.username)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def update_profile(
        self, db: AsyncSession, user_id: str, data: Dict[str, Any]
    ) -> UserProfile:
        """
        Update the caller's profile, creating it on first use.

        Raises:
            ValidationError: No username for a new profile, or the username is taken
        """
        changes = {key: data[key] for key in PROFILE_FIELDS if key in data}
        if "username" in changes:
            username = (changes["username"] or "").strip()
            if not username:
                raise ValidationError("username cannot be empty")
            changes["username"] = username
        for key in ("skills", "social_links"):
            if key in changes and changes[key] is None:
                changes[key] = [] if key == "skills" else {}

        profile = await db.get(UserProfile, user_id)
        try:
            async with db.begin_nested():
                if profile is None:
                    if "username" not in changes:
                        raise ValidationError("username is required to create a profile")
                    profile = UserProfile(id=user_id, **{"skills": [], "social_links": {}, **changes})
                    db.add(profile)
                else:
                    for key, value in changes.items():
                        setattr(profile, key, value)
        except IntegrityError:
            raise ValidationError("Username is already taken")

        await db.refresh(profile)
        logger.info("profile_updated", user_id=user_id, fields=sorted(changes))
        return profile


class FollowService:
    async def is_following(self, db: AsyncSession, follower_id: str, target_id: str) -> bool:
        result = await db.execute(
            select(UserFollow.id).where(
                UserFollow.follower_id == follower_id, UserFollow.following_id == target_id
            )
        )
        return result.first() is not None

    async def follow(self, db: AsyncSession, follower_id: str, target_id: Optional[str]) -> None:
        """
        Follow another user; they are notified.

        Raises:
            ValidationError: No target, self-follow or already following
        """
        if not target_id:
            raise ValidationError("A target user is required")
        if target_id == follower_id:
            raise ValidationError("Cannot follow yourself")

        try:
            async with db.begin_nested():
                db.add(UserFollow(follower_id=follower_id, following_id=target_id))
        except IntegrityError:
            raise ValidationError("Already following this user")

        await notifier.emit(
            db,
            user_id=target_id,
            type="follow",
            title="New Follower",
            message="Someone started following you",
            link=f"/member/{follower_id}",
        )
        logger.info("user_followed", follower_id=follower_id, following_id=target_id)

    async def unfollow(self, db: AsyncSession, follower_id: str, target_id: Optional[str]) -> None:
        if not target_id:
            raise ValidationError("A target user is required")
        await db.execute(
            delete(UserFollow).where(
                UserFollow.follower_id == follower_id, UserFollow.following_id == target_id
            )
        )
        logger.info("user_unfollowed", follower_id=follower_id, following_id=target_id)

    async def followers(
        self, db: AsyncSession, user_id: str, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Users following ``user_id``, most recent first."""
        result = await db.execute(
            select(UserFollow.follower_id, UserProfile)
            .outerjoin(UserProfile, UserProfile.id == UserFollow.follower_id)
            .where(UserFollow.following_id == user_id)
            .order_by(UserFollow.created_at.desc())
            .limit(limit)
        )
        return [profile_summary(uid, profile) for uid, profile in result.all()]

    async def following(
        self, db: AsyncSession, user_id: str, limit: int = 50
    ) -> List[Dict[str, Any]]:
        result = await db.execute(
            select(UserFollow.following_id, UserProfile)
            .outerjoin(UserProfile, UserProfile.id == UserFollow.following_id)
            .where(UserFollow.follower_id == user_id)
            .order_by(UserFollow.created_at.desc())
            .limit(limit)
        )
        return [profile_summary(uid, profile) for uid, profile in result.all()]


profile_service = ProfileService()
follow_service = FollowService()
