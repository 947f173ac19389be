"""Community posts: feed, likes and comments."""
from typing import List, Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.core.errors import AuthorizationError, NotFoundError, ValidationError
from producers_avenue.core.notifications import notifier
from producers_avenue.database.models import Post, PostComment, PostLike

logger = structlog.get_logger(__name__)


class PostService:
    async def get_post(self, db: AsyncSession, post_id: str) -> Post:
        post = await db.get(Post, post_id)
        if post is None:
            raise NotFoundError("Post not found")
        return post

    async def liked_by(self, db: AsyncSession, post_id: str, user_id: str) -> bool:
        result = await db.execute(
            select(PostLike.id).where(PostLike.post_id == post_id, PostLike.user_id == user_id)
        )
        return result.first() is not None

    async def list_posts(
        self, db: AsyncSession, user_id: Optional[str] = None, limit: int = 20
    ) -> List[Post]:
        stmt = select(Post)
        if user_id:
            stmt = stmt.where(Post.user_id == user_id)
        result = await db.execute(stmt.order_by(Post.created_at.desc()).limit(limit))
        return list(result.scalars().all())

    async def create_post(
        self,
        db: AsyncSession,
        user_id: str,
        content: Optional[str],
        media_urls: Optional[List[str]] = None,
        media_type: Optional[str] = None,
    ) -> Post:
        if not content or not content.strip():
            raise ValidationError("Post content is required")
        post = Post(
            user_id=user_id,
            content=content.strip(),
            media_urls=media_urls or [],
            media_type=media_type,
            likes_count=0,
            comments_count=0,
        )
        db.add(post)
        await db.flush()
        logger.info("post_created", post_id=post.id, user_id=user_id)
        return post

    async def like(self, db: AsyncSession, user_id: str, post_id: Optional[str]) -> None:
        """
        Like a post once; the author is notified unless liking their own post.

        Raises:
            ValidationError: No post id, or already liked
            NotFoundError: Unknown post
        """
        if not post_id:
            raise ValidationError("post_id is required")
        post = await self.get_post(db, post_id)

        try:
            async with db.begin_nested():
                db.add(PostLike(post_id=post_id, user_id=user_id))
        except IntegrityError:
            raise ValidationError("Post already liked")

        await db.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(likes_count=Post.likes_count + 1)
            .execution_options(synchronize_session=False)
        )

        if post.user_id != user_id:
            await notifier.emit(
                db,
                user_id=post.user_id,
                type="like",
                title="New Like",
                message="Someone liked your post",
                link=f"/feed?post={post_id}",
            )

    async def unlike(self, db: AsyncSession, user_id: str, post_id: Optional[str]) -> None:
        if not post_id:
            raise ValidationError("post_id is required")
        removed = await db.execute(
            delete(PostLike).where(PostLike.post_id == post_id, PostLike.user_id == user_id)
        )
        if removed.rowcount:
            await db.execute(
                update(Post)
                .where(Post.id == post_id, Post.likes_count > 0)
                .values(likes_count=Post.likes_count - 1)
                .execution_options(synchronize_session=False)
            )

    async def comment(
        self, db: AsyncSession, user_id: str, post_id: Optional[str], content: Optional[str]
    ) -> PostComment:
        if not post_id or not content or not content.strip():
            raise ValidationError("post_id and content are required")
        post = await self.get_post(db, post_id)

        comment = PostComment(post_id=post_id, user_id=user_id, content=content.strip())
        db.add(comment)
        await db.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(comments_count=Post.comments_count + 1)
            .execution_options(synchronize_session=False)
        )
        await db.flush()

        if post.user_id != user_id:
            await notifier.emit(
                db,
                user_id=post.user_id,
                type="comment",
                title="New Comment",
                message="Someone commented on your post",
                link=f"/feed?post={post_id}",
            )
        return comment

    async def delete_post(self, db: AsyncSession, user_id: str, post_id: Optional[str]) -> None:
        """Delete the caller's post along with its likes and comments."""
        if not post_id:
            raise ValidationError("Post ID is required")
        post = await db.get(Post, post_id)
        if post is None or post.user_id != user_id:
            raise AuthorizationError()

        await db.execute(delete(PostLike).where(PostLike.post_id == post_id))
        await db.execute(delete(PostComment).where(PostComment.post_id == post_id))
        await db.delete(post)
        await db.flush()
        logger.info("post_deleted", post_id=post_id, user_id=user_id)


post_service = PostService()
