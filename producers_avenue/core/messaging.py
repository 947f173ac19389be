"""Direct messages between two users."""
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from producers_avenue.core.errors import AuthorizationError, NotFoundError, ValidationError
from producers_avenue.core.notifications import notifier
from producers_avenue.core.profiles import profile_summary
from producers_avenue.database.models import Conversation, Message, UserProfile, utcnow

logger = structlog.get_logger(__name__)


class MessagingService:
    async def _conversation_for(
        self, db: AsyncSession, conversation_id: Optional[str], user_id: str
    ) -> Conversation:
        if not conversation_id:
            raise ValidationError("conversation_id is required")
        conversation = await db.get(Conversation, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if user_id not in (conversation.user1_id, conversation.user2_id):
            raise AuthorizationError()
        return conversation

    async def get_or_create_conversation(
        self, db: AsyncSession, user_id: str, other_user_id: Optional[str]
    ) -> Conversation:
        """
        The conversation between two users, created on first contact.

        Participants are stored in sorted order so each pair has one row.
        """
        if not other_user_id:
            raise ValidationError("other_user_id is required")
        if other_user_id == user_id:
            raise ValidationError("Cannot message yourself")
        user1_id, user2_id = sorted((user_id, other_user_id))
        stmt = select(Conversation).where(
            Conversation.user1_id == user1_id, Conversation.user2_id == user2_id
        )

        existing = (await db.execute(stmt)).scalar_one_or_none()
        if existing is not None:
            return existing

        try:
            async with db.begin_nested():
                conversation = Conversation(user1_id=user1_id, user2_id=user2_id)
                db.add(conversation)
        except IntegrityError:
            # Created concurrently by the other participant
            return (await db.execute(stmt)).scalar_one()

        logger.info("conversation_created", conversation_id=conversation.id)
        return conversation

    async def list_conversations(
        self, db: AsyncSession, user_id: str, limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Conversations of ``user_id``, most recently active first."""
        result = await db.execute(
            select(Conversation)
            .where(or_(Conversation.user1_id == user_id, Conversation.user2_id == user_id))
            .order_by(Conversation.updated_at.desc())
            .limit(limit)
        )

        conversations = []
        for conversation in result.scalars().all():
            other_id = conversation.other_user(user_id)
            last = (
                await db.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation.id)
                    .order_by(Message.created_at.desc())
                    .limit(1)
                )
            ).scalar_one_or_none()
            unread = (
                await db.execute(
                    select(func.count(Message.id)).where(
                        Message.conversation_id == conversation.id,
                        Message.receiver_id == user_id,
                        Message.read.is_(False),
                    )
                )
            ).scalar_one()
            conversations.append(
                {
                    "id": conversation.id,
                    "other_user": profile_summary(other_id, await db.get(UserProfile, other_id)),
                    "last_message": last.content if last else "No messages yet",
                    "last_message_time": last.created_at if last else conversation.created_at,
                    "unread_count": unread,
                    "updated_at": conversation.updated_at,
                }
            )
        return conversations

    async def list_messages(
        self, db: AsyncSession, conversation_id: Optional[str], user_id: str
    ) -> List[Message]:
        """Messages oldest first; the caller's unread messages are then marked read."""
        conversation = await self._conversation_for(db, conversation_id, user_id)
        result = await db.execute(
            select(Message)
            .where(Message.conversation_id == conversation.id)
            .order_by(Message.created_at)
        )
        messages = list(result.scalars().all())

        await db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.receiver_id == user_id,
                Message.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        return messages

    async def send_message(
        self,
        db: AsyncSession,
        sender_id: str,
        conversation_id: Optional[str],
        content: Optional[str],
    ) -> Message:
        """
        Post a message to a conversation the sender belongs to.

        The receiver is the other participant and gets a notification.
        """
        if not content or not content.strip():
            raise ValidationError("Message content is required")
        conversation = await self._conversation_for(db, conversation_id, sender_id)
        receiver_id = conversation.other_user(sender_id)

        message = Message(
            conversation_id=conversation.id,
            sender_id=sender_id,
            receiver_id=receiver_id,
            content=content.strip(),
            read=False,
        )
        db.add(message)
        conversation.updated_at = utcnow()
        await db.flush()

        await notifier.emit(
            db,
            user_id=receiver_id,
            type="message",
            title="New Message",
            message="You have a new message",
            link=f"/messages?conversation={conversation.id}",
        )
        logger.info(
            "message_sent",
            message_id=message.id,
            conversation_id=conversation.id,
            sender_id=sender_id,
        )
        return message


messaging_service = MessagingService()
