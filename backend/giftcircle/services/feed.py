"""Item comments and group chat.

Both are append-only. Chat messages are persisted first and only then fanned
out to the live subscribers of the group's stream; a failed push never undoes
the row.
"""
from dataclasses import dataclass
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.config import settings
from giftcircle.core.errors import EmptyText, NotAuthorized, ValidationFailed
from giftcircle.models.models import GroupMessage, ItemComment, NotificationTypeEnum, Profile
from giftcircle.realtime.manager import group_stream, manager
from giftcircle.services import catalog, groups, notifications
from giftcircle.services.store import commit_or_translate

logger = logging.getLogger("giftcircle.feed")

MAX_TEXT_LENGTH = 2000


@dataclass
class CommentEntry:
    comment: ItemComment
    profile: Profile | None


@dataclass
class ChatEntry:
    message: GroupMessage
    profile: Profile | None


def _clean_text(text: str | None) -> str:
    cleaned = (text or "").strip()
    if not cleaned:
        raise EmptyText("Message cannot be empty")
    if len(cleaned) > MAX_TEXT_LENGTH:
        raise ValidationFailed(
            f"Message cannot be longer than {MAX_TEXT_LENGTH} characters",
            {"max_length": MAX_TEXT_LENGTH},
        )
    return cleaned


def chat_payload(message: GroupMessage, profile: Profile | None) -> dict:
    return {
        "id": message.id,
        "group_id": message.group_id,
        "user_id": message.user_id,
        "message": message.message,
        "created_at": message.created_at.isoformat() if message.created_at else None,
        "author": {
            "username": profile.username,
            "display_name": profile.display_name,
            "avatar_url": profile.avatar_url,
        } if profile else None,
    }


async def post_comment(db: AsyncSession, item_id: int, author_id: str, text: str) -> ItemComment:
    body = _clean_text(text)
    item = await catalog.require_visible(db, author_id, item_id)
    owner_id, title = item.user_id, item.title

    comment = ItemComment(item_id=item_id, user_id=author_id, comment=body)
    db.add(comment)
    await commit_or_translate(db)
    logger.info("Comment posted item_id=%s author=%s", item_id, author_id)

    if author_id != owner_id:
        author = await db.get(Profile, author_id)
        name = (author.display_name or author.username) if author else "Кто-то"
        await notifications.notify_quietly(
            db,
            owner_id,
            NotificationTypeEnum.COMMENT.value,
            "Новый комментарий",
            f"{name} прокомментировал «{title}»",
            link=f"/items/{item_id}",
        )
    return comment


async def list_comments(db: AsyncSession, item_id: int, viewer_id: str | None = None) -> list[CommentEntry]:
    await catalog.require_visible(db, viewer_id, item_id)
    result = await db.execute(
        select(ItemComment, Profile)
        .outerjoin(Profile, Profile.user_id == ItemComment.user_id)
        .where(ItemComment.item_id == item_id)
        .order_by(ItemComment.created_at.desc(), ItemComment.id.desc())
    )
    return [CommentEntry(comment=c, profile=p) for c, p in result.all()]


async def post_chat_message(db: AsyncSession, group_id: int, author_id: str, text: str) -> GroupMessage:
    body = _clean_text(text)
    await groups.get_group(db, group_id)
    if not await groups.is_member(db, group_id, author_id):
        raise NotAuthorized("Only group members can write to the group chat")

    message = GroupMessage(group_id=group_id, user_id=author_id, message=body)
    db.add(message)
    await commit_or_translate(db)

    author = await db.get(Profile, author_id)
    delivered = await manager.publish(group_stream(group_id), "message_created", chat_payload(message, author))
    logger.info("Chat message group_id=%s author=%s delivered=%s", group_id, author_id, delivered)
    return message


async def list_chat(db: AsyncSession, group_id: int, viewer_id: str, limit: int | None = None) -> list[ChatEntry]:
    """The most recent messages of a group, oldest first."""
    limit = limit or settings.chat_history_limit
    await groups.get_group(db, group_id)
    if not await groups.is_member(db, group_id, viewer_id):
        raise NotAuthorized("Only group members can read the group chat")

    result = await db.execute(
        select(GroupMessage, Profile)
        .outerjoin(Profile, Profile.user_id == GroupMessage.user_id)
        .where(GroupMessage.group_id == group_id)
        .order_by(GroupMessage.created_at.desc(), GroupMessage.id.desc())
        .limit(limit)
    )
    rows = list(result.all())
    rows.reverse()
    return [ChatEntry(message=m, profile=p) for m, p in rows]
