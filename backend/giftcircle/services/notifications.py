"""User inbox: persisted notifications plus live push to the addressee."""
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.config import settings
from giftcircle.core.errors import GiftCircleError, NotAuthorized, NotFound, ValidationFailed
from giftcircle.models.models import Notification, NotificationTypeEnum
from giftcircle.realtime.manager import manager, notifications_stream
from giftcircle.services.store import commit_or_translate

logger = logging.getLogger("giftcircle.feed")

# Reserving a gift stays a surprise for the owner.
SUPPRESSED_TYPES = frozenset({NotificationTypeEnum.RESERVATION.value})


def notification_payload(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "user_id": notification.user_id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "link": notification.link,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


async def notify(
    db: AsyncSession,
    addressee_id: str,
    type: str,
    title: str,
    message: str,
    link: str | None = None,
) -> Notification | None:
    """Persist a notification and push it to the addressee's live stream.

    Returns ``None`` for suppressed event types. Delivery failures never undo
    the persisted row.
    """
    type_value = NotificationTypeEnum(type).value
    if type_value in SUPPRESSED_TYPES:
        logger.debug("Notification suppressed type=%s addressee=%s", type_value, addressee_id)
        return None

    notification = Notification(
        user_id=addressee_id,
        type=type_value,
        title=title,
        message=message,
        link=link,
        is_read=False,
    )
    db.add(notification)
    await commit_or_translate(db)
    logger.info("Notification created id=%s type=%s addressee=%s", notification.id, type_value, addressee_id)

    await manager.publish(
        notifications_stream(addressee_id),
        "notification_created",
        notification_payload(notification),
    )
    return notification


async def notify_quietly(db: AsyncSession, addressee_id: str, type: str, title: str, message: str, link: str | None = None) -> Notification | None:
    """``notify`` for side-effect triggers: the triggering write already landed."""
    try:
        return await notify(db, addressee_id, type, title, message, link)
    except (GiftCircleError, SQLAlchemyError) as e:
        logger.warning("Failed to create %s notification for %s: %s", type, addressee_id, e)
        return None


async def list_recent(db: AsyncSession, addressee_id: str, limit: int | None = None) -> list[Notification]:
    limit = limit or settings.notifications_limit
    if limit <= 0:
        raise ValidationFailed("Limit must be positive")
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == addressee_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def unread_count(db: AsyncSession, addressee_id: str) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == addressee_id,
            Notification.is_read.is_(False),
        )
    )
    return int(result.scalar_one())


async def mark_read(db: AsyncSession, notification_id: int, actor_id: str) -> Notification:
    notification = await db.get(Notification, notification_id)
    if notification is None:
        raise NotFound("Notification not found")
    if notification.user_id != actor_id:
        raise NotAuthorized("Only the addressee can mark a notification as read")
    if not notification.is_read:
        notification.is_read = True
        await commit_or_translate(db)
    return notification


async def mark_all_read(db: AsyncSession, addressee_id: str) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == addressee_id, Notification.is_read.is_(False))
        .values(is_read=True)
    )
    await commit_or_translate(db)
    return int(result.rowcount or 0)
