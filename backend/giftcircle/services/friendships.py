"""Friendship graph.

An accepted friendship is stored as two directed rows, one per direction. A
pending request is a single row pointing from requester to addressee. Nothing
in the store ties the two accepted rows together, so the accept and remove
flows are two independent writes and report when only the first one landed.
"""
from dataclasses import dataclass, field
import logging

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from giftcircle.core.audit import AuditAction, audit_log, audit_reconciliation
from giftcircle.core.config import settings
from giftcircle.core.errors import (
    DuplicateEdge,
    InvalidReference,
    NotAuthorized,
    NotFound,
    TransientStoreError,
    ValidationFailed,
)
from giftcircle.models.models import (
    CircleEnum,
    Friendship,
    FriendshipStatusEnum,
    NotificationTypeEnum,
    Profile,
)
from giftcircle.services import notifications
from giftcircle.services.profiles import require_profile
from giftcircle.services.store import commit_or_translate, retry_step

logger = logging.getLogger("giftcircle.friends")

MIRROR_MISSING = "mirror_missing"
MIRROR_NOT_REMOVED = "mirror_not_removed"


@dataclass
class EdgeOutcome:
    """Result of a composite graph write; ``warnings`` lists reconciliation needs."""
    friendship: Friendship | None
    warnings: list[str] = field(default_factory=list)

    @property
    def symmetric(self) -> bool:
        return not self.warnings


@dataclass
class FriendEntry:
    friendship: Friendship
    profile: Profile


async def _get_row(db: AsyncSession, row_id: int) -> Friendship:
    row = await db.get(Friendship, row_id)
    if row is None:
        raise NotFound("Friendship not found")
    return row


async def edge_between(db: AsyncSession, a: str, b: str) -> Friendship | None:
    """Any row between the pair, in either direction."""
    result = await db.execute(
        select(Friendship).where(
            or_(
                and_(Friendship.user_id == a, Friendship.friend_id == b),
                and_(Friendship.user_id == b, Friendship.friend_id == a),
            )
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def is_friend(db: AsyncSession, a: str | None, b: str | None) -> bool:
    """True iff an accepted ``a -> b`` row exists."""
    if not a or not b or a == b:
        return False
    result = await db.execute(
        select(Friendship.id).where(
            Friendship.user_id == a,
            Friendship.friend_id == b,
            Friendship.status == FriendshipStatusEnum.ACCEPTED.value,
        )
    )
    return result.first() is not None


async def send_request(
    db: AsyncSession,
    requester_id: str,
    addressee_id: str,
    circle: str = CircleEnum.FRIENDS.value,
) -> Friendship:
    if requester_id == addressee_id:
        raise ValidationFailed("Cannot send a friend request to yourself")
    circle_value = CircleEnum(circle).value
    requester = await require_profile(db, requester_id)
    await require_profile(db, addressee_id)

    if await edge_between(db, requester_id, addressee_id) is not None:
        raise DuplicateEdge("Friend request already sent or you are already friends")

    row = Friendship(
        user_id=requester_id,
        friend_id=addressee_id,
        circle=circle_value,
        status=FriendshipStatusEnum.PENDING.value,
    )
    db.add(row)
    await commit_or_translate(db, DuplicateEdge("Friend request already sent or you are already friends"))
    audit_log(AuditAction.FRIEND_REQUEST, user_id=requester_id, details={"addressee": addressee_id})

    name = requester.display_name or requester.username
    await notifications.notify_quietly(
        db,
        addressee_id,
        NotificationTypeEnum.FRIEND_REQUEST.value,
        "Новая заявка в друзья",
        f"{name} хочет добавить вас в друзья",
        link="/friends",
    )
    return row


async def edge_between_directed(db: AsyncSession, user_id: str, friend_id: str) -> Friendship | None:
    result = await db.execute(
        select(Friendship).where(Friendship.user_id == user_id, Friendship.friend_id == friend_id)
    )
    return result.scalar_one_or_none()


async def _insert_mirror(db: AsyncSession, requester_id: str, addressee_id: str, circle: str) -> Friendship:
    mirror = Friendship(
        user_id=addressee_id,
        friend_id=requester_id,
        circle=circle,
        status=FriendshipStatusEnum.ACCEPTED.value,
    )
    db.add(mirror)
    await commit_or_translate(db, DuplicateEdge("Mirror friendship already exists"))
    return mirror


async def _delete_mirror(db: AsyncSession, user_id: str, friend_id: str) -> int:
    """Delete the directed row ``user_id -> friend_id``."""
    result = await db.execute(
        delete(Friendship).where(
            Friendship.user_id == user_id,
            Friendship.friend_id == friend_id,
        )
    )
    await commit_or_translate(db)
    return int(result.rowcount or 0)


async def accept(db: AsyncSession, row_id: int, actor_id: str) -> EdgeOutcome:
    """Flip a pending request to accepted, then write the reverse row."""
    row = await _get_row(db, row_id)
    if row.friend_id != actor_id:
        raise NotAuthorized("Only the addressee can accept a friend request")

    if row.status != FriendshipStatusEnum.ACCEPTED.value:
        row.status = FriendshipStatusEnum.ACCEPTED.value
        await commit_or_translate(db)

    # plain values: a failed mirror commit expires ``row``
    requester_id, addressee_id, circle = row.user_id, row.friend_id, row.circle
    outcome = EdgeOutcome(friendship=row)
    try:
        await retry_step(
            lambda: _insert_mirror(db, requester_id, addressee_id, circle),
            settings.reconcile_attempts,
            "friendship_mirror_insert",
        )
    except DuplicateEdge:
        await db.refresh(row)
        existing = await edge_between_directed(db, addressee_id, requester_id)
        if existing is not None and existing.status != FriendshipStatusEnum.ACCEPTED.value:
            # the addressee had a pending request of their own the other way
            existing.status = FriendshipStatusEnum.ACCEPTED.value
            await commit_or_translate(db)
        logger.info("Mirror friendship already present row_id=%s", row_id)
    except (SQLAlchemyError, TransientStoreError, InvalidReference) as exc:
        await db.refresh(row)
        outcome.warnings.append(MIRROR_MISSING)
        audit_reconciliation(
            actor_id,
            completed_step="friendship_accept",
            failed_step="friendship_mirror_insert",
            friendship_id=row_id,
            error=str(exc),
        )
        logger.warning("Friendship accepted but mirror missing row_id=%s: %s", row_id, exc)

    audit_log(AuditAction.FRIEND_ACCEPT, user_id=actor_id, details={"requester": requester_id})
    return outcome


async def reject(db: AsyncSession, row_id: int, actor_id: str) -> None:
    """Delete exactly the named row; either party of the row may do so."""
    row = await _get_row(db, row_id)
    if actor_id not in (row.user_id, row.friend_id):
        raise NotAuthorized("Only a party of the friendship can delete it")
    await db.delete(row)
    await commit_or_translate(db)
    audit_log(
        AuditAction.FRIEND_REMOVE,
        user_id=actor_id,
        details={"friendship_id": row_id, "mirror": False},
    )


async def remove(db: AsyncSession, row_id: int, actor_id: str, other_user_id: str) -> EdgeOutcome:
    """Delete the named row and the row addressed the other way."""
    row = await _get_row(db, row_id)
    if actor_id not in (row.user_id, row.friend_id):
        raise NotAuthorized("Only a party of the friendship can delete it")
    if other_user_id not in (row.user_id, row.friend_id) or other_user_id == actor_id:
        raise ValidationFailed("other_user_id must be the other party of the friendship")

    # the mirror runs opposite to the named row, whichever party names it
    mirror_user_id, mirror_friend_id = row.friend_id, row.user_id
    await db.delete(row)
    await commit_or_translate(db)

    outcome = EdgeOutcome(friendship=None)
    try:
        await retry_step(
            lambda: _delete_mirror(db, mirror_user_id, mirror_friend_id),
            settings.reconcile_attempts,
            "friendship_mirror_delete",
        )
    except (SQLAlchemyError, TransientStoreError, InvalidReference) as exc:
        outcome.warnings.append(MIRROR_NOT_REMOVED)
        audit_reconciliation(
            actor_id,
            completed_step="friendship_delete",
            failed_step="friendship_mirror_delete",
            other_user_id=other_user_id,
            error=str(exc),
        )
        logger.warning("Friendship removed one-sided row_id=%s other=%s: %s", row_id, other_user_id, exc)

    audit_log(
        AuditAction.FRIEND_REMOVE,
        user_id=actor_id,
        details={"friendship_id": row_id, "mirror": outcome.symmetric},
    )
    return outcome


async def _list_with_profile(db: AsyncSession, *conditions, other_column) -> list[FriendEntry]:
    other = aliased(Profile)
    result = await db.execute(
        select(Friendship, other)
        .join(other, other.user_id == other_column)
        .where(*conditions)
        .order_by(Friendship.created_at.desc(), Friendship.id.desc())
    )
    return [FriendEntry(friendship=f, profile=p) for f, p in result.all()]


async def list_friends(db: AsyncSession, user_id: str) -> list[FriendEntry]:
    return await _list_with_profile(
        db,
        Friendship.user_id == user_id,
        Friendship.status == FriendshipStatusEnum.ACCEPTED.value,
        other_column=Friendship.friend_id,
    )


async def list_pending_requests(db: AsyncSession, user_id: str) -> list[FriendEntry]:
    """Incoming requests, joined with the requester's profile."""
    return await _list_with_profile(
        db,
        Friendship.friend_id == user_id,
        Friendship.status == FriendshipStatusEnum.PENDING.value,
        other_column=Friendship.user_id,
    )


async def list_outgoing_requests(db: AsyncSession, user_id: str) -> list[FriendEntry]:
    return await _list_with_profile(
        db,
        Friendship.user_id == user_id,
        Friendship.status == FriendshipStatusEnum.PENDING.value,
        other_column=Friendship.friend_id,
    )
