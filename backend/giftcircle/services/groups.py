"""Group membership registry.

The creator is identified only by ``Group.creator_id``: that is what exempts
them from removal and leaving. ``role`` on a membership row is a delegable
permission grant and never used to derive creator status.
"""
from dataclasses import dataclass
import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.audit import AuditAction, audit_log, audit_reconciliation
from giftcircle.core.config import settings
from giftcircle.core.errors import (
    AlreadyMember,
    CannotRemoveCreator,
    CreatorCannotLeave,
    EmptyText,
    InvalidReference,
    NotAuthorized,
    NotFound,
    PartialWriteError,
    TransientStoreError,
)
from giftcircle.models.models import Group, GroupMember, GroupMessage, GroupRoleEnum, Profile, WishItem
from giftcircle.realtime.manager import group_stream, manager
from giftcircle.services.profiles import require_profile
from giftcircle.services.store import commit_or_translate, retry_step

logger = logging.getLogger("giftcircle.groups")


@dataclass
class MemberEntry:
    member: GroupMember
    profile: Profile


@dataclass
class GroupSummary:
    group: Group
    member_count: int
    role: str | None


async def get_group(db: AsyncSession, group_id: int) -> Group:
    group = await db.get(Group, group_id)
    if group is None:
        raise NotFound("Group not found")
    return group


async def get_membership(db: AsyncSession, group_id: int, user_id: str | None) -> GroupMember | None:
    if not user_id:
        return None
    result = await db.execute(
        select(GroupMember).where(GroupMember.group_id == group_id, GroupMember.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def is_member(db: AsyncSession, group_id: int, user_id: str | None) -> bool:
    return await get_membership(db, group_id, user_id) is not None


async def can_manage(db: AsyncSession, group: Group, user_id: str) -> bool:
    if user_id == group.creator_id:
        return True
    membership = await get_membership(db, group.id, user_id)
    return membership is not None and membership.role == GroupRoleEnum.ADMIN.value


async def _require_manager(db: AsyncSession, group: Group, actor_id: str) -> None:
    if not await can_manage(db, group, actor_id):
        raise NotAuthorized("Only the group creator or an admin can manage members")


async def _insert_membership(db: AsyncSession, group_id: int, user_id: str, role: str) -> GroupMember:
    member = GroupMember(group_id=group_id, user_id=user_id, role=role)
    db.add(member)
    await commit_or_translate(db, AlreadyMember("User is already a member of the group"))
    return member


async def _delete_group_row(db: AsyncSession, group_id: int) -> None:
    await db.execute(delete(Group).where(Group.id == group_id))
    await commit_or_translate(db)


async def create_group(
    db: AsyncSession,
    creator_id: str,
    name: str,
    description: str | None = None,
) -> Group:
    """Create the group, then the creator's admin membership.

    The membership write is retried; if it keeps failing the group row is
    deleted again so no ownerless group is left behind. Only when that
    compensation fails as well does the caller get a ``PartialWriteError``.
    """
    name = (name or "").strip()
    if not name:
        raise EmptyText("Group name is required")
    await require_profile(db, creator_id)

    group = Group(
        name=name,
        description=(description or "").strip() or None,
        creator_id=creator_id,
    )
    db.add(group)
    await commit_or_translate(db)
    group_id = group.id

    try:
        await retry_step(
            lambda: _insert_membership(db, group_id, creator_id, GroupRoleEnum.ADMIN.value),
            settings.reconcile_attempts,
            "group_creator_membership",
        )
    except AlreadyMember:
        logger.info("Creator membership already present group_id=%s", group_id)
    except (SQLAlchemyError, TransientStoreError, InvalidReference) as exc:
        logger.warning("Creator membership failed group_id=%s, deleting group: %s", group_id, exc)
        try:
            await _delete_group_row(db, group_id)
        except (SQLAlchemyError, TransientStoreError, InvalidReference) as rollback_exc:
            audit_reconciliation(
                creator_id,
                completed_step="group_create",
                failed_step="group_creator_membership",
                group_id=group_id,
                error=str(rollback_exc),
            )
            raise PartialWriteError(
                "Group was created without its creator membership",
                completed_step="group_create",
                failed_step="group_creator_membership",
                details={"group_id": group_id},
            ) from rollback_exc
        raise TransientStoreError("Could not create group, retry the operation") from exc

    await db.refresh(group)
    audit_log(AuditAction.GROUP_CREATE, user_id=creator_id, details={"group_id": group_id})
    return group


async def add_member(db: AsyncSession, actor_id: str, group_id: int, target_id: str) -> GroupMember:
    group = await get_group(db, group_id)
    await _require_manager(db, group, actor_id)
    await require_profile(db, target_id)

    if await is_member(db, group_id, target_id):
        raise AlreadyMember("User is already a member of the group")

    member = await _insert_membership(db, group_id, target_id, GroupRoleEnum.MEMBER.value)
    audit_log(AuditAction.MEMBER_ADD, user_id=actor_id, details={"group_id": group_id, "target": target_id})
    return member


async def remove_member(db: AsyncSession, actor_id: str, group_id: int, target_id: str) -> None:
    group = await get_group(db, group_id)
    if target_id == group.creator_id:
        raise CannotRemoveCreator("The group creator cannot be removed")
    await _require_manager(db, group, actor_id)

    membership = await get_membership(db, group_id, target_id)
    if membership is None:
        raise NotFound("User is not a member of the group")
    await db.delete(membership)
    await commit_or_translate(db)
    manager.release_user(group_stream(group_id), target_id)
    audit_log(AuditAction.MEMBER_REMOVE, user_id=actor_id, details={"group_id": group_id, "target": target_id})


async def leave_group(db: AsyncSession, user_id: str, group_id: int) -> None:
    group = await get_group(db, group_id)
    if user_id == group.creator_id:
        raise CreatorCannotLeave("The group creator cannot leave the group")
    membership = await get_membership(db, group_id, user_id)
    if membership is None:
        raise NotFound("You are not a member of the group")
    await db.delete(membership)
    await commit_or_translate(db)
    manager.release_user(group_stream(group_id), user_id)
    logger.info("Member left group_id=%s user_id=%s", group_id, user_id)


async def change_role(db: AsyncSession, actor_id: str, group_id: int, target_id: str, role: str) -> GroupMember:
    role_value = GroupRoleEnum(role).value
    group = await get_group(db, group_id)
    if target_id == group.creator_id:
        raise NotAuthorized("The creator's privileges cannot be changed")
    await _require_manager(db, group, actor_id)

    membership = await get_membership(db, group_id, target_id)
    if membership is None:
        raise NotFound("User is not a member of the group")
    membership.role = role_value
    await commit_or_translate(db)
    audit_log(
        AuditAction.MEMBER_ROLE_CHANGE,
        user_id=actor_id,
        details={"group_id": group_id, "target": target_id, "role": role_value},
    )
    return membership


async def list_members(db: AsyncSession, group_id: int) -> list[MemberEntry]:
    await get_group(db, group_id)
    result = await db.execute(
        select(GroupMember, Profile)
        .join(Profile, Profile.user_id == GroupMember.user_id)
        .where(GroupMember.group_id == group_id)
        .order_by(GroupMember.joined_at.asc(), GroupMember.id.asc())
    )
    return [MemberEntry(member=m, profile=p) for m, p in result.all()]


async def list_user_groups(db: AsyncSession, user_id: str) -> list[GroupSummary]:
    counts = (
        select(GroupMember.group_id, func.count(GroupMember.id).label("member_count"))
        .group_by(GroupMember.group_id)
        .subquery()
    )
    result = await db.execute(
        select(Group, GroupMember.role, func.coalesce(counts.c.member_count, 0))
        .join(GroupMember, GroupMember.group_id == Group.id)
        .outerjoin(counts, counts.c.group_id == Group.id)
        .where(GroupMember.user_id == user_id)
        .order_by(Group.created_at.desc(), Group.id.desc())
    )
    return [
        GroupSummary(group=g, member_count=int(count), role=role)
        for g, role, count in result.all()
    ]


async def delete_group(db: AsyncSession, actor_id: str, group_id: int) -> None:
    """Creator-only; members, chat and group-scoped items go with the group."""
    group = await get_group(db, group_id)
    if actor_id != group.creator_id:
        raise NotAuthorized("Only the creator can delete the group")

    # item-level children are removed by the catalog's cascade
    from giftcircle.services.catalog import delete_items_where

    await delete_items_where(db, WishItem.group_id == group_id)
    await db.execute(delete(GroupMessage).where(GroupMessage.group_id == group_id))
    await db.execute(delete(GroupMember).where(GroupMember.group_id == group_id))
    await db.execute(delete(Group).where(Group.id == group_id))
    await commit_or_translate(db)
    manager.release_stream(group_stream(group_id))
    audit_log(AuditAction.GROUP_DELETE, user_id=actor_id, details={"group_id": group_id})
