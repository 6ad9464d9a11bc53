import logging

from fastapi import APIRouter, Query, Request, Response, status

from giftcircle.api.deps import CurrentProfileDep, DbSessionDep
from giftcircle.api.routes.items import item_public
from giftcircle.core.errors import NotAuthorized
from giftcircle.core.rate_limit import check_rate_limit
from giftcircle.schemas.feed import ChatMessagePublic, TextCreate
from giftcircle.schemas.item import ItemPublic
from giftcircle.schemas.profile import ProfilePublic
from giftcircle.schemas.social import (
    GroupCreate,
    GroupPublic,
    GroupSummaryPublic,
    MemberAdd,
    MemberEntryPublic,
    MemberPublic,
    RoleChange,
)
from giftcircle.services import catalog, feed, groups, profiles

logger = logging.getLogger("giftcircle.groups")

router = APIRouter(prefix="/groups", tags=["groups"])


async def _require_member(db, group_id: int, user_id: str) -> None:
    await groups.get_group(db, group_id)
    if not await groups.is_member(db, group_id, user_id):
        raise NotAuthorized("Only group members can see the group")


@router.get("", response_model=list[GroupSummaryPublic])
async def list_my_groups(db: DbSessionDep, me: CurrentProfileDep) -> list[GroupSummaryPublic]:
    summaries = await groups.list_user_groups(db, me.user_id)
    return [
        GroupSummaryPublic(group=GroupPublic.model_validate(s.group), member_count=s.member_count, role=s.role)
        for s in summaries
    ]


@router.post("", response_model=GroupPublic, status_code=status.HTTP_201_CREATED)
async def create_group(payload: GroupCreate, db: DbSessionDep, me: CurrentProfileDep) -> GroupPublic:
    return await groups.create_group(db, me.user_id, payload.name, payload.description)


@router.get("/{group_id}", response_model=GroupPublic)
async def get_group(group_id: int, db: DbSessionDep, me: CurrentProfileDep) -> GroupPublic:
    await _require_member(db, group_id, me.user_id)
    return await groups.get_group(db, group_id)


@router.delete("/{group_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_group(group_id: int, db: DbSessionDep, me: CurrentProfileDep) -> Response:
    await groups.delete_group(db, me.user_id, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{group_id}/members", response_model=list[MemberEntryPublic])
async def list_members(group_id: int, db: DbSessionDep, me: CurrentProfileDep) -> list[MemberEntryPublic]:
    await _require_member(db, group_id, me.user_id)
    group = await groups.get_group(db, group_id)
    entries = await groups.list_members(db, group_id)
    return [
        MemberEntryPublic(
            member=MemberPublic.model_validate(entry.member),
            profile=ProfilePublic.model_validate(entry.profile),
            is_creator=entry.member.user_id == group.creator_id,
        )
        for entry in entries
    ]


@router.post("/{group_id}/members", response_model=MemberPublic, status_code=status.HTTP_201_CREATED)
async def add_member(group_id: int, payload: MemberAdd, db: DbSessionDep, me: CurrentProfileDep) -> MemberPublic:
    return await groups.add_member(db, me.user_id, group_id, payload.user_id)


@router.delete("/{group_id}/members/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(group_id: int, user_id: str, db: DbSessionDep, me: CurrentProfileDep) -> Response:
    await groups.remove_member(db, me.user_id, group_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{group_id}/members/{user_id}/role", response_model=MemberPublic)
async def change_role(
    group_id: int,
    user_id: str,
    payload: RoleChange,
    db: DbSessionDep,
    me: CurrentProfileDep,
) -> MemberPublic:
    return await groups.change_role(db, me.user_id, group_id, user_id, payload.role.value)


@router.post("/{group_id}/leave", status_code=status.HTTP_204_NO_CONTENT)
async def leave_group(group_id: int, db: DbSessionDep, me: CurrentProfileDep) -> Response:
    await groups.leave_group(db, me.user_id, group_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{group_id}/items", response_model=list[ItemPublic])
async def list_group_items(
    group_id: int,
    db: DbSessionDep,
    me: CurrentProfileDep,
    owner_id: str = Query(min_length=1, max_length=64),
) -> list[ItemPublic]:
    owner = await profiles.require_profile(db, owner_id)
    currency = owner.currency
    items = await catalog.list_visible(db, me.user_id, owner_id, group_id=group_id)
    return [item_public(item, currency) for item in items]


def _chat_public(message, profile) -> ChatMessagePublic:
    return ChatMessagePublic(
        id=message.id,
        group_id=message.group_id,
        user_id=message.user_id,
        message=message.message,
        created_at=message.created_at,
        author=ProfilePublic.model_validate(profile) if profile else None,
    )


@router.get("/{group_id}/messages", response_model=list[ChatMessagePublic])
async def list_chat(group_id: int, db: DbSessionDep, me: CurrentProfileDep) -> list[ChatMessagePublic]:
    entries = await feed.list_chat(db, group_id, me.user_id)
    return [_chat_public(entry.message, entry.profile) for entry in entries]


@router.post("/{group_id}/messages", response_model=ChatMessagePublic, status_code=status.HTTP_201_CREATED)
async def post_chat_message(
    group_id: int,
    payload: TextCreate,
    request: Request,
    db: DbSessionDep,
    me: CurrentProfileDep,
) -> ChatMessagePublic:
    author = ProfilePublic.model_validate(me)
    check_rate_limit(request, author.user_id, "chat")
    message = await feed.post_chat_message(db, group_id, author.user_id, payload.text)
    return ChatMessagePublic(
        id=message.id,
        group_id=message.group_id,
        user_id=message.user_id,
        message=message.message,
        created_at=message.created_at,
        author=author,
    )
