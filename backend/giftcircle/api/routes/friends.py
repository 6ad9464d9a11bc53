import logging

from fastapi import APIRouter, Query, Request, Response, status

from giftcircle.api.deps import CurrentProfileDep, DbSessionDep
from giftcircle.core.errors import NotFound, ValidationFailed
from giftcircle.core.rate_limit import check_rate_limit
from giftcircle.schemas.profile import ProfilePublic
from giftcircle.schemas.social import (
    EdgeOutcomePublic,
    FriendEntryPublic,
    FriendRequestCreate,
    FriendshipPublic,
)
from giftcircle.services import friendships, profiles

logger = logging.getLogger("giftcircle.friends")

router = APIRouter(prefix="/friends", tags=["friends"])


def _entries(entries: list[friendships.FriendEntry]) -> list[FriendEntryPublic]:
    return [
        FriendEntryPublic(
            friendship=FriendshipPublic.model_validate(entry.friendship),
            profile=ProfilePublic.model_validate(entry.profile),
        )
        for entry in entries
    ]


def _outcome(outcome: friendships.EdgeOutcome) -> EdgeOutcomePublic:
    return EdgeOutcomePublic(
        friendship=FriendshipPublic.model_validate(outcome.friendship) if outcome.friendship else None,
        symmetric=outcome.symmetric,
        warnings=list(outcome.warnings),
    )


@router.get("", response_model=list[FriendEntryPublic])
async def list_friends(db: DbSessionDep, me: CurrentProfileDep) -> list[FriendEntryPublic]:
    return _entries(await friendships.list_friends(db, me.user_id))


@router.get("/requests", response_model=list[FriendEntryPublic])
async def list_incoming(db: DbSessionDep, me: CurrentProfileDep) -> list[FriendEntryPublic]:
    return _entries(await friendships.list_pending_requests(db, me.user_id))


@router.get("/requests/outgoing", response_model=list[FriendEntryPublic])
async def list_outgoing(db: DbSessionDep, me: CurrentProfileDep) -> list[FriendEntryPublic]:
    return _entries(await friendships.list_outgoing_requests(db, me.user_id))


@router.post("/requests", response_model=FriendshipPublic, status_code=status.HTTP_201_CREATED)
async def send_request(
    payload: FriendRequestCreate,
    request: Request,
    db: DbSessionDep,
    me: CurrentProfileDep,
) -> FriendshipPublic:
    requester_id = me.user_id
    check_rate_limit(request, requester_id, "friend_requests")

    addressee_id = payload.addressee_id
    if addressee_id is None:
        if not payload.username:
            raise ValidationFailed("Either addressee_id or username is required")
        addressee = await profiles.get_by_username(db, payload.username)
        if addressee is None:
            raise NotFound("Profile not found", {"username": payload.username})
        addressee_id = addressee.user_id

    row = await friendships.send_request(db, requester_id, addressee_id, payload.circle.value)
    return FriendshipPublic.model_validate(row)


@router.post("/{row_id}/accept", response_model=EdgeOutcomePublic)
async def accept_request(row_id: int, db: DbSessionDep, me: CurrentProfileDep) -> EdgeOutcomePublic:
    return _outcome(await friendships.accept(db, row_id, me.user_id))


@router.post("/{row_id}/reject", status_code=status.HTTP_204_NO_CONTENT)
async def reject_request(row_id: int, db: DbSessionDep, me: CurrentProfileDep) -> Response:
    await friendships.reject(db, row_id, me.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{row_id}", response_model=EdgeOutcomePublic)
async def remove_friend(
    row_id: int,
    db: DbSessionDep,
    me: CurrentProfileDep,
    other_user_id: str = Query(min_length=1, max_length=64),
) -> EdgeOutcomePublic:
    return _outcome(await friendships.remove(db, row_id, me.user_id, other_user_id))
