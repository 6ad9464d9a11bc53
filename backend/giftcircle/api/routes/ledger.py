import logging

from fastapi import APIRouter, Body, Query, status

from giftcircle.api.deps import CurrentProfileDep, DbSessionDep, OptionalUserIdDep
from giftcircle.api.routes.items import item_public
from giftcircle.models.models import Contribution, Reservation, ReservationStatusEnum
from giftcircle.schemas.ledger import (
    ContributionCreate,
    ContributionPublic,
    ContributorPublic,
    LedgerStatePublic,
    LedgerWriteResponse,
    MyReservationPublic,
    ReservationCreate,
    ReservationPublic,
)
from giftcircle.schemas.profile import ProfilePublic
from giftcircle.services import catalog, ledger

logger = logging.getLogger("giftcircle.ledger")

router = APIRouter(tags=["ledger"])


def state_public(state: ledger.LedgerState) -> LedgerStatePublic:
    return LedgerStatePublic(
        item_id=state.item_id,
        reserved_count=state.reserved_count,
        contributed_amount=float(state.contributed_amount),
        target=float(state.target) if state.target is not None else None,
        remaining=float(state.remaining) if state.remaining is not None else None,
        collected_percent=round(state.collected_percent, 1),
        over_target=state.over_target,
        corrected=state.corrected,
    )


def write_response(outcome: ledger.LedgerWrite) -> LedgerWriteResponse:
    response = LedgerWriteResponse(state=state_public(outcome.state), warnings=list(outcome.warnings))
    if isinstance(outcome.record, Reservation):
        response.reservation = ReservationPublic.model_validate(outcome.record)
    elif isinstance(outcome.record, Contribution):
        response.contribution = ContributionPublic.model_validate(outcome.record)
    if outcome.warnings:
        logger.warning("Ledger write completed with warnings item_id=%s warnings=%s", outcome.state.item_id, outcome.warnings)
    return response


@router.get("/items/{item_id}/ledger", response_model=LedgerStatePublic)
async def get_ledger_state(item_id: int, db: DbSessionDep, viewer_id: OptionalUserIdDep) -> LedgerStatePublic:
    await catalog.require_visible(db, viewer_id, item_id)
    return state_public(await ledger.reconcile_item(db, item_id))


# ── Reservations ────────────────────────────────────────────────────────────

@router.post(
    "/items/{item_id}/reservations",
    response_model=LedgerWriteResponse,
    status_code=status.HTTP_201_CREATED,
)
async def reserve_item(
    item_id: int,
    db: DbSessionDep,
    me: CurrentProfileDep,
    payload: ReservationCreate | None = Body(default=None),
) -> LedgerWriteResponse:
    outcome = await ledger.reserve(db, item_id, me.user_id, payload.note if payload else None)
    return write_response(outcome)


@router.get("/items/{item_id}/reservations", response_model=list[ReservationPublic])
async def list_item_reservations(item_id: int, db: DbSessionDep, me: CurrentProfileDep) -> list[ReservationPublic]:
    return await ledger.list_item_reservations(db, item_id, me.user_id)


@router.get("/reservations/mine", response_model=list[MyReservationPublic])
async def list_my_reservations(
    db: DbSessionDep,
    me: CurrentProfileDep,
    status_filter: ReservationStatusEnum | None = Query(default=None, alias="status"),
) -> list[MyReservationPublic]:
    entries = await ledger.list_my_reservations(
        db, me.user_id, status_filter.value if status_filter else None
    )
    return [
        MyReservationPublic(
            reservation=ReservationPublic.model_validate(entry.reservation),
            item=item_public(entry.item, entry.owner.currency),
            owner=ProfilePublic.model_validate(entry.owner),
        )
        for entry in entries
    ]


@router.delete("/reservations/{reservation_id}", response_model=LedgerWriteResponse)
async def cancel_reservation(reservation_id: int, db: DbSessionDep, me: CurrentProfileDep) -> LedgerWriteResponse:
    return write_response(await ledger.cancel_reservation(db, reservation_id, me.user_id))


@router.post("/reservations/{reservation_id}/complete", response_model=LedgerWriteResponse)
async def complete_reservation(reservation_id: int, db: DbSessionDep, me: CurrentProfileDep) -> LedgerWriteResponse:
    return write_response(await ledger.mark_completed(db, reservation_id, me.user_id))


# ── Contributions ───────────────────────────────────────────────────────────

@router.put("/items/{item_id}/contribution", response_model=LedgerWriteResponse)
async def contribute(
    item_id: int,
    payload: ContributionCreate,
    db: DbSessionDep,
    me: CurrentProfileDep,
) -> LedgerWriteResponse:
    outcome = await ledger.contribute(db, item_id, me.user_id, payload.amount, payload.note)
    return write_response(outcome)


@router.delete("/items/{item_id}/contribution", response_model=LedgerWriteResponse)
async def withdraw_contribution(item_id: int, db: DbSessionDep, me: CurrentProfileDep) -> LedgerWriteResponse:
    return write_response(await ledger.withdraw_contribution(db, item_id, me.user_id))


@router.get("/items/{item_id}/contributions", response_model=list[ContributorPublic])
async def list_contributors(item_id: int, db: DbSessionDep, viewer_id: OptionalUserIdDep) -> list[ContributorPublic]:
    entries = await ledger.list_contributors(db, item_id, viewer_id)
    return [
        ContributorPublic(
            contribution=ContributionPublic.model_validate(entry.contribution),
            profile=ProfilePublic.model_validate(entry.profile) if entry.profile else None,
        )
        for entry in entries
    ]
