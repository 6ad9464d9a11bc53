"""Reservation & contribution ledger.

``WishItem.reserved_count`` and ``WishItem.contributed_amount`` are caches of
the rows kept here. Every ledger write is two steps: the row write, then an
authoritative recomputation of both caches from the rows. If the second step
fails the caller gets a warning and the next read through ``reconcile_items``
repairs the cache.

The contribution cap is checked before the write and is advisory: two
contributors checking inside the same window can both pass and overshoot the
target together. ``reconcile_item`` reports that as ``over_target``.
"""
from dataclasses import dataclass, field
from decimal import Decimal
import logging

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.audit import AuditAction, audit_log, audit_reconciliation
from giftcircle.core.config import settings
from giftcircle.core.errors import (
    AlreadyReserved,
    Conflict,
    ExceedsTarget,
    InvalidAmount,
    InvalidReference,
    NotAuthorized,
    NotFound,
    SelfReservation,
    TransientStoreError,
    ValidationFailed,
)
from giftcircle.models.models import (
    Contribution,
    NotificationTypeEnum,
    Profile,
    Reservation,
    ReservationStatusEnum,
    WishItem,
)
from giftcircle.services import catalog, notifications
from giftcircle.services.store import commit_or_translate, money, retry_step

logger = logging.getLogger("giftcircle.ledger")

AGGREGATE_STALE = "aggregate_stale"

_ACTIVE = ReservationStatusEnum.ACTIVE.value


@dataclass
class LedgerState:
    item_id: int
    reserved_count: int
    contributed_amount: Decimal
    target: Decimal | None
    corrected: bool = False

    @property
    def remaining(self) -> Decimal | None:
        if self.target is None:
            return None
        return max(self.target - self.contributed_amount, Decimal("0.00"))

    @property
    def over_target(self) -> bool:
        return self.target is not None and self.contributed_amount > self.target

    @property
    def collected_percent(self) -> float:
        if not self.target or self.target <= 0:
            return 0.0
        return min(float(self.contributed_amount / self.target * 100), 100.0)


@dataclass
class LedgerWrite:
    record: Reservation | Contribution | None
    state: LedgerState
    warnings: list[str] = field(default_factory=list)


@dataclass
class ContributionCheck:
    amount: Decimal
    existing_amount: Decimal | None
    remaining_before: Decimal | None


@dataclass
class ContributorEntry:
    contribution: Contribution
    profile: Profile | None


@dataclass
class ReservationEntry:
    reservation: Reservation
    item: WishItem
    owner: Profile


# ── Aggregates ──────────────────────────────────────────────────────────────

async def _derive(db: AsyncSession, item_ids: list[int]) -> tuple[dict[int, int], dict[int, Decimal]]:
    if not item_ids:
        return {}, {}
    reserved = await db.execute(
        select(Reservation.item_id, func.count(Reservation.id))
        .where(Reservation.item_id.in_(item_ids), Reservation.status == _ACTIVE)
        .group_by(Reservation.item_id)
    )
    contributed = await db.execute(
        select(Contribution.item_id, func.coalesce(func.sum(Contribution.amount), 0))
        .where(Contribution.item_id.in_(item_ids))
        .group_by(Contribution.item_id)
    )
    return (
        {row[0]: int(row[1]) for row in reserved.all()},
        {row[0]: money(row[1]) for row in contributed.all()},
    )


def _state(item: WishItem, reserved: int, contributed: Decimal, corrected: bool = False) -> LedgerState:
    target = money(item.estimated_price) if item.estimated_price is not None else None
    return LedgerState(
        item_id=item.id,
        reserved_count=reserved,
        contributed_amount=contributed,
        target=target,
        corrected=corrected,
    )


async def reconcile_items(db: AsyncSession, items: list[WishItem]) -> dict[int, LedgerState]:
    """Re-derive both caches from the rows and correct any drift in place."""
    reserved, contributed = await _derive(db, [item.id for item in items])
    states: dict[int, LedgerState] = {}
    drifted: list[WishItem] = []
    for item in items:
        true_reserved = reserved.get(item.id, 0)
        true_contributed = contributed.get(item.id, money(0))
        corrected = (
            item.reserved_count != true_reserved
            or money(item.contributed_amount or 0) != true_contributed
        )
        if corrected:
            logger.info(
                "Aggregate drift item_id=%s reserved %s->%s contributed %s->%s",
                item.id,
                item.reserved_count,
                true_reserved,
                item.contributed_amount,
                true_contributed,
            )
            item.reserved_count = true_reserved
            item.contributed_amount = true_contributed
            drifted.append(item)
        states[item.id] = _state(item, true_reserved, true_contributed, corrected)

    if drifted:
        try:
            await commit_or_translate(db)
        except (SQLAlchemyError, TransientStoreError, InvalidReference) as exc:
            logger.warning("Could not persist corrected aggregates: %s", exc)
            for item in drifted:
                await db.refresh(item)
        else:
            audit_log(
                AuditAction.AGGREGATE_CORRECTED,
                details={"item_ids": [item.id for item in drifted]},
            )
    return states


async def reconcile_item(db: AsyncSession, item_id: int) -> LedgerState:
    item = await catalog.get_item(db, item_id)
    states = await reconcile_items(db, [item])
    return states[item_id]


async def _sync_aggregates(db: AsyncSession, item_id: int) -> None:
    reserved = (
        select(func.count(Reservation.id))
        .where(Reservation.item_id == item_id, Reservation.status == _ACTIVE)
        .scalar_subquery()
    )
    contributed = (
        select(func.coalesce(func.sum(Contribution.amount), 0))
        .where(Contribution.item_id == item_id)
        .scalar_subquery()
    )
    await db.execute(
        update(WishItem)
        .where(WishItem.id == item_id)
        .values(reserved_count=reserved, contributed_amount=contributed)
        .execution_options(synchronize_session=False)
    )
    await commit_or_translate(db)


async def _finish_write(
    db: AsyncSession,
    actor_id: str,
    item_id: int,
    completed_step: str,
    record: Reservation | Contribution | None,
) -> LedgerWrite:
    """Second step of every ledger write: bring the item caches in line."""
    warnings: list[str] = []
    try:
        await retry_step(lambda: _sync_aggregates(db, item_id), settings.reconcile_attempts, "item_aggregates")
    except (SQLAlchemyError, TransientStoreError, InvalidReference) as exc:
        warnings.append(AGGREGATE_STALE)
        audit_reconciliation(
            actor_id,
            completed_step=completed_step,
            failed_step="item_aggregates",
            item_id=item_id,
            error=str(exc),
        )
    item = await catalog.get_item(db, item_id)
    await db.refresh(item)
    if record is not None:
        await db.refresh(record)
    reserved, contributed = await _derive(db, [item_id])
    state = _state(item, reserved.get(item_id, 0), contributed.get(item_id, money(0)))
    return LedgerWrite(record=record, state=state, warnings=warnings)


# ── Reservations ────────────────────────────────────────────────────────────

async def active_reservation(db: AsyncSession, item_id: int, user_id: str) -> Reservation | None:
    result = await db.execute(
        select(Reservation).where(
            Reservation.item_id == item_id,
            Reservation.reserved_by == user_id,
            Reservation.status == _ACTIVE,
        )
    )
    return result.scalar_one_or_none()


async def reserve(db: AsyncSession, item_id: int, viewer_id: str, note: str | None = None) -> LedgerWrite:
    item = await catalog.require_visible(db, viewer_id, item_id)
    owner_id = item.user_id
    if viewer_id == owner_id:
        raise SelfReservation("You cannot reserve your own wish")
    if await active_reservation(db, item_id, viewer_id) is not None:
        raise AlreadyReserved("You have already reserved this gift")

    reservation = Reservation(
        item_id=item_id,
        reserved_by=viewer_id,
        status=_ACTIVE,
        note=(note or "").strip() or None,
    )
    db.add(reservation)
    await commit_or_translate(db, AlreadyReserved("You have already reserved this gift"))
    audit_log(AuditAction.RESERVATION_CREATE, user_id=viewer_id, details={"item_id": item_id})

    outcome = await _finish_write(db, viewer_id, item_id, "reservation_insert", reservation)
    # suppressed by the feed: the owner must not learn who reserved what
    await notifications.notify_quietly(
        db,
        owner_id,
        NotificationTypeEnum.RESERVATION.value,
        "Подарок забронирован",
        "Кто-то забронировал подарок из вашего списка",
    )
    return outcome


async def _own_reservation(db: AsyncSession, reservation_id: int, actor_id: str) -> Reservation:
    reservation = await db.get(Reservation, reservation_id)
    if reservation is None:
        raise NotFound("Reservation not found")
    if reservation.reserved_by != actor_id:
        raise NotAuthorized("Only the person who reserved the gift can change the reservation")
    return reservation


async def cancel_reservation(db: AsyncSession, reservation_id: int, actor_id: str) -> LedgerWrite:
    reservation = await _own_reservation(db, reservation_id, actor_id)
    if reservation.status == ReservationStatusEnum.COMPLETED.value:
        raise ValidationFailed("A gift that was already given cannot be un-reserved")
    item_id = reservation.item_id
    await db.delete(reservation)
    await commit_or_translate(db)
    audit_log(AuditAction.RESERVATION_CANCEL, user_id=actor_id, details={"item_id": item_id})
    return await _finish_write(db, actor_id, item_id, "reservation_delete", None)


async def mark_completed(db: AsyncSession, reservation_id: int, actor_id: str) -> LedgerWrite:
    reservation = await _own_reservation(db, reservation_id, actor_id)
    if reservation.status == ReservationStatusEnum.CANCELLED.value:
        raise ValidationFailed("A cancelled reservation cannot be completed")
    if reservation.status != ReservationStatusEnum.COMPLETED.value:
        reservation.status = ReservationStatusEnum.COMPLETED.value
        await commit_or_translate(db)
        audit_log(
            AuditAction.RESERVATION_COMPLETE,
            user_id=actor_id,
            details={"reservation_id": reservation_id},
        )
    return await _finish_write(db, actor_id, reservation.item_id, "reservation_complete", reservation)


async def list_my_reservations(db: AsyncSession, user_id: str, status: str | None = None) -> list[ReservationEntry]:
    query = (
        select(Reservation, WishItem, Profile)
        .join(WishItem, WishItem.id == Reservation.item_id)
        .join(Profile, Profile.user_id == WishItem.user_id)
        .where(Reservation.reserved_by == user_id)
    )
    if status is not None:
        query = query.where(Reservation.status == ReservationStatusEnum(status).value)
    result = await db.execute(query.order_by(Reservation.reserved_at.desc(), Reservation.id.desc()))
    return [ReservationEntry(reservation=r, item=i, owner=p) for r, i, p in result.all()]


async def list_item_reservations(db: AsyncSession, item_id: int, viewer_id: str) -> list[Reservation]:
    """Active reservations on an item; the owner never sees who reserved."""
    item = await catalog.require_visible(db, viewer_id, item_id)
    if item.user_id == viewer_id:
        return []
    result = await db.execute(
        select(Reservation)
        .where(Reservation.item_id == item_id, Reservation.status == _ACTIVE)
        .order_by(Reservation.reserved_at.asc(), Reservation.id.asc())
    )
    return list(result.scalars().all())


# ── Contributions ───────────────────────────────────────────────────────────

async def own_contribution(db: AsyncSession, item_id: int, user_id: str) -> Contribution | None:
    result = await db.execute(
        select(Contribution).where(Contribution.item_id == item_id, Contribution.user_id == user_id)
    )
    return result.scalar_one_or_none()


async def check_contribution(
    db: AsyncSession,
    item: WishItem,
    contributor_id: str,
    amount,
) -> ContributionCheck:
    """Validate a pledge against the current rows. Advisory under concurrency."""
    try:
        value = money(amount)
    except (ArithmeticError, ValueError, TypeError) as exc:
        raise InvalidAmount("Amount must be a number") from exc
    if not value.is_finite() or value <= 0:
        raise InvalidAmount("Amount must be positive")
    if contributor_id == item.user_id and not settings.allow_owner_contributions:
        raise NotAuthorized("Owner cannot contribute to their own wish")

    mine = await own_contribution(db, item.id, contributor_id)
    own_amount = money(mine.amount) if mine is not None else None

    remaining_before = None
    if item.estimated_price is not None:
        target = money(item.estimated_price)
        total = await db.execute(
            select(func.coalesce(func.sum(Contribution.amount), 0)).where(Contribution.item_id == item.id)
        )
        others = money(total.scalar_one()) - (own_amount or money(0))
        remaining_before = max(target - others, money(0))
        if others + value > target:
            raise ExceedsTarget(
                f"Maximum contribution is {remaining_before}",
                remaining=float(remaining_before),
            )
    return ContributionCheck(amount=value, existing_amount=own_amount, remaining_before=remaining_before)


async def write_contribution(
    db: AsyncSession,
    item_id: int,
    contributor_id: str,
    amount: Decimal,
    note: str | None = None,
) -> Contribution:
    """Upsert the contributor's single row: a repeat pledge replaces the amount."""
    note = (note or "").strip() or None
    row = await own_contribution(db, item_id, contributor_id)
    if row is None:
        row = Contribution(item_id=item_id, user_id=contributor_id, amount=amount, note=note)
        db.add(row)
        try:
            await commit_or_translate(db, Conflict("Contribution row already exists"))
            return row
        except Conflict:
            # a parallel request of the same contributor inserted first
            row = await own_contribution(db, item_id, contributor_id)
            if row is None:
                raise
    row.amount = amount
    row.note = note
    await commit_or_translate(db)
    return row


async def contribute(
    db: AsyncSession,
    item_id: int,
    contributor_id: str,
    amount,
    note: str | None = None,
) -> LedgerWrite:
    item = await catalog.require_visible(db, contributor_id, item_id)
    owner_id, title = item.user_id, item.title
    check = await check_contribution(db, item, contributor_id, amount)
    row = await write_contribution(db, item_id, contributor_id, check.amount, note)
    audit_log(
        AuditAction.CONTRIBUTION_SET,
        user_id=contributor_id,
        details={"item_id": item_id, "amount": str(check.amount), "previous": str(check.existing_amount)},
    )

    outcome = await _finish_write(db, contributor_id, item_id, "contribution_write", row)
    if contributor_id != owner_id:
        contributor = await db.get(Profile, contributor_id)
        name = (contributor.display_name or contributor.username) if contributor else "Кто-то"
        await notifications.notify_quietly(
            db,
            owner_id,
            NotificationTypeEnum.CONTRIBUTION.value,
            "Новый вклад в складчину",
            f"{name} внёс {check.amount} на «{title}»",
            link=f"/items/{item_id}",
        )
    return outcome


async def withdraw_contribution(db: AsyncSession, item_id: int, contributor_id: str) -> LedgerWrite:
    await catalog.get_item(db, item_id)
    row = await own_contribution(db, item_id, contributor_id)
    if row is None:
        raise NotFound("You have no contribution to this gift")
    await db.delete(row)
    await commit_or_translate(db)
    audit_log(AuditAction.CONTRIBUTION_WITHDRAW, user_id=contributor_id, details={"item_id": item_id})
    return await _finish_write(db, contributor_id, item_id, "contribution_delete", None)


async def list_contributors(db: AsyncSession, item_id: int, viewer_id: str | None) -> list[ContributorEntry]:
    await catalog.require_visible(db, viewer_id, item_id)
    result = await db.execute(
        select(Contribution, Profile)
        .outerjoin(Profile, Profile.user_id == Contribution.user_id)
        .where(Contribution.item_id == item_id)
        .order_by(Contribution.updated_at.desc(), Contribution.id.desc())
    )
    return [ContributorEntry(contribution=c, profile=p) for c, p in result.all()]
