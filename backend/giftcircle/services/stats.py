from dataclasses import dataclass, field
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.models.models import PriorityEnum, Reservation, ReservationStatusEnum, WishItem
from giftcircle.services.store import money


@dataclass
class UserStatistics:
    total_items: int
    total_estimated_price: Decimal
    my_active_reservations: int
    reserved_on_my_items: int
    completed_gifts: int
    items_by_priority: dict[str, int] = field(default_factory=dict)
    recent_items: list[WishItem] = field(default_factory=list)


async def user_statistics(db: AsyncSession, user_id: str) -> UserStatistics:
    """Dashboard counters for one user's personal wishlist and reservations."""
    totals = await db.execute(
        select(func.count(WishItem.id), func.coalesce(func.sum(WishItem.estimated_price), 0))
        .where(WishItem.user_id == user_id)
    )
    total_items, total_price = totals.one()

    mine = await db.execute(
        select(func.count(Reservation.id)).where(
            Reservation.reserved_by == user_id,
            Reservation.status == ReservationStatusEnum.ACTIVE.value,
        )
    )
    on_my_items = await db.execute(
        select(func.count(Reservation.id))
        .join(WishItem, WishItem.id == Reservation.item_id)
        .where(
            WishItem.user_id == user_id,
            Reservation.status == ReservationStatusEnum.ACTIVE.value,
        )
    )
    completed = await db.execute(
        select(func.count(Reservation.id)).where(
            Reservation.reserved_by == user_id,
            Reservation.status == ReservationStatusEnum.COMPLETED.value,
        )
    )

    by_priority = {priority.value: 0 for priority in PriorityEnum}
    grouped = await db.execute(
        select(WishItem.priority, func.count(WishItem.id))
        .where(WishItem.user_id == user_id)
        .group_by(WishItem.priority)
    )
    for priority, count in grouped.all():
        by_priority[priority] = int(count)

    recent = await db.execute(
        select(WishItem)
        .where(WishItem.user_id == user_id)
        .order_by(WishItem.created_at.desc(), WishItem.id.desc())
        .limit(5)
    )

    return UserStatistics(
        total_items=int(total_items),
        total_estimated_price=money(total_price),
        my_active_reservations=int(mine.scalar_one()),
        reserved_on_my_items=int(on_my_items.scalar_one()),
        completed_gifts=int(completed.scalar_one()),
        items_by_priority=by_priority,
        recent_items=list(recent.scalars().all()),
    )
