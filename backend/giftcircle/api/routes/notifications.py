from fastapi import APIRouter, Query

from giftcircle.api.deps import CurrentProfileDep, DbSessionDep
from giftcircle.schemas.feed import NotificationList, NotificationPublic
from giftcircle.services import notifications

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationList)
async def list_notifications(
    db: DbSessionDep,
    me: CurrentProfileDep,
    limit: int | None = Query(default=None, ge=1, le=100),
) -> NotificationList:
    user_id = me.user_id
    items = await notifications.list_recent(db, user_id, limit)
    return NotificationList(
        items=[NotificationPublic.model_validate(n) for n in items],
        unread_count=await notifications.unread_count(db, user_id),
    )


@router.post("/read-all")
async def mark_all_read(db: DbSessionDep, me: CurrentProfileDep) -> dict[str, int]:
    return {"updated": await notifications.mark_all_read(db, me.user_id)}


@router.post("/{notification_id}/read", response_model=NotificationPublic)
async def mark_read(notification_id: int, db: DbSessionDep, me: CurrentProfileDep) -> NotificationPublic:
    return await notifications.mark_read(db, notification_id, me.user_id)
