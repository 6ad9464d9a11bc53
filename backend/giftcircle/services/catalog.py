"""Wish item catalog and collections."""
from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.errors import EmptyText, InvalidReference, NotAuthorized, NotFound, ValidationFailed
from giftcircle.models.models import (
    Collection,
    Contribution,
    ItemComment,
    PriorityEnum,
    Reservation,
    VisibilityEnum,
    WishItem,
)
from giftcircle.services import friendships, groups
from giftcircle.services.store import commit_or_translate, money

logger = logging.getLogger("giftcircle.catalog")

_ITEM_FIELDS = {
    "title",
    "description",
    "link",
    "image_url",
    "priority",
    "estimated_price",
    "visibility",
    "collection_id",
    "group_id",
}
_NULLABLE_TEXT = {"description", "link", "image_url"}


@dataclass
class ItemFilters:
    search: str | None = None
    only_with_price: bool = False
    only_with_image: bool = False
    only_reserved: bool = False
    collection_id: int | None = None


async def get_item(db: AsyncSession, item_id: int) -> WishItem:
    item = await db.get(WishItem, item_id)
    if item is None:
        raise NotFound("Item not found")
    return item


def visible_levels(viewer_id: str | None, owner_id: str, viewer_is_friend: bool) -> set[str] | None:
    """Visibility levels a viewer may see of an owner's ungrouped items; ``None`` means all."""
    if viewer_id is not None and viewer_id == owner_id:
        return None
    if viewer_is_friend:
        return {VisibilityEnum.PUBLIC.value, VisibilityEnum.FRIENDS.value}
    return {VisibilityEnum.PUBLIC.value}


async def can_view(db: AsyncSession, viewer_id: str | None, item: WishItem) -> bool:
    if viewer_id is not None and viewer_id == item.user_id:
        return True
    if item.group_id is not None:
        return await groups.is_member(db, item.group_id, viewer_id)
    levels = visible_levels(viewer_id, item.user_id, await friendships.is_friend(db, viewer_id, item.user_id))
    return levels is None or item.visibility in levels


async def require_visible(db: AsyncSession, viewer_id: str | None, item_id: int) -> WishItem:
    item = await get_item(db, item_id)
    if not await can_view(db, viewer_id, item):
        # hidden items are indistinguishable from missing ones
        raise NotFound("Item not found")
    return item


async def _require_own_collection(db: AsyncSession, owner_id: str, collection_id: int) -> Collection:
    collection = await db.get(Collection, collection_id)
    if collection is None or collection.user_id != owner_id:
        raise InvalidReference("Collection does not belong to the item owner", {"collection_id": collection_id})
    return collection


def _clean_attrs(attrs: dict[str, Any]) -> dict[str, Any]:
    unknown = set(attrs) - _ITEM_FIELDS
    if unknown:
        raise ValidationFailed("Unknown item fields", {"fields": sorted(unknown)})
    cleaned = dict(attrs)
    if "title" in cleaned:
        title = (cleaned["title"] or "").strip()
        if not title:
            raise EmptyText("Item title is required")
        cleaned["title"] = title
    for key in _NULLABLE_TEXT:
        if key in cleaned and isinstance(cleaned[key], str):
            cleaned[key] = cleaned[key].strip() or None
    if cleaned.get("priority") is not None:
        cleaned["priority"] = PriorityEnum(cleaned["priority"]).value
    if cleaned.get("visibility") is not None:
        cleaned["visibility"] = VisibilityEnum(cleaned["visibility"]).value
    if cleaned.get("estimated_price") is not None:
        price = money(cleaned["estimated_price"])
        if price < 0:
            raise ValidationFailed("Estimated price cannot be negative")
        cleaned["estimated_price"] = price
    return cleaned


async def create_item(db: AsyncSession, owner_id: str, attrs: dict[str, Any]) -> WishItem:
    if "title" not in attrs:
        raise EmptyText("Item title is required")
    cleaned = _clean_attrs(attrs)

    if cleaned.get("collection_id") is not None:
        await _require_own_collection(db, owner_id, cleaned["collection_id"])
    if cleaned.get("group_id") is not None:
        await groups.get_group(db, cleaned["group_id"])
        if not await groups.is_member(db, cleaned["group_id"], owner_id):
            raise NotAuthorized("Only group members can add items to a group")

    item = WishItem(
        user_id=owner_id,
        priority=PriorityEnum.MEDIUM.value,
        visibility=VisibilityEnum.FRIENDS.value,
        reserved_count=0,
        contributed_amount=money(0),
    )
    for key, value in cleaned.items():
        if value is not None:
            setattr(item, key, value)
    db.add(item)
    await commit_or_translate(db)
    logger.info("Item created id=%s owner=%s group=%s", item.id, owner_id, item.group_id)
    return item


async def update_item(db: AsyncSession, actor_id: str, item_id: int, changes: dict[str, Any]) -> WishItem:
    item = await get_item(db, item_id)
    if item.user_id != actor_id:
        raise NotAuthorized("Only the owner can edit an item")
    if "group_id" in changes and changes["group_id"] != item.group_id:
        raise ValidationFailed("An item cannot be moved between group contexts")
    cleaned = _clean_attrs({k: v for k, v in changes.items() if k != "group_id"})

    if cleaned.get("collection_id") is not None:
        await _require_own_collection(db, actor_id, cleaned["collection_id"])
    if cleaned.get("estimated_price") is not None:
        pledged = await db.execute(
            select(func.coalesce(func.sum(Contribution.amount), 0)).where(Contribution.item_id == item_id)
        )
        if cleaned["estimated_price"] < money(pledged.scalar_one()):
            raise ValidationFailed("Price cannot drop below the amount already contributed")
    for key, value in cleaned.items():
        if value is None and key not in _NULLABLE_TEXT | {"collection_id", "estimated_price"}:
            continue
        setattr(item, key, value)
    await commit_or_translate(db)
    return item


async def delete_items_where(db: AsyncSession, *conditions) -> list[int]:
    """Delete matching items with their ledger rows and comments; the caller commits."""
    result = await db.execute(select(WishItem.id).where(*conditions))
    item_ids = [row[0] for row in result.all()]
    if not item_ids:
        return []
    await db.execute(delete(Reservation).where(Reservation.item_id.in_(item_ids)))
    await db.execute(delete(Contribution).where(Contribution.item_id.in_(item_ids)))
    await db.execute(delete(ItemComment).where(ItemComment.item_id.in_(item_ids)))
    await db.execute(delete(WishItem).where(WishItem.id.in_(item_ids)))
    return item_ids


async def delete_item(db: AsyncSession, actor_id: str, item_id: int) -> None:
    item = await get_item(db, item_id)
    if item.user_id != actor_id:
        raise NotAuthorized("Only the owner can delete an item")
    await delete_items_where(db, WishItem.id == item_id)
    await commit_or_translate(db)
    logger.info("Item deleted id=%s owner=%s", item_id, actor_id)


async def _reconciled(db: AsyncSession, items: list[WishItem]) -> list[WishItem]:
    from giftcircle.services.ledger import reconcile_items

    await reconcile_items(db, items)
    return items


async def list_visible(
    db: AsyncSession,
    viewer_id: str | None,
    owner_id: str,
    group_id: int | None = None,
) -> list[WishItem]:
    query = select(WishItem).where(WishItem.user_id == owner_id)
    if group_id is not None:
        await groups.get_group(db, group_id)
        if not await groups.is_member(db, group_id, viewer_id):
            raise NotAuthorized("Only group members can see the group's wishlists")
        query = query.where(WishItem.group_id == group_id)
    else:
        query = query.where(WishItem.group_id.is_(None))
        levels = visible_levels(
            viewer_id, owner_id, await friendships.is_friend(db, viewer_id, owner_id)
        )
        if levels is not None:
            query = query.where(WishItem.visibility.in_(levels))

    result = await db.execute(query.order_by(WishItem.created_at.desc(), WishItem.id.desc()))
    return await _reconciled(db, list(result.scalars().all()))


async def list_own_items(db: AsyncSession, owner_id: str, filters: ItemFilters | None = None) -> list[WishItem]:
    filters = filters or ItemFilters()
    query = select(WishItem).where(WishItem.user_id == owner_id, WishItem.group_id.is_(None))
    if filters.search and filters.search.strip():
        pattern = f"%{filters.search.strip()}%"
        query = query.where(or_(WishItem.title.ilike(pattern), WishItem.description.ilike(pattern)))
    if filters.only_with_price:
        query = query.where(WishItem.estimated_price.is_not(None), WishItem.estimated_price > 0)
    if filters.only_with_image:
        query = query.where(WishItem.image_url.is_not(None))
    if filters.collection_id is not None:
        query = query.where(WishItem.collection_id == filters.collection_id)

    result = await db.execute(query.order_by(WishItem.created_at.desc(), WishItem.id.desc()))
    items = await _reconciled(db, list(result.scalars().all()))
    if filters.only_reserved:
        items = [item for item in items if item.reserved_count > 0]
    return items


# ── Collections ─────────────────────────────────────────────────────────────

async def create_collection(
    db: AsyncSession,
    owner_id: str,
    name: str,
    emoji: str | None = None,
    event_date: datetime | None = None,
) -> Collection:
    name = (name or "").strip()
    if not name:
        raise EmptyText("Collection name is required")
    collection = Collection(user_id=owner_id, name=name, emoji=(emoji or "").strip() or "🎁", event_date=event_date)
    db.add(collection)
    await commit_or_translate(db)
    return collection


async def list_collections(db: AsyncSession, owner_id: str) -> list[Collection]:
    result = await db.execute(
        select(Collection)
        .where(Collection.user_id == owner_id)
        .order_by(Collection.created_at.desc(), Collection.id.desc())
    )
    return list(result.scalars().all())


async def update_collection(db: AsyncSession, actor_id: str, collection_id: int, changes: dict[str, Any]) -> Collection:
    collection = await db.get(Collection, collection_id)
    if collection is None:
        raise NotFound("Collection not found")
    if collection.user_id != actor_id:
        raise NotAuthorized("Only the owner can edit a collection")
    if "name" in changes and changes["name"] is not None:
        name = changes["name"].strip()
        if not name:
            raise EmptyText("Collection name is required")
        collection.name = name
    if changes.get("emoji"):
        collection.emoji = changes["emoji"].strip() or collection.emoji
    if "event_date" in changes:
        collection.event_date = changes["event_date"]
    await commit_or_translate(db)
    return collection


async def delete_collection(db: AsyncSession, actor_id: str, collection_id: int) -> int:
    """Delete a collection; its items stay, detached. Returns how many were detached."""
    collection = await db.get(Collection, collection_id)
    if collection is None:
        raise NotFound("Collection not found")
    if collection.user_id != actor_id:
        raise NotAuthorized("Only the owner can delete a collection")

    detached = await db.execute(
        update(WishItem)
        .where(WishItem.collection_id == collection_id)
        .values(collection_id=None)
        .execution_options(synchronize_session="fetch")
    )
    await db.delete(collection)
    await commit_or_translate(db)
    logger.info("Collection deleted id=%s detached_items=%s", collection_id, detached.rowcount)
    return int(detached.rowcount or 0)
