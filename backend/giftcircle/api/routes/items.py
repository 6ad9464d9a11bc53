import logging

from fastapi import APIRouter, Query, Request, Response, status

from giftcircle.api.deps import CurrentProfileDep, DbSessionDep, OptionalUserIdDep
from giftcircle.core.rate_limit import check_rate_limit
from giftcircle.models.models import WishItem
from giftcircle.schemas.feed import CommentPublic, TextCreate
from giftcircle.schemas.item import (
    CollectionCreate,
    CollectionPublic,
    CollectionUpdate,
    ItemCreate,
    ItemPublic,
    ItemUpdate,
)
from giftcircle.schemas.profile import ProfilePublic
from giftcircle.services import catalog, feed, ledger, profiles
from giftcircle.services.store import money

logger = logging.getLogger("giftcircle.catalog")

router = APIRouter(prefix="/items", tags=["items"])
collections_router = APIRouter(prefix="/collections", tags=["collections"])


def item_public(item: WishItem, currency: str | None = None) -> ItemPublic:
    state = ledger.LedgerState(
        item_id=item.id,
        reserved_count=item.reserved_count or 0,
        contributed_amount=money(item.contributed_amount or 0),
        target=money(item.estimated_price) if item.estimated_price is not None else None,
    )
    return ItemPublic(
        id=item.id,
        user_id=item.user_id,
        collection_id=item.collection_id,
        group_id=item.group_id,
        title=item.title,
        description=item.description,
        link=item.link,
        image_url=item.image_url,
        priority=item.priority,
        estimated_price=float(state.target) if state.target is not None else None,
        price_label=profiles.format_price(item.estimated_price, currency),
        visibility=item.visibility,
        reserved_count=state.reserved_count,
        is_reserved=state.reserved_count > 0,
        contributed_amount=float(state.contributed_amount),
        remaining_amount=float(state.remaining) if state.remaining is not None else None,
        collected_percent=round(state.collected_percent, 1),
        over_target=state.over_target,
        created_at=item.created_at,
    )


@router.get("/mine", response_model=list[ItemPublic])
async def list_my_items(
    db: DbSessionDep,
    me: CurrentProfileDep,
    search: str | None = Query(default=None, max_length=120),
    only_with_price: bool = False,
    only_with_image: bool = False,
    only_reserved: bool = False,
    collection_id: int | None = None,
) -> list[ItemPublic]:
    currency = me.currency
    filters = catalog.ItemFilters(
        search=search,
        only_with_price=only_with_price,
        only_with_image=only_with_image,
        only_reserved=only_reserved,
        collection_id=collection_id,
    )
    items = await catalog.list_own_items(db, me.user_id, filters)
    return [item_public(item, currency) for item in items]


@router.post("", response_model=ItemPublic, status_code=status.HTTP_201_CREATED)
async def create_item(payload: ItemCreate, db: DbSessionDep, me: CurrentProfileDep) -> ItemPublic:
    currency = me.currency
    item = await catalog.create_item(db, me.user_id, payload.model_dump(exclude_none=True))
    return item_public(item, currency)


@router.get("/{item_id}", response_model=ItemPublic)
async def get_item(item_id: int, db: DbSessionDep, viewer_id: OptionalUserIdDep) -> ItemPublic:
    item = await catalog.require_visible(db, viewer_id, item_id)
    await ledger.reconcile_item(db, item_id)
    owner = await profiles.get_profile(db, item.user_id)
    return item_public(item, owner.currency if owner else None)


@router.patch("/{item_id}", response_model=ItemPublic)
async def update_item(item_id: int, payload: ItemUpdate, db: DbSessionDep, me: CurrentProfileDep) -> ItemPublic:
    currency = me.currency
    item = await catalog.update_item(db, me.user_id, item_id, payload.model_dump(exclude_unset=True))
    return item_public(item, currency)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_item(item_id: int, db: DbSessionDep, me: CurrentProfileDep) -> Response:
    await catalog.delete_item(db, me.user_id, item_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{item_id}/comments", response_model=list[CommentPublic])
async def list_comments(item_id: int, db: DbSessionDep, viewer_id: OptionalUserIdDep) -> list[CommentPublic]:
    entries = await feed.list_comments(db, item_id, viewer_id)
    return [
        CommentPublic(
            id=entry.comment.id,
            item_id=entry.comment.item_id,
            user_id=entry.comment.user_id,
            comment=entry.comment.comment,
            created_at=entry.comment.created_at,
            author=ProfilePublic.model_validate(entry.profile) if entry.profile else None,
        )
        for entry in entries
    ]


@router.post("/{item_id}/comments", response_model=CommentPublic, status_code=status.HTTP_201_CREATED)
async def post_comment(
    item_id: int,
    payload: TextCreate,
    request: Request,
    db: DbSessionDep,
    me: CurrentProfileDep,
) -> CommentPublic:
    author = ProfilePublic.model_validate(me)
    check_rate_limit(request, author.user_id, "comments")
    comment = await feed.post_comment(db, item_id, author.user_id, payload.text)
    return CommentPublic(
        id=comment.id,
        item_id=comment.item_id,
        user_id=comment.user_id,
        comment=comment.comment,
        created_at=comment.created_at,
        author=author,
    )


# ── Collections ─────────────────────────────────────────────────────────────

@collections_router.get("", response_model=list[CollectionPublic])
async def list_collections(db: DbSessionDep, me: CurrentProfileDep) -> list[CollectionPublic]:
    return await catalog.list_collections(db, me.user_id)


@collections_router.post("", response_model=CollectionPublic, status_code=status.HTTP_201_CREATED)
async def create_collection(payload: CollectionCreate, db: DbSessionDep, me: CurrentProfileDep) -> CollectionPublic:
    return await catalog.create_collection(db, me.user_id, payload.name, payload.emoji, payload.event_date)


@collections_router.patch("/{collection_id}", response_model=CollectionPublic)
async def update_collection(
    collection_id: int,
    payload: CollectionUpdate,
    db: DbSessionDep,
    me: CurrentProfileDep,
) -> CollectionPublic:
    return await catalog.update_collection(db, me.user_id, collection_id, payload.model_dump(exclude_unset=True))


@collections_router.delete("/{collection_id}")
async def delete_collection(collection_id: int, db: DbSessionDep, me: CurrentProfileDep) -> dict[str, int]:
    detached = await catalog.delete_collection(db, me.user_id, collection_id)
    return {"detached_items": detached}
