import logging

from fastapi import APIRouter

from giftcircle.api.deps import CurrentProfileDep, DbSessionDep, OptionalUserIdDep
from giftcircle.api.routes.items import item_public
from giftcircle.core.errors import NotFound
from giftcircle.schemas.item import ItemPublic, PublicWishlist
from giftcircle.schemas.profile import ItemBrief, ProfilePrivate, ProfilePublic, ProfileUpdate, StatsPublic
from giftcircle.services import catalog, profiles, stats

logger = logging.getLogger("giftcircle.profiles")

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get("/currencies")
async def list_currencies() -> dict[str, dict[str, str]]:
    return profiles.CURRENCIES


@router.get("/me", response_model=ProfilePrivate)
async def get_me(me: CurrentProfileDep) -> ProfilePrivate:
    return me


@router.patch("/me", response_model=ProfilePrivate)
async def update_me(payload: ProfileUpdate, db: DbSessionDep, me: CurrentProfileDep) -> ProfilePrivate:
    user_id = me.user_id
    return await profiles.update_profile(db, user_id, user_id, payload.model_dump(exclude_unset=True))


@router.post("/me/rotate-token", response_model=ProfilePrivate)
async def rotate_token(db: DbSessionDep, me: CurrentProfileDep) -> ProfilePrivate:
    return await profiles.rotate_wishlist_token(db, me.user_id)


@router.get("/me/stats", response_model=StatsPublic)
async def my_stats(db: DbSessionDep, me: CurrentProfileDep) -> StatsPublic:
    result = await stats.user_statistics(db, me.user_id)
    return StatsPublic(
        total_items=result.total_items,
        total_estimated_price=float(result.total_estimated_price),
        my_active_reservations=result.my_active_reservations,
        reserved_on_my_items=result.reserved_on_my_items,
        completed_gifts=result.completed_gifts,
        items_by_priority=result.items_by_priority,
        recent_items=[ItemBrief.model_validate(item) for item in result.recent_items],
    )


@router.get("/u/{username}", response_model=ProfilePublic)
async def get_by_username(username: str, db: DbSessionDep) -> ProfilePublic:
    profile = await profiles.get_by_username(db, username)
    if profile is None:
        raise NotFound("Profile not found", {"username": username})
    return profile


@router.get("/u/{username}/items", response_model=list[ItemPublic])
async def list_user_items(username: str, db: DbSessionDep, viewer_id: OptionalUserIdDep) -> list[ItemPublic]:
    owner = await profiles.get_by_username(db, username)
    if owner is None:
        raise NotFound("Profile not found", {"username": username})
    owner_id, currency = owner.user_id, owner.currency
    items = await catalog.list_visible(db, viewer_id, owner_id)
    return [item_public(item, currency) for item in items]


@router.get("/public/{token}", response_model=PublicWishlist)
async def get_public_wishlist(token: str, db: DbSessionDep) -> PublicWishlist:
    """Share-link view: the owner's public items, as an anonymous viewer sees them."""
    owner = await profiles.get_public_by_token(db, token)
    profile = ProfilePublic.model_validate(owner)
    items = await catalog.list_visible(db, None, owner.user_id)
    return PublicWishlist(profile=profile, items=[item_public(item, profile.currency) for item in items])
