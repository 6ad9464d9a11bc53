"""Identity & profile directory.

Maps an opaque account id to its public profile. The username is the only
externally addressable handle (``/u/{username}``) so its uniqueness is
enforced here.
"""
import logging
import re
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from giftcircle.core.config import settings
from giftcircle.core.errors import InvalidUsername, NotAuthorized, NotFound, UsernameTaken, ValidationFailed
from giftcircle.models.models import CurrencyEnum, Profile
from giftcircle.services.store import commit_or_translate

logger = logging.getLogger("giftcircle.profiles")

USERNAME_RE = re.compile(r"^[a-z0-9_]{3,30}$")

CURRENCIES: dict[str, dict[str, str]] = {
    "UAH": {"symbol": "₴", "name": "Гривна"},
    "USD": {"symbol": "$", "name": "Доллар"},
    "EUR": {"symbol": "€", "name": "Евро"},
    "RUB": {"symbol": "₽", "name": "Рубль"},
    "PLN": {"symbol": "zł", "name": "Злотый"},
    "GBP": {"symbol": "£", "name": "Фунт"},
}

_EDITABLE_FIELDS = {"username", "display_name", "bio", "avatar_url", "currency", "wishlist_public"}


def format_price(price: float | Decimal | None, currency: str | None = None) -> str:
    """Render an approximate price label, e.g. ``≈ ₴1 500``."""
    if not price:
        return ""
    info = CURRENCIES.get((currency or "").upper()) or CURRENCIES[settings.default_currency]
    amount = Decimal(str(price))
    if amount == amount.to_integral_value():
        rendered = f"{int(amount):,}".replace(",", " ")
    else:
        rendered = f"{amount:,.2f}".replace(",", " ")
    return f"≈ {info['symbol']}{rendered}"


def normalize_username(value: str) -> str:
    username = (value or "").strip().lower().lstrip("@")
    if not USERNAME_RE.match(username):
        raise InvalidUsername(
            "Username must be 3-30 characters: latin letters, digits or underscore",
            {"username": value},
        )
    return username


async def get_profile(db: AsyncSession, user_id: str) -> Profile | None:
    return await db.get(Profile, user_id)


async def require_profile(db: AsyncSession, user_id: str) -> Profile:
    profile = await get_profile(db, user_id)
    if profile is None:
        raise NotFound("Profile not found", {"user_id": user_id})
    return profile


async def get_by_username(db: AsyncSession, username: str) -> Profile | None:
    result = await db.execute(
        select(Profile).where(Profile.username == (username or "").strip().lower())
    )
    return result.scalar_one_or_none()


async def get_profiles(db: AsyncSession, user_ids: set[str]) -> dict[str, Profile]:
    if not user_ids:
        return {}
    result = await db.execute(select(Profile).where(Profile.user_id.in_(user_ids)))
    return {p.user_id: p for p in result.scalars().all()}


async def _free_username(db: AsyncSession) -> str:
    while True:
        candidate = f"user_{uuid4().hex[:8]}"
        if await get_by_username(db, candidate) is None:
            return candidate


async def ensure_profile(db: AsyncSession, user_id: str, display_name: str | None = None) -> Profile:
    """Return the caller's profile, creating it on first sight.

    Accounts are created by the external identity service; the profile row
    follows lazily with a generated username the owner can change later.
    """
    profile = await get_profile(db, user_id)
    if profile is not None:
        return profile

    profile = Profile(
        user_id=user_id,
        username=await _free_username(db),
        display_name=display_name,
        currency=settings.default_currency,
    )
    db.add(profile)
    try:
        await commit_or_translate(db, UsernameTaken("Generated username collided, retry"))
    except UsernameTaken:
        # a concurrent first request may have created the same profile
        existing = await get_profile(db, user_id)
        if existing is not None:
            return existing
        raise
    logger.info("Profile created user_id=%s username=%s", user_id, profile.username)
    return profile


async def update_profile(db: AsyncSession, actor_id: str, target_id: str, changes: dict[str, Any]) -> Profile:
    if actor_id != target_id:
        raise NotAuthorized("Only the owner can edit a profile")
    profile = await require_profile(db, target_id)

    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValidationFailed("Unknown profile fields", {"fields": sorted(unknown)})

    if "username" in changes and changes["username"] is not None:
        username = normalize_username(changes["username"])
        if username != profile.username:
            owner = await get_by_username(db, username)
            if owner is not None and owner.user_id != profile.user_id:
                raise UsernameTaken("Username is already taken", {"username": username})
            profile.username = username
    if "currency" in changes and changes["currency"] is not None:
        currency = str(getattr(changes["currency"], "value", changes["currency"])).upper()
        if currency not in CurrencyEnum.__members__:
            raise ValidationFailed("Unsupported currency", {"currency": currency})
        profile.currency = currency
    for key in ("display_name", "bio", "avatar_url"):
        if key in changes:
            value = changes[key]
            if isinstance(value, str):
                value = value.strip() or None
            setattr(profile, key, value)
    if "wishlist_public" in changes and changes["wishlist_public"] is not None:
        profile.wishlist_public = bool(changes["wishlist_public"])

    await commit_or_translate(
        db, UsernameTaken("Username is already taken", {"username": profile.username})
    )
    logger.info("Profile updated user_id=%s fields=%s", target_id, sorted(changes))
    return profile


async def rotate_wishlist_token(db: AsyncSession, actor_id: str) -> Profile:
    profile = await require_profile(db, actor_id)
    profile.wishlist_token = str(uuid4())
    await commit_or_translate(db)
    return profile


async def get_public_by_token(db: AsyncSession, token: str) -> Profile:
    result = await db.execute(
        select(Profile).where(Profile.wishlist_token == token, Profile.wishlist_public.is_(True))
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise NotFound("Wishlist not found")
    return profile
