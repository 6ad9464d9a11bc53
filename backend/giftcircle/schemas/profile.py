from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from giftcircle.models.models import CurrencyEnum


class ProfilePublic(BaseModel):
    user_id: str
    username: str
    display_name: str | None
    bio: str | None
    avatar_url: str | None
    currency: str
    created_at: datetime

    class Config:
        from_attributes = True


class ProfilePrivate(ProfilePublic):
    wishlist_public: bool
    wishlist_token: str


class ProfileUpdate(BaseModel):
    username: str | None = Field(default=None, min_length=3, max_length=31)
    display_name: str | None = Field(default=None, max_length=120)
    bio: str | None = Field(default=None, max_length=500)
    avatar_url: str | None = Field(default=None, max_length=2048)
    currency: CurrencyEnum | None = None
    wishlist_public: bool | None = None

    @field_validator("display_name", "bio", "avatar_url")
    @classmethod
    def _strip_optional(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        return normalized or None


class ItemBrief(BaseModel):
    id: int
    title: str
    estimated_price: float | None
    priority: str
    created_at: datetime

    class Config:
        from_attributes = True


class StatsPublic(BaseModel):
    total_items: int
    total_estimated_price: float
    my_active_reservations: int
    reserved_on_my_items: int
    completed_gifts: int
    items_by_priority: dict[str, int]
    recent_items: list[ItemBrief]
