from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from giftcircle.models.models import PriorityEnum, VisibilityEnum
from giftcircle.schemas.profile import ProfilePublic


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class ItemBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    link: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)
    priority: PriorityEnum = PriorityEnum.MEDIUM
    estimated_price: float | None = Field(default=None, ge=0)
    visibility: VisibilityEnum = VisibilityEnum.FRIENDS
    collection_id: int | None = None

    @field_validator("title")
    @classmethod
    def _title_strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("description", "link", "image_url")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class ItemCreate(ItemBase):
    group_id: int | None = None


class ItemUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)
    link: str | None = Field(default=None, max_length=2048)
    image_url: str | None = Field(default=None, max_length=2048)
    priority: PriorityEnum | None = None
    estimated_price: float | None = Field(default=None, ge=0)
    visibility: VisibilityEnum | None = None
    collection_id: int | None = None

    @field_validator("description", "link", "image_url")
    @classmethod
    def _optional_strip(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class ItemPublic(BaseModel):
    id: int
    user_id: str
    collection_id: int | None
    group_id: int | None
    title: str
    description: str | None
    link: str | None
    image_url: str | None
    priority: str
    estimated_price: float | None
    price_label: str = ""
    visibility: str
    reserved_count: int
    is_reserved: bool = False
    contributed_amount: float
    remaining_amount: float | None = None
    collected_percent: float = 0.0
    over_target: bool = False
    created_at: datetime


class CollectionCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    emoji: str | None = Field(default=None, max_length=16)
    event_date: datetime | None = None

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return value.strip()


class CollectionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    emoji: str | None = Field(default=None, max_length=16)
    event_date: datetime | None = None


class CollectionPublic(BaseModel):
    id: int
    user_id: str
    name: str
    emoji: str
    event_date: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class PublicWishlist(BaseModel):
    profile: ProfilePublic
    items: list[ItemPublic]
