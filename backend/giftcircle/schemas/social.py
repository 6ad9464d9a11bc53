from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from giftcircle.models.models import CircleEnum, GroupRoleEnum
from giftcircle.schemas.profile import ProfilePublic


class FriendRequestCreate(BaseModel):
    addressee_id: str | None = Field(default=None, min_length=1, max_length=64)
    username: str | None = Field(default=None, min_length=3, max_length=31)
    circle: CircleEnum = CircleEnum.FRIENDS


class FriendshipPublic(BaseModel):
    id: int
    user_id: str
    friend_id: str
    circle: str
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class FriendEntryPublic(BaseModel):
    friendship: FriendshipPublic
    profile: ProfilePublic


class EdgeOutcomePublic(BaseModel):
    friendship: FriendshipPublic | None
    symmetric: bool
    warnings: list[str] = []


class GroupCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = Field(default=None, max_length=1000)

    @field_validator("name")
    @classmethod
    def _name_strip(cls, value: str) -> str:
        return value.strip()


class GroupPublic(BaseModel):
    id: int
    name: str
    description: str | None
    creator_id: str
    created_at: datetime

    class Config:
        from_attributes = True


class GroupSummaryPublic(BaseModel):
    group: GroupPublic
    member_count: int
    role: str | None


class MemberAdd(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)


class RoleChange(BaseModel):
    role: GroupRoleEnum


class MemberPublic(BaseModel):
    id: int
    group_id: int
    user_id: str
    role: str
    joined_at: datetime

    class Config:
        from_attributes = True


class MemberEntryPublic(BaseModel):
    member: MemberPublic
    profile: ProfilePublic
    is_creator: bool = False
