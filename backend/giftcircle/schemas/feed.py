from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from giftcircle.schemas.profile import ProfilePublic


class TextCreate(BaseModel):
    text: str = Field(min_length=1, max_length=2000)

    @field_validator("text")
    @classmethod
    def _text_strip(cls, value: str) -> str:
        return value.strip()


class CommentPublic(BaseModel):
    id: int
    item_id: int
    user_id: str
    comment: str
    created_at: datetime
    author: ProfilePublic | None = None


class ChatMessagePublic(BaseModel):
    id: int
    group_id: int
    user_id: str
    message: str
    created_at: datetime
    author: ProfilePublic | None = None


class NotificationPublic(BaseModel):
    id: int
    user_id: str
    type: str
    title: str
    message: str
    link: str | None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationList(BaseModel):
    items: list[NotificationPublic]
    unread_count: int
