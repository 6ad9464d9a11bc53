from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from giftcircle.schemas.item import ItemPublic
from giftcircle.schemas.profile import ProfilePublic


class ReservationCreate(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class ReservationPublic(BaseModel):
    id: int
    item_id: int
    reserved_by: str
    status: str
    note: str | None
    reserved_at: datetime

    class Config:
        from_attributes = True


class MyReservationPublic(BaseModel):
    reservation: ReservationPublic
    item: ItemPublic
    owner: ProfilePublic


class ContributionCreate(BaseModel):
    # strictly positive amounts are enforced by the ledger itself
    amount: float
    note: str | None = Field(default=None, max_length=500)

    @field_validator("note")
    @classmethod
    def _note_strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class ContributionPublic(BaseModel):
    id: int
    item_id: int
    user_id: str
    amount: float
    note: str | None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class ContributorPublic(BaseModel):
    contribution: ContributionPublic
    profile: ProfilePublic | None = None


class LedgerStatePublic(BaseModel):
    item_id: int
    reserved_count: int
    contributed_amount: float
    target: float | None
    remaining: float | None
    collected_percent: float
    over_target: bool
    corrected: bool = False


class LedgerWriteResponse(BaseModel):
    state: LedgerStatePublic
    reservation: ReservationPublic | None = None
    contribution: ContributionPublic | None = None
    warnings: list[str] = []
