from pydantic import BaseModel, Field
from typing import Optional, Literal
from hms.schemas.billing import LineIn, DiscountIn
from hms.schemas.common import Amount

ReservationStatusLiteral = Literal["pending", "confirmed", "checked-in", "checked-out", "cancelled", "no-show"]

class GuestIn(BaseModel):
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    branch_id: Optional[str] = None

class ReservationIn(BaseModel):
    guest_id: str
    branch_id: Optional[str] = None
    status: ReservationStatusLiteral = "pending"
    lines: list[LineIn] = Field(default_factory=list)
    discount: Optional[DiscountIn] = None
    notes: Optional[str] = None

class LinesIn(BaseModel):
    lines: list[LineIn]

class ReservationStatusIn(BaseModel):
    status: ReservationStatusLiteral

class DraftIn(BaseModel):
    type: Optional[str] = None
    value: Optional[Amount] = None
    reason: Optional[str] = None
