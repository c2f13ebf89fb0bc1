from pydantic import BaseModel, Field
from typing import Optional, Literal
from hms.schemas.common import Amount

ScopeLiteral = Literal["reservation", "order"]
DiscountTypeLiteral = Literal["none", "percentage", "fixed"]

class LineIn(BaseModel):
    description: str = ""
    quantity: Amount
    unit_amount: Amount

class RuleIn(BaseModel):
    name: str
    rate: Amount
    active: bool = True

class DiscountIn(BaseModel):
    type: str = "none"
    value: Amount = 0
    reason: Optional[str] = None

class PreviewIn(BaseModel):
    lines: list[LineIn] = Field(default_factory=list)
    # explicit rules win; otherwise the active registry rules for ``scope``
    rules: Optional[list[RuleIn]] = None
    scope: Optional[ScopeLiteral] = None
    discount: Optional[DiscountIn] = None

class ChargeRuleIn(BaseModel):
    name: str
    rate: Amount
    status: Literal["active", "inactive"] = "active"
    apply_to_reservations: bool = False
    apply_to_orders: bool = False
    notes: Optional[str] = None

class ChargeRulePatch(BaseModel):
    name: Optional[str] = None
    rate: Optional[Amount] = None
    status: Optional[Literal["active", "inactive"]] = None
    apply_to_reservations: Optional[bool] = None
    apply_to_orders: Optional[bool] = None
    notes: Optional[str] = None
