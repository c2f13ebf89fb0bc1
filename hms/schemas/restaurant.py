from pydantic import BaseModel, Field
from typing import Optional, Literal
from hms.schemas.billing import DiscountIn
from hms.schemas.common import Amount
from hms.schemas.payments import PaymentMethodLiteral

OrderTypeLiteral = Literal["dine-in", "takeaway", "delivery", "room"]
OrderStatusLiteral = Literal["pending", "confirmed", "preparing", "ready", "served", "completed", "cancelled"]

class OrderItemIn(BaseModel):
    dish_name: str
    quantity: Amount
    unit_price: Amount
    special_instructions: Optional[str] = None

class OrderIn(BaseModel):
    order_type: OrderTypeLiteral = "dine-in"
    branch_id: Optional[str] = None
    table_code: Optional[str] = None
    reservation_id: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = None
    items: list[OrderItemIn] = Field(default_factory=list)

class OrderItemsIn(BaseModel):
    items: list[OrderItemIn]

class OrderStatusIn(BaseModel):
    status: OrderStatusLiteral

class BillIn(BaseModel):
    order_id: str
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    discount: Optional[DiscountIn] = None
    # settle now: a full payment for the bill total
    payment_method: Optional[PaymentMethodLiteral] = None
    tendered_amount: Optional[Amount] = None
    transaction_reference: Optional[str] = None
