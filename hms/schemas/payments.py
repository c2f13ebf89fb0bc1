from datetime import date
from pydantic import BaseModel
from typing import Optional, Literal
from hms.schemas.common import Amount

PaymentTypeLiteral = Literal["advance", "partial", "full", "credit"]
PaymentMethodLiteral = Literal["cash", "card", "online", "digital", "bank-transfer"]

class PaymentIn(BaseModel):
    payment_type: PaymentTypeLiteral
    payment_method: PaymentMethodLiteral
    amount: Amount
    transaction_reference: Optional[str] = None
    notes: Optional[str] = None
    due_date: Optional[date] = None
    # balance the client showed when the payment was entered
    expected_remaining: Optional[Amount] = None
    status: Literal["pending", "completed"] = "completed"

class PaymentStatusIn(BaseModel):
    status: Literal["completed", "failed"]
