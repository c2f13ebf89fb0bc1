from pydantic import BaseModel
from typing import Optional
from hms.schemas.common import Amount

class StockItemIn(BaseModel):
    name: str
    branch_id: Optional[str] = None
    sku: Optional[str] = None
    unit: Optional[str] = None
    current_stock: Amount = 0
    reorder_level: Amount = 0
    reorder_quantity: Amount = 0

class StockAdjustIn(BaseModel):
    delta: Amount
    reason: Optional[str] = None
