from decimal import Decimal
from typing import Union
from pydantic import BaseModel

# Amounts are kept as sent and parsed by the calculator, which names the bad field
Amount = Union[Decimal, int, float, str]

class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
