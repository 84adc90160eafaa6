from pydantic import BaseModel
from decimal import Decimal


class FreeDeliveryRedemptionResponse(BaseModel):
    applied: bool
    order_id: str
    message: str
    free_deliveries_remaining: int = 0
    waived_fee: Decimal = Decimal("0.00")
    already_applied: bool = False

    class Config:
        from_attributes = True
