from typing import Any, Optional

from pydantic import BaseModel


# expensePilots is checked by the purchase flow itself
class ExpenseRequest(BaseModel):
    expensePilots: Any = None


class MinorSlotPurchaseRequest(ExpenseRequest):
    facilityName: Any = None
    facilityDescription: Any = None


class ProcurementRequest(ExpenseRequest):
    itemId: Optional[str] = None
    itemType: Optional[str] = None
    assignee: Optional[str] = None
