from typing import Any, List, Optional

from pydantic import BaseModel, Field


class TransactionCreate(BaseModel):
    amount: Any = None
    description: Any = None
    date: Optional[str] = None
    pilotIds: Optional[List[str]] = None


class TransactionUpdate(BaseModel):
    amount: Any = None
    description: Any = None
    date: Optional[str] = None


class TransactionPilots(BaseModel):
    pilotIds: List[str] = Field(default_factory=list)
