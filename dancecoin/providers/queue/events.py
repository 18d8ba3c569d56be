from datetime import datetime
from typing import List

from pydantic import BaseModel


class BalanceChangedEvent(BaseModel):
    account_id: str
    balance: int
    delta: int
    entry_ids: List[int]
    occurred_at: datetime
