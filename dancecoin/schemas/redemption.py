from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class RedemptionKeyCreateRequest(BaseModel):
    """교환 코드 생성 요청 (code를 비우면 자동 생성)"""

    code: Optional[str] = Field(None, min_length=4, max_length=64, description="교환 코드")
    coin_amount: int = Field(..., gt=0, description="지급할 코인")
    max_uses: int = Field(1, ge=1, description="최대 사용 횟수")
    expires_in_days: Optional[int] = Field(None, gt=0, description="만료까지 일수")
    note: str = Field("", max_length=255)


class RedemptionKeyResponse(BaseModel):
    id: str
    code: str
    coin_amount: int
    max_uses: int
    current_uses: int
    expires_at: Optional[datetime] = None
    created_by: str
    note: str = ""
    created_at: datetime
    is_valid: bool = Field(..., description="현재 교환 가능 여부")
    uses_remaining: int

    class Config:
        from_attributes = True


class RedemptionKeyCreateResponse(BaseModel):
    success: bool
    error_code: Optional[str] = None
    message: str = ""
    key: Optional[RedemptionKeyResponse] = None


class KeyRedemptionRecordResponse(BaseModel):
    key_id: str
    account_id: str
    ledger_entry_id: int
    redeemed_at: datetime

    class Config:
        from_attributes = True


class RedemptionKeyListResponse(BaseModel):
    keys: List[RedemptionKeyResponse]
    total_count: int
