from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from dancecoin.schemas.coins import WalletResponse


class CommissionSetRequest(BaseModel):
    """강좌-트레이너 수수료 설정 요청 (upsert)"""

    course_id: str = Field(..., min_length=1)
    trainer_id: str = Field(..., min_length=1)
    commission_percent: int = Field(..., description="수수료 비율 (0-100)")
    notes: Optional[str] = Field(None, max_length=500)


class CommissionActiveRequest(BaseModel):
    is_active: bool


class CommissionResponse(BaseModel):
    id: str
    course_id: str
    trainer_id: str
    commission_percent: int
    is_active: bool
    notes: Optional[str] = None
    created_by: str
    last_updated_by: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CommissionSaveResponse(BaseModel):
    success: bool
    error_code: Optional[str] = None
    message: str = ""
    commission: Optional[CommissionResponse] = None
    active_total_percent: int = 0
    warnings: List[str] = Field(default_factory=list)


class CourseCommissionSummary(BaseModel):
    course_id: str
    commissions: List[CommissionResponse]
    active_total_percent: int
    exceeds_100: bool = Field(..., description="활성 수수료 합계가 100%를 초과하는지")


class EarningsPeriod(str, Enum):
    """트레이너 수익 집계 기간 (로컬 타임존 달력 기준)"""

    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"
    THIS_YEAR = "this_year"
    ALL_TIME = "all_time"


class TrainerEarningsResponse(BaseModel):
    trainer_id: str
    wallet: WalletResponse
    balance_eur: Decimal
    period: EarningsPeriod
    period_start: Optional[datetime] = Field(None, description="구간 시작 (포함, UTC). all_time이면 없음")
    period_end: Optional[datetime] = Field(None, description="구간 끝 (미포함, UTC). all_time이면 없음")
    commission_payout_count: int
    commission_payout_total: int
