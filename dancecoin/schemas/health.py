from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class HealthCheckResponse(BaseModel):
    """서비스 상태 (원장 저장소 연결 포함)"""

    status: str = Field("healthy", description="healthy 또는 unhealthy")
    ledger_store: str = Field("ok", description="원장 저장소 연결 상태")
    environment: str
    checked_at: datetime
    error: Optional[str] = None
