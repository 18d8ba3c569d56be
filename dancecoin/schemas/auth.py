from pydantic import BaseModel, Field


class TokenPayload(BaseModel):
    sub: str = Field(..., min_length=1, description="계정 ID")
    is_admin: bool = False


class Principal(BaseModel):
    """인증된 호출자 (권한 판단은 코어 밖의 라우터에서)"""

    account_id: str
    is_admin: bool = False
