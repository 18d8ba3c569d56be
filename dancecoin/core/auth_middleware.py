from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from dancecoin.core.exceptions import AuthenticationError, AuthorizationError
from dancecoin.core.security import decode_access_token
from dancecoin.schemas.auth import Principal

# JWT Bearer 토큰 스킴
security = HTTPBearer(auto_error=False)


def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """필수 인증 - 유효한 토큰이 필요함"""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_admin(
    current_account: Principal = Depends(get_current_account),
) -> Principal:
    """관리자 권한이 필요한 엔드포인트용 의존성"""
    if not current_account.is_admin:
        raise AuthorizationError("Admin access required")
    return current_account
