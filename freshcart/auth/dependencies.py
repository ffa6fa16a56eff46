import uuid
from typing import Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer
from freshcart.auth.utils import ADMIN_ROLE, decode_token
from freshcart.common.logging_setup import get_logger

logger = get_logger("freshcart.auth")


class Authentication(HTTPBearer):
    def __init__(self, auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request: Request) -> Optional[dict]:
        auth_creds = await super().__call__(request)
        if auth_creds is None:
            return None

        decoded_token = decode_token(auth_creds.credentials)
        if not decoded_token:
            if not self.auto_error:
                return None
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token provided.")

        return decoded_token


def _subject(claims: dict) -> uuid.UUID:
    try:
        return uuid.UUID(str(claims.get("sub")))
    except ValueError:
        logger.warning("auth.invalid_subject", extra={"sub": claims.get("sub")})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token provided.")


async def get_current_claims(claims: dict = Depends(Authentication())) -> dict:
    return claims


async def get_current_user_id(claims: dict = Depends(Authentication())) -> uuid.UUID:
    return _subject(claims)


async def get_optional_user_id(claims: Optional[dict] = Depends(Authentication(auto_error=False))) -> Optional[uuid.UUID]:
    """Signed-in user when a valid token is sent, otherwise None."""
    if not claims:
        return None
    try:
        return uuid.UUID(str(claims.get("sub")))
    except ValueError:
        return None


def require_role(role: str):
    async def _checker(claims: dict = Depends(get_current_claims)):
        if role not in set(claims.get("roles") or []):
            logger.warning("auth.role_missing", extra={"role": role, "sub": claims.get("sub")})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User doesn't have any permissions")
        return True

    return Depends(_checker)


require_admin = require_role(ADMIN_ROLE)
