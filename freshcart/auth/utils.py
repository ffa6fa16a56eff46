import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional
from jose import jwt, JWTError
from freshcart.config.settings import config_settings

ACCESS_TOKEN_EXPIRE_MINUTES = int(config_settings.ACCESS_TOKEN_EXPIRE_MINUTES)
ADMIN_ROLE = "admin"


def create_access_token(user_id: uuid.UUID, user_roles: Iterable[str] = (), expires_dur=ACCESS_TOKEN_EXPIRE_MINUTES):
    now = datetime.now(timezone.utc)
    expiry = now + timedelta(minutes=expires_dur)

    payload = {
        "sub": str(user_id),
        "iat": int(now.timestamp()),
        "exp": int(expiry.timestamp()),
        "jti": secrets.token_hex(16),
        "roles": list(user_roles),
    }
    return jwt.encode(claims=payload, key=config_settings.JWT_SECRET, algorithm=config_settings.JWT_ALGO)


def decode_token(token: str) -> Optional[dict]:
    """To verify the signature, expiration and claims of token"""
    try:
        return jwt.decode(token, key=config_settings.JWT_SECRET, algorithms=[config_settings.JWT_ALGO])
    except JWTError:
        return None
