import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from config import settings
from services.errors import Unauthorized

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
ALGORITHM = "HS256"


def create_jwt(payload: dict, expires_in: timedelta = timedelta(days=30)) -> str:
    data = payload.copy()
    now = datetime.now(timezone.utc)
    data["exp"] = now + expires_in
    data["iat"] = now
    return jwt.encode(data, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_jwt(token: str) -> dict:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> dict:
    """Decode the bearer token. The `sub` claim is the caller identity used for rate limiting."""
    if not credentials:
        raise Unauthorized("Authorization required")
    try:
        payload = decode_jwt(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise Unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("Invalid authentication")
    if not payload.get("sub"):
        logger.warning("Rejected token without a subject claim")
        raise Unauthorized("Invalid authentication")
    return payload
