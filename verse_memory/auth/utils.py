import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer

from verse_memory.config import get_settings
from verse_memory.auth.schemas import CurrentUser
from verse_memory.errors import UnauthorizedError

logger = logging.getLogger(__name__)

# Tokens are issued by the external identity provider
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token."""
    settings = get_settings()
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


async def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> CurrentUser:
    """Resolve the owner id from the bearer token's `sub` claim."""
    settings = get_settings()
    if not token:
        raise UnauthorizedError("Not authenticated")
    credentials_exception = UnauthorizedError("Could not validate credentials")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError as e:
        logger.warning(f"Rejected access token: {e}")
        raise credentials_exception

    user_id = payload.get("sub")
    if not user_id:
        logger.warning("Access token has no subject")
        raise credentials_exception
    return CurrentUser(user_id=str(user_id))
