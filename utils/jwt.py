import os
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from typing import Optional
import logging

# FastAPI imports for dependency-based auth
from fastapi import Header, HTTPException, status, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from utils.config import get_settings

SECRET_KEY = os.getenv("JWT_SECRET", "your_jwt_secret_here")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60
SERVICE_SCOPE = "convert"

http_bearer = HTTPBearer(auto_error=False)
logger = logging.getLogger("auth")


def create_access_token(data: dict, expires_delta: timedelta = None, secret: str = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, secret or SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


def verify_access_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        return payload
    except Exception as err:  # broad to log actual cause
        logger.warning("JWT verification failed: %s", str(err))
        return None


def verify_service_token(token: str, secret: str, audience: str) -> Optional[dict]:
    """Validate a worker-to-service token: signature, expiry, audience and scope."""
    if not secret:
        logger.error("Service token secret is not configured")
        return None
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM], audience=audience)
    except JWTError as err:
        logger.warning("Service token verification failed: %s", str(err))
        return None
    if payload.get("scope") != SERVICE_SCOPE:
        logger.warning("Service token has wrong scope: %s", payload.get("scope"))
        return None
    return payload


def _extract_bearer(
    credentials: Optional[HTTPAuthorizationCredentials],
    authorization: Optional[str],
) -> Optional[str]:
    if credentials and credentials.scheme and credentials.credentials:
        if credentials.scheme.lower() == "bearer":
            creds = credentials.credentials.strip()
            return creds.split(" ", 1)[1].strip() if creds.lower().startswith("bearer ") else creds
    elif authorization:
        raw = authorization.strip()
        return raw.split(" ", 1)[1].strip() if raw.lower().startswith("bearer ") else raw
    return None


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    Authorization: Optional[str] = Header(None, include_in_schema=False),
) -> str:
    """
    FastAPI dependency to extract and validate the current user id from a Bearer token.
    Prefer standard HTTP Bearer auth (works with Swagger Authorize button).
    Also falls back to raw Authorization header if provided.
    Returns 401 when header is missing/invalid.
    """
    token = _extract_bearer(credentials, Authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")

    payload = verify_access_token(token)
    if not payload or "id" not in payload:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    return str(payload["id"])


def require_service_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    Authorization: Optional[str] = Header(None, include_in_schema=False),
) -> dict:
    """FastAPI dependency guarding the worker-facing endpoints (/convert, /uploads/events)."""
    token = _extract_bearer(credentials, Authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    settings = get_settings()
    payload = verify_service_token(token, settings.service_token_secret, settings.service_token_audience)
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid service token")
    return payload
