import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, Request

from .config import Settings

ALGORITHM = "HS256"
ADMIN_COOKIE = "admin_token"


def create_admin_token(settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    return jwt.encode({"admin": True, "exp": expire, "type": "access"}, settings.secret_key, algorithm=ALGORITHM)


def decode_token(settings: Settings, token: str):
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None


def check_admin_password(settings: Settings, password: Optional[str]) -> bool:
    if not settings.admin_password:
        raise HTTPException(status_code=403, detail="Admin login not configured")
    return password is not None and hmac.compare_digest(password.encode(), settings.admin_password.encode())


def require_admin(request: Request):
    """Return payload if request contains a valid admin token (cookie or Authorization header), else raise HTTPException."""
    token = request.cookies.get(ADMIN_COOKIE)
    if not token:
        auth_header = request.headers.get('Authorization')
        if auth_header and auth_header.startswith('Bearer '):
            token = auth_header.split(' ', 1)[1]
    if not token:
        raise HTTPException(status_code=401, detail='Not authenticated as admin')
    payload = decode_token(request.app.state.settings, token)
    if not payload or not payload.get('admin'):
        raise HTTPException(status_code=403, detail='Not authorized')
    return payload
