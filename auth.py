"""
Authentication and the role guard.

Every protected route calls authorize() with the roles it accepts. It either
returns the caller's stored profile or raises AccessDenied; API routes turn
that into 401/403, page routes into a redirect. Denial is the default.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence
from urllib.parse import urlencode

from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from database import get_document_by_id

logger = logging.getLogger("tailorspace.auth")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

SESSION_COOKIE = "access_token"


class AccessDenied(Exception):
    def __init__(self, status_code: int, detail: str, redirect_to: str):
        super().__init__(detail)
        self.status_code = status_code
        self.detail = detail
        self.redirect_to = redirect_to


class PageRedirect(Exception):
    def __init__(self, location: str):
        super().__init__(location)
        self.location = location


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    return jwt.encode({"sub": user_id, "exp": expire}, config.SECRET_KEY, algorithm=config.ALGORITHM)


def authorize(token: Optional[str], roles: Sequence[str] = ()) -> dict:
    """Resolve ``token`` to an active profile whose role is in ``roles``.

    An empty ``roles`` accepts any signed-in user.
    """
    if not token:
        raise AccessDenied(401, "Unauthorized", config.LOGIN_PATH)
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise AccessDenied(401, "Could not validate credentials", config.LOGIN_PATH)
    user_id = payload.get("sub")
    if not user_id:
        raise AccessDenied(401, "Could not validate credentials", config.LOGIN_PATH)
    profile = get_document_by_id("users", user_id)
    if not profile or not profile.get("active", True):
        raise AccessDenied(401, "Unauthorized", config.LOGIN_PATH)
    if roles and profile.get("role") not in roles:
        logger.info("Denied %s (role %s); requires %s", user_id, profile.get("role"), "/".join(roles))
        raise AccessDenied(403, "Forbidden", config.DEFAULT_LANDING_PATH)
    return profile


def require_role(*roles: str):
    """Dependency for API routes."""
    def dependency(token: Optional[str] = Depends(oauth2_scheme)) -> dict:
        try:
            return authorize(token, roles)
        except AccessDenied as e:
            raise HTTPException(status_code=e.status_code, detail=e.detail)
    return dependency


def require_page(*roles: str):
    """Dependency for page routes: failures redirect instead of erroring."""
    def dependency(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> dict:
        token = token or request.cookies.get(SESSION_COOKIE)
        try:
            return authorize(token, roles)
        except AccessDenied as e:
            location = e.redirect_to
            if e.status_code == 401:
                location = f"{location}?{urlencode({'redirect': request.url.path})}"
            raise PageRedirect(location)
    return dependency


def strip_private(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password_hash"}
