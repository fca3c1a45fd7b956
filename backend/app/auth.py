"""
Traffic Watch - Authentication
bcrypt password hashes, HS256 bearer tokens and role gates.

Tokens carry sub/email/role/exp, but authorization always reads the role
from the users table so a role change takes effect on the next request.
"""
import os
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from .database import get_db
from .models.db_models import UserDB, UserRole

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "traffic-watch-secret-key-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))

# Missing credentials are reported as 401 by get_current_user
bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# PASSWORDS AND TOKENS
# =============================================================================

def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))


def create_access_token(user_id: str, email: str, role: str = UserRole.CITIZEN.value) -> str:
    claims = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": datetime.utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS),
    }
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Claims of a valid, unexpired token; None otherwise."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


# =============================================================================
# DEPENDENCIES
# =============================================================================

def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> UserDB:
    """Resolve the bearer token to a user row."""
    if credentials is None:
        raise _unauthorized()

    claims = decode_token(credentials.credentials)
    user_id = claims.get("sub") if claims else None
    user = db.get(UserDB, user_id) if user_id else None
    if user is None:
        raise _unauthorized()
    return user


def require_role(*roles: UserRole):
    """Dependency factory admitting only users holding one of `roles`."""
    allowed = ", ".join(role.value for role in roles)

    async def dependency(current_user: UserDB = Depends(get_current_user)) -> UserDB:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {allowed}",
            )
        return current_user

    return dependency


# Admins may act on police routes
require_police = require_role(UserRole.POLICE, UserRole.ADMIN)
require_admin = require_role(UserRole.ADMIN)
