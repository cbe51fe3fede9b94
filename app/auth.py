import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt
from sqlalchemy.orm import Session, joinedload

from .config import ACCESS_TOKEN_EXPIRE_MINUTES, JWT_ALGORITHM, SECRET_KEY
from .database import get_db
from .domain.scheduling.exceptions import PermissionDeniedError
from .models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token for a user

    Args:
        user: Authenticated user; its id and company are embedded as claims
        expires_delta: Token lifetime (default ACCESS_TOKEN_EXPIRE_MINUTES)
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {
        "sub": str(user.id),
        "company_id": user.company_id,
        "role": user.role,
        "exp": expire,
    }
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def verify_access_token(token: str) -> Optional[dict[str, Any]]:
    """
    Verify and decode an access token

    Returns:
        Decoded payload if valid, None if invalid or expired
    """
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"⚠️ JWT verification failed: {e}")
        return None


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token to an active user of an active company"""

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )

    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id or not str(user_id).isdigit():
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    user = (
        db.query(User)
        .options(joinedload(User.company))
        .filter(User.id == int(user_id))
        .first()
    )
    if not user or not user.is_active:
        logger.warning(f"⚠️ Token for unknown or inactive user {user_id}")
        raise HTTPException(status_code=401, detail="Authentication failed")

    if user.company is None or not user.company.is_active:
        logger.warning(f"⚠️ User {user.id} belongs to an inactive company")
        raise HTTPException(status_code=403, detail="Company is inactive")

    logger.debug(f"✅ User authenticated: {user.username} (company {user.company_id})")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """
    Get current user and verify they are a clinic administrator.
    Use this dependency for destructive maintenance routes.
    """
    if user.role != ROLE_ADMIN:
        logger.warning(f"⚠️ User {user.username} attempted an admin-only operation")
        raise PermissionDeniedError("Apenas administradores podem executar esta operação.")
    return user
