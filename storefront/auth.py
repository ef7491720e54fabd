"""
Authentication and authorization utilities.

Provides password hashing, JWT token creation/validation, and FastAPI dependencies
that resolve the acting user. The resolved user is passed explicitly into every
lifecycle operation.
"""
from datetime import datetime, timedelta
from typing import Optional
import logging
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from . import crud, models
from .config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from .database import get_db
from .errors import NotAuthenticated, NotAuthorized

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

# Missing credentials are reported as NotAuthenticated (401) instead of FastAPI's default
security = HTTPBearer(auto_error=False)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a hashed password.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The hashed password to compare against

    Returns:
        True if the password matches, False otherwise
    """
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        data: Dictionary containing the claims to encode in the token
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def token_for_user(user: models.User) -> str:
    return create_access_token(data={"sub": str(user.id), "email": user.email, "role": user.role})


def authenticate_user(db: Session, email: str, password: str) -> Optional[models.User]:
    """
    Authenticate a user by email and password.

    Returns:
        User object if authentication succeeds, None otherwise
    """
    user = crud.get_user_by_email(db, email)
    if not user:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def is_admin(user: models.User) -> bool:
    return user.role == "admin"


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> models.User:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Authorization credentials (injected)
        db: Database session (injected)

    Returns:
        Current authenticated user

    Raises:
        NotAuthenticated: if the token is missing or invalid, or the user is gone
        NotAuthorized: if the account is inactive
    """
    if credentials is None:
        raise NotAuthenticated()

    try:
        payload = jwt.decode(credentials.credentials, SECRET_KEY, algorithms=[ALGORITHM])
        user_id_str: str = payload.get("sub")
        if user_id_str is None:
            logger.error("No 'sub' claim in token")
            raise NotAuthenticated("Could not validate credentials")
        user_id = int(user_id_str)
    except (JWTError, ValueError) as e:
        logger.error(f"JWT validation error: {e}")
        raise NotAuthenticated("Could not validate credentials")

    user = crud.get_user(db, user_id)
    if user is None:
        raise NotAuthenticated("Could not validate credentials")
    if not user.is_active:
        raise NotAuthorized("User account is inactive")
    return user


def require_admin(current_user: models.User = Depends(get_current_user)) -> models.User:
    """
    FastAPI dependency to require admin role.

    Raises:
        NotAuthorized: if user is not an admin
    """
    if not is_admin(current_user):
        raise NotAuthorized("Admin privileges required")
    return current_user
