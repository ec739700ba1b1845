"""
Admin authentication: password hashing, JWT issue/verify and the FastAPI
dependencies that gate admin routes.

Tokens are accepted from ``Authorization: Bearer`` or the HTTP-only
``token`` cookie set at login.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext

import config
from database import create_document, get_db, to_object_id
from schemas import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/login", auto_error=False)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(subject: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = subject.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.JWT_SECRET, algorithm=config.JWT_ALG)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid authentication")


def register_user(db, name: str, email: str, password: str, is_admin: bool = False) -> str:
    if db["user"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="User already exists")
    user = User(name=name, email=email, password_hash=hash_password(password), is_admin=is_admin)
    return create_document(db, "user", user)


def authenticate(db, email: str, password: str) -> Dict[str, Any]:
    user = db["user"].find_one({"email": email})
    if not user or not user.get("passwordHash") or not verify_password(password, user["passwordHash"]):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="Account disabled")
    return user


def request_token(request: Request, bearer: Optional[str]) -> Optional[str]:
    return bearer or request.cookies.get(config.AUTH_COOKIE_NAME)


async def get_current_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    db=Depends(get_db),
) -> Dict[str, Any]:
    token = request_token(request, bearer)
    if not token:
        raise HTTPException(status_code=401, detail="Not authorized, no token")
    payload = decode_token(token)
    oid = to_object_id(payload.get("sub"))
    if oid is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db["user"].find_one({"_id": oid})
    if not user or not user.get("isActive", True):
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_current_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user.get("isAdmin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def seed_admin(db) -> None:
    if not (config.ADMIN_EMAIL and config.ADMIN_PASSWORD):
        return
    if db["user"].find_one({"email": config.ADMIN_EMAIL}):
        return
    register_user(db, config.ADMIN_NAME, config.ADMIN_EMAIL, config.ADMIN_PASSWORD, is_admin=True)
    logger.info("Seeded admin account %s", config.ADMIN_EMAIL)
