import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
import bcrypt as _bcrypt
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)

ACCESS = "access"
REFRESH = "refresh"

# verified against when the login email is unknown so both paths cost one hash
DUMMY_PASSWORD_HASH = pwd_context.hash("unknown-account")


def get_password_hash(password: str) -> str:
    # Use pbkdf2_sha256 to avoid native bcrypt backend issues
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    # Accounts migrated from the Node backend carry bcrypt ($2a$/$2b$/$2y$) hashes
    if hashed.startswith(("$2a$", "$2b$", "$2y$")):
        pb = plain.encode("utf-8")
        if len(pb) > 72:
            pb = pb[:72]
        try:
            return _bcrypt.checkpw(pb, hashed.encode("utf-8"))
        except ValueError:
            return False
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def _create_token(sub: str, ttl_seconds: int, secret: str, extra: Optional[dict] = None) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": sub,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def create_access_token(user_id: str, role: Optional[str] = None) -> str:
    return _create_token(user_id, settings.jwt_ttl_seconds, settings.jwt_secret, extra={"role": role, "type": ACCESS})


def create_refresh_token(user_id: str, role: Optional[str] = None) -> str:
    return _create_token(user_id, settings.refresh_ttl_seconds, settings.jwt_refresh_secret, extra={"role": role, "type": REFRESH})


def issue_tokens(user: User) -> dict:
    return {
        "access_token": create_access_token(str(user.id), user.role),
        "refresh_token": create_refresh_token(str(user.id), user.role),
        "token_type": "bearer",
    }


def decode_token(token: str, kind: str = ACCESS) -> dict:
    secret = settings.jwt_refresh_secret if kind == REFRESH else settings.jwt_secret
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if payload.get("type") != kind:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return payload


def user_from_token(db: Session, token: str, kind: str = ACCESS) -> User:
    payload = decode_token(token, kind)
    try:
        user_uuid = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid subject")
    user = db.query(User).filter(User.id == user_uuid).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not active")
    return user


def get_current_user(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    db: Session = Depends(get_db),
):
    if creds is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user_from_token(db, creds.credentials)


def has_role(user: User, *roles: str) -> bool:
    return (user.role or "").lower() in {r.lower() for r in roles}


def require_roles(*allowed_roles: str):
    """
    Require the current user to hold one of the given roles (OR logic).
    """
    def _dep(user: User = Depends(get_current_user)):
        if not has_role(user, *allowed_roles):
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _dep


def require_main_admin(user: User = Depends(get_current_user)):
    if not (has_role(user, "admin") and user.is_main_admin):
        raise HTTPException(status_code=403, detail="Main admin access required")
    return user
