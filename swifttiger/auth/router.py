from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..routes.users import user_to_dict
from ..schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from ..services.audit import log_action
from .security import (
    DUMMY_PASSWORD_HASH,
    REFRESH,
    get_current_user,
    get_password_hash,
    issue_tokens,
    user_from_token,
    verify_password,
)


router = APIRouter(prefix="/auth", tags=["auth"])

INVALID_LOGIN = "Invalid email or password"


@router.post("/register", status_code=201)
def register(req: RegisterRequest, request: Request, db: Session = Depends(get_db)):
    # Self-service sign-up only creates technician accounts; staff are created by an admin
    if req.role != "technician":
        raise HTTPException(status_code=403, detail="Only administrators can create accounts with this role")
    if db.query(User.id).filter(func.lower(User.email) == req.email).first():
        raise HTTPException(status_code=400, detail="User with this email already exists")
    user = User(
        name=req.name,
        email=req.email,
        password_hash=get_password_hash(req.password),
        role="technician",
        phone=req.phone,
        skills=[],
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    log_action(db, "USER_REGISTER", "AUTH", user.id, user.id, {"email": user.email}, request)
    return {"user": user_to_dict(user), **issue_tokens(user)}


@router.post("/login")
def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
    user = db.query(User).filter(func.lower(User.email) == req.email).first()
    # Same message and the same hashing work for unknown email and wrong password
    password_ok = verify_password(req.password, user.password_hash if user else DUMMY_PASSWORD_HASH)
    if not user or not password_ok:
        log_action(
            db, "LOGIN_FAILED", "AUTH", user.id if user else None, None,
            {"email": req.email, "reason": "bad_credentials"}, request,
        )
        raise HTTPException(status_code=401, detail=INVALID_LOGIN)
    if not user.is_active:
        log_action(db, "LOGIN_FAILED", "AUTH", user.id, None, {"email": req.email, "reason": "inactive"}, request)
        raise HTTPException(status_code=403, detail="Account is deactivated")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    log_action(db, "USER_LOGIN", "AUTH", user.id, user.id, None, request)
    return {"user": user_to_dict(user), **issue_tokens(user)}


@router.post("/refresh", response_model=TokenResponse)
def refresh(req: RefreshRequest, db: Session = Depends(get_db)):
    user = user_from_token(db, req.refresh_token, kind=REFRESH)
    return TokenResponse(**issue_tokens(user))


@router.post("/logout")
def logout(request: Request, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    # Tokens are stateless; the client discards them
    log_action(db, "USER_LOGOUT", "AUTH", user.id, user.id, None, request)
    return {"status": "ok"}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return user_to_dict(user)


@router.get("/profile")
def get_profile(user: User = Depends(get_current_user)):
    return user_to_dict(user)


@router.put("/profile")
def update_profile(
    payload: ProfileUpdate,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    log_action(db, "UPDATE_PROFILE", "USER", user.id, user.id, {"fields": sorted(changes.keys())}, request)
    return user_to_dict(user)


@router.put("/change-password")
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise HTTPException(status_code=401, detail="Current password is incorrect")
    user.password_hash = get_password_hash(payload.new_password)
    db.commit()
    log_action(db, "CHANGE_PASSWORD", "AUTH", user.id, user.id, None, request)
    return {"status": "ok"}
