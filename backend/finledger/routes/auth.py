"""Authentication routes."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from finledger.database import get_db
from finledger.middleware.auth import (
    create_access_token,
    get_current_user,
    verify_password,
    write_audit_log,
)
from finledger.rbac import get_role_permissions

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


def _token_for(user_row) -> str:
    return create_access_token({
        "sub": user_row.username,
        "role": user_row.role,
        "user_id": user_row.id,
    })


async def _authenticate(username: str, password: str, request: Request, db: AsyncSession):
    from finledger.models.user import User

    stmt = select(User).where(User.username == username, User.is_active == True)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    ip_address = request.client.host if request.client else None

    if not user or not verify_password(password, user.password_hash):
        await write_audit_log(
            db,
            None,
            "auth.failed",
            resource_type="auth",
            details={"username": username, "reason": "invalid_credentials"},
            ip_address=ip_address,
        )
        await db.commit()
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
        )

    await write_audit_log(
        db,
        {"user_id": user.id, "username": user.username},
        "auth.login",
        resource_type="user",
        resource_id=str(user.id),
        details={"username": user.username},
        ip_address=ip_address,
    )
    await db.commit()
    return user


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    user = await _authenticate(body.username, body.password, request, db)
    return TokenResponse(
        access_token=_token_for(user),
        user={
            "id": str(user.id),
            "username": user.username,
            "display_name": user.display_name,
            "email": user.email,
            "role": user.role,
            "permissions": sorted(get_role_permissions(user.role)),
        },
    )


@router.post("/login/form")
async def login_form(
    request: Request,
    form: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_db),
):
    """OAuth2 password flow for the interactive API docs."""
    user = await _authenticate(form.username, form.password, request, db)
    return {"access_token": _token_for(user), "token_type": "bearer"}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    return {
        "username": user["username"],
        "role": user["role"],
        "user_id": str(user["user_id"]),
        "display_name": user.get("display_name", user["username"]),
        "email": user.get("email"),
        "permissions": sorted(get_role_permissions(user["role"])),
    }
