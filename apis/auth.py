from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel, Field

from core.auth import (
    authenticate_user,
    create_access_token,
    get_current_user,
    user_to_principal,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    pwd_context,
)
from core.db import DB
from core.log import get_logger
from core.events import log_event, E
from core.models.base import ROLE
from core.models.user import User as DBUser
from .base import success_response, error_response

logger = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["认证"])


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50, pattern=r"^[A-Za-z0-9_]+$")
    password: str = Field(..., min_length=6, max_length=128)
    email: str = Field(default="", max_length=100)
    nickname: str = Field(default="", max_length=50)


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    password: str = Field(..., min_length=1, max_length=128)


def _token_payload(user: DBUser) -> dict:
    token = create_access_token({"sub": user.username, "role": user.role})
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        "user": user_to_principal(user),
    }


@router.post("/register", summary="注册账号")
async def register(payload: RegisterRequest):
    session = DB.get_session()
    try:
        exists = session.query(DBUser).filter(DBUser.username == payload.username).first()
        if exists:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=error_response(code=40002, message="用户名已存在"),
            )
        now = datetime.now()
        user = DBUser(
            username=payload.username,
            password_hash=pwd_context.hash(payload.password),
            email=payload.email.strip(),
            nickname=payload.nickname.strip() or payload.username,
            role=ROLE.NORMAL,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        log_event(logger, E.AUTH_REGISTER, user_id=user.id, username=user.username)
        return success_response(_token_payload(user), message="注册成功")
    finally:
        session.close()


@router.post("/login", summary="账号密码登录")
async def login(payload: LoginRequest):
    session = DB.get_session()
    try:
        user = authenticate_user(session, payload.username, payload.password)
        if not user:
            log_event(logger, E.AUTH_LOGIN_FAIL, level="warning", username=payload.username)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=error_response(code=40101, message="用户名或密码错误"),
            )
        log_event(logger, E.AUTH_LOGIN_SUCCESS, user_id=user.id)
        return success_response(_token_payload(user), message="登录成功")
    finally:
        session.close()


@router.post("/token", summary="OAuth2 表单登录（文档调试用）", include_in_schema=False)
async def login_for_token(form_data: OAuth2PasswordRequestForm = Depends()):
    session = DB.get_session()
    try:
        user = authenticate_user(session, form_data.username, form_data.password)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="用户名或密码错误",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return {
            "access_token": create_access_token({"sub": user.username, "role": user.role}),
            "token_type": "bearer",
        }
    finally:
        session.close()


@router.get("/me", summary="当前登录用户")
async def me(current_user: dict = Depends(get_current_user)):
    data = dict(current_user)
    expiry = data.get("premium_expiry_date")
    data["premium_expiry_date"] = expiry.isoformat() if expiry else None
    return success_response(data)
