from datetime import datetime, timedelta
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext

from core.config import cfg, API_BASE
from core.db import DB
from core.models.user import User as DBUser
from core.models.base import ROLE

SECRET_KEY = str(cfg.get("secret", "aifans-dev-secret"))
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(cfg.get("token_expire_minutes", 10080))

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{API_BASE}/auth/token")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = dict(data)
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode["exp"] = expire
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def authenticate_user(session, username: str, password: str) -> Optional[DBUser]:
    user = session.query(DBUser).filter(DBUser.username == str(username or "").strip()).first()
    if not user or not user.is_active:
        return None
    if not user.verify_password(password):
        return None
    return user


def user_to_principal(user: DBUser) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "nickname": user.nickname or user.username,
        "email": user.email or "",
        "role": user.role or ROLE.NORMAL,
        "premium_expiry_date": user.premium_expiry_date,
    }


def _credentials_exception(message: str = "无效的认证令牌") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=message,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(token: str = Depends(oauth2_scheme)) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise _credentials_exception("认证令牌已过期")
    except jwt.PyJWTError:
        raise _credentials_exception()
    username = payload.get("sub")
    if not username:
        raise _credentials_exception()

    session = DB.get_session()
    try:
        user = session.query(DBUser).filter(DBUser.username == username).first()
        if not user:
            raise _credentials_exception("用户不存在")
        if not user.is_active:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="账号已被禁用")
        return user_to_principal(user)
    finally:
        session.close()
