from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.auth import get_current_user
from core.db import DB
from core.membership_service import (
    CODE_LENGTH,
    get_membership_summary,
    list_products,
    redeem_code,
)
from core.models.user import User as DBUser
from .base import success_response


router = APIRouter(prefix="/membership", tags=["会员"])


class RedeemRequest(BaseModel):
    code: str = Field(..., min_length=CODE_LENGTH, max_length=CODE_LENGTH)


@router.get("/products", summary="获取会员产品列表")
async def membership_products():
    session = DB.get_session()
    try:
        return success_response(list_products(session))
    finally:
        session.close()


@router.post("/redeem", summary="使用兑换码开通会员")
async def redeem(payload: RedeemRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        result = redeem_code(session, current_user["id"], payload.code)
        return success_response(result, message=result["message"])
    finally:
        session.close()


@router.get("/me", summary="获取当前用户会员状态")
async def my_membership(current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        user = session.query(DBUser).filter(DBUser.id == current_user["id"]).first()
        if not user:
            raise HTTPException(status_code=404, detail="用户不存在")
        return success_response(get_membership_summary(user))
    finally:
        session.close()
