from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from core.auth import get_current_user
from core.db import DB
from core.membership_service import (
    code_to_dict,
    create_product,
    delete_product,
    get_product,
    issue_redemption_code,
    list_members,
    list_products,
    list_redemption_codes,
    product_to_dict,
    update_product,
)
from core.payment_service import list_orders
from core.payment_settings_service import (
    get_payment_settings,
    update_payment_settings,
    test_payment_settings,
)
from jobs.membership import run_membership_sweep
from .base import success_response


router = APIRouter(prefix="/admin/membership", tags=["会员管理"])


def _require_admin(current_user: dict):
    if current_user.get("role") != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="无权限执行此操作")


class ProductCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: float = Field(..., gt=0)
    duration_days: int = Field(..., ge=0, alias="durationDays")
    type: str = Field(default="PREMIUM", max_length=32)


class ProductUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    price: Optional[float] = Field(default=None, gt=0)
    duration_days: Optional[int] = Field(default=None, ge=0, alias="durationDays")
    type: Optional[str] = Field(default=None, max_length=32)


class RedemptionCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration_days: int = Field(..., ge=1, le=3650, alias="durationDays")


class PaymentSettingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    alipay_app_id: Optional[str] = Field(default=None, max_length=64, alias="alipayAppId")
    alipay_private_key: Optional[str] = Field(default=None, max_length=8000, alias="alipayPrivateKey")
    alipay_public_key: Optional[str] = Field(default=None, max_length=8000, alias="alipayPublicKey")
    alipay_gateway_url: Optional[str] = Field(default=None, max_length=255, alias="alipayGatewayUrl")
    is_sandbox: Optional[bool] = Field(default=None, alias="isSandbox")


# ─── 会员产品 ─────────────────────────────────────────────────────────────────

@router.get("/products", summary="获取会员产品列表")
async def admin_list_products(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(list_products(session))
    finally:
        session.close()


@router.get("/products/{product_id}", summary="获取会员产品详情")
async def admin_get_product(product_id: int, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(product_to_dict(get_product(session, product_id)))
    finally:
        session.close()


@router.post("/products", summary="创建会员产品")
async def admin_create_product(payload: ProductCreateRequest, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        product = create_product(
            session,
            title=payload.title,
            price=payload.price,
            duration_days=payload.duration_days,
            product_type=payload.type,
            description=payload.description,
        )
        return success_response(product_to_dict(product), message="创建成功")
    finally:
        session.close()


@router.put("/products/{product_id}", summary="更新会员产品")
async def admin_update_product(
    product_id: int,
    payload: ProductUpdateRequest,
    current_user: dict = Depends(get_current_user),
):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        product = update_product(session, product_id, payload.model_dump(exclude_unset=True))
        return success_response(product_to_dict(product), message="更新成功")
    finally:
        session.close()


@router.delete("/products/{product_id}", summary="删除会员产品")
async def admin_delete_product(product_id: int, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(delete_product(session, product_id), message="删除成功")
    finally:
        session.close()


# ─── 兑换码 ───────────────────────────────────────────────────────────────────

@router.post("/redemption-codes", summary="生成兑换码")
async def admin_issue_code(payload: RedemptionCodeRequest, current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        item = issue_redemption_code(session, payload.duration_days)
        return success_response(code_to_dict(item), message="兑换码生成成功")
    finally:
        session.close()


@router.get("/redemption-codes", summary="获取兑换码列表")
async def admin_list_codes(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=32),
    current_user: dict = Depends(get_current_user),
):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(list_redemption_codes(session, page=page, limit=limit, search=search))
    finally:
        session.close()


# ─── 订单 / 会员 ──────────────────────────────────────────────────────────────

@router.get("/orders", summary="获取支付订单列表")
async def admin_list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=64),
    status_filter: str = Query("", alias="status", max_length=16),
    current_user: dict = Depends(get_current_user),
):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(list_orders(session, page=page, limit=limit, search=search, status=status_filter))
    finally:
        session.close()


@router.get("/members", summary="获取会员用户列表")
async def admin_list_members(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=64),
    role: str = Query("", max_length=16),
    current_user: dict = Depends(get_current_user),
):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(list_members(session, page=page, limit=limit, search=search, role=role))
    finally:
        session.close()


@router.post("/sweep", summary="扫描并降级已过期会员")
def admin_sweep(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    return success_response(run_membership_sweep())


# ─── 支付配置 ─────────────────────────────────────────────────────────────────

@router.get("/payment-settings", summary="获取支付配置")
async def admin_get_payment_settings(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        return success_response(get_payment_settings(session))
    finally:
        session.close()


@router.put("/payment-settings", summary="更新支付配置")
async def admin_update_payment_settings(
    payload: PaymentSettingsRequest,
    current_user: dict = Depends(get_current_user),
):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        data = update_payment_settings(session, payload.model_dump(exclude_unset=True))
        return success_response(data, message="支付配置已更新")
    finally:
        session.close()


@router.post("/payment-settings/test", summary="测试支付配置")
def admin_test_payment_settings(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        result = test_payment_settings(session)
        return success_response(result, message=result["message"])
    finally:
        session.close()
