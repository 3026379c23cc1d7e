import html

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, ConfigDict, Field

from core import alipay_gateway
from core.alipay_gateway import GatewayError
from core.auth import get_current_user
from core.config import API_BASE, is_test_mode
from core.db import DB
from core.log import get_logger
from core.payment_service import (
    create_order,
    get_order,
    get_order_status,
    handle_alipay_notification,
    mock_payment_success,
)
from .base import success_response, error_response

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["支付"])


def _require_admin(current_user: dict):
    if current_user.get("role") != "ADMIN":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="无权限执行此操作")


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: int = Field(..., gt=0, alias="productId")


async def _read_notify_payload(request: Request) -> dict:
    """支付宝通知通常是表单提交，这里同时兼容 query 与 JSON。"""
    payload = dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            body = await request.json()
            if isinstance(body, dict):
                payload.update(body)
        elif request.method == "POST":
            form = await request.form()
            payload.update({k: v for k, v in form.items() if isinstance(v, str)})
    except Exception:
        logger.warning("解析支付宝通知内容失败: content_type=%s", content_type, exc_info=True)
    return payload


@router.post("/create-order", summary="创建会员支付订单")
def create_payment_order(payload: CreateOrderRequest, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        data = create_order(session, user_id=current_user["id"], product_id=payload.product_id)
        return success_response(data, message="订单创建成功")
    finally:
        session.close()


async def _handle_notify(request: Request):
    payload = await _read_notify_payload(request)
    session = DB.get_session()
    try:
        return handle_alipay_notification(session, payload)
    finally:
        session.close()


@router.post("/alipay-notify", summary="支付宝异步通知")
async def alipay_notify(request: Request):
    return await _handle_notify(request)


@router.post("/alipay/notify", summary="支付宝异步通知（兼容路径）")
async def alipay_notify_compat(request: Request):
    return await _handle_notify(request)


@router.get("/order-status/{order_id}", summary="查询订单支付状态")
async def order_status(order_id: int, current_user: dict = Depends(get_current_user)):
    session = DB.get_session()
    try:
        return success_response(get_order_status(session, order_id, current_user["id"]))
    finally:
        session.close()


@router.post("/refresh-alipay-config", summary="重新加载支付宝配置")
def refresh_alipay_config(current_user: dict = Depends(get_current_user)):
    _require_admin(current_user)
    session = DB.get_session()
    try:
        try:
            config = alipay_gateway.refresh_gateway(session)
        except GatewayError as e:
            return error_response(code=50001, message=str(e))
        if config is None:
            return success_response({"configured": False}, message="支付宝未配置")
        return success_response(
            {"configured": True, "source": config.source, "sandbox": config.sandbox},
            message="支付宝配置已刷新",
        )
    finally:
        session.close()


_MOCK_PAY_PAGE = """<!DOCTYPE html>
<html lang="zh-CN">
<head>
  <meta charset="utf-8">
  <title>模拟支付</title>
  <style>
    body {{ font-family: sans-serif; background: #f5f5f5; display: flex; justify-content: center; padding-top: 80px; }}
    .card {{ background: #fff; border-radius: 8px; padding: 32px 48px; box-shadow: 0 2px 12px rgba(0,0,0,.08); text-align: center; }}
    .amount {{ font-size: 28px; color: #1677ff; margin: 16px 0; }}
    button {{ background: #1677ff; color: #fff; border: none; border-radius: 4px; padding: 10px 32px; font-size: 16px; cursor: pointer; }}
  </style>
</head>
<body>
  <div class="card">
    <h2>模拟支付（测试模式）</h2>
    <p>订单号：{order_id}</p>
    <p>商品：{title}</p>
    <div class="amount">￥{amount}</div>
    <button id="pay">确认支付</button>
    <p id="msg"></p>
  </div>
  <script>
    document.getElementById('pay').onclick = function () {{
      fetch('{api_base}/payments/mock-success?orderId={order_id}', {{ method: 'POST' }})
        .then(function (r) {{ return r.json(); }})
        .then(function (res) {{
          document.getElementById('msg').innerText = res.message || '';
          if (res.success) {{
            setTimeout(function () {{ window.location.href = '/membership/payment-result?orderId={order_id}'; }}, 1000);
          }}
        }});
    }};
  </script>
</body>
</html>
"""


@router.get("/mock-pay", summary="模拟支付页面（仅测试模式）", response_class=HTMLResponse)
async def mock_pay_page(order_id: int = Query(..., alias="orderId", gt=0)):
    if not is_test_mode():
        return HTMLResponse("此功能仅在测试模式下可用", status_code=status.HTTP_403_FORBIDDEN)
    session = DB.get_session()
    try:
        order = get_order(session, order_id)
        if not order:
            return HTMLResponse("订单不存在", status_code=status.HTTP_404_NOT_FOUND)
        title = order.product.title if order.product is not None else ""
        return HTMLResponse(
            _MOCK_PAY_PAGE.format(
                order_id=order.id,
                title=html.escape(title),
                amount=f"{order.amount:.2f}",
                api_base=API_BASE,
            )
        )
    finally:
        session.close()


@router.post("/mock-success", summary="模拟支付成功（仅测试模式）")
async def mock_success(order_id: int = Query(..., alias="orderId", gt=0)):
    session = DB.get_session()
    try:
        return mock_payment_success(session, order_id)
    finally:
        session.close()
