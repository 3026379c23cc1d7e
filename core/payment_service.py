import time
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import or_

from core import alipay_gateway
from core.alipay_gateway import GatewayError
from core.config import cfg, is_test_mode
from core.exceptions import BadRequestError, NotFoundError, UnauthorizedError
from core.log import get_logger
from core.events import log_event, E
from core.membership_service import grant_membership, format_dt, paginate
from core.models.base import ORDER_STATUS
from core.models.user import User as DBUser
from core.models.membership_product import MembershipProduct
from core.models.payment_order import PaymentOrder

logger = get_logger(__name__)


def _order_to_dict(order: PaymentOrder) -> Dict:
    data = {
        "id": order.id,
        "userId": order.user_id,
        "productId": order.product_id,
        "amount": float(order.amount or 0),
        "status": order.status,
        "alipayTradeNo": order.alipay_trade_no or "",
        "createdAt": format_dt(order.created_at),
        "updatedAt": format_dt(order.updated_at),
    }
    if order.user is not None:
        data["user"] = {
            "id": order.user.id,
            "username": order.user.username,
            "nickname": order.user.nickname or "",
            "email": order.user.email or "",
        }
    if order.product is not None:
        data["product"] = {
            "id": order.product.id,
            "title": order.product.title,
            "price": float(order.product.price or 0),
            "durationDays": int(order.product.duration_days or 0),
            "type": order.product.type,
        }
    return data


def mock_pay_url(order_id: int) -> str:
    base_url = str(cfg.get("server.base_url", "http://localhost:3000")).rstrip("/")
    return f"{base_url}/api/payments/mock-pay?orderId={order_id}"


def _mark_failed(session, order: PaymentOrder) -> None:
    session.query(PaymentOrder).filter(
        PaymentOrder.id == order.id,
        PaymentOrder.status == ORDER_STATUS.PENDING,
    ).update(
        {PaymentOrder.status: ORDER_STATUS.FAILED, PaymentOrder.updated_at: datetime.now()},
        synchronize_session=False,
    )
    session.commit()
    session.refresh(order)
    log_event(logger, E.PAYMENT_ORDER_FAIL, level="warning", order_id=order.id)


def create_order(session, user_id: int, product_id: int) -> Dict:
    product = session.query(MembershipProduct).filter(MembershipProduct.id == product_id).first()
    if not product:
        raise NotFoundError("会员产品不存在")

    now = datetime.now()
    order = PaymentOrder(
        user_id=user_id,
        product_id=product.id,
        amount=product.price,
        status=ORDER_STATUS.PENDING,
        created_at=now,
        updated_at=now,
    )
    session.add(order)
    session.commit()
    session.refresh(order)
    log_event(logger, E.PAYMENT_ORDER_CREATE, order_id=order.id, user_id=user_id, product_id=product.id, amount=order.amount)

    config = alipay_gateway.resolve_gateway_config(session)
    if config is None:
        if is_test_mode():
            logger.info("支付宝未配置，测试模式返回模拟支付地址: order_id=%s", order.id)
            return {"orderId": order.id, "qrCode": None, "paymentUrl": mock_pay_url(order.id)}
        _mark_failed(session, order)
        raise BadRequestError("支付宝服务未配置，无法创建订单")

    try:
        qr_code = alipay_gateway.create_transaction(config, order, product)
    except GatewayError as e:
        logger.exception("创建支付失败: order_id=%s", order.id)
        _mark_failed(session, order)
        raise BadRequestError(f"创建支付失败: {e}")

    return {"orderId": order.id, "qrCode": qr_code, "paymentUrl": None}


def get_order(session, order_id: int) -> Optional[PaymentOrder]:
    return session.query(PaymentOrder).filter(PaymentOrder.id == order_id).first()


def get_order_status(session, order_id: int, user_id: int) -> Dict:
    order = get_order(session, order_id)
    if not order:
        raise NotFoundError("订单不存在")
    if order.user_id != user_id:
        raise UnauthorizedError("无权访问此订单")
    product = order.product
    return {
        "orderId": order.id,
        "status": order.status,
        "amount": float(order.amount or 0),
        "product": {
            "id": product.id,
            "title": product.title,
            "price": float(product.price or 0),
        } if product is not None else None,
        "createdAt": format_dt(order.created_at),
    }


def complete_order(session, order: PaymentOrder, trade_no: str = "") -> bool:
    """
    以条件更新把订单置为 SUCCESS，并在同一事务中授予会员。
    返回 False 表示订单已被其他请求处理过（不再重复授予）。
    """
    now = datetime.now()
    try:
        affected = (
            session.query(PaymentOrder)
            .filter(PaymentOrder.id == order.id, PaymentOrder.status != ORDER_STATUS.SUCCESS)
            .update(
                {
                    PaymentOrder.status: ORDER_STATUS.SUCCESS,
                    PaymentOrder.alipay_trade_no: (trade_no or "")[:64] or None,
                    PaymentOrder.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        if affected != 1:
            session.rollback()
            return False
        user = session.query(DBUser).filter(DBUser.id == order.user_id).first()
        if user is None:
            raise NotFoundError("用户不存在")
        product = order.product
        expiry = grant_membership(session, user, product.duration_days, product.type, now=now)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(order)
    log_event(logger, E.PAYMENT_ORDER_SUCCESS, order_id=order.id, user_id=order.user_id, role=user.role, expiry=format_dt(expiry) or "never")
    return True


def close_order(session, order: PaymentOrder, trade_no: str = "") -> bool:
    affected = (
        session.query(PaymentOrder)
        .filter(PaymentOrder.id == order.id, PaymentOrder.status == ORDER_STATUS.PENDING)
        .update(
            {
                PaymentOrder.status: ORDER_STATUS.FAILED,
                PaymentOrder.alipay_trade_no: (trade_no or "")[:64] or None,
                PaymentOrder.updated_at: datetime.now(),
            },
            synchronize_session=False,
        )
    )
    session.commit()
    session.refresh(order)
    log_event(logger, E.PAYMENT_ORDER_CLOSE, order_id=order.id, changed=affected)
    return affected == 1


def _result(success: bool, message: str) -> Dict:
    return {"success": success, "message": message}


def handle_alipay_notification(session, payload: Dict) -> Dict:
    """
    处理支付宝异步通知。始终返回 {success, message}，不向网关抛异常。
    """
    payload = dict(payload or {})
    out_trade_no = str(payload.get("out_trade_no", "") or "")
    log_event(logger, E.GATEWAY_NOTIFY_RECEIVE, out_trade_no=out_trade_no, trade_status=payload.get("trade_status", ""))
    try:
        return _process_notification(session, payload)
    except Exception:
        session.rollback()
        logger.exception("处理支付宝通知失败: out_trade_no=%s", out_trade_no)
        return _result(False, "订单处理失败")


def _process_notification(session, payload: Dict) -> Dict:
    out_trade_no = str(payload.get("out_trade_no", "") or "")
    trade_status = str(payload.get("trade_status", "") or "")
    trade_no = str(payload.get("trade_no", "") or "")

    test_mode = is_test_mode()
    config = alipay_gateway.resolve_gateway_config(session)
    if config is None:
        if not test_mode:
            logger.error("支付宝服务未配置，无法处理通知")
            return _result(False, "支付宝服务未配置")
        logger.warning("测试模式：支付宝未配置，跳过签名验证")
    elif not alipay_gateway.verify_callback(config, payload):
        if not test_mode:
            return _result(False, "签名验证失败")
        logger.warning("测试模式：签名验证失败但继续处理 out_trade_no=%s", out_trade_no)

    order_id = alipay_gateway.parse_out_trade_no(out_trade_no)
    if order_id is None:
        logger.warning("无效的订单号: %s", out_trade_no)
        return _result(False, "无效的订单号")

    order = get_order(session, order_id)
    if not order:
        logger.warning("订单不存在: %s", order_id)
        return _result(False, "订单不存在")

    if order.status == ORDER_STATUS.SUCCESS:
        log_event(logger, E.GATEWAY_NOTIFY_DUPLICATE, order_id=order_id, trade_status=trade_status)
        return _result(True, "订单已处理")

    if trade_status in alipay_gateway.TRADE_SUCCESS_STATUSES:
        if not complete_order(session, order, trade_no=trade_no):
            log_event(logger, E.GATEWAY_NOTIFY_DUPLICATE, order_id=order_id, trade_status=trade_status)
            return _result(True, "订单已处理")
        return _result(True, "订单处理成功")
    if trade_status == alipay_gateway.TRADE_CLOSED:
        close_order(session, order, trade_no=trade_no)
        return _result(True, "订单已关闭")

    return _result(True, "订单状态已记录")


def mock_payment_success(session, order_id: int) -> Dict:
    if not is_test_mode():
        raise BadRequestError("此功能仅在测试模式下可用")
    order = get_order(session, order_id)
    if not order:
        raise NotFoundError("订单不存在")
    if order.status == ORDER_STATUS.SUCCESS:
        return _result(True, "订单已处理")
    if not complete_order(session, order, trade_no=f"MOCK_{int(time.time() * 1000)}"):
        return _result(True, "订单已处理")
    log_event(logger, E.PAYMENT_MOCK_SUCCESS, order_id=order.id, user_id=order.user_id)
    return _result(True, "测试支付成功")


def list_orders(session, page: int = 1, limit: int = 10, search: str = "", status: str = "") -> Dict:
    query = session.query(PaymentOrder).join(DBUser, PaymentOrder.user_id == DBUser.id)
    status_value = str(status or "").strip().upper()
    if status_value:
        query = query.filter(PaymentOrder.status == status_value)
    keyword = str(search or "").strip()
    if keyword:
        like = f"%{keyword}%"
        query = query.filter(
            or_(
                DBUser.username.like(like),
                DBUser.nickname.like(like),
                PaymentOrder.alipay_trade_no.like(like),
            )
        )
    query = query.order_by(PaymentOrder.created_at.desc(), PaymentOrder.id.desc())
    return paginate(query, page, limit, _order_to_dict)
