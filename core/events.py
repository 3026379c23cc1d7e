"""
core/events.py — 结构化事件日志

格式：event=xxx | key=val | key=val

    from core.log import get_logger
    from core.events import log_event, E

    logger = get_logger(__name__)
    log_event(logger, E.PAYMENT_ORDER_CREATE, order_id=12, user_id=3, amount="29.90")
    # → event=payment.order.create | order_id=12 | user_id=3 | amount=29.90
"""

import logging
from typing import Any


class E:
    """事件类型常量，按功能模块分组。"""

    # ── 认证 Auth ──────────────────────────────────────────────────────────────
    AUTH_REGISTER = "auth.register"
    AUTH_LOGIN_SUCCESS = "auth.login.success"
    AUTH_LOGIN_FAIL = "auth.login.fail"

    # ── 订单 Payment ───────────────────────────────────────────────────────────
    PAYMENT_ORDER_CREATE = "payment.order.create"
    PAYMENT_ORDER_FAIL = "payment.order.fail"
    PAYMENT_ORDER_SUCCESS = "payment.order.success"
    PAYMENT_ORDER_CLOSE = "payment.order.close"
    PAYMENT_MOCK_SUCCESS = "payment.mock.success"

    # ── 支付宝网关 Gateway ─────────────────────────────────────────────────────
    GATEWAY_INIT = "gateway.init"
    GATEWAY_UNCONFIGURED = "gateway.unconfigured"
    GATEWAY_PRECREATE = "gateway.precreate"
    GATEWAY_PRECREATE_FAIL = "gateway.precreate.fail"
    GATEWAY_NOTIFY_RECEIVE = "gateway.notify.receive"
    GATEWAY_NOTIFY_DUPLICATE = "gateway.notify.duplicate"
    GATEWAY_VERIFY_FAIL = "gateway.verify.fail"
    GATEWAY_REFRESH = "gateway.refresh"

    # ── 会员 Membership ────────────────────────────────────────────────────────
    MEMBERSHIP_GRANT = "membership.grant"
    MEMBERSHIP_CODE_ISSUE = "membership.code.issue"
    MEMBERSHIP_CODE_REDEEM = "membership.code.redeem"
    MEMBERSHIP_CODE_CONFLICT = "membership.code.conflict"
    MEMBERSHIP_SWEEP_START = "membership.sweep.start"
    MEMBERSHIP_SWEEP_COMPLETE = "membership.sweep.complete"
    MEMBERSHIP_EXPIRE = "membership.expire"
    MEMBERSHIP_PRODUCT_CHANGE = "membership.product.change"

    # ── 支付设置 Settings ──────────────────────────────────────────────────────
    PAYMENT_SETTINGS_UPDATE = "payment.settings.update"
    PAYMENT_SETTINGS_TEST = "payment.settings.test"

    # ── 系统 System ────────────────────────────────────────────────────────────
    SYSTEM_STARTUP = "system.startup"
    SYSTEM_DB_INIT = "system.db_init"
    SYSTEM_JOB_ADD = "system.job.add"


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "info",
    **fields: Any,
) -> None:
    """
    记录结构化事件日志。

        log_event(logger, E.GATEWAY_VERIFY_FAIL, level="warning", out_trade_no="ORDER_12")
        # → event=gateway.verify.fail | out_trade_no=ORDER_12
    """
    parts = [f"event={event}"]
    for k, v in fields.items():
        sv = v if isinstance(v, str) else str(v)
        # 截断超长字段（如密钥、回调原文）
        if len(sv) > 300:
            sv = sv[:297] + "..."
        parts.append(f"{k}={sv}")
    getattr(logger, level)(" | ".join(parts), stacklevel=2)
