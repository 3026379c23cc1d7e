from datetime import datetime
from typing import Dict

import requests

from core import alipay_gateway
from core.alipay_gateway import DEFAULT_GATEWAY_URL, GatewayError
from core.log import get_logger
from core.events import log_event, E
from core.membership_service import format_dt
from core.models.payment_settings import PaymentSettings

logger = get_logger(__name__)

MASK = "****"
PROBE_TIMEOUT_SECONDS = 5


def mask_secret(value: str) -> str:
    text = str(value or "").strip()
    if not text:
        return ""
    if len(text) <= 12:
        return MASK
    return f"{text[:6]}{MASK}{text[-6:]}"


def _is_masked(value) -> bool:
    return isinstance(value, str) and MASK in value


def settings_to_dict(row: PaymentSettings = None) -> Dict:
    if row is None:
        return {
            "id": None,
            "alipayAppId": "",
            "alipayPrivateKey": "",
            "alipayPublicKey": "",
            "alipayGatewayUrl": DEFAULT_GATEWAY_URL,
            "isSandbox": True,
            "hasPrivateKey": False,
            "hasPublicKey": False,
            "updatedAt": None,
        }
    return {
        "id": row.id,
        "alipayAppId": row.alipay_app_id or "",
        "alipayPrivateKey": mask_secret(row.alipay_private_key),
        "alipayPublicKey": mask_secret(row.alipay_public_key),
        "alipayGatewayUrl": row.alipay_gateway_url or DEFAULT_GATEWAY_URL,
        "isSandbox": bool(row.is_sandbox),
        "hasPrivateKey": bool(row.alipay_private_key),
        "hasPublicKey": bool(row.alipay_public_key),
        "updatedAt": format_dt(row.updated_at),
    }


def get_payment_settings(session) -> Dict:
    return settings_to_dict(alipay_gateway.get_settings_row(session))


def update_payment_settings(session, changes: Dict) -> Dict:
    """
    写入唯一的一行支付配置（不存在则创建），随后刷新支付宝客户端。
    密钥字段传入脱敏值（含 ****）或空值时保留原值。
    """
    now = datetime.now()
    row = alipay_gateway.get_settings_row(session)
    if row is None:
        row = PaymentSettings(
            alipay_gateway_url=DEFAULT_GATEWAY_URL,
            is_sandbox=True,
            created_at=now,
        )
        session.add(row)

    if changes.get("alipay_app_id") is not None:
        row.alipay_app_id = str(changes["alipay_app_id"]).strip()
    for key in ("alipay_private_key", "alipay_public_key"):
        value = changes.get(key)
        if value is None or _is_masked(value) or not str(value).strip():
            continue
        setattr(row, key, str(value).strip())
    if changes.get("alipay_gateway_url") is not None:
        row.alipay_gateway_url = str(changes["alipay_gateway_url"]).strip() or DEFAULT_GATEWAY_URL
    if changes.get("is_sandbox") is not None:
        row.is_sandbox = bool(changes["is_sandbox"])
    row.updated_at = now
    session.commit()
    session.refresh(row)
    log_event(logger, E.PAYMENT_SETTINGS_UPDATE, settings_id=row.id, sandbox=row.is_sandbox)

    try:
        alipay_gateway.refresh_gateway(session)
    except GatewayError:
        # 配置已保存，密钥有误时由测试接口提示
        logger.warning("支付配置已保存，但支付宝客户端初始化失败")
    return settings_to_dict(row)


def test_payment_settings(session) -> Dict:
    row = alipay_gateway.get_settings_row(session)
    config = alipay_gateway.config_from_settings(row)
    if config is None:
        log_event(logger, E.PAYMENT_SETTINGS_TEST, level="warning", result="incomplete")
        return {"success": False, "message": "支付配置不完整"}

    try:
        alipay_gateway.get_client(config)
    except Exception as e:
        log_event(logger, E.PAYMENT_SETTINGS_TEST, level="warning", result="bad_key", error=e)
        return {"success": False, "message": f"支付宝密钥无效: {e}"}

    try:
        requests.get(config.gateway_url, timeout=PROBE_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        log_event(logger, E.PAYMENT_SETTINGS_TEST, level="warning", result="unreachable", gateway=config.gateway_url)
        return {"success": False, "message": f"支付宝网关无法访问: {e}"}

    log_event(logger, E.PAYMENT_SETTINGS_TEST, result="ok", sandbox=config.sandbox)
    return {"success": True, "message": "支付配置测试成功"}
