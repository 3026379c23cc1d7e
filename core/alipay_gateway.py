"""
支付宝网关适配

• resolve_gateway_config() 每次按当前数据库/环境配置解析出不可变的 GatewayConfig
• get_client() 按 GatewayConfig 缓存 AliPay 实例，配置变化即得到新的客户端，旧实例不会被原地修改
• 数据库配置（非沙箱）优先，其次环境变量/config.yaml，最后才使用沙箱模式的数据库配置
"""

import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Optional

from alipay import AliPay

from core.config import cfg
from core.log import get_logger
from core.events import log_event, E
from core.models.payment_settings import PaymentSettings

logger = get_logger(__name__)


TRADE_PREFIX = "ORDER_"
TRADE_SUCCESS_STATUSES = ("TRADE_SUCCESS", "TRADE_FINISHED")
TRADE_CLOSED = "TRADE_CLOSED"
PRECREATE_SUCCESS_CODE = "10000"

DEFAULT_GATEWAY_URL = "https://openapi.alipay.com/gateway.do"
DEFAULT_SANDBOX_GATEWAY_URL = "https://openapi-sandbox.dl.alipaydev.com/gateway.do"


class GatewayError(Exception):
    """支付宝 SDK 调用失败或返回异常。"""


@dataclass(frozen=True)
class GatewayConfig:
    app_id: str
    private_key: str = field(repr=False)
    public_key: str = field(repr=False)
    sandbox: bool = False
    gateway_url: str = DEFAULT_GATEWAY_URL
    notify_url: str = ""
    source: str = "env"


def format_key(raw: str, kind: str = "private") -> str:
    """后台录入的裸 base64 密钥补全为 PEM 格式，已是 PEM 的原样返回。"""
    text = str(raw or "").strip()
    if not text or "-----BEGIN" in text:
        return text
    body = re.sub(r"\s+", "", text)
    lines = [body[i:i + 64] for i in range(0, len(body), 64)]
    label = "PRIVATE KEY" if kind == "private" else "PUBLIC KEY"
    return "\n".join([f"-----BEGIN {label}-----", *lines, f"-----END {label}-----"])


def _is_complete(app_id: str, private_key: str, public_key: str) -> bool:
    return bool(str(app_id or "").strip() and str(private_key or "").strip() and str(public_key or "").strip())


def _default_notify_url() -> str:
    domain = str(cfg.get("server.domain", "https://aifans.pro")).rstrip("/")
    return str(cfg.get("alipay.notify_url", "") or f"{domain}/api/payments/alipay/notify")


def get_settings_row(session) -> Optional[PaymentSettings]:
    return session.query(PaymentSettings).order_by(PaymentSettings.id.asc()).first()


def config_from_settings(row: Optional[PaymentSettings]) -> Optional[GatewayConfig]:
    if row is None or not _is_complete(row.alipay_app_id, row.alipay_private_key, row.alipay_public_key):
        return None
    sandbox = bool(row.is_sandbox)
    gateway_url = str(row.alipay_gateway_url or "").strip()
    if not gateway_url or (sandbox and gateway_url == DEFAULT_GATEWAY_URL):
        gateway_url = DEFAULT_SANDBOX_GATEWAY_URL if sandbox else DEFAULT_GATEWAY_URL
    return GatewayConfig(
        app_id=row.alipay_app_id.strip(),
        private_key=format_key(row.alipay_private_key, "private"),
        public_key=format_key(row.alipay_public_key, "public"),
        sandbox=sandbox,
        gateway_url=gateway_url,
        notify_url=_default_notify_url(),
        source="database",
    )


def config_from_env() -> Optional[GatewayConfig]:
    app_id = str(cfg.get("alipay.app_id", "") or "")
    private_key = str(cfg.get("alipay.private_key", "") or "")
    public_key = str(cfg.get("alipay.public_key", "") or "")
    if not _is_complete(app_id, private_key, public_key):
        return None
    sandbox = cfg.get_bool("alipay.sandbox", False)
    if sandbox:
        gateway_url = str(cfg.get("alipay.sandbox_gateway_url", DEFAULT_SANDBOX_GATEWAY_URL))
    else:
        gateway_url = str(cfg.get("alipay.gateway_url", DEFAULT_GATEWAY_URL))
    return GatewayConfig(
        app_id=app_id.strip(),
        private_key=format_key(private_key, "private"),
        public_key=format_key(public_key, "public"),
        sandbox=sandbox,
        gateway_url=gateway_url,
        notify_url=_default_notify_url(),
        source="env",
    )


def resolve_gateway_config(session) -> Optional[GatewayConfig]:
    db_config = config_from_settings(get_settings_row(session))
    if db_config is not None and not db_config.sandbox:
        return db_config
    env_config = config_from_env()
    if env_config is not None:
        return env_config
    return db_config


@lru_cache(maxsize=8)
def get_client(config: GatewayConfig) -> AliPay:
    client = AliPay(
        appid=config.app_id,
        app_notify_url=config.notify_url or None,
        app_private_key_string=config.private_key,
        alipay_public_key_string=config.public_key,
        sign_type="RSA2",
        debug=config.sandbox,
    )
    # SDK 只按 debug 在正式/沙箱网关间二选一，自定义网关需覆盖
    if config.gateway_url:
        client._gateway = config.gateway_url
    log_event(logger, E.GATEWAY_INIT, source=config.source, app_id=config.app_id, sandbox=config.sandbox)
    return client


def refresh_gateway(session) -> Optional[GatewayConfig]:
    """丢弃已缓存的客户端并按最新配置重新初始化。"""
    get_client.cache_clear()
    cfg.reload()
    config = resolve_gateway_config(session)
    if config is None:
        log_event(logger, E.GATEWAY_UNCONFIGURED, level="warning")
        return None
    try:
        get_client(config)
    except Exception as e:
        logger.exception("支付宝SDK初始化失败")
        raise GatewayError(f"支付宝SDK初始化失败: {e}") from e
    log_event(logger, E.GATEWAY_REFRESH, source=config.source, sandbox=config.sandbox)
    return config


def build_out_trade_no(order_id: int) -> str:
    return f"{TRADE_PREFIX}{int(order_id)}"


def parse_out_trade_no(value: str) -> Optional[int]:
    text = str(value or "").strip()
    if not text.startswith(TRADE_PREFIX):
        return None
    raw = text[len(TRADE_PREFIX):]
    if not raw.isdigit():
        return None
    return int(raw)


def create_transaction(config: GatewayConfig, order, product) -> str:
    """调用当面付预下单，返回可扫码的 qr_code。"""
    out_trade_no = build_out_trade_no(order.id)
    try:
        client = get_client(config)
        result = client.api_alipay_trade_precreate(
            subject=f"AI灵感社 - {product.title}",
            out_trade_no=out_trade_no,
            total_amount=f"{order.amount:.2f}",
            notify_url=config.notify_url or None,
            body=product.description or "会员购买",
        )
    except Exception as e:
        log_event(logger, E.GATEWAY_PRECREATE_FAIL, level="error", out_trade_no=out_trade_no, error=e)
        raise GatewayError(str(e)) from e

    result = result or {}
    qr_code = result.get("qr_code")
    if str(result.get("code", "")) != PRECREATE_SUCCESS_CODE or not qr_code:
        message = result.get("sub_msg") or result.get("msg") or "支付宝返回数据异常"
        log_event(logger, E.GATEWAY_PRECREATE_FAIL, level="error", out_trade_no=out_trade_no, response=result)
        raise GatewayError(str(message))

    log_event(logger, E.GATEWAY_PRECREATE, out_trade_no=out_trade_no, source=config.source)
    return qr_code


def verify_callback(config: GatewayConfig, payload: Dict) -> bool:
    """校验异步通知签名，失败只返回 False 并记录 warning。"""
    data = {k: v for k, v in (payload or {}).items() if k not in ("sign", "sign_type")}
    signature = (payload or {}).get("sign")
    if not signature:
        log_event(logger, E.GATEWAY_VERIFY_FAIL, level="warning", reason="missing_sign", out_trade_no=data.get("out_trade_no", ""))
        return False
    try:
        ok = bool(get_client(config).verify(data, signature))
    except Exception as e:
        log_event(logger, E.GATEWAY_VERIFY_FAIL, level="warning", reason="exception", error=e)
        return False
    if not ok:
        log_event(logger, E.GATEWAY_VERIFY_FAIL, level="warning", reason="bad_sign", out_trade_no=data.get("out_trade_no", ""))
    return ok
