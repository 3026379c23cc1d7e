"""
core/config.py — YAML 配置加载

• 配置文件路径取 CONFIG_FILE 环境变量，默认 ./config.yaml，文件不存在时使用内置默认值
• 支持 ${ENV_VAR} / ${ENV_VAR:-default} 形式的环境变量替换
• cfg.get("alipay.app_id", "") 按点号读取嵌套键
"""

import copy
import os
import re
from typing import Any, Dict

import yaml


VERSION = "1.0.0"
API_BASE = "/api"

_ENV_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

DEFAULT_CONFIG: Dict[str, Any] = {
    "app_name": "AIFans",
    "app": {
        "env": "${APP_ENV:-${NODE_ENV:-development}}",
    },
    "db": "${DB_URL:-sqlite:///data/aifans.db}",
    "secret": "${SECRET_KEY:-aifans-dev-secret}",
    "token_expire_minutes": 10080,
    "server": {
        "base_url": "${APP_BASE_URL:-http://localhost:3000}",
        "domain": "${SERVER_DOMAIN:-https://aifans.pro}",
    },
    "alipay": {
        "app_id": "${ALIPAY_APP_ID:-}",
        "private_key": "${ALIPAY_PRIVATE_KEY:-}",
        "public_key": "${ALIPAY_PUBLIC_KEY:-}",
        "sandbox": "${ALIPAY_SANDBOX:-false}",
        "gateway_url": "${ALIPAY_GATEWAY_URL:-https://openapi.alipay.com/gateway.do}",
        "sandbox_gateway_url": "${ALIPAY_SANDBOX_GATEWAY_URL:-https://openapi-sandbox.dl.alipaydev.com/gateway.do}",
        "notify_url": "${ALIPAY_NOTIFY_URL:-}",
    },
    "membership": {
        "sweep_enabled": "${MEMBERSHIP_SWEEP_ENABLED:-true}",
        "sweep_hour": 1,
    },
    "log": {
        "level": "${LOG_LEVEL:-INFO}",
        "file": "${LOG_FILE:-}",
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _substitute(text: str) -> str:
    # 由内向外替换，支持 ${A:-${B:-c}} 形式的嵌套默认值
    previous = None
    while previous != text:
        previous = text
        text = re.sub(
            r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^${}]*))?\}",
            lambda m: os.getenv(m.group(1)) or (m.group(2) or ""),
            text,
        )
    return text


class Config:
    def __init__(self, config_path: str = None):
        self.config_path = config_path or os.getenv("CONFIG_FILE", "config.yaml")
        self.config: Dict[str, Any] = {}
        self.reload()

    def reload(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if os.path.exists(self.config_path):
            with open(self.config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        self.config = _merge(DEFAULT_CONFIG, data)
        return self.config

    def replace_env_vars(self, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: self.replace_env_vars(v) for k, v in data.items()}
        if isinstance(data, list):
            return [self.replace_env_vars(x) for x in data]
        if isinstance(data, str) and _ENV_PATTERN.search(data):
            return _substitute(data)
        return data

    def get(self, key: str, default: Any = None) -> Any:
        current: Any = self.config
        for part in [x for x in str(key or "").split(".") if x]:
            if not isinstance(current, dict) or part not in current:
                return default
            current = current[part]
        value = self.replace_env_vars(current)
        if value is None or value == "":
            return default if default is not None else value
        return value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = self.get(key, default)
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)


cfg = Config()


def is_production() -> bool:
    return str(cfg.get("app.env", "development")).strip().lower() == "production"


def is_test_mode() -> bool:
    """非 production 环境视为测试模式（允许模拟支付）。"""
    return not is_production()
