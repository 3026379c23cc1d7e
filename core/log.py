"""
core/log.py — 统一日志

• trace_id 通过 ContextVar 传播：HTTP 请求由中间件设置，后台 Job 使用 trace_ctx()
• 格式: 时间 [级别] [trace_id] 模块.函数:行号 - 消息
• 根日志器只配置一次，子模块 get_logger(__name__) 即可

    from core.log import get_logger, trace_ctx
    logger = get_logger(__name__)

    with trace_ctx("sweep") as tid:
        logger.info("开始扫描过期会员")
"""

import logging
import logging.handlers
import os
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

import colorlog

from core.config import cfg

_trace_id_var: ContextVar[str] = ContextVar("trace_id", default="-")


def _new_trace_id() -> str:
    return uuid.uuid4().hex[:8]


def set_trace_id(tid: Optional[str] = None) -> str:
    """设置当前上下文的 trace_id，返回实际值。"""
    tid = str(tid or "").strip()[:16] or _new_trace_id()
    _trace_id_var.set(tid)
    return tid


def get_trace_id() -> str:
    return _trace_id_var.get()


@contextmanager
def trace_ctx(trace_id: Optional[str] = None) -> Generator[str, None, None]:
    token = _trace_id_var.set(str(trace_id or "").strip()[:16] or _new_trace_id())
    try:
        yield _trace_id_var.get()
    finally:
        _trace_id_var.reset(token)


_LEVEL_NAME = str(cfg.get("log.level", "INFO")).upper()
_LOG_FILE = str(cfg.get("log.file", "") or "")
_level = logging.getLevelName(_LEVEL_NAME)
if not isinstance(_level, int):
    _level = logging.INFO

_FMT = "%(asctime)s [%(levelname)-5s] [%(trace_id)s] %(name)s.%(funcName)s:%(lineno)d - %(message)s"
_DATE_FMT = "%Y-%m-%d %H:%M:%S"


class _TraceIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = _trace_id_var.get()
        return True


_trace_filter = _TraceIdFilter()

# uvicorn --reload 会重复导入，handler 用标记去重
_APP_HANDLER_MARKER = "_is_aifans_handler"


def _setup_app_logging() -> None:
    root = logging.getLogger()
    if any(getattr(h, _APP_HANDLER_MARKER, False) for h in root.handlers):
        return

    root.setLevel(_level)

    console = colorlog.StreamHandler(stream=sys.stdout)
    console.setFormatter(
        colorlog.ColoredFormatter(
            "%(log_color)s" + _FMT,
            datefmt=_DATE_FMT,
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    )
    console.setLevel(_level)
    console.addFilter(_trace_filter)
    setattr(console, _APP_HANDLER_MARKER, True)
    root.addHandler(console)

    if _LOG_FILE:
        folder = os.path.dirname(os.path.abspath(_LOG_FILE))
        os.makedirs(folder, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            f"{_LOG_FILE}.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=7,
            encoding="utf-8",
        )
        fh.setLevel(_level)
        fh.setFormatter(logging.Formatter(_FMT, datefmt=_DATE_FMT))
        fh.addFilter(_trace_filter)
        setattr(fh, _APP_HANDLER_MARKER, True)
        root.addHandler(fh)


_setup_app_logging()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
