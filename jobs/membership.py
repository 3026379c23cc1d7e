import time
from datetime import datetime, timedelta
from threading import Thread

from core.config import cfg
from core.db import DB
from core.membership_service import sweep_expired_memberships
from core.log import get_logger, trace_ctx
from core.events import log_event, E

logger = get_logger(__name__)


def run_membership_sweep(now: datetime = None) -> dict:
    """执行一次会员到期降级，可由定时任务、脚本或管理接口触发。"""
    with trace_ctx("sweep"):
        session = DB.get_session()
        try:
            log_event(logger, E.MEMBERSHIP_SWEEP_START)
            result = sweep_expired_memberships(session, now=now)
            log_event(logger, E.MEMBERSHIP_SWEEP_COMPLETE, total=result.get("total", 0))
            if result.get("total"):
                logger.info("会员到期降级完成: %s", result)
            return result
        except Exception:
            session.rollback()
            logger.exception("会员到期扫描异常")
            raise
        finally:
            session.close()


def seconds_until_next_run(hour: int, now: datetime = None) -> float:
    now = now or datetime.now()
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


def _worker_loop():
    hour = int(cfg.get("membership.sweep_hour", 1) or 0) % 24
    while True:
        delay = seconds_until_next_run(hour)
        logger.info("下一次会员到期扫描将在 %.0f 秒后执行", delay)
        time.sleep(delay)
        try:
            run_membership_sweep()
        except Exception:
            # 已在 run_membership_sweep 中记录，等待下一轮
            pass


def start_membership_sweep_worker():
    t = Thread(target=_worker_loop, daemon=True)
    t.start()
    log_event(logger, E.SYSTEM_JOB_ADD, job="membership_sweep", hour=cfg.get("membership.sweep_hour", 1))
    return t
