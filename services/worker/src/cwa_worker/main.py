"""过期会话清理进程。

主流程:
1) 将 expires_at 已过但仍为 active 的会话批量标记为 expired
2) 记录本轮影响行数
3) 休眠 sweep_interval_seconds 后进入下一轮

单条 UPDATE 只迁移 active 行，多个清理进程并发执行也不会重复计数。
"""

from datetime import datetime, timezone
import logging
import time

from sqlalchemy import DateTime, bindparam, create_engine, text
from sqlalchemy.engine import Engine

from cwa_worker.config import get_settings

logger = logging.getLogger("cwa_worker")

_SWEEP_SQL = text(
    """
    UPDATE user_sessions
    SET status = 'expired',
        updated_at = :now
    WHERE status = 'active'
      AND expires_at <= :now
    """
).bindparams(bindparam("now", type_=DateTime(timezone=True)))


def _setup_logging(level: str = "INFO") -> None:
    """初始化日志输出格式与级别。"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def sweep_once(engine: Engine, *, now: datetime | None = None) -> int:
    """执行一轮过期会话清理，返回被标记为 expired 的会话数量。"""
    cutoff = now or datetime.now(timezone.utc)
    with engine.begin() as conn:
        result = conn.execute(_SWEEP_SQL, {"now": cutoff})
    return result.rowcount or 0


def main() -> None:
    """启动清理主循环。"""
    settings = get_settings()
    _setup_logging(settings.log_level)
    engine = create_engine(settings.database_url, future=True, pool_pre_ping=True)
    logger.info(
        "session sweeper started worker_id=%s interval=%ss",
        settings.worker_id,
        settings.sweep_interval_seconds,
    )

    while True:
        try:
            expired = sweep_once(engine)
            if expired:
                logger.info("expired sessions swept count=%s worker_id=%s", expired, settings.worker_id)
            time.sleep(settings.sweep_interval_seconds)
        except KeyboardInterrupt:
            logger.info("session sweeper stopped")
            return
        except Exception:
            # 数据库短暂不可用时记录后等待下一轮。
            logger.exception("sweep failed worker_id=%s", settings.worker_id)
            time.sleep(settings.sweep_interval_seconds)


if __name__ == "__main__":
    main()
