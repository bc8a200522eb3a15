"""数据库引擎与请求级会话。

认证写操作在各自的仓储方法内提交；get_db 只负责在请求异常退出时
回滚未提交的残留状态并归还连接。
"""

from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from cwa_api.core.config import get_settings


def create_db_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    """按连接串构造引擎；SQLite 连接允许跨线程使用（测试与本地开发）。"""
    options: dict[str, Any] = {"future": True, "pool_pre_ping": True}
    if make_url(database_url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
    options.update(engine_kwargs)
    return create_engine(database_url, **options)


def build_session_factory(bind: Engine) -> sessionmaker[Session]:
    # 保留 expire_on_commit，批量 UPDATE 提交后读到的总是最新行。
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, class_=Session)


engine = create_db_engine(get_settings().database_url)
SessionLocal = build_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """为每个请求提供独立数据库会话。"""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
