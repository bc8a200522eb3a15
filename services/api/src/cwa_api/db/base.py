"""数据库基础模型导出。

生产环境的表结构由 services/api/sql 下的脚本维护；
create_schema 仅用于本地开发与测试快速建表。
"""

from sqlalchemy.engine import Engine

from cwa_api.models import User, UserActivity, UserSession
from cwa_api.models.base import Base

AUTH_TABLES = (User.__table__, UserSession.__table__, UserActivity.__table__)


def create_schema(engine: Engine) -> None:
    """按模型定义创建认证相关表（已存在则跳过）。"""
    Base.metadata.create_all(engine, tables=list(AUTH_TABLES))


__all__ = ["AUTH_TABLES", "Base", "create_schema"]
