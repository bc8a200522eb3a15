"""FastAPI 应用入口点。"""

import logging

from fastapi import FastAPI

from cwa_api.api.router import api_router
from cwa_api.core.config import get_settings
from cwa_api.exceptions import register_exception_handlers
from cwa_api.middlewares import register_middlewares

settings = get_settings()


def _setup_logging(level: str) -> None:
    """配置应用日志格式。"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app() -> FastAPI:
    """创建并配置 FastAPI 应用实例。"""
    _setup_logging(settings.log_level)
    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        debug=settings.app_debug,
        description=(
            "聊天组件管理平台认证接口。\n\n"
            "所有业务接口统一返回：`{request_id, data, meta}`。\n"
            "失败统一返回：`{request_id, error: {code, message, details}}`。\n"
            "通过 `Authorization: Bearer <访问令牌>` 进行认证。"
        ),
        openapi_tags=[
            {"name": "health", "description": "服务存活与就绪探针。"},
            {"name": "auth", "description": "登录、注册、刷新、登出与修改密码。"},
            {"name": "users", "description": "用户会话（设备）管理、账号状态与行为日志。"},
            {"name": "sessions", "description": "单个会话终止与过期会话清理。"},
        ],
    )

    register_middlewares(app)
    register_exception_handlers(app)
    app.include_router(api_router, prefix=settings.api_prefix)
    return app


app = create_app()
