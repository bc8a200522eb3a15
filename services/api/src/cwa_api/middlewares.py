"""应用中间件注册。"""

import logging
import re
from time import perf_counter
import uuid

from fastapi import FastAPI, Request

logger = logging.getLogger("cwa_api.access")

REQUEST_ID_HEADER = "X-Request-Id"
# 仅沿用网关透传的安全格式追踪 ID，其余一律重新生成。
_INBOUND_REQUEST_ID = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def _resolve_request_id(request: Request) -> str:
    inbound = request.headers.get(REQUEST_ID_HEADER)
    if inbound and _INBOUND_REQUEST_ID.fullmatch(inbound):
        return inbound
    return str(uuid.uuid4())


async def request_context_middleware(request: Request, call_next):
    """绑定请求追踪 ID 与计时，并输出一行访问日志（不含令牌）。"""
    request.state.request_id = _resolve_request_id(request)
    request.state.request_started_at = perf_counter()

    response = await call_next(request)

    elapsed_ms = round((perf_counter() - request.state.request_started_at) * 1000, 2)
    response.headers[REQUEST_ID_HEADER] = request.state.request_id
    response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
    log = logger.warning if response.status_code >= 500 else logger.info
    log(
        "request_id=%s method=%s path=%s status=%s elapsed_ms=%s",
        request.state.request_id,
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
    )
    return response


def register_middlewares(app: FastAPI) -> None:
    """集中注册中间件。"""
    app.middleware("http")(request_context_middleware)
