"""错误码目录与应用异常处理注册。

同一错误码永远渲染为相同的状态码与文案，调用方无法通过响应差异
区分“邮箱不存在”与“密码错误”。
"""

from enum import StrEnum
import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from cwa_api.utils.response import error_payload

logger = logging.getLogger(__name__)

_UNPROCESSABLE = 422


class ErrorCode(StrEnum):
    """对外稳定错误码。"""

    MISSING_CREDENTIALS = "ERR_MISSING_CREDENTIALS"
    MISSING_FIELDS = "ERR_MISSING_FIELDS"
    MISSING_TOKEN = "ERR_MISSING_TOKEN"
    INVALID_CREDENTIALS = "ERR_INVALID_CREDENTIALS"
    INVALID_PASSWORD = "ERR_INVALID_PASSWORD"
    INVALID_TOKEN = "ERR_INVALID_TOKEN"
    TOKEN_EXPIRED = "ERR_TOKEN_EXPIRED"
    USER_INACTIVE = "ERR_USER_INACTIVE"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    ACCOUNT_INACTIVE = "ERR_ACCOUNT_INACTIVE"
    FORBIDDEN = "ERR_FORBIDDEN"
    USER_NOT_FOUND = "ERR_USER_NOT_FOUND"
    SESSION_NOT_FOUND = "ERR_SESSION_NOT_FOUND"
    NOT_FOUND = "ERR_NOT_FOUND"
    USER_EXISTS = "ERR_USER_EXISTS"
    VALIDATION = "ERR_VALIDATION"
    SERVER = "ERR_SERVER"


_ERROR_CATALOG: dict[ErrorCode, tuple[int, str]] = {
    ErrorCode.MISSING_CREDENTIALS: (status.HTTP_400_BAD_REQUEST, "邮箱和密码不能为空。"),
    ErrorCode.MISSING_FIELDS: (status.HTTP_400_BAD_REQUEST, "缺少必填字段。"),
    ErrorCode.MISSING_TOKEN: (status.HTTP_400_BAD_REQUEST, "缺少令牌。"),
    ErrorCode.INVALID_CREDENTIALS: (status.HTTP_401_UNAUTHORIZED, "邮箱或密码错误。"),
    ErrorCode.INVALID_PASSWORD: (status.HTTP_401_UNAUTHORIZED, "当前密码不正确。"),
    ErrorCode.INVALID_TOKEN: (status.HTTP_401_UNAUTHORIZED, "令牌无效或已过期。"),
    ErrorCode.TOKEN_EXPIRED: (status.HTTP_401_UNAUTHORIZED, "访问令牌已过期。"),
    ErrorCode.USER_INACTIVE: (status.HTTP_401_UNAUTHORIZED, "用户账号不可用。"),
    ErrorCode.UNAUTHORIZED: (status.HTTP_401_UNAUTHORIZED, "未登录或登录状态已失效。"),
    ErrorCode.ACCOUNT_INACTIVE: (status.HTTP_403_FORBIDDEN, "账号未激活或已被停用。"),
    ErrorCode.FORBIDDEN: (status.HTTP_403_FORBIDDEN, "无权限访问该资源。"),
    ErrorCode.USER_NOT_FOUND: (status.HTTP_404_NOT_FOUND, "用户不存在。"),
    ErrorCode.SESSION_NOT_FOUND: (status.HTTP_404_NOT_FOUND, "会话不存在。"),
    ErrorCode.NOT_FOUND: (status.HTTP_404_NOT_FOUND, "请求资源不存在。"),
    ErrorCode.USER_EXISTS: (status.HTTP_409_CONFLICT, "该邮箱已注册。"),
    # 缺失或格式不合法的字段一律按 400 返回。
    ErrorCode.VALIDATION: (status.HTTP_400_BAD_REQUEST, "请求参数校验失败。"),
    ErrorCode.SERVER: (status.HTTP_500_INTERNAL_SERVER_ERROR, "服务器内部错误，请稍后重试。"),
}

_CODE_BY_HTTP_STATUS = {
    status.HTTP_400_BAD_REQUEST: ErrorCode.MISSING_FIELDS,
    status.HTTP_401_UNAUTHORIZED: ErrorCode.UNAUTHORIZED,
    status.HTTP_403_FORBIDDEN: ErrorCode.FORBIDDEN,
    status.HTTP_404_NOT_FOUND: ErrorCode.NOT_FOUND,
    status.HTTP_409_CONFLICT: ErrorCode.USER_EXISTS,
    _UNPROCESSABLE: ErrorCode.VALIDATION,
}


class AuthError(Exception):
    """认证核心的业务失败，携带稳定错误码。"""

    def __init__(self, code: ErrorCode, *, details: dict[str, Any] | None = None) -> None:
        self.code = code
        self.status_code, self.message = _ERROR_CATALOG[code]
        self.details = details or {}
        super().__init__(f"{code}: {self.message}")


def describe_error(code: ErrorCode) -> tuple[int, str]:
    """返回错误码对应的状态码与文案。"""
    return _ERROR_CATALOG[code]


async def auth_error_handler(request: Request, exc: AuthError):
    """将业务失败包装为标准错误结构。"""
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(
            request,
            code=exc.code,
            message=exc.message,
            details={"status_code": exc.status_code, **exc.details},
        ),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    """将协议异常统一包装为标准错误结构。"""
    code = _CODE_BY_HTTP_STATUS.get(exc.status_code, ErrorCode.SERVER)
    _, message = _ERROR_CATALOG[code]
    details: dict[str, Any] = {"status_code": exc.status_code}
    if isinstance(exc.detail, str) and exc.detail:
        details["reason"] = exc.detail
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(request, code=code, message=message, details=details),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """统一处理请求参数校验错误。"""
    normalized_errors = [
        {
            "field": ".".join(str(item) for item in err.get("loc", []) if item != "body"),
            "message": err.get("msg"),
            "type": err.get("type"),
        }
        for err in exc.errors()
    ]
    status_code, message = _ERROR_CATALOG[ErrorCode.VALIDATION]
    return JSONResponse(
        status_code=status_code,
        content=error_payload(
            request,
            code=ErrorCode.VALIDATION,
            message=message,
            details={"status_code": status_code, "errors": normalized_errors},
        ),
    )


async def unexpected_exception_handler(request: Request, exc: Exception):
    """处理未捕获异常，记录完整堆栈，避免内部细节泄露给客户端。"""
    logger.exception(
        "unhandled error request_id=%s path=%s",
        getattr(request.state, "request_id", None),
        request.url.path,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(
            request,
            code=ErrorCode.SERVER,
            message=_ERROR_CATALOG[ErrorCode.SERVER][1],
            details={"status_code": status.HTTP_500_INTERNAL_SERVER_ERROR},
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """集中注册异常处理器。"""
    app.exception_handler(AuthError)(auth_error_handler)
    app.exception_handler(HTTPException)(http_exception_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(unexpected_exception_handler)
