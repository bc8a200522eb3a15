"""认证接口请求与返回结构。

请求字段允许缺省，缺失字段由认证服务统一返回 ERR_MISSING_* 错误码，
校验失败同样按 400 返回，而不是框架默认的 422。
"""

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from cwa_api.schemas.common import BaseSchema


class AuthLoginRequest(BaseModel):
    """邮箱密码登录请求。"""

    email: str | None = Field(default=None, max_length=256, description="登录邮箱。", examples=["alice@example.com"])
    password: str | None = Field(default=None, max_length=128, description="登录密码。", examples=["Secret123!"])


class AuthRegisterRequest(BaseModel):
    """注册请求，角色固定为 user，不接受调用方指定。"""

    email: str | None = Field(
        default=None,
        max_length=256,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        description="登录邮箱。",
        examples=["alice@example.com"],
    )
    password: str | None = Field(default=None, max_length=128, description="登录密码。", examples=["Secret123!"])
    name: str | None = Field(default=None, max_length=128, description="展示名。", examples=["Alice"])


class AuthRefreshRequest(BaseModel):
    """刷新令牌请求。"""

    refresh_token: str | None = Field(
        default=None,
        validation_alias=AliasChoices("refresh_token", "refreshToken"),
        description="登录或上次刷新时获得的刷新令牌。",
    )


class ChangePasswordRequest(BaseModel):
    """修改密码请求。"""

    current_password: str | None = Field(
        default=None,
        max_length=128,
        validation_alias=AliasChoices("current_password", "currentPassword"),
        description="当前密码。",
    )
    new_password: str | None = Field(
        default=None,
        max_length=128,
        validation_alias=AliasChoices("new_password", "newPassword"),
        description="新密码。",
    )


class AuthUserData(BaseSchema):
    """对外用户视图（不含口令）。"""

    id: UUID = Field(description="用户 ID。")
    email: str = Field(description="登录邮箱。")
    name: str = Field(description="展示名。")
    role: str = Field(description="角色（admin/user）。")
    status: str = Field(description="账号状态（active/inactive/suspended）。")
    last_login_at: datetime | None = Field(default=None, description="最近一次登录时间。")
    created_at: datetime | None = Field(default=None, description="创建时间。")


class AuthTokenData(BaseSchema):
    """登录/注册结果。"""

    user: AuthUserData = Field(description="当前用户。")
    token: str = Field(description="访问令牌。")
    refresh_token: str = Field(description="刷新令牌。")
    expires_at: datetime = Field(description="会话过期时间（UTC），即刷新令牌可用截止时间。")
    session_id: UUID = Field(description="本次登录对应的会话 ID。")


class AuthRefreshData(BaseSchema):
    """刷新结果。"""

    token: str = Field(description="新的访问令牌。")
    refresh_token: str = Field(description="新的刷新令牌，旧刷新令牌随即失效。")
    expires_at: datetime = Field(description="会话新的过期时间（UTC）。")


class ChangePasswordData(BaseSchema):
    """修改密码结果。"""

    message: str = Field(description="操作结果提示。")
    terminated_sessions: int = Field(description="被终止的其他会话数量。")
