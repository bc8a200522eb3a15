"""会话管理请求与返回结构。"""

from datetime import datetime
from uuid import UUID

from pydantic import AliasChoices, BaseModel, Field

from cwa_api.schemas.common import BaseSchema


class SessionData(BaseSchema):
    """会话视图，不含令牌原文。"""

    id: UUID = Field(description="会话 ID。")
    user_id: UUID = Field(description="所属用户 ID。")
    ip_address: str | None = Field(default=None, description="登录时客户端 IP。")
    user_agent: str | None = Field(default=None, description="登录时客户端 User-Agent。")
    status: str = Field(description="会话状态。")
    expires_at: datetime = Field(description="会话过期时间。")
    created_at: datetime | None = Field(default=None, description="登录时间。")
    current: bool = Field(default=False, description="是否为发起本次请求的会话。")


class TerminateOthersRequest(BaseModel):
    """下线其他设备请求。"""

    keep_session_id: UUID | None = Field(
        default=None,
        validation_alias=AliasChoices("keep_session_id", "currentSessionId"),
        description="需要保留的会话 ID；本人操作时缺省为当前会话。",
    )


class TerminatedData(BaseSchema):
    """批量终止结果。"""

    terminated: int = Field(description="本次被终止的会话数量。")


class SessionRevokeData(BaseSchema):
    """单个会话终止结果。"""

    session_id: UUID = Field(description="会话 ID。")
    terminated: bool = Field(description="本次调用是否改变了会话状态（已终止的会话再次终止返回 false）。")


class CleanupData(BaseSchema):
    """过期会话清理结果。"""

    expired: int = Field(description="本次被标记为过期的会话数量。")
