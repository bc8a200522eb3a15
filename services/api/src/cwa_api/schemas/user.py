"""用户管理相关请求结构。"""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from cwa_api.models.enums import UserStatus
from cwa_api.schemas.auth import AuthUserData
from cwa_api.schemas.common import BaseSchema


class UserStatusUpdateRequest(BaseModel):
    """管理员变更账号状态请求体。"""

    status: UserStatus = Field(description="目标状态（active/inactive/suspended）。", examples=["suspended"])


class UserStatusData(BaseSchema):
    """账号状态变更结果。"""

    user: AuthUserData = Field(description="变更后的用户。")
    terminated_sessions: int = Field(description="因停用被级联终止的会话数量。")


class ActivityData(BaseSchema):
    """行为日志条目。"""

    id: UUID = Field(description="记录 ID。")
    user_id: UUID = Field(description="所属用户 ID。")
    action: str = Field(description="行为类型。")
    ip_address: str | None = Field(default=None, description="客户端 IP。")
    user_agent: str | None = Field(default=None, description="客户端 User-Agent。")
    details: dict[str, Any] | None = Field(default=None, description="附加信息。")
    created_at: datetime = Field(description="记录时间。")
