"""用户会话管理、账号状态与行为日志接口。"""

from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Request

from cwa_api.dependencies import get_auth_context, get_auth_service, get_client_info
from cwa_api.schemas.common import ErrorResponse, SuccessResponse
from cwa_api.schemas.session import SessionData, TerminatedData, TerminateOthersRequest
from cwa_api.schemas.user import ActivityData, UserStatusData, UserStatusUpdateRequest
from cwa_api.services.auth_flow import AuthContext, AuthService, ClientInfo
from cwa_api.utils.response import success

router = APIRouter(prefix="/users", tags=["users"])

_ACCESS_ERRORS = {401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}}


@router.get(
    "/{user_id}/sessions",
    summary="查询有效会话",
    description="列出用户当前有效的登录会话（设备），最新登录在前。本人或管理员可查。",
    response_model=SuccessResponse[list[SessionData]],
    responses=_ACCESS_ERRORS,
)
def list_sessions(
    user_id: UUID,
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
):
    items = service.list_sessions(auth, user_id)
    return success(request, items, meta={"total": len(items)})


@router.post(
    "/{user_id}/sessions/terminate-others",
    summary="下线其他设备",
    description="终止用户除保留会话外的全部有效会话。本人操作且未指定时保留当前会话。",
    response_model=SuccessResponse[TerminatedData],
    responses=_ACCESS_ERRORS,
)
def terminate_other_sessions(
    user_id: UUID,
    request: Request,
    payload: TerminateOthersRequest | None = Body(default=None),
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    keep_session_id = payload.keep_session_id if payload else None
    count = service.revoke_other_sessions(auth, user_id, keep_session_id=keep_session_id, client=client)
    return success(request, {"terminated": count})


@router.delete(
    "/{user_id}/sessions",
    summary="下线全部设备",
    description="终止用户全部有效会话（包括当前会话）。",
    response_model=SuccessResponse[TerminatedData],
    responses=_ACCESS_ERRORS,
)
def terminate_all_sessions(
    user_id: UUID,
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    count = service.revoke_all_sessions(auth, user_id, client=client)
    return success(request, {"terminated": count})


@router.patch(
    "/{user_id}/status",
    summary="变更账号状态",
    description="管理员启用、停用或冻结账号；非 active 状态会立即终止该用户全部会话。",
    response_model=SuccessResponse[UserStatusData],
    responses={**_ACCESS_ERRORS, 404: {"model": ErrorResponse}},
)
def update_user_status(
    user_id: UUID,
    payload: UserStatusUpdateRequest,
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    user, terminated = service.set_user_status(auth, user_id, payload.status, client=client)
    return success(request, {"user": user, "terminated_sessions": terminated})


@router.get(
    "/{user_id}/activities",
    summary="查询行为日志",
    description="按时间倒序分页查询用户的认证行为日志，可按行为类型过滤。",
    response_model=SuccessResponse[list[ActivityData]],
    responses=_ACCESS_ERRORS,
)
def list_activities(
    user_id: UUID,
    request: Request,
    action: str | None = Query(default=None, max_length=32, description="行为类型过滤。"),
    page: int = Query(default=1, ge=1, description="页码（从 1 开始）。"),
    page_size: int = Query(default=50, ge=1, le=200, description="每页条数。"),
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
):
    items, total = service.list_activities(auth, user_id, action=action, page=page, page_size=page_size)
    return success(request, items, meta={"page": page, "page_size": page_size, "total": total})
