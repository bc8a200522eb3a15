"""会话接口。"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request

from cwa_api.dependencies import get_auth_context, get_auth_service, get_client_info
from cwa_api.schemas.common import ErrorResponse, SuccessResponse
from cwa_api.schemas.session import CleanupData, SessionRevokeData
from cwa_api.services.auth_flow import AuthContext, AuthService, ClientInfo
from cwa_api.utils.response import success

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.delete(
    "/{session_id}",
    summary="终止会话",
    description="强制下线指定会话。会话所属用户本人或管理员可操作，重复终止不报错。",
    response_model=SuccessResponse[SessionRevokeData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def revoke_session(
    session_id: UUID,
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    terminated = service.revoke_session(auth, session_id, client=client)
    return success(request, {"session_id": session_id, "terminated": terminated})


@router.post(
    "/cleanup",
    summary="清理过期会话",
    description="将已过期但仍为 active 的会话标记为 expired。仅管理员可调用，后台清理任务会周期执行同一逻辑。",
    response_model=SuccessResponse[CleanupData],
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def cleanup_sessions(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
):
    return success(request, {"expired": service.cleanup_expired_sessions(auth)})
