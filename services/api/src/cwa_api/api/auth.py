"""认证接口。"""

from fastapi import APIRouter, Depends, Request, status

from cwa_api.dependencies import get_auth_context, get_auth_service, get_bearer_token, get_client_info
from cwa_api.schemas.auth import (
    AuthLoginRequest,
    AuthRefreshData,
    AuthRefreshRequest,
    AuthRegisterRequest,
    AuthTokenData,
    AuthUserData,
    ChangePasswordData,
    ChangePasswordRequest,
)
from cwa_api.schemas.common import ErrorResponse, MessageData, SuccessResponse
from cwa_api.services.auth_flow import AuthContext, AuthResult, AuthService, ClientInfo
from cwa_api.utils.response import success

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_payload(result: AuthResult) -> dict:
    return {
        "user": result.user,
        "token": result.token,
        "refresh_token": result.refresh_token,
        "expires_at": result.expires_at,
        "session_id": result.session_id,
    }


@router.post(
    "/login",
    summary="邮箱密码登录",
    description="校验邮箱与密码，签发访问令牌与刷新令牌，并为本设备建立会话。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthTokenData],
    responses={
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def login(
    payload: AuthLoginRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """登录并建立会话。"""
    result = service.login(payload.email, payload.password, client=client)
    return success(request, _token_payload(result))


@router.post(
    "/register",
    summary="注册账号",
    description="创建普通用户账号（角色固定为 user）并直接登录。",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse[AuthTokenData],
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def register(
    payload: AuthRegisterRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    result = service.register(payload.email, payload.password, payload.name, client=client)
    return success(request, _token_payload(result))


@router.post(
    "/refresh",
    summary="刷新令牌",
    description="使用刷新令牌换取新的令牌对。刷新令牌一次性使用，旧令牌重放会导致会话被终止。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[AuthRefreshData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def refresh(
    payload: AuthRefreshRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    result = service.refresh(payload.refresh_token, client=client)
    return success(
        request,
        {"token": result.token, "refresh_token": result.refresh_token, "expires_at": result.expires_at},
    )


@router.post(
    "/logout",
    summary="登出当前设备",
    description="终止访问令牌所属会话，不影响同一用户的其他设备。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[MessageData],
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def logout(
    request: Request,
    token: str | None = Depends(get_bearer_token),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    """登出幂等，会话不存在同样返回成功。"""
    service.logout(token, client=client)
    return success(request, {"message": "已登出。"})


@router.get(
    "/me",
    summary="获取当前用户",
    description="返回访问令牌对应的用户资料。",
    response_model=SuccessResponse[AuthUserData],
    responses={401: {"model": ErrorResponse}},
)
def me(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
):
    return success(request, service.get_profile(auth), meta={"session_id": str(auth.session_id)})


@router.post(
    "/change-password",
    summary="修改密码",
    description="校验当前密码后更新口令，并终止本用户的其他会话（当前会话保留）。",
    response_model=SuccessResponse[ChangePasswordData],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def change_password(
    payload: ChangePasswordRequest,
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    service: AuthService = Depends(get_auth_service),
    client: ClientInfo = Depends(get_client_info),
):
    terminated = service.change_password(auth, payload.current_password, payload.new_password, client=client)
    return success(request, {"message": "密码已更新。", "terminated_sessions": terminated})
