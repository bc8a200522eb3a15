"""健康检查接口。"""

from sqlalchemy import text
from sqlalchemy.orm import Session

from fastapi import APIRouter, Depends, Request, status

from cwa_api.core.security import TokenService
from cwa_api.db.session import get_db
from cwa_api.dependencies import get_token_service
from cwa_api.schemas.common import ErrorResponse, HealthStatusData, SuccessResponse
from cwa_api.utils.response import success

router = APIRouter(prefix="/health", tags=["health"])


@router.get(
    "/live",
    summary="存活探针",
    description="用于容器编排系统检测服务进程是否存活。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
)
def live(request: Request):
    """仅表示进程存活，不校验外部依赖。"""
    return success(request, {"status": "ok"})


@router.get(
    "/ready",
    summary="就绪探针",
    description="检测数据库连通性与令牌签名配置，二者就绪才对外提供认证能力。",
    status_code=status.HTTP_200_OK,
    response_model=SuccessResponse[HealthStatusData],
    responses={500: {"model": ErrorResponse}},
)
def ready(
    request: Request,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    # 令牌服务在依赖解析阶段构造，签名密钥缺失时直接失败。
    db.execute(text("select 1"))
    return success(request, {"status": "ready"}, meta={"jwt_algorithm": tokens.algorithm})
