"""
FastAPI 应用配置

配置 CORS、异常映射、静态文件托管、路由注册。
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from ..config import get_config
from ..coordinator import RefreshCoordinator
from ..errors import BackendError, DecodeError, InputValidationError
from .routers import checks, dashboard, domains

logger = logging.getLogger(__name__)


def _register_exception_handlers(app: FastAPI):
    @app.exception_handler(InputValidationError)
    async def input_error_handler(request: Request, exc: InputValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    @app.exception_handler(DecodeError)
    async def decode_error_handler(request: Request, exc: DecodeError):
        logger.warning(f"{request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})

    @app.exception_handler(BackendError)
    async def backend_error_handler(request: Request, exc: BackendError):
        # 后端 404 原样透传，其余视为上游故障
        code = status.HTTP_404_NOT_FOUND if exc.status_code == 404 else status.HTTP_502_BAD_GATEWAY
        logger.warning(f"{request.method} {request.url.path}: backend error {exc.status_code}: {exc}")
        return JSONResponse(status_code=code, content={"detail": str(exc)})


def create_app(coordinator: Optional[RefreshCoordinator] = None) -> FastAPI:
    """
    创建 FastAPI 应用实例

    配置：
    - CORS 中间件
    - 异常映射
    - API 路由
    - 静态文件托管（前端）

    Args:
        coordinator: 刷新协调器（为空时需要通过依赖覆盖提供）
    """
    config = get_config()

    app = FastAPI(
        title="Pulse Dashboard",
        description="健康检查结果聚合与仪表盘 API",
        version="1.0.0",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json"
    )
    app.state.coordinator = coordinator

    # CORS 中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_exception_handlers(app)

    # 注册路由
    app.include_router(dashboard.router)
    app.include_router(domains.router)
    app.include_router(checks.router)

    # 静态文件托管（前端）
    if config.frontend.enabled:
        frontend_path = Path(config.frontend.path)
        if frontend_path.exists():
            app.mount("/", StaticFiles(directory=str(frontend_path), html=True), name="frontend")
            logger.info(f"Serving frontend from {frontend_path}")
        else:
            logger.warning(f"Frontend path not found: {frontend_path}")

    return app
