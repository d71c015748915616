"""
依赖注入模块

提供 FastAPI 依赖项。
"""

from fastapi import HTTPException, Request, status

from ..coordinator import RefreshCoordinator


async def get_coordinator(request: Request) -> RefreshCoordinator:
    """获取应用持有的刷新协调器"""
    coordinator = getattr(request.app.state, "coordinator", None)
    if coordinator is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dashboard not initialized"
        )
    return coordinator
