"""
检查管理 API

更新、删除、启用/禁用检查，以及检查详情视图（统计 + 最近结果 + 趋势）。
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...coordinator import CheckDetailView, RefreshCoordinator
from ...models import CheckCreate, CheckDetailResponse
from ...synchronizer import CHECK
from ..dependencies import get_coordinator
from .dashboard import chart_snapshot

router = APIRouter(prefix="/api/checks", tags=["checks"])


def build_detail_response(coordinator: RefreshCoordinator, view: CheckDetailView) -> CheckDetailResponse:
    response = CheckDetailResponse(
        check_id=view.check_id,
        type=view.check_type,
        interval=view.interval,
        stats_message=view.stats_message,
        recent_results=view.recent_results,
        intervals=view.intervals,
        chart=chart_snapshot(coordinator.synchronizer, CHECK, view.check_id),
    )
    if view.stats is not None:
        response.total_results = view.stats.total_results
        response.avg_latency = view.stats.latency_stats.avg
        response.p95_latency = view.stats.latency_stats.p95
        response.success_rate = view.stats.success_rate
    return response


@router.put("/{check_id}")
async def update_check(
    check_id: int,
    data: CheckCreate,
    coordinator: RefreshCoordinator = Depends(get_coordinator),
):
    """更新检查配置"""
    await coordinator.update_check(check_id, data)
    return {"success": True, "message": f"Check {check_id} updated"}


@router.delete("/{check_id}")
async def delete_check(check_id: int, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """删除检查"""
    await coordinator.delete_check(check_id)
    return {"success": True, "message": f"Check {check_id} deleted"}


@router.post("/{check_id}/enable")
async def enable_check(check_id: int, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    await coordinator.toggle_check(check_id, True)
    return {"success": True, "enabled": True}


@router.post("/{check_id}/disable")
async def disable_check(check_id: int, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    await coordinator.toggle_check(check_id, False)
    return {"success": True, "enabled": False}


@router.get("/{check_id}/detail", response_model=CheckDetailResponse)
async def get_check_detail(
    check_id: int,
    interval: str = Query("1m", description="聚合粒度: 1m (最近1小时), 5m (24小时), 1h (7天)"),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
):
    """
    打开检查详情

    详情视图保持打开，后续每轮刷新都会更新其图表，直到显式关闭或检查被删除。
    """
    view = await coordinator.open_check_detail(check_id, interval)
    return build_detail_response(coordinator, view)


@router.delete("/{check_id}/detail")
async def close_check_detail(check_id: int, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """关闭检查详情并释放其图表"""
    if not coordinator.close_check_detail(check_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No open detail view for check {check_id}"
        )
    return {"success": True}
