"""
仪表盘视图 API

输出当前渲染状态：域名列表、检查列表、图表快照。
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...coordinator import RefreshCoordinator
from ...models import ChartResponse, CheckView, DashboardResponse, DomainView, PeriodChartResponse, SeriesResponse
from ...renderer import MemoryChart
from ...synchronizer import DOMAIN, ViewSynchronizer
from ..dependencies import get_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])


def chart_snapshot(synchronizer: ViewSynchronizer, kind: str, entity_id: int) -> Optional[ChartResponse]:
    """读取实体图表的当前快照（未绑定或渲染器不支持时返回 None）"""
    handle = synchronizer.binding(kind, entity_id)
    if not isinstance(handle, MemoryChart) or handle.destroyed:
        return None
    return ChartResponse(**handle.snapshot())


def build_dashboard_response(coordinator: RefreshCoordinator) -> DashboardResponse:
    state = coordinator.state

    domains = []
    for element in state.domains:
        checks = []
        checks_message = None
        if element.children is not None:
            checks = [CheckView(id=child.entity_id, **child.fields) for child in element.children]
            checks_message = element.children.message
        domains.append(DomainView(
            id=element.entity_id,
            name=element.fields.get("name", ""),
            checks=checks,
            checks_message=checks_message,
            chart=chart_snapshot(state.synchronizer, DOMAIN, element.entity_id),
        ))

    return DashboardResponse(
        domains=domains,
        message=state.domains.message,
        last_refresh_at=state.last_refresh_at.isoformat() if state.last_refresh_at else None,
    )


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """获取仪表盘当前视图"""
    return build_dashboard_response(coordinator)


@router.get("/dashboard/domains/{domain_id}/chart", response_model=ChartResponse)
async def get_domain_chart(domain_id: int, coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """获取单个域名的图表快照"""
    chart = chart_snapshot(coordinator.synchronizer, DOMAIN, domain_id)
    if chart is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No chart for domain {domain_id}"
        )
    return chart


@router.get("/dashboard/domains/{domain_id}/period-chart", response_model=PeriodChartResponse)
async def get_domain_period_chart(
    domain_id: int,
    period: str = Query("1m", description="聚合粒度: 1m (最近1小时), 5m (24小时), 1h (7天)"),
    coordinator: RefreshCoordinator = Depends(get_coordinator),
):
    """
    按时段重新聚合域名图表

    只返回计算结果，不替换仪表盘上的域名图表。
    """
    chart = await coordinator.domain_period_chart(domain_id, period)
    logger.info(f"Period chart requested: domain={domain_id}, period={period}")
    return PeriodChartResponse(
        domain_id=chart.domain_id,
        period=chart.period,
        since=chart.since.isoformat(),
        until=chart.until.isoformat(),
        labels=chart.labels,
        series=[SeriesResponse(**s.to_dict()) for s in chart.series],
    )


@router.post("/refresh")
async def trigger_refresh(coordinator: RefreshCoordinator = Depends(get_coordinator)):
    """
    立即触发一轮刷新

    上一轮仍在进行时返回 {"executed": false, "reason": "refresh_in_progress"}。
    """
    return await coordinator.tick()
