"""
刷新协调

按固定周期驱动整条流水线：
  拉取域名列表 -> 对账域名 -> 各域名并发（检查列表 -> 对账检查 -> 并发拉取结果 -> 聚合 -> 绑定图表）

- 重入保护：上一轮仍在进行时，定时触发直接跳过（不排队）
- 保护标志在 finally 中清除，单轮异常不会卡死后续刷新
- 用户操作（增删域名/检查、启用/禁用）先校验输入，再调用后端，
  然后使缓存失效并触发一次同步
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .aggregator import aggregate, bucket_labels, query_range
from .cache import EntityCache
from .classifier import is_fine_grained
from .client import BackendClient
from .config import AppConfig, get_config
from .errors import BackendError, DashboardError, DecodeError, InputValidationError
from .fetcher import FetchOrchestrator
from .forms import build_check_payload, validate_domain_name
from .models import Check, CheckCreate, CheckStats, Domain, IntervalPoint, RawResult
from .renderer import ChartRenderer, MemoryChartRenderer, Series, Surface
from .synchronizer import (
    CHECK,
    DOMAIN,
    ElementList,
    ViewElement,
    ViewSynchronizer,
    check_series,
    describe_check,
    describe_domain,
    domain_series,
)

logger = logging.getLogger(__name__)

# 详情视图的服务端聚合粒度 -> 查询跨度
INTERVAL_SPANS = {
    "1m": timedelta(hours=1),
    "5m": timedelta(hours=24),
    "1h": timedelta(days=7),
}

# 域名图表按时段查看：粒度 -> 窗口宽度（跨度同 INTERVAL_SPANS）
PERIOD_WIDTHS = {
    "1m": timedelta(minutes=1),
    "5m": timedelta(minutes=5),
    "1h": timedelta(hours=1),
}

MSG_INVALID_FORMAT = "Error: invalid response format from server"
MSG_NO_DOMAINS = "No domains to monitor"
MSG_NO_CHECKS = "No checks"


@dataclass
class CheckDetailView:
    """打开中的检查详情视图"""
    check_id: int
    check_type: str
    interval: str
    surface: Surface
    stats: Optional[CheckStats] = None
    stats_message: Optional[str] = None
    recent_results: List[RawResult] = field(default_factory=list)
    intervals: List[IntervalPoint] = field(default_factory=list)


@dataclass
class PeriodChart:
    """域名在指定时段内的聚合图表（一次性计算，不绑定图表句柄）"""
    domain_id: int
    period: str
    since: datetime
    until: datetime
    labels: List[str]
    series: List[Series]


class DashboardState:
    """
    仪表盘状态

    包含缓存、图表绑定、渲染的元素树和打开中的详情视图。
    由 RefreshCoordinator 持有，测试可以构造相互隔离的实例。
    """

    def __init__(self, renderer: Optional[ChartRenderer] = None):
        self.cache = EntityCache()
        self.renderer = renderer or MemoryChartRenderer()
        self.synchronizer = ViewSynchronizer(self.renderer)
        self.domains = ElementList("domains")
        self.details: Dict[int, CheckDetailView] = {}
        self.check_types: Dict[int, str] = {}
        self.last_refresh_at: Optional[datetime] = None


class RefreshCoordinator:
    """
    刷新协调器

    Args:
        client: 后端客户端
        state: 仪表盘状态（默认新建）
        config: 应用配置（默认全局配置）
        clock: 返回当前 UTC 时间的函数（测试时固定）
    """

    def __init__(
        self,
        client: BackendClient,
        state: Optional[DashboardState] = None,
        config: Optional[AppConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        config = config or get_config()
        self.client = client
        self.state = state or DashboardState()
        self.orchestrator = FetchOrchestrator(client, self.state.cache, config.backend.page_size)

        self.interval = config.refresh.interval
        self.ready_timeout = config.refresh.surface_ready_timeout
        self.detail_page_size = config.backend.detail_page_size
        self.interval_page_size = config.backend.page_size
        self.period_page_size = config.backend.period_page_size
        self.window_count = config.view.window_count
        self.window_width = timedelta(seconds=config.view.window_width_seconds)
        self.trailing_offset = timedelta(seconds=config.view.trailing_offset_seconds)

        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._refreshing = False
        self._dirty = False
        self._recovering = False

    @property
    def synchronizer(self) -> ViewSynchronizer:
        return self.state.synchronizer

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    # =========================================================================
    # 刷新循环
    # =========================================================================

    async def tick(self) -> Dict[str, Any]:
        """
        执行一轮刷新

        Returns:
            {"executed": bool, ...}；上一轮未结束时跳过
        """
        if self._refreshing:
            logger.debug("Refresh skipped: previous cycle still running")
            return {"executed": False, "reason": "refresh_in_progress"}

        self._refreshing = True
        try:
            await self.refresh()
            # 刷新期间发生的用户操作，在同一保护下再同步一次
            while self._dirty:
                self._dirty = False
                await self.refresh()
            return {"executed": True}
        finally:
            self._refreshing = False

    async def request_refresh(self) -> Dict[str, Any]:
        """用户操作后请求同步；正在刷新时标记为脏，由当前轮次补做"""
        if self._refreshing:
            self._dirty = True
            return {"executed": False, "reason": "refresh_in_progress", "pending": True}
        return await self.tick()

    async def run(self):
        """
        运行刷新循环

        每隔 interval 秒触发一次 tick，单轮异常只记录日志。
        """
        logger.info(f"Starting refresh loop (interval={self.interval}s)")

        while True:
            try:
                await self.tick()
            except asyncio.CancelledError:
                logger.info("Refresh loop cancelled")
                raise
            except Exception as e:
                logger.error(f"Refresh cycle error: {e}", exc_info=True)

            await asyncio.sleep(self.interval)

    async def refresh(self):
        """同步一次：域名列表 + 各域名图表 + 打开中的详情视图"""
        state = self.state

        try:
            domains = await self.client.list_domains()
        except DecodeError as e:
            logger.warning(f"Domain list rejected: {e}")
            state.domains.message = MSG_INVALID_FORMAT
            self._recovering = True
            return
        except BackendError as e:
            logger.warning(f"Failed to load domains: {e}")
            state.domains.message = f"Failed to load domains: {e}"
            self._recovering = True
            return

        if not domains:
            self.synchronizer.clear(state.domains, MSG_NO_DOMAINS, on_remove=self._on_element_removed)
            self._close_all_details()
            await state.cache.invalidate_all()
            self._recovering = False
            state.last_refresh_at = self._clock()
            return

        if self._recovering:
            # 上一轮列表不可用，整体重建
            result = self.synchronizer.rebuild(
                state.domains, domains, DOMAIN, describe_domain,
                with_surface=True, with_children=True, on_remove=self._on_element_removed,
            )
            await state.cache.invalidate_all()
            self._recovering = False
        else:
            result = self.synchronizer.reconcile(
                state.domains, domains, DOMAIN, describe_domain,
                with_surface=True, with_children=True, on_remove=self._on_element_removed,
            )
            for domain_id in result.removed:
                await state.cache.invalidate(domain_id)

        created = set(result.created)
        outcomes = await asyncio.gather(
            *(self.refresh_domain(d.id, fresh=d.id in created) for d in domains),
            return_exceptions=True,
        )
        for domain, outcome in zip(domains, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Failed to refresh domain {domain.id}: {outcome}", exc_info=outcome)

        await self._refresh_details()
        state.last_refresh_at = self._clock()

    async def refresh_domain(self, domain_id: int, fresh: bool = False):
        """
        刷新单个域名

        Args:
            domain_id: 域名 ID
            fresh: 是否跳过缓存（域名首次渲染时）
        """
        state = self.state
        element = state.domains.get(domain_id)
        if element is None:
            return

        try:
            checks = await self.orchestrator.get_checks(domain_id, fresh=fresh)
        except DecodeError as e:
            logger.warning(f"Check list for domain {domain_id} rejected: {e}")
            element.children.message = MSG_INVALID_FORMAT
            return
        except BackendError as e:
            logger.warning(f"Failed to load checks for domain {domain_id}: {e}")
            element.children.message = f"Failed to load checks: {e}"
            return

        # 等待期间域名可能已被移除
        element = state.domains.get(domain_id)
        if element is None:
            return

        for check in checks:
            self._set_check_type(check.id, check.type)
        self.synchronizer.reconcile(
            element.children, checks, CHECK, describe_check, on_remove=self._on_element_removed,
        )
        if not checks:
            element.children.message = MSG_NO_CHECKS

        now = self._clock()
        since, until = query_range(now, self.window_count, self.window_width, self.trailing_offset)
        results = await self.orchestrator.fetch_results([c.id for c in checks], since, until)
        buckets = aggregate(
            results, False, now=now,
            window_count=self.window_count,
            window_width=self.window_width,
            trailing_offset=self.trailing_offset,
        )

        element = state.domains.get(domain_id)
        if element is None or element.surface is None:
            return
        if not await element.surface.wait_ready(self.ready_timeout):
            logger.debug(f"Domain {domain_id} chart surface not ready, skipping")
            return
        self.synchronizer.bind(DOMAIN, domain_id, element.surface, bucket_labels(buckets), domain_series(buckets))

    async def domain_period_chart(self, domain_id: int, period: str) -> PeriodChart:
        """
        按时段重新聚合域名图表

        时段截止到当前（包含未结束的窗口），每个检查最多拉取 period_page_size 条结果。
        结果只返回给调用方，下一轮刷新仍按默认窗口更新域名图表。

        Args:
            domain_id: 域名 ID
            period: 1m（最近1小时） / 5m（24小时） / 1h（7天）
        """
        if period not in PERIOD_WIDTHS:
            raise InputValidationError(f"Invalid period. Must be one of: {list(PERIOD_WIDTHS)}")

        width = PERIOD_WIDTHS[period]
        count = int(INTERVAL_SPANS[period] / width)
        now = self._clock()
        since, until = query_range(now, count, width, timedelta(0))

        results = await self.orchestrator.load_domain_results(
            domain_id, since, until, page_size=self.period_page_size,
        )
        buckets = aggregate(
            results, False, now=now,
            window_count=count,
            window_width=width,
            trailing_offset=timedelta(0),
        )
        fmt = "%m-%d %H:%M" if period == "1h" else "%H:%M"
        logger.debug(f"Domain {domain_id} period chart: {period}, {len(results)} results")
        return PeriodChart(
            domain_id=domain_id,
            period=period,
            since=since,
            until=until,
            labels=bucket_labels(buckets, fmt),
            series=domain_series(buckets),
        )

    def _set_check_type(self, check_id: int, check_type: str):
        """记录检查类型；类型变化时打开中的详情视图换用新的序列结构"""
        self.state.check_types[check_id] = check_type
        view = self.state.details.get(check_id)
        if view is not None and view.check_type != check_type:
            logger.debug(f"Check {check_id} type changed: {view.check_type} -> {check_type}")
            view.check_type = check_type
            # 序列结构不同，不能原地更新
            self.synchronizer.dispose(CHECK, check_id)

    def _on_element_removed(self, element: ViewElement):
        """元素移除前的同步钩子"""
        if element.kind == CHECK:
            self.close_check_detail(element.entity_id)
            self.state.check_types.pop(element.entity_id, None)

    # =========================================================================
    # 检查详情视图
    # =========================================================================

    async def _resolve_check_type(self, check_id: int) -> str:
        check_type = self.state.check_types.get(check_id)
        if check_type:
            return check_type
        checks = await self.client.list_all_checks()
        for check in checks:
            self.state.check_types[check.id] = check.type
        if check_id not in self.state.check_types:
            raise BackendError(f"Check {check_id} not found", status_code=404)
        return self.state.check_types[check_id]

    async def open_check_detail(self, check_id: int, interval: str = "1m") -> CheckDetailView:
        """打开（或刷新）检查详情视图"""
        if interval not in INTERVAL_SPANS:
            raise InputValidationError(f"Invalid interval. Must be one of: {list(INTERVAL_SPANS)}")

        if check_id not in self.state.details:
            check_type = await self._resolve_check_type(check_id)
        # 解析类型期间可能已被并发请求打开
        view = self.state.details.get(check_id)
        if view is None:
            view = CheckDetailView(
                check_id=check_id,
                check_type=check_type,
                interval=interval,
                surface=self.synchronizer.new_surface(f"checkChart-{check_id}"),
            )
            self.state.details[check_id] = view
        else:
            view.interval = interval

        await self._load_detail(view)
        return view

    def close_check_detail(self, check_id: int) -> bool:
        """关闭详情视图并销毁其图表"""
        view = self.state.details.pop(check_id, None)
        if view is None:
            return False
        self.synchronizer.dispose(CHECK, check_id)
        view.surface.detach()
        return True

    def _close_all_details(self):
        for check_id in list(self.state.details):
            self.close_check_detail(check_id)

    async def _refresh_details(self):
        views = list(self.state.details.values())
        if not views:
            return
        outcomes = await asyncio.gather(*(self._load_detail(v) for v in views), return_exceptions=True)
        for view, outcome in zip(views, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Failed to refresh detail view for check {view.check_id}: {outcome}")

    async def _load_stats(self, view: CheckDetailView):
        try:
            view.stats = await self.client.get_stats(view.check_id)
            view.stats_message = None
        except DecodeError as e:
            logger.warning(f"Stats for check {view.check_id} rejected: {e}")
            view.stats_message = "Error: invalid statistics format"
        except BackendError as e:
            view.stats_message = f"Failed to load statistics: {e}"

    async def _load_recent(self, view: CheckDetailView):
        try:
            page = await self.client.get_results(view.check_id, page=1, page_size=self.detail_page_size)
            view.recent_results = page.results
        except DashboardError as e:
            logger.warning(f"Failed to load recent results for check {view.check_id}: {e}")
            view.recent_results = []

    async def _load_intervals(self, view: CheckDetailView, now: datetime):
        span = INTERVAL_SPANS[view.interval]
        try:
            page = await self.client.get_intervals(
                view.check_id, view.interval, now - span, now,
                page=1, page_size=self.interval_page_size,
            )
            view.intervals = page.data
        except DashboardError as e:
            logger.warning(f"Failed to load intervals for check {view.check_id}: {e}")
            view.intervals = []

    async def _load_trailing_chart(self, view: CheckDetailView, now: datetime):
        since, until = query_range(now, self.window_count, self.window_width, self.trailing_offset)
        results = await self.orchestrator.fetch_check_results(view.check_id, since, until)
        fine_grained = is_fine_grained(view.check_type)
        buckets = aggregate(
            results, fine_grained, now=now,
            window_count=self.window_count,
            window_width=self.window_width,
            trailing_offset=self.trailing_offset,
        )

        # 等待期间视图可能已关闭
        if self.state.details.get(view.check_id) is not view:
            return
        if not await view.surface.wait_ready(self.ready_timeout):
            return
        self.synchronizer.bind(
            CHECK, view.check_id, view.surface,
            bucket_labels(buckets), check_series(buckets, fine_grained),
        )

    async def _load_detail(self, view: CheckDetailView):
        now = self._clock()
        await asyncio.gather(
            self._load_stats(view),
            self._load_recent(view),
            self._load_intervals(view, now),
            self._load_trailing_chart(view, now),
        )

    # =========================================================================
    # 用户操作
    # =========================================================================

    async def _domain_of_check(self, check_id: int) -> Optional[int]:
        domain_id = await self.state.cache.find_domain_of_check(check_id)
        if domain_id is not None:
            return domain_id
        for element in self.state.domains:
            if element.children is not None and check_id in element.children:
                return element.entity_id
        return None

    async def _invalidate_for_check(self, check_id: int) -> Optional[int]:
        domain_id = await self._domain_of_check(check_id)
        if domain_id is None:
            await self.state.cache.invalidate_all()
        else:
            await self.state.cache.invalidate(domain_id)
        return domain_id

    async def create_domain(self, name: str) -> Optional[Domain]:
        host = validate_domain_name(name)
        domain = await self.client.create_domain(host)
        logger.info(f"Created domain: {host}")
        await self.state.cache.invalidate_all()
        await self.request_refresh()
        return domain

    async def delete_domain(self, domain_id: int):
        await self.client.delete_domain(domain_id)
        logger.info(f"Deleted domain {domain_id}")
        self.synchronizer.remove_element(self.state.domains, domain_id, on_remove=self._on_element_removed)
        await self.state.cache.invalidate(domain_id)
        await self.request_refresh()

    async def create_check(self, domain_id: int, form: CheckCreate) -> Optional[Check]:
        payload = build_check_payload(form)
        check = await self.client.create_check(domain_id, payload)
        logger.info(f"Created {payload['type']} check for domain {domain_id}")
        await self.state.cache.invalidate(domain_id)
        await self.request_refresh()
        return check

    async def update_check(self, check_id: int, form: CheckCreate):
        payload = build_check_payload(form)
        await self.client.update_check(check_id, payload)
        logger.info(f"Updated check {check_id}")
        self._set_check_type(check_id, payload["type"])
        await self._invalidate_for_check(check_id)
        await self.request_refresh()

    async def delete_check(self, check_id: int):
        await self.client.delete_check(check_id)
        logger.info(f"Deleted check {check_id}")
        domain_id = await self._invalidate_for_check(check_id)
        if domain_id is not None:
            element = self.state.domains.get(domain_id)
            if element is not None and element.children is not None:
                self.synchronizer.remove_element(element.children, check_id, on_remove=self._on_element_removed)
        # 元素不在树中时仍需释放详情视图
        self.close_check_detail(check_id)
        await self.request_refresh()

    async def toggle_check(self, check_id: int, enabled: bool):
        if enabled:
            await self.client.enable_check(check_id)
        else:
            await self.client.disable_check(check_id)
        logger.info(f"{'Enabled' if enabled else 'Disabled'} check {check_id}")
        await self._invalidate_for_check(check_id)
        await self.request_refresh()
