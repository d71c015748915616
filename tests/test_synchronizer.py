"""
单元测试：视图同步

测试覆盖：
- 图表绑定：同一挂载点原地更新，挂载点变化时先销毁再创建
- 过期挂载点上的数据被丢弃
- 对账：元素身份稳定，只修补变化字段
- 删除时销毁钩子恰好调用一次
- 挂载点就绪信号
"""

import asyncio
import sys
from pathlib import Path

import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pulse_dashboard.models import Check, CheckParams, Domain
from pulse_dashboard.renderer import ChartRenderer, MemoryChartRenderer, Series, Surface
from pulse_dashboard.synchronizer import (
    CHECK,
    DOMAIN,
    ElementList,
    ViewSynchronizer,
    check_series,
    describe_check,
    describe_domain,
)
from pulse_dashboard.aggregator import aggregate

from conftest import NOW

LABELS = ["12:00", "12:01"]


def series(value: float):
    return [Series("Success", [value, value], "green")]


@pytest.fixture
def renderer():
    return MemoryChartRenderer()


@pytest.fixture
def sync(renderer):
    return ViewSynchronizer(renderer)


class TestBinding:
    """图表绑定生命周期"""

    def test_create_then_update_in_place(self, sync, renderer):
        """测试：第二次绑定原地更新，不重新创建"""
        surface = sync.new_surface("domainChart-1")

        first = sync.bind(DOMAIN, 1, surface, LABELS, series(1))
        second = sync.bind(DOMAIN, 1, surface, LABELS, series(2))

        assert first is second
        assert renderer.created == 1
        assert second.updates == 1
        assert second.series[0].data == [2, 2]

    def test_surface_change_recreates(self, sync, renderer):
        """测试：挂载点变化时旧图表先销毁"""
        old_surface = sync.new_surface("a")
        new_surface = sync.new_surface("b")

        old = sync.bind(DOMAIN, 1, old_surface, LABELS, series(1))
        new = sync.bind(DOMAIN, 1, new_surface, LABELS, series(1))

        assert old is not new
        assert old.destroyed
        assert renderer.created == 2
        assert renderer.destroyed == 1
        assert list(renderer.charts) == [new_surface.surface_id]

    def test_detached_surface_discards_data(self, sync, renderer):
        surface = sync.new_surface("a")
        surface.detach()

        assert sync.bind(DOMAIN, 1, surface, LABELS, series(1)) is None
        assert sync.bind(DOMAIN, 2, None, LABELS, series(1)) is None
        assert renderer.created == 0

    def test_dispose_exactly_once(self, sync, renderer):
        surface = sync.new_surface("a")
        sync.bind(CHECK, 5, surface, LABELS, series(1))

        assert sync.dispose(CHECK, 5) is True
        assert sync.dispose(CHECK, 5) is False
        assert renderer.destroyed == 1
        assert sync.binding(CHECK, 5) is None

    def test_kinds_are_separate(self, sync):
        sync.bind(DOMAIN, 1, sync.new_surface("d"), LABELS, series(1))
        sync.bind(CHECK, 1, sync.new_surface("c"), LABELS, series(1))

        sync.dispose_all(CHECK)

        assert sync.bound_ids(DOMAIN) == [1]
        assert sync.bound_ids(CHECK) == []


class TestReconcile:
    """列表对账"""

    def test_identity_stable_across_refresh(self, sync):
        """测试：未变化的实体保持同一个元素和挂载点"""
        domains = ElementList("domains")
        entities = [Domain(id=1, name="a.com"), Domain(id=2, name="b.com")]

        first = sync.reconcile(domains, entities, DOMAIN, describe_domain, with_surface=True)
        element = domains.get(1)
        surface = element.surface
        second = sync.reconcile(domains, entities, DOMAIN, describe_domain, with_surface=True)

        assert first.created == [1, 2]
        assert second.created == second.updated == second.removed == []
        assert domains.get(1) is element
        assert domains.get(1).surface is surface

    def test_patch_changed_fields(self, sync):
        checks = ElementList("checks")
        check = Check(id=11, type="http", enabled=True, interval_seconds=60)
        sync.reconcile(checks, [check], CHECK, describe_check)
        element = checks.get(11)

        result = sync.reconcile(checks, [check.model_copy(update={"enabled": False})], CHECK, describe_check)

        assert result.updated == [11]
        assert checks.get(11) is element
        assert element.fields["status_label"] == "Disabled"

    def test_removed_element_disposed_once(self, sync, renderer):
        """测试：删除的域名先调用钩子，再销毁图表并分离挂载点"""
        domains = ElementList("domains")
        removed = []
        sync.reconcile(
            domains, [Domain(id=1, name="a.com"), Domain(id=2, name="b.com")],
            DOMAIN, describe_domain, with_surface=True, with_children=True,
        )
        sync.reconcile(domains.get(1).children, [Check(id=11, type="tcp")], CHECK, describe_check)
        surface = domains.get(1).surface
        sync.bind(DOMAIN, 1, surface, LABELS, series(1))

        result = sync.reconcile(
            domains, [Domain(id=2, name="b.com")], DOMAIN, describe_domain,
            with_surface=True, with_children=True,
            on_remove=lambda e: removed.append((e.kind, e.entity_id, sync.binding(e.kind, e.entity_id) is not None)),
        )

        assert result.removed == [1]
        assert domains.ids() == [2]
        # 子元素先于父元素，钩子调用时图表仍存活
        assert removed == [(CHECK, 11, False), (DOMAIN, 1, True)]
        assert renderer.destroyed == 1
        assert not surface.attached

    def test_clear_sets_message(self, sync):
        domains = ElementList("domains")
        sync.reconcile(domains, [Domain(id=1, name="a.com")], DOMAIN, describe_domain, with_surface=True)

        sync.clear(domains, "No domains to monitor")

        assert len(domains) == 0
        assert domains.message == "No domains to monitor"

    def test_reconcile_clears_message(self, sync):
        domains = ElementList("domains")
        domains.message = "Failed to load domains"

        sync.reconcile(domains, [Domain(id=1, name="a.com")], DOMAIN, describe_domain)

        assert domains.message is None

    def test_rebuild_replaces_elements(self, sync):
        domains = ElementList("domains")
        sync.reconcile(domains, [Domain(id=1, name="a.com")], DOMAIN, describe_domain, with_surface=True)
        old = domains.get(1)

        result = sync.rebuild(domains, [Domain(id=1, name="a.com")], DOMAIN, describe_domain, with_surface=True)

        assert result.created == [1]
        assert domains.get(1) is not old
        assert not old.surface.attached


class TestSurface:
    """挂载点就绪信号"""

    @pytest.mark.asyncio
    async def test_wait_ready_after_mark(self):
        surface = Surface("x")
        asyncio.get_running_loop().call_later(0.01, surface.mark_ready)

        assert await surface.wait_ready(1.0) is True

    @pytest.mark.asyncio
    async def test_wait_ready_timeout(self):
        surface = Surface("x")
        assert await surface.wait_ready(0.01) is False

    @pytest.mark.asyncio
    async def test_detached_never_ready(self):
        surface = Surface("x")
        surface.mark_ready()
        surface.detach()
        assert await surface.wait_ready(1.0) is False

    @pytest.mark.asyncio
    async def test_custom_renderer_mount(self):
        """测试：渲染器延迟就绪时，绑定等待就绪信号"""

        class DeferredRenderer(ChartRenderer):
            def __init__(self):
                self.inner = MemoryChartRenderer()
                self.mounted = []

            def mount(self, surface):
                self.mounted.append(surface)

            def create(self, surface, labels, series):
                return self.inner.create(surface, labels, series)

        renderer = DeferredRenderer()
        surface = ViewSynchronizer(renderer).new_surface("d")

        assert renderer.mounted == [surface]
        assert not surface.ready
        assert await surface.wait_ready(0.01) is False
        renderer.mounted[0].mark_ready()
        assert await surface.wait_ready(0.01) is True


def test_describe_check():
    check = Check(
        id=1, type="tcp", enabled=True, interval_seconds=30,
        params=CheckParams(port=443), realtime_mode=True,
    )
    assert describe_check(check) == {
        "type": "tcp",
        "status_label": "Enabled",
        "details": "Interval: 30s | Port: 443 | Realtime",
    }


def test_check_series():
    buckets = aggregate([], True, now=NOW)

    assert [s.label for s in check_series(buckets, True)] == ["2xx", "4xx", "5xx", "Timeout", "Latency (ms)"]
    assert [s.label for s in check_series(buckets, False)] == ["Success", "Failure", "Latency (ms)"]
    assert check_series(buckets, False)[-1].axis == "y1"
