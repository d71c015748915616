"""
渲染边界

图表绘制本身不在本服务范围内，这里只定义：
- Surface: 图表挂载点，带显式的 "就绪" 信号
- ChartHandle: 一个已创建的图表，可原地更新数据或销毁
- ChartRenderer: 渲染器接口
- MemoryChartRenderer: 默认实现，图表状态保存在内存中，通过 API 输出给前端
"""

import asyncio
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

_surface_ids = itertools.count(1)


@dataclass
class Series:
    """一条带标签的数值序列"""
    label: str
    data: List[float]
    color: str
    axis: str = "y"

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "data": list(self.data), "color": self.color, "axis": self.axis}


class Surface:
    """
    图表挂载点

    渲染边界在挂载点可用时调用 mark_ready()；元素被移除时调用 detach()。
    """

    def __init__(self, name: str):
        self.surface_id = next(_surface_ids)
        self.name = name
        self.attached = True
        self._ready = asyncio.Event()

    def mark_ready(self):
        self._ready.set()

    @property
    def ready(self) -> bool:
        return self._ready.is_set()

    async def wait_ready(self, timeout: float) -> bool:
        """等待挂载点就绪，超时或已分离返回 False"""
        if not self.attached:
            return False
        if not self._ready.is_set():
            try:
                await asyncio.wait_for(self._ready.wait(), timeout)
            except asyncio.TimeoutError:
                return False
        return self.attached

    def detach(self):
        self.attached = False

    def __repr__(self) -> str:
        return f"Surface({self.name!r}, id={self.surface_id}, attached={self.attached})"


class ChartHandle(ABC):
    """已创建的图表"""

    def __init__(self, surface: Surface):
        self.surface = surface
        self.destroyed = False

    @abstractmethod
    def update(self, labels: List[str], series: List[Series], animate: bool = False):
        """原地替换标签和数据并重绘"""

    @abstractmethod
    def destroy(self):
        """释放图表占用的渲染资源"""


class ChartRenderer(ABC):
    """渲染器接口"""

    @abstractmethod
    def mount(self, surface: Surface):
        """挂载点加入视图（实现方在可用时调用 surface.mark_ready()）"""

    @abstractmethod
    def create(self, surface: Surface, labels: List[str], series: List[Series]) -> ChartHandle:
        """在挂载点上创建图表"""


# =============================================================================
# 内存渲染器
# =============================================================================

class MemoryChart(ChartHandle):
    """内存中的图表状态"""

    def __init__(self, renderer: "MemoryChartRenderer", surface: Surface, labels: List[str], series: List[Series]):
        super().__init__(surface)
        self._renderer = renderer
        self.labels = list(labels)
        self.series = list(series)
        self.updates = 0

    def update(self, labels: List[str], series: List[Series], animate: bool = False):
        if self.destroyed:
            raise RuntimeError(f"Chart on {self.surface!r} already destroyed")
        self.labels = list(labels)
        self.series = list(series)
        self.updates += 1

    def destroy(self):
        if self.destroyed:
            raise RuntimeError(f"Chart on {self.surface!r} destroyed twice")
        self.destroyed = True
        self._renderer.charts.pop(self.surface.surface_id, None)
        self._renderer.destroyed += 1

    def snapshot(self) -> Dict[str, Any]:
        return {
            "chart_id": self.surface.surface_id,
            "labels": list(self.labels),
            "series": [s.to_dict() for s in self.series],
            "updates": self.updates,
        }


class MemoryChartRenderer(ChartRenderer):
    """
    默认渲染器

    挂载点立即就绪；所有存活的图表保存在 charts 中（按 surface_id 索引）。
    """

    def __init__(self):
        self.charts: Dict[int, MemoryChart] = {}
        self.created = 0
        self.destroyed = 0

    def mount(self, surface: Surface):
        surface.mark_ready()

    def create(self, surface: Surface, labels: List[str], series: List[Series]) -> MemoryChart:
        chart = MemoryChart(self, surface, labels, series)
        self.charts[surface.surface_id] = chart
        self.created += 1
        return chart

    def snapshot(self, surface: Optional[Surface]) -> Optional[Dict[str, Any]]:
        if surface is None:
            return None
        chart = self.charts.get(surface.surface_id)
        return chart.snapshot() if chart else None
