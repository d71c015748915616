"""
视图同步

负责两件事：
1. 图表绑定生命周期：每个实体 id 最多一个存活的图表句柄，
   刷新时原地更新数据（无动画），挂载点变化时先销毁旧句柄再创建
2. 列表对账：按实体 id 对比当前渲染的元素与后端列表，
   只删除消失的、只修补已存在元素的显示字段、只追加新元素

实体被删除时，销毁钩子在移除元素之前同步调用，保证每个图表句柄恰好销毁一次。
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from .models import Bucket, Check
from .renderer import ChartHandle, ChartRenderer, Series, Surface

logger = logging.getLogger(__name__)

DOMAIN = "domain"
CHECK = "check"

# 序列颜色
COLOR_SUCCESS = "rgb(39, 174, 96)"
COLOR_FAILURE = "rgb(231, 76, 60)"
COLOR_CLIENT_ERROR = "rgb(241, 196, 15)"
COLOR_TIMEOUT = "rgb(149, 165, 166)"
COLOR_LATENCY = "rgb(102, 126, 234)"


@dataclass
class ViewElement:
    """渲染列表中的一个元素"""
    kind: str
    entity_id: int
    fields: Dict[str, Any] = field(default_factory=dict)
    surface: Optional[Surface] = None
    children: Optional["ElementList"] = None


class ElementList:
    """有序的元素列表（按 entity_id 索引）"""

    def __init__(self, name: str):
        self.name = name
        self.message: Optional[str] = None
        self._elements: Dict[int, ViewElement] = {}

    def get(self, entity_id: int) -> Optional[ViewElement]:
        return self._elements.get(entity_id)

    def ids(self) -> List[int]:
        return list(self._elements)

    def append(self, element: ViewElement):
        self._elements[element.entity_id] = element

    def pop(self, entity_id: int) -> Optional[ViewElement]:
        return self._elements.pop(entity_id, None)

    def __contains__(self, entity_id: int) -> bool:
        return entity_id in self._elements

    def __iter__(self) -> Iterator[ViewElement]:
        return iter(list(self._elements.values()))

    def __len__(self) -> int:
        return len(self._elements)


@dataclass
class ReconcileResult:
    """对账结果"""
    created: List[int] = field(default_factory=list)
    updated: List[int] = field(default_factory=list)
    removed: List[int] = field(default_factory=list)


RemoveHook = Callable[[ViewElement], None]


class ViewSynchronizer:
    """
    视图同步器

    持有所有图表绑定：{kind: {entity_id: ChartHandle}}。
    """

    def __init__(self, renderer: ChartRenderer):
        self.renderer = renderer
        self._bindings: Dict[str, Dict[int, ChartHandle]] = {DOMAIN: {}, CHECK: {}}

    # =========================================================================
    # 绑定生命周期
    # =========================================================================

    def binding(self, kind: str, entity_id: int) -> Optional[ChartHandle]:
        return self._bindings[kind].get(entity_id)

    def bound_ids(self, kind: str) -> List[int]:
        return list(self._bindings[kind])

    def new_surface(self, name: str) -> Surface:
        """创建挂载点并交给渲染器挂载"""
        surface = Surface(name)
        self.renderer.mount(surface)
        return surface

    def bind(
        self,
        kind: str,
        entity_id: int,
        surface: Optional[Surface],
        labels: List[str],
        series: List[Series],
    ) -> Optional[ChartHandle]:
        """
        将数据绑定到实体的图表

        - 挂载点不存在或已分离：丢弃这次数据（过期响应），返回 None
        - 已绑定且挂载点相同：原地更新，无动画
        - 已绑定但挂载点不同：销毁旧句柄后重新创建
        - 未绑定：创建
        """
        if surface is None or not surface.attached:
            logger.debug(f"Discarding stale {kind} chart data for {entity_id}: surface gone")
            return None

        table = self._bindings[kind]
        handle = table.get(entity_id)
        if handle is not None:
            if handle.surface is surface and not handle.destroyed:
                handle.update(labels, series, animate=False)
                return handle
            logger.debug(f"Replacing stale {kind} chart for {entity_id}")
            self.dispose(kind, entity_id)

        handle = self.renderer.create(surface, labels, series)
        table[entity_id] = handle
        return handle

    def dispose(self, kind: str, entity_id: int) -> bool:
        """销毁实体的图表（恰好一次，未绑定时不做任何事）"""
        handle = self._bindings[kind].pop(entity_id, None)
        if handle is None:
            return False
        if not handle.destroyed:
            handle.destroy()
        return True

    def dispose_all(self, kind: Optional[str] = None):
        kinds = [kind] if kind else list(self._bindings)
        for k in kinds:
            for entity_id in list(self._bindings[k]):
                self.dispose(k, entity_id)

    # =========================================================================
    # 列表对账
    # =========================================================================

    def _dispose_element(self, element: ViewElement, on_remove: Optional[RemoveHook]):
        if element.children is not None:
            for child in element.children:
                self._dispose_element(child, on_remove)
        if on_remove is not None:
            on_remove(element)
        if element.surface is not None:
            self.dispose(element.kind, element.entity_id)
            element.surface.detach()

    def remove_element(
        self,
        element_list: ElementList,
        entity_id: int,
        on_remove: Optional[RemoveHook] = None,
    ) -> bool:
        """销毁并移除单个元素"""
        element = element_list.get(entity_id)
        if element is None:
            return False
        self._dispose_element(element, on_remove)
        element_list.pop(entity_id)
        return True

    def reconcile(
        self,
        element_list: ElementList,
        entities: Iterable[Any],
        kind: str,
        render: Callable[[Any], Dict[str, Any]],
        with_surface: bool = False,
        with_children: bool = False,
        on_remove: Optional[RemoveHook] = None,
    ) -> ReconcileResult:
        """
        按实体 id 对账

        Args:
            element_list: 当前渲染的列表
            entities: 后端返回的实体（需有 id 属性）
            kind: 元素类型（DOMAIN / CHECK）
            render: 实体 -> 显示字段
            with_surface: 新元素是否带图表挂载点
            with_children: 新元素是否带子列表
            on_remove: 元素移除前的同步钩子
        """
        result = ReconcileResult()
        entities = list(entities)
        wanted = {e.id for e in entities}

        for entity_id in element_list.ids():
            if entity_id not in wanted:
                self.remove_element(element_list, entity_id, on_remove)
                result.removed.append(entity_id)

        for entity in entities:
            fields = render(entity)
            element = element_list.get(entity.id)
            if element is not None:
                if element.fields != fields:
                    element.fields.update(fields)
                    result.updated.append(entity.id)
                continue

            element = ViewElement(kind=kind, entity_id=entity.id, fields=dict(fields))
            if with_surface:
                element.surface = self.new_surface(f"{kind}Chart-{entity.id}")
            if with_children:
                element.children = ElementList(f"{kind}-{entity.id}-children")
            element_list.append(element)
            result.created.append(entity.id)

        element_list.message = None

        if result.created or result.removed:
            logger.debug(
                f"Reconciled {element_list.name}: +{len(result.created)} "
                f"~{len(result.updated)} -{len(result.removed)}"
            )
        return result

    def clear(
        self,
        element_list: ElementList,
        message: Optional[str] = None,
        on_remove: Optional[RemoveHook] = None,
    ):
        """销毁并清空整个列表，显示提示信息"""
        for entity_id in element_list.ids():
            self.remove_element(element_list, entity_id, on_remove)
        element_list.message = message

    def rebuild(
        self,
        element_list: ElementList,
        entities: Iterable[Any],
        kind: str,
        render: Callable[[Any], Dict[str, Any]],
        with_surface: bool = False,
        with_children: bool = False,
        on_remove: Optional[RemoveHook] = None,
    ) -> ReconcileResult:
        """整体重建（仅用于首次加载或不可恢复的错误之后）"""
        self.clear(element_list, on_remove=on_remove)
        return self.reconcile(element_list, entities, kind, render, with_surface, with_children, on_remove)


# =============================================================================
# 显示字段与数据序列
# =============================================================================

def describe_check(check: Check) -> Dict[str, Any]:
    """检查列表项的显示字段"""
    details = f"Interval: {check.interval_seconds or 0}s"
    if check.params:
        if check.params.path:
            details += f" | Path: {check.params.path}"
        if check.params.port:
            details += f" | Port: {check.params.port}"
    if check.realtime_mode:
        details += " | Realtime"

    return {
        "type": check.type,
        "status_label": "Enabled" if check.enabled else "Disabled",
        "details": details,
    }


def describe_domain(domain) -> Dict[str, Any]:
    return {"name": domain.name}


def domain_series(buckets: List[Bucket]) -> List[Series]:
    """域名图表：成功 / 失败 / 平均延迟"""
    return [
        Series("Success", [b.success_count for b in buckets], COLOR_SUCCESS),
        Series("Failure", [b.failure_count for b in buckets], COLOR_FAILURE),
        Series("Latency (ms)", [b.avg_latency_ms for b in buckets], COLOR_LATENCY, axis="y1"),
    ]


def check_series(buckets: List[Bucket], fine_grained: bool) -> List[Series]:
    """检查图表：HTTP 按响应类别拆分，其他类型同域名图表"""
    if not fine_grained:
        return domain_series(buckets)
    return [
        Series("2xx", [b.count_2xx or 0 for b in buckets], COLOR_SUCCESS),
        Series("4xx", [b.count_4xx or 0 for b in buckets], COLOR_CLIENT_ERROR),
        Series("5xx", [b.count_5xx or 0 for b in buckets], COLOR_FAILURE),
        Series("Timeout", [b.timeout_count or 0 for b in buckets], COLOR_TIMEOUT),
        Series("Latency (ms)", [b.avg_latency_ms for b in buckets], COLOR_LATENCY, axis="y1"),
    ]
