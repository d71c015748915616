"""
数据模型定义

包括：
- 后端响应模型（在请求边界完成类型化解码）
- 聚合桶模型
- 仪表盘视图响应模型
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    解析后端时间戳

    支持 ISO 8601（"2024-01-01T12:00:00Z"、带偏移量）以及
    "2024-01-01 12:00:00" 格式。没有时区信息时按 UTC 处理。
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Unsupported timestamp format: {value!r}")
    else:
        raise ValueError(f"Unsupported timestamp type: {type(value).__name__}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


# =============================================================================
# 后端实体
# =============================================================================

class Domain(BaseModel):
    """监控域名"""
    id: int
    name: str


class CheckParams(BaseModel):
    """检查参数（不同检查类型使用不同字段）"""
    model_config = ConfigDict(extra="allow")

    path: Optional[str] = None
    scheme: Optional[str] = None
    method: Optional[str] = None
    body: Optional[str] = None
    port: Optional[int] = None
    payload: Optional[str] = None
    timeout_ms: Optional[int] = None


class Check(BaseModel):
    """检查配置"""
    id: int
    domain_id: Optional[int] = None
    type: str = "unknown"
    enabled: bool = True
    interval_seconds: int = 0
    params: Optional[CheckParams] = None
    realtime_mode: bool = False
    rate_limit_per_minute: int = 0

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value):
        return (value or "unknown").lower()


class RawResult(BaseModel):
    """单次检查结果（只读）"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    timestamp: Optional[datetime] = Field(default=None, alias="created_at")
    status: str = "failure"
    duration_ms: Optional[float] = Field(default=None, ge=0)
    outcome: Optional[str] = None
    status_code: Optional[int] = None
    error_message: Optional[str] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value):
        return parse_timestamp(value)


class ResultsPage(BaseModel):
    """GET /checks/{id}/results 响应"""
    results: List[RawResult] = Field(default_factory=list)
    total: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None

    @field_validator("results", mode="before")
    @classmethod
    def _null_results(cls, value):
        # 后端在没有结果时可能返回 null
        return [] if value is None else value


class LatencyStats(BaseModel):
    """延迟统计"""
    avg: float = 0.0
    p95: float = 0.0


class CheckStats(BaseModel):
    """GET /checks/{id}/stats 响应"""
    total_results: int = 0
    latency_stats: LatencyStats
    status_distribution: Dict[str, int]

    @property
    def success_rate(self) -> float:
        """成功率（百分比，保留一位小数）"""
        total = sum(self.status_distribution.values())
        if total <= 0:
            return 0.0
        return round(self.status_distribution.get("success", 0) / total * 100, 1)


class IntervalPoint(BaseModel):
    """服务端预聚合的时间点"""
    timestamp: datetime
    success_count: int = 0
    failure_count: int = 0
    avg_latency: float = 0.0

    @field_validator("timestamp", mode="before")
    @classmethod
    def _parse_timestamp(cls, value):
        return parse_timestamp(value)


class IntervalsPage(BaseModel):
    """GET /checks/{id}/intervals 响应"""
    data: List[IntervalPoint]


# =============================================================================
# 聚合模型
# =============================================================================

class Classification(BaseModel):
    """单条结果的分类"""
    model_config = ConfigDict(frozen=True)

    success: bool = False
    failure: bool = False
    timeout: bool = False
    class_2xx: bool = False
    class_4xx: bool = False
    class_5xx: bool = False


class Bucket(BaseModel):
    """固定宽度时间窗口的统计"""
    window_start: datetime
    success_count: int = 0
    failure_count: int = 0
    avg_latency_ms: float = 0.0
    min_latency_ms: float = 0.0
    max_latency_ms: float = 0.0

    # 仅 HTTP 检查
    timeout_count: Optional[int] = None
    count_2xx: Optional[int] = None
    count_4xx: Optional[int] = None
    count_5xx: Optional[int] = None


# =============================================================================
# 视图响应模型（GET /api/dashboard 等）
# =============================================================================

class SeriesResponse(BaseModel):
    """单条数据序列"""
    label: str
    data: List[float] = Field(default_factory=list)
    color: str
    axis: str = "y"


class ChartResponse(BaseModel):
    """图表快照"""
    chart_id: int
    labels: List[str] = Field(default_factory=list)
    series: List[SeriesResponse] = Field(default_factory=list)
    updates: int = 0


class PeriodChartResponse(BaseModel):
    """域名按时段聚合的图表"""
    domain_id: int
    period: str
    since: str
    until: str
    labels: List[str] = Field(default_factory=list)
    series: List[SeriesResponse] = Field(default_factory=list)


class CheckView(BaseModel):
    """检查列表项"""
    id: int
    type: str
    status_label: str
    details: str


class DomainView(BaseModel):
    """域名列表项"""
    id: int
    name: str
    checks: List[CheckView] = Field(default_factory=list)
    checks_message: Optional[str] = None
    chart: Optional[ChartResponse] = None


class DashboardResponse(BaseModel):
    """仪表盘整体视图"""
    domains: List[DomainView] = Field(default_factory=list)
    message: Optional[str] = None
    last_refresh_at: Optional[str] = None


class CheckDetailResponse(BaseModel):
    """检查详情视图"""
    check_id: int
    type: str
    interval: str
    total_results: int = 0
    avg_latency: float = 0.0
    p95_latency: float = 0.0
    success_rate: float = 0.0
    stats_message: Optional[str] = None
    recent_results: List[RawResult] = Field(default_factory=list)
    intervals: List[IntervalPoint] = Field(default_factory=list)
    chart: Optional[ChartResponse] = None


class DomainCreate(BaseModel):
    """创建域名请求"""
    name: str


class CheckCreate(BaseModel):
    """创建/更新检查请求（表单原始值）"""
    type: str
    interval_unit: str = "minute"
    interval_value: int = 1
    timeout_ms: int = 5000
    realtime_mode: bool = False
    rate_limit_per_minute: int = 0
    path: Optional[str] = None
    scheme: Optional[str] = None
    method: Optional[str] = None
    body: Optional[str] = None
    port: Optional[int] = None
    payload: Optional[str] = None
