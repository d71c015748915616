"""
滚动窗口聚合

将无序的原始结果按固定宽度时间窗口聚合为图表用的统计桶。

- 窗口锚定在 "当前时间截断到窗口边界" 往前一个窗口，
  当前未完成的窗口不计入（避免显示偏低的半截数据）
- 始终返回 window_count 个桶，即使没有任何输入
- 落在窗口范围外的结果直接忽略
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .classifier import classify_result
from .models import Bucket, RawResult

DEFAULT_WINDOW_COUNT = 10
DEFAULT_WINDOW_WIDTH = timedelta(minutes=1)
DEFAULT_TRAILING_OFFSET = timedelta(minutes=1)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def truncate_to_window(ts: datetime, width: timedelta = DEFAULT_WINDOW_WIDTH) -> datetime:
    """截断到窗口边界（UTC，按 epoch 对齐）"""
    ts = _as_utc(ts)
    return ts - ((ts - _EPOCH) % width)


def window_starts(
    now: datetime,
    window_count: int = DEFAULT_WINDOW_COUNT,
    window_width: timedelta = DEFAULT_WINDOW_WIDTH,
    trailing_offset: timedelta = DEFAULT_TRAILING_OFFSET,
) -> List[datetime]:
    """
    生成窗口起点序列（升序、连续、无空洞）

    anchor - trailing_offset - k * width，k 从 window_count-1 递减到 0。
    """
    anchor = truncate_to_window(now, window_width)
    return [
        truncate_to_window(anchor - trailing_offset - k * window_width, window_width)
        for k in range(window_count - 1, -1, -1)
    ]


def query_range(
    now: Optional[datetime] = None,
    window_count: int = DEFAULT_WINDOW_COUNT,
    window_width: timedelta = DEFAULT_WINDOW_WIDTH,
    trailing_offset: timedelta = DEFAULT_TRAILING_OFFSET,
) -> Tuple[datetime, datetime]:
    """
    计算结果查询区间 [from, to)

    与 window_starts 覆盖相同的范围：默认 to 为当前窗口起点，
    from 为往前 window_count 个窗口。
    """
    now = now or datetime.now(timezone.utc)
    to_ts = truncate_to_window(now, window_width) - trailing_offset + window_width
    return to_ts - window_count * window_width, to_ts


def _empty_accumulator(window_start: datetime) -> Dict[str, Any]:
    return {
        "window_start": window_start,
        "success": 0,
        "failure": 0,
        "timeout": 0,
        "2xx": 0,
        "4xx": 0,
        "5xx": 0,
        "latency_sum": 0.0,
        "latency_count": 0,
        "latency_min": None,
        "latency_max": None,
    }


def aggregate(
    results: Optional[Iterable[RawResult]],
    fine_grained: bool,
    now: Optional[datetime] = None,
    window_count: int = DEFAULT_WINDOW_COUNT,
    window_width: timedelta = DEFAULT_WINDOW_WIDTH,
    trailing_offset: timedelta = DEFAULT_TRAILING_OFFSET,
) -> List[Bucket]:
    """
    按窗口聚合原始结果

    Args:
        results: 原始结果（可为空或 None）
        fine_grained: 是否按 HTTP 响应类别统计
        now: 参考时间，默认当前 UTC 时间
        window_count: 桶数量
        window_width: 桶宽度
        trailing_offset: 锚点往前偏移（默认跳过当前窗口）

    Returns:
        按时间升序排列的 window_count 个桶
    """
    now = now or datetime.now(timezone.utc)

    buckets: Dict[datetime, Dict[str, Any]] = {
        start: _empty_accumulator(start)
        for start in window_starts(now, window_count, window_width, trailing_offset)
    }

    for result in results or ():
        if not isinstance(result, RawResult) or result.timestamp is None:
            continue

        acc = buckets.get(truncate_to_window(result.timestamp, window_width))
        if acc is None:
            continue

        cls = classify_result(result, fine_grained)
        if cls.timeout:
            acc["timeout"] += 1
        elif cls.success:
            acc["success"] += 1
        else:
            acc["failure"] += 1
        if cls.class_2xx:
            acc["2xx"] += 1
        elif cls.class_4xx:
            acc["4xx"] += 1
        elif cls.class_5xx:
            acc["5xx"] += 1

        # 0ms 视为无耗时数据
        duration = result.duration_ms
        if duration:
            acc["latency_sum"] += duration
            acc["latency_count"] += 1
            if acc["latency_min"] is None or duration < acc["latency_min"]:
                acc["latency_min"] = duration
            if acc["latency_max"] is None or duration > acc["latency_max"]:
                acc["latency_max"] = duration

    output = []
    for start in sorted(buckets):
        acc = buckets[start]
        bucket = Bucket(
            window_start=start,
            success_count=acc["success"],
            failure_count=acc["failure"],
            avg_latency_ms=acc["latency_sum"] / acc["latency_count"] if acc["latency_count"] else 0.0,
            min_latency_ms=acc["latency_min"] or 0.0,
            max_latency_ms=acc["latency_max"] or 0.0,
        )
        if fine_grained:
            bucket.timeout_count = acc["timeout"]
            bucket.count_2xx = acc["2xx"]
            bucket.count_4xx = acc["4xx"]
            bucket.count_5xx = acc["5xx"]
        output.append(bucket)

    return output


def bucket_labels(buckets: List[Bucket], fmt: str = "%H:%M") -> List[str]:
    """生成图表 X 轴标签"""
    return [b.window_start.strftime(fmt) for b in buckets]
