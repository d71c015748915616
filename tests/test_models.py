"""
单元测试：后端响应模型

测试覆盖：
- 时间戳解析（Z、偏移量、空格分隔、无时区）
- 结果分页中 null results 视为空列表
- 统计的成功率
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pulse_dashboard.models import Check, CheckStats, RawResult, ResultsPage, parse_timestamp

EXPECTED = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestParseTimestamp:
    """时间戳解析"""

    @pytest.mark.parametrize("value", [
        "2024-01-01T12:00:00Z",
        "2024-01-01T12:00:00+00:00",
        "2024-01-01T15:00:00+03:00",
        "2024-01-01 12:00:00",
        "2024-01-01T12:00:00",
    ])
    def test_supported_formats(self, value):
        assert parse_timestamp(value) == EXPECTED

    def test_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_timestamp("yesterday")


class TestRawResult:
    """原始结果"""

    def test_created_at_alias(self):
        r = RawResult.model_validate({"created_at": "2024-01-01T12:00:00Z", "status": "success"})
        assert r.timestamp == EXPECTED

    def test_defaults(self):
        """测试：缺失 status 视为失败"""
        r = RawResult.model_validate({"created_at": "2024-01-01T12:00:00Z"})
        assert r.status == "failure"
        assert r.duration_ms is None

    def test_negative_duration_rejected(self):
        with pytest.raises(ValidationError):
            RawResult.model_validate({"created_at": "2024-01-01T12:00:00Z", "duration_ms": -1})

    def test_frozen(self):
        r = RawResult.model_validate({"created_at": "2024-01-01T12:00:00Z"})
        with pytest.raises(ValidationError):
            r.status = "success"


def test_results_page_null_results():
    page = ResultsPage.model_validate({"results": None, "total": 0})
    assert page.results == []


def test_check_type_normalized():
    assert Check.model_validate({"id": 1, "type": "HTTP"}).type == "http"
    assert Check.model_validate({"id": 2, "type": None}).type == "unknown"


class TestCheckStats:
    """检查统计"""

    def test_success_rate(self):
        stats = CheckStats.model_validate({
            "total_results": 3,
            "latency_stats": {"avg": 10, "p95": 20},
            "status_distribution": {"success": 2, "failure": 1},
        })
        assert stats.success_rate == 66.7

    def test_success_rate_empty(self):
        stats = CheckStats.model_validate({"latency_stats": {}, "status_distribution": {}})
        assert stats.success_rate == 0.0

    def test_missing_latency_stats_rejected(self):
        with pytest.raises(ValidationError):
            CheckStats.model_validate({"total_results": 1, "status_distribution": {}})
