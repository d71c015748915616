"""
测试公共设施

FakeBackend：用 httpx.MockTransport 模拟检查后端 REST API，
记录每次调用，支持按路径注入失败响应。
"""

import asyncio
import json
import re
import sys
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pulse_dashboard.client import BackendClient
from pulse_dashboard.config import AppConfig, reset_config

# 固定的 "当前时间"：窗口为 12:00 ~ 12:09
NOW = datetime(2024, 1, 1, 12, 10, 30, tzinfo=timezone.utc)


def result(ts: str, status: str = "success", duration_ms=100, outcome=None, status_code=None) -> dict:
    """构造一条后端原始结果"""
    item = {"created_at": ts, "status": status, "duration_ms": duration_ms}
    if outcome is not None:
        item["outcome"] = outcome
    if status_code is not None:
        item["status_code"] = status_code
    return item


class FakeBackend:
    """内存中的检查后端"""

    def __init__(self):
        self.domains = [{"id": 1, "name": "example.com"}]
        self.checks = {
            1: [
                {
                    "id": 11, "domain_id": 1, "type": "HTTP", "enabled": True,
                    "interval_seconds": 60, "params": {"path": "/health", "scheme": "https", "method": "GET"},
                },
                {
                    "id": 12, "domain_id": 1, "type": "tcp", "enabled": False,
                    "interval_seconds": 300, "params": {"port": 443},
                },
            ],
        }
        self.results = {
            11: [
                result("2024-01-01T12:05:10Z", duration_ms=120, outcome="2xx", status_code=200),
                result("2024-01-01T12:05:40Z", duration_ms=300, outcome="2xx", status_code=200),
                result("2024-01-01T12:06:00Z", status="failure", duration_ms=80, outcome="4xx", status_code=404),
                result("2024-01-01T12:07:00Z", status="failure", duration_ms=0, outcome="timeout"),
            ],
            12: [
                result("2024-01-01T12:05:20Z", duration_ms=30),
                result("2024-01-01T12:08:20Z", status="failure", duration_ms=None),
            ],
        }
        self.stats = {
            "total_results": 4,
            "latency_stats": {"avg": 125.0, "p95": 290.0},
            "status_distribution": {"success": 2, "failure": 2},
        }
        self.calls = []
        self.requests = []
        self.failures = {}
        self._next_id = 100

    # 注入失败：路径 -> (状态码, 响应体)
    def fail(self, path: str, status_code: int = 500, body: str = "internal error"):
        self.failures[path] = (status_code, body)

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.calls if m == method and p == path)

    def params(self, path: str) -> list:
        """某路径下每次请求的查询参数"""
        return [dict(r.url.params) for r in self.requests if r.url.path == path]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def _all_checks(self):
        return [c for checks in self.checks.values() for c in checks]

    def _find_check(self, check_id: int):
        for check in self._all_checks():
            if check["id"] == check_id:
                return check
        return None

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        self.calls.append((method, path))
        self.requests.append(request)

        if path in self.failures:
            status_code, body = self.failures[path]
            return httpx.Response(status_code, text=body)

        if path == "/domains":
            if method == "GET":
                return httpx.Response(200, json=self.domains)
            if method == "POST":
                name = json.loads(request.content)["name"]
                domain = {"id": self._new_id(), "name": name}
                self.domains.append(domain)
                self.checks[domain["id"]] = []
                return httpx.Response(201, json=domain)

        if path == "/checks" and method == "GET":
            return httpx.Response(200, json=self._all_checks())

        m = re.fullmatch(r"/domains/(\d+)", path)
        if m and method == "DELETE":
            domain_id = int(m.group(1))
            self.domains = [d for d in self.domains if d["id"] != domain_id]
            self.checks.pop(domain_id, None)
            return httpx.Response(204)

        m = re.fullmatch(r"/domains/(\d+)/checks", path)
        if m:
            domain_id = int(m.group(1))
            if domain_id not in self.checks:
                return httpx.Response(404, text="domain not found")
            if method == "GET":
                return httpx.Response(200, json=self.checks[domain_id])
            if method == "POST":
                payload = json.loads(request.content)
                check = dict(payload, id=self._new_id(), domain_id=domain_id, enabled=True)
                self.checks[domain_id].append(check)
                return httpx.Response(201, json=check)

        m = re.fullmatch(r"/checks/(\d+)(/\w+)?", path)
        if m:
            check_id = int(m.group(1))
            action = m.group(2)
            check = self._find_check(check_id)
            if check is None:
                return httpx.Response(404, text="check not found")

            if action is None and method == "PUT":
                check.update(json.loads(request.content))
                return httpx.Response(204)
            if action is None and method == "DELETE":
                for checks in self.checks.values():
                    checks[:] = [c for c in checks if c["id"] != check_id]
                return httpx.Response(204)
            if action in ("/enable", "/disable") and method == "POST":
                check["enabled"] = action == "/enable"
                return httpx.Response(204)
            if action == "/results" and method == "GET":
                items = self.results.get(check_id, [])
                return httpx.Response(200, json={
                    "results": items,
                    "total": len(items),
                    "page": int(request.url.params.get("page", 1)),
                    "page_size": int(request.url.params.get("page_size", 100)),
                })
            if action == "/stats" and method == "GET":
                return httpx.Response(200, json=self.stats)
            if action == "/intervals" and method == "GET":
                return httpx.Response(200, json={"data": [
                    {"timestamp": "2024-01-01T12:00:00Z", "success_count": 5, "failure_count": 1, "avg_latency": 110.0},
                    {"timestamp": "2024-01-01T12:01:00Z", "success_count": 6, "failure_count": 0, "avg_latency": 95.0},
                ]})

        return httpx.Response(404, text=f"no route for {method} {path}")

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id


class GatedTransport(httpx.AsyncBaseTransport):
    """
    带闸门的传输层

    首个匹配 (method, path) 的请求先由 FakeBackend 应答，再挂起到 release 被设置，
    用于构造 "响应已生成但尚未返回" 的并发时序。
    """

    def __init__(self, backend: FakeBackend, method: str, path: str):
        self.backend = backend
        self.method = method
        self.path = path
        self.entered = asyncio.Event()
        self.release = asyncio.Event()
        self._armed = True

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        response = self.backend.handle(request)
        if self._armed and request.method == self.method and request.url.path == self.path:
            self._armed = False
            self.entered.set()
            await self.release.wait()
        return response


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """每个测试使用默认配置，不读取工作目录下的 config.yaml"""
    monkeypatch.setenv("PULSE_CONFIG_PATH", str(tmp_path / "missing.yaml"))
    reset_config()
    yield
    reset_config()


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(backend):
    return BackendClient("http://backend.test", transport=backend.transport())


@pytest.fixture
def config():
    return AppConfig()
