"""
检查后端 REST 客户端

所有响应在这里完成类型化解码：
- 网络错误 / 非 2xx 状态码 -> BackendError
- 响应结构不符合预期 -> DecodeError
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from pydantic import TypeAdapter, ValidationError

from .errors import BackendError, DecodeError
from .models import Check, CheckStats, Domain, IntervalsPage, ResultsPage

logger = logging.getLogger(__name__)

_DOMAIN_LIST = TypeAdapter(List[Domain])
_CHECK_LIST = TypeAdapter(List[Check])


def _iso(ts: datetime) -> str:
    return ts.isoformat().replace("+00:00", "Z")


class BackendClient:
    """
    检查后端客户端

    Args:
        base_url: 后端地址
        timeout: 单次请求超时（秒）
        transport: 自定义 httpx transport（测试时注入 MockTransport）
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """发送请求并返回 JSON（无 JSON 内容时返回 None）"""
        logger.debug(f"API call: {method} {endpoint} {params or ''}")
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, endpoint, params=params, json=json)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {endpoint} failed: {e}") from e

        if response.is_error:
            text = response.text
            raise BackendError(
                text.strip() or f"HTTP {response.status_code}",
                status_code=response.status_code,
                body=text,
            )

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise DecodeError(endpoint, f"invalid JSON: {e}") from e

    @staticmethod
    def _decode(adapter_or_model, payload: Any, endpoint: str):
        if payload is None:
            raise DecodeError(endpoint, "empty response")
        try:
            if isinstance(adapter_or_model, TypeAdapter):
                return adapter_or_model.validate_python(payload)
            return adapter_or_model.model_validate(payload)
        except ValidationError as e:
            raise DecodeError(endpoint, str(e)) from e

    # =========================================================================
    # 读取
    # =========================================================================

    async def list_domains(self) -> List[Domain]:
        """GET /domains"""
        payload = await self._request("GET", "/domains")
        return self._decode(_DOMAIN_LIST, payload, "/domains")

    async def list_checks(self, domain_id: int) -> List[Check]:
        """GET /domains/{id}/checks"""
        endpoint = f"/domains/{domain_id}/checks"
        payload = await self._request("GET", endpoint)
        return self._decode(_CHECK_LIST, payload, endpoint)

    async def list_all_checks(self) -> List[Check]:
        """GET /checks"""
        payload = await self._request("GET", "/checks")
        return self._decode(_CHECK_LIST, payload, "/checks")

    async def get_results(
        self,
        check_id: int,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
        page: int = 1,
        page_size: int = 100,
    ) -> ResultsPage:
        """GET /checks/{id}/results"""
        endpoint = f"/checks/{check_id}/results"
        params: Dict[str, Any] = {"page": page, "page_size": page_size}
        if from_ts is not None:
            params["from"] = _iso(from_ts)
        if to_ts is not None:
            params["to"] = _iso(to_ts)
        payload = await self._request("GET", endpoint, params=params)
        return self._decode(ResultsPage, payload, endpoint)

    async def get_stats(self, check_id: int) -> CheckStats:
        """GET /checks/{id}/stats"""
        endpoint = f"/checks/{check_id}/stats"
        payload = await self._request("GET", endpoint)
        return self._decode(CheckStats, payload, endpoint)

    async def get_intervals(
        self,
        check_id: int,
        interval: str,
        from_ts: datetime,
        to_ts: datetime,
        page: int = 1,
        page_size: int = 100,
    ) -> IntervalsPage:
        """GET /checks/{id}/intervals"""
        endpoint = f"/checks/{check_id}/intervals"
        params = {
            "interval": interval,
            "from": _iso(from_ts),
            "to": _iso(to_ts),
            "page": page,
            "page_size": page_size,
        }
        payload = await self._request("GET", endpoint, params=params)
        return self._decode(IntervalsPage, payload, endpoint)

    # =========================================================================
    # 变更
    # =========================================================================

    async def create_domain(self, name: str) -> Optional[Domain]:
        payload = await self._request("POST", "/domains", json={"name": name})
        return self._decode(Domain, payload, "/domains") if payload is not None else None

    async def delete_domain(self, domain_id: int):
        await self._request("DELETE", f"/domains/{domain_id}")

    async def create_check(self, domain_id: int, body: Dict[str, Any]) -> Optional[Check]:
        endpoint = f"/domains/{domain_id}/checks"
        payload = await self._request("POST", endpoint, json=body)
        return self._decode(Check, payload, endpoint) if payload is not None else None

    async def update_check(self, check_id: int, body: Dict[str, Any]):
        await self._request("PUT", f"/checks/{check_id}", json=body)

    async def delete_check(self, check_id: int):
        await self._request("DELETE", f"/checks/{check_id}")

    async def enable_check(self, check_id: int):
        await self._request("POST", f"/checks/{check_id}/enable")

    async def disable_check(self, check_id: int):
        await self._request("POST", f"/checks/{check_id}/disable")
