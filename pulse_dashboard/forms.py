"""
用户输入校验

在发起任何网络请求之前校验表单，失败时抛出 InputValidationError。
"""

import re
from typing import Any, Dict
from urllib.parse import urlparse

from .errors import InputValidationError
from .models import CheckCreate

CHECK_TYPES = ("http", "tcp", "udp", "tls", "icmp")
PORT_CHECK_TYPES = ("tcp", "udp", "tls")

_DOMAIN_RE = re.compile(r"^(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,}$")

_INTERVAL_UNITS = {
    "second": 1,
    "minute": 60,
    "hour": 60 * 60,
    "day": 24 * 60 * 60,
}


def validate_domain_name(raw: str) -> str:
    """
    校验并规范化域名

    接受 "Example.com"、"https://example.com/path" 等输入，返回主机名。
    """
    raw = (raw or "").strip().lower()
    if not raw:
        raise InputValidationError("Domain name is required")

    if not raw.startswith(("http://", "https://")):
        raw = "http://" + raw

    try:
        host = urlparse(raw).hostname or ""
    except ValueError:
        raise InputValidationError("Invalid URL")

    if not _DOMAIN_RE.match(host):
        raise InputValidationError("Invalid domain name")
    return host


def convert_interval_to_seconds(unit: str, value: int) -> int:
    """间隔转换为秒（未知单位按分钟处理，非正数按 1 处理）"""
    value = value if value and value > 0 else 1
    return value * _INTERVAL_UNITS.get(unit, 60)


def build_check_payload(form: CheckCreate) -> Dict[str, Any]:
    """
    表单 -> 后端请求体

    Raises:
        InputValidationError: 类型不支持、端口越界
    """
    check_type = (form.type or "").lower()
    if check_type not in CHECK_TYPES:
        raise InputValidationError(f"Unsupported check type: {form.type!r}")

    params: Dict[str, Any] = {}
    if check_type == "http":
        params["path"] = form.path or "/"
        params["scheme"] = form.scheme or "https"
        params["method"] = form.method or "GET"
        if form.body:
            params["body"] = form.body

    if check_type in PORT_CHECK_TYPES:
        if not form.port or form.port < 1 or form.port > 65535:
            raise InputValidationError("Port must be between 1 and 65535")
        params["port"] = form.port

    if check_type in ("tcp", "udp") and form.payload:
        params["payload"] = form.payload

    if form.timeout_ms > 0:
        params["timeout_ms"] = form.timeout_ms

    return {
        "type": check_type,
        "interval_seconds": convert_interval_to_seconds(form.interval_unit, form.interval_value),
        "params": params,
        "realtime_mode": form.realtime_mode,
        "rate_limit_per_minute": max(form.rate_limit_per_minute, 0),
    }
