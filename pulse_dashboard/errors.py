"""
错误类型定义

- BackendError: 后端请求失败（网络错误、非 2xx 状态码）
- DecodeError: 响应格式不符合预期
- InputValidationError: 用户输入校验失败（在发起任何网络请求之前）
"""

from typing import Optional


class DashboardError(Exception):
    """仪表盘错误基类"""


class BackendError(DashboardError):
    """后端请求失败"""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class DecodeError(DashboardError):
    """后端响应解码失败"""

    def __init__(self, endpoint: str, reason: str):
        self.endpoint = endpoint
        self.reason = reason
        super().__init__(f"Invalid response format from {endpoint}: {reason}")


class InputValidationError(DashboardError):
    """用户输入校验失败"""
