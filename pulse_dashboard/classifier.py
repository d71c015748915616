"""
结果分类

将单条原始结果映射为 success / failure / timeout，
HTTP 检查额外区分 2xx / 4xx / 5xx。
"""

from .models import Classification, RawResult

FINE_GRAINED_TYPES = {"http"}

_SUCCESS = Classification(success=True)
_FAILURE = Classification(failure=True)


def is_fine_grained(check_type: str) -> bool:
    """检查类型是否需要按响应类别统计（目前仅 HTTP）"""
    return (check_type or "").lower() in FINE_GRAINED_TYPES


def classify_result(result: RawResult, fine_grained: bool) -> Classification:
    """
    分类单条结果

    规则：
    - fine_grained 且有 outcome：timeout 只计入超时（不计成功/失败），
      2xx 计成功，4xx/5xx 计失败
    - 其他情况回退到 status：只有 "success" 计成功，其余一律计失败
    """
    if fine_grained and result.outcome:
        if result.outcome == "timeout":
            return Classification(timeout=True)
        if result.outcome == "2xx":
            return Classification(success=True, class_2xx=True)
        if result.outcome == "4xx":
            return Classification(failure=True, class_4xx=True)
        if result.outcome == "5xx":
            return Classification(failure=True, class_5xx=True)

    # 未识别的 status 按失败处理
    return _SUCCESS if result.status == "success" else _FAILURE
