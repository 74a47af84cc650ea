"""
LLM 调用错误分类

后端调用失败时按错误信息归类，归类结果写入 BackendInvocationFailure.error_type，
便于日志排查和统计。重试由编排器的回退链负责，这里不做重试。
"""
import asyncio
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# 错误分类
# ============================================================================

class LLMErrorType:
    """LLM 错误类型"""
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    AUTH_ERROR = "auth_error"
    INVALID_REQUEST = "invalid_request"
    CONTEXT_LENGTH = "context_length"
    UNKNOWN = "unknown"


def classify_error(error: BaseException) -> str:
    """
    分类 LLM 错误

    Args:
        error: 异常对象

    Returns:
        错误类型字符串
    """
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return LLMErrorType.TIMEOUT

    error_str = str(error).lower()

    # 超时错误
    if "timeout" in error_str or "timed out" in error_str:
        return LLMErrorType.TIMEOUT

    # 速率限制
    if "rate" in error_str and "limit" in error_str:
        return LLMErrorType.RATE_LIMIT
    if "429" in error_str or "too many requests" in error_str:
        return LLMErrorType.RATE_LIMIT

    # 上下文长度超限（先于 invalid_request 判断，这类错误通常也带 400）
    if "context" in error_str and "length" in error_str:
        return LLMErrorType.CONTEXT_LENGTH
    if "token" in error_str and ("limit" in error_str or "exceed" in error_str):
        return LLMErrorType.CONTEXT_LENGTH

    # 服务器错误
    if any(code in error_str for code in ["500", "502", "503", "504"]):
        return LLMErrorType.SERVER_ERROR
    if "server" in error_str and "error" in error_str:
        return LLMErrorType.SERVER_ERROR

    # 认证错误
    if "401" in error_str or "403" in error_str:
        return LLMErrorType.AUTH_ERROR
    if "unauthorized" in error_str or "forbidden" in error_str:
        return LLMErrorType.AUTH_ERROR
    if "api key" in error_str or "api_key" in error_str:
        return LLMErrorType.AUTH_ERROR

    # 请求无效
    if "400" in error_str or "invalid" in error_str:
        return LLMErrorType.INVALID_REQUEST

    return LLMErrorType.UNKNOWN
