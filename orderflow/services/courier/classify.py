# orderflow/services/courier/classify.py
"""
下单失败分类：下单服务是唯一做判定的地方。

可重试（进重试队列）：DNS / 网络 / 超时 / 重定向过多 / 通用 API 错误
不可重试：订单类型被拒、认证头丢失、缺配置、无运单号、未知错误
"""

from __future__ import annotations

import asyncio

import httpx

from orderflow.models.enums import ErrorCode
from orderflow.services.courier.types import CourierError

RETRYABLE_CODES = frozenset(
    {
        ErrorCode.NETWORK_DNS_ERROR,
        ErrorCode.NETWORK_ERROR,
        ErrorCode.NETWORK_TIMEOUT,
        ErrorCode.TOO_MANY_REDIRECTS,
        ErrorCode.BOOKING_API_ERROR,
    }
)

_DNS_MARKERS = ("getaddrinfo", "name or service not known", "nodename nor servname", "dns", "name resolution")


def is_retryable(code: ErrorCode) -> bool:
    return code in RETRYABLE_CODES


def classify_text(text: str) -> ErrorCode:
    """按对端返回的错误文本归类（非 2xx 响应体 / 异常消息）。"""
    low = (text or "").lower()
    if "invalid order type" in low:
        return ErrorCode.INVALID_ORDER_TYPE
    if "missing request header" in low:
        return ErrorCode.AUTH_HEADER_DROPPED
    if "configuration required" in low:
        return ErrorCode.CONFIGURATION_REQUIRED
    return ErrorCode.BOOKING_API_ERROR


def classify_exception(exc: BaseException) -> tuple[ErrorCode, str]:
    if isinstance(exc, CourierError):
        return exc.code, exc.message
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ErrorCode.NETWORK_TIMEOUT, f"Courier API timed out: {exc.__class__.__name__}"
    if isinstance(exc, httpx.TooManyRedirects):
        return ErrorCode.TOO_MANY_REDIRECTS, str(exc)
    if isinstance(exc, httpx.ConnectError):
        msg = str(exc)
        if any(m in msg.lower() for m in _DNS_MARKERS):
            return ErrorCode.NETWORK_DNS_ERROR, f"Cannot reach courier API (DNS resolution failed): {msg}"
        return ErrorCode.NETWORK_ERROR, f"Cannot connect to courier API: {msg}"
    if isinstance(exc, httpx.TransportError):
        return ErrorCode.NETWORK_ERROR, f"Courier API transport error: {exc}"

    msg = str(exc)
    code = classify_text(msg)
    if code == ErrorCode.BOOKING_API_ERROR:
        # 非 HTTP 层面的意外异常不自动重试
        return ErrorCode.UNKNOWN_ERROR, msg or exc.__class__.__name__
    return code, msg
