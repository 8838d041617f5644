# orderflow/services/courier/http.py
"""
快递 API 的 HTTP 调用：手动跟随重定向。

httpx / 浏览器的自动重定向在跨 host 时会丢掉自定义认证头（PostEx 的 token 头），
对端随后报 "Missing request header 'token'"。这里每一跳都原样带上调用方给的 headers：
  - 301/302/307/308：保持方法和 body
  - 303：改为 GET，丢弃 body
  - 超过 max_redirects 跳 → TOO_MANY_REDIRECTS
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from orderflow.models.enums import ErrorCode
from orderflow.services.courier.types import CourierError

logger = logging.getLogger("orderflow.booking")

_REDIRECT_CODES = frozenset({301, 302, 303, 307, 308})


class CourierHttp:
    def __init__(self, client: httpx.AsyncClient, *, max_redirects: int = 5) -> None:
        self.client = client
        self.max_redirects = max_redirects

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        hops = 0
        current = httpx.URL(url)
        while True:
            resp = await self.client.request(
                method,
                current,
                headers=headers,
                json=json,
                params=params,
                follow_redirects=False,
            )
            location = resp.headers.get("location")
            if resp.status_code not in _REDIRECT_CODES or not location:
                return resp

            hops += 1
            if hops > self.max_redirects:
                raise CourierError(
                    ErrorCode.TOO_MANY_REDIRECTS,
                    f"Too many redirects ({self.max_redirects}) calling {url}",
                )

            current = resp.url.join(location)
            # 重定向目标已经带好 query
            params = None
            if resp.status_code == 303:
                method = "GET"
                json = None
            logger.debug("courier redirect %d -> %s (hop %d)", resp.status_code, current, hops)
