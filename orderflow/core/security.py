# orderflow/core/security.py
"""
Webhook 验签：

- 平台对原始请求体做 HMAC-SHA256，base64 后放在 X-Shopify-Hmac-Sha256 头里；
- 必须用原始 bytes 计算（不能先 json 解析再 dump）；
- 比较用 hmac.compare_digest，避免时序侧信道。
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional


def compute_webhook_hmac(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_hmac(body: bytes, signature: Optional[str], secret: str) -> bool:
    """空 secret / 空签名一律判为不通过。"""
    if not secret or not signature:
        return False
    expected = compute_webhook_hmac(body, secret)
    return hmac.compare_digest(expected, signature.strip())
