# orderflow/api/routers/webhooks.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.api.deps import get_app_settings, get_session
from orderflow.api.errors import BizError, UnauthorizedError
from orderflow.core.config import AppSettings
from orderflow.core.security import verify_webhook_hmac
from orderflow.metrics import WEBHOOK_EVENTS
from orderflow.services.platform_events_handler import handle_order_event
from orderflow.services.platform_events_types import OrderPayload, PlatformOrderEvent, WebhookTopic

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = logging.getLogger("orderflow.webhook")


@router.post("/platform/orders")
async def platform_orders(
    request: Request,
    x_shopify_topic: Optional[str] = Header(default=None),
    x_shopify_hmac_sha256: Optional[str] = Header(default=None),
    session: AsyncSession = Depends(get_session),
    settings: AppSettings = Depends(get_app_settings),
):
    """
    平台订单 webhook：先验签（原始 body），验签失败 401 且不改任何状态。
    不认识的 topic 直接 200 忽略（避免平台无限重投）。
    """
    body = await request.body()
    topic_raw = (x_shopify_topic or "").strip()

    if not verify_webhook_hmac(body, x_shopify_hmac_sha256, settings.PLATFORM_WEBHOOK_SECRET):
        WEBHOOK_EVENTS.labels(topic=topic_raw or "unknown", outcome="rejected").inc()
        logger.warning("webhook signature rejected (topic=%s)", topic_raw)
        raise UnauthorizedError()

    try:
        topic = WebhookTopic(topic_raw)
    except ValueError:
        WEBHOOK_EVENTS.labels(topic=topic_raw or "unknown", outcome="ignored").inc()
        return {"ok": True, "ignored": True, "topic": topic_raw}

    try:
        payload = OrderPayload.model_validate_json(body)
    except ValidationError as e:
        raise BizError(f"invalid order payload: {e.error_count()} error(s)", code="INVALID_PAYLOAD")

    outcome = await handle_order_event(session, PlatformOrderEvent(topic=topic, order=payload))
    return {
        "ok": True,
        "order_id": outcome.order_id,
        "order_number": outcome.order_number,
        "created": outcome.created,
        "status": outcome.status,
        "changed": outcome.changed,
    }
