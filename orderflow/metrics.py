# orderflow/metrics.py
from __future__ import annotations

import os

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    multiprocess,
)

# 业务指标
WEBHOOK_EVENTS = Counter(
    "orderflow_webhook_events_total", "Platform webhook events", ["topic", "outcome"]
)
SCAN_OUTCOMES = Counter(
    "orderflow_scan_outcomes_total", "Dispatch/return scan outcomes", ["kind", "code"]
)
SCAN_LATENCY = Histogram(
    "orderflow_scan_latency_seconds", "Scan processing latency (seconds)", ["kind"]
)
BOOKING_OUTCOMES = Counter(
    "orderflow_booking_outcomes_total", "Courier booking outcomes", ["courier", "code"]
)
RETRY_TRANSITIONS = Counter(
    "orderflow_retry_queue_transitions_total", "Courier retry queue transitions", ["transition"]
)
SYNC_PUSHES = Counter("orderflow_sync_pushes_total", "Platform tag pushes", ["outcome"])

router = APIRouter()


@router.get("/metrics")
def metrics() -> Response:
    """
    在单进程模式下直接导出默认 REGISTRY；
    在多进程模式下，创建临时 CollectorRegistry，并让 MultiProcessCollector 合并各分片。
    """
    if os.environ.get("PROMETHEUS_MULTIPROC_DIR"):
        registry = CollectorRegistry()
        multiprocess.MultiProcessCollector(registry)
        payload = generate_latest(registry)
    else:
        payload = generate_latest(REGISTRY)
    return Response(content=payload, media_type=CONTENT_TYPE_LATEST)
