# orderflow/services/audit_logger.py
from __future__ import annotations

import json
import logging
from typing import Any

logger = logging.getLogger("orderflow.audit")


def log_event(kind: str, key: str, extra: dict[str, Any] | None = None) -> None:
    """
    轻量审计（本地日志，一行 JSON）。落库走 AuditEventWriter.write。
    """
    logger.info(
        "[audit] %s | %s | %s",
        kind,
        key,
        json.dumps(extra or {}, ensure_ascii=False, default=str),
    )
