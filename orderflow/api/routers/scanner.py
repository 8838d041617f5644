# orderflow/api/routers/scanner.py
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.api.deps import get_scanner_registry, get_session, get_session_maker
from orderflow.api.errors import NotFoundError
from orderflow.api.routers._schemas import ScanIn, ScannerStartIn
from orderflow.api.routers.dispatch import resolve_courier_code
from orderflow.core.config import get_settings
from orderflow.models.enums import ScanKind
from orderflow.services.scanner_session import (
    ScannerRegistry,
    ScannerSession,
    dispatch_handler,
    return_handler,
)

router = APIRouter(prefix="/scanner", tags=["scanner"])


def _session_or_404(registry: ScannerRegistry, sid: str) -> ScannerSession:
    s = registry.get(sid)
    if s is None:
        raise NotFoundError(f"scanner session {sid} not found")
    return s


@router.post("/sessions")
async def scanner_start(
    body: ScannerStartIn,
    session: AsyncSession = Depends(get_session),
    maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    registry: ScannerRegistry = Depends(get_scanner_registry),
):
    s = get_settings()
    if body.kind == ScanKind.RETURN:
        handler = return_handler(maker, user_id=body.user_id)
    else:
        courier_code = await resolve_courier_code(session, body.courier_id)
        handler = dispatch_handler(
            maker, entry_type=body.entry_type, courier_code=courier_code, user_id=body.user_id
        )
    scanner = ScannerSession(
        handler,
        kind=body.kind,
        max_in_flight=s.SCANNER_MAX_IN_FLIGHT,
        idle_timeout=s.SCANNER_IDLE_TIMEOUT_SECONDS,
    )
    registry.add(scanner.start())
    return {"session_id": scanner.session_id, "kind": scanner.kind.value, "active": scanner.active}


@router.post("/sessions/{sid}/scan")
async def scanner_scan(sid: str, body: ScanIn, registry: ScannerRegistry = Depends(get_scanner_registry)):
    ack = _session_or_404(registry, sid).submit(body.entry)
    return {
        "accepted": ack.accepted,
        "entry": ack.entry,
        "error_code": ack.error_code.value if ack.error_code else None,
    }


@router.get("/sessions/{sid}")
async def scanner_stats(sid: str, registry: ScannerRegistry = Depends(get_scanner_registry)):
    live = registry.get(sid)
    stats = live.stats() if live is not None else registry.finished_stats(sid)
    if stats is None:
        raise NotFoundError(f"scanner session {sid} not found")
    return asdict(stats)


@router.delete("/sessions/{sid}")
async def scanner_stop(sid: str, registry: ScannerRegistry = Depends(get_scanner_registry)):
    stats = await registry.close(sid)
    if stats is None:
        raise NotFoundError(f"scanner session {sid} not found")
    return asdict(stats)
