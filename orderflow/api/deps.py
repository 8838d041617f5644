# orderflow/api/deps.py
from __future__ import annotations

from typing import AsyncGenerator

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.core.config import AppSettings, get_settings
from orderflow.db.session import AsyncSessionLocal
from orderflow.db.session import get_session as _get_session
from orderflow.services.courier.http import CourierHttp
from orderflow.services.courier_booking_service import CourierBookingService
from orderflow.services.scanner_session import ScannerRegistry
from orderflow.services.sync_queue_worker import PlatformTagPusher


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI 依赖：直接 yield AsyncSession（测试里整体 override）。"""
    async for session in _get_session():
        yield session


def get_session_maker(request: Request) -> async_sessionmaker[AsyncSession]:
    """扫描会话的每条扫描需要独立会话，所以这里给工厂而不是会话。"""
    return getattr(request.app.state, "session_maker", None) or AsyncSessionLocal


def get_app_settings() -> AppSettings:
    return get_settings()


def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    进程共享的出站 httpx 客户端。lifespan 里创建；
    ASGITransport 下不跑 lifespan，这里按需补建。
    """
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        client = httpx.AsyncClient(timeout=get_settings().COURIER_HTTP_TIMEOUT_SECONDS)
        request.app.state.http_client = client
    return client


def get_booking_service(
    client: httpx.AsyncClient = Depends(get_http_client),
) -> CourierBookingService:
    s = get_settings()
    return CourierBookingService(CourierHttp(client, max_redirects=s.COURIER_MAX_REDIRECTS))


def get_tag_pusher(client: httpx.AsyncClient = Depends(get_http_client)) -> PlatformTagPusher:
    return PlatformTagPusher(client)


def get_scanner_registry(request: Request) -> ScannerRegistry:
    registry = getattr(request.app.state, "scanner_registry", None)
    if registry is None:
        registry = ScannerRegistry()
        request.app.state.scanner_registry = registry
    return registry
