# orderflow/db/base.py
from __future__ import annotations

import importlib
import logging
import pkgutil
from datetime import UTC, datetime
from typing import Iterator, Optional

from sqlalchemy.orm import DeclarativeBase, configure_mappers

log = logging.getLogger("orderflow.models")


class Base(DeclarativeBase):
    """全局唯一 ORM Base"""

    pass


_INITIALIZED: bool = False  # 防重复初始化


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """sqlite 读回来的是 naive datetime，这里统一补成 UTC。"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _iter_model_modules(pkg_name: str = "orderflow.models") -> Iterator[str]:
    pkg = importlib.import_module(pkg_name)
    for _, name, _ in pkgutil.walk_packages(list(pkg.__path__), prefix=pkg_name + "."):
        if name.rsplit(".", 1)[-1].startswith("_"):
            continue
        yield name


def init_models(*, force: bool = False) -> None:
    """
    集中导入模型 + 固化关系映射：
      1) 递归导入 orderflow.models.*
      2) 统一 configure_mappers()
    """
    global _INITIALIZED
    if _INITIALIZED and not force:
        return

    loaded = 0
    for mod in _iter_model_modules():
        importlib.import_module(mod)
        loaded += 1

    configure_mappers()
    _INITIALIZED = True
    log.info("ORM models initialized & mappers configured (loaded %d modules)", loaded)
