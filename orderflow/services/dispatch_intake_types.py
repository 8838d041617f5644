# orderflow/services/dispatch_intake_types.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from orderflow.models.enums import ErrorCode, ErrorKind, MatchType


@dataclass
class IntakeResult:
    """
    单条发运 / 退货录入的结果（业务失败是返回值，不是异常）。
    """

    success: bool
    entry: str
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    customer: Optional[str] = None
    amount: Optional[Decimal] = None
    courier: Optional[str] = None
    tracking_id: Optional[str] = None
    match_type: Optional[MatchType] = None
    return_status: Optional[str] = None
    status_before: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    message: Optional[str] = None
    suggestion: Optional[str] = None
    processing_ms: int = 0

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error_code.kind if self.error_code is not None else None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["error_kind"] = self.error_kind.value if self.error_kind else None
        if self.amount is not None:
            d["amount"] = str(self.amount)
        return d


@dataclass
class EntryError:
    entry: str
    error_code: ErrorCode
    message: Optional[str] = None


@dataclass
class BulkResult:
    success_count: int = 0
    error_count: int = 0
    duplicates_removed: int = 0
    processed: int = 0
    errors: List[EntryError] = field(default_factory=list)
    results: List[IntakeResult] = field(default_factory=list)

    def add(self, result: IntakeResult) -> None:
        self.processed += 1
        self.results.append(result)
        if result.success:
            self.success_count += 1
        else:
            self.error_count += 1
            self.errors.append(
                EntryError(
                    entry=result.entry,
                    error_code=result.error_code or ErrorCode.UNKNOWN_ERROR,
                    message=result.message,
                )
            )


def dedupe_entries(entries: List[str]) -> tuple[List[str], int]:
    """去空行 + 大小写敏感的精确去重（保序），返回 (唯一条目, 去掉的重复数)。"""
    cleaned = [e.strip() for e in entries if e is not None and e.strip()]
    unique = list(dict.fromkeys(cleaned))
    return unique, len(cleaned) - len(unique)
