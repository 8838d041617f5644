# orderflow/services/entry_validator.py
"""
扫描/手录条目校验（纯函数，无副作用，任何字符串输入都不抛异常）。

拒绝规则（均为 INVALID_FORMAT）：
  - 清洗后长度 < 5
  - 科学计数法数字（Excel 把长数字列格式化坏了，例如 1.23E+10）
  - 正好是某个快递公司名（扫到了面单上的 logo 文字，而不是单号）
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from orderflow.models.enums import ErrorCode

MIN_ENTRY_LENGTH = 5

_SCIENTIFIC_RE = re.compile(r"^\d+\.?\d*[eE][+\-]?\d+$")
_TOKEN_RE = re.compile(r"[A-Za-z0-9\-#]+")

COURIER_NAMES = frozenset(
    {
        "postex",
        "leopard",
        "leopards",
        "tcs",
        "callcourier",
        "call courier",
        "dhl",
        "fedex",
        "m&p",
        "swyft",
        "trax",
    }
)


@dataclass(frozen=True)
class EntryCheck:
    ok: bool
    entry: str
    code: Optional[ErrorCode] = None
    message: Optional[str] = None
    suggestion: Optional[str] = None


def clean_entry(raw: object) -> str:
    """
    扫描枪噪声清洗：trim → 去引号 → 取第一个 [A-Za-z0-9-#]+ 片段。
    没有合法片段时返回 trim 后的原串，交给 validate 判定。
    """
    if not isinstance(raw, str):
        raw = "" if raw is None else str(raw)
    s = raw.strip().strip("\"'").strip()
    m = _TOKEN_RE.search(s)
    return m.group(0) if m else s


def validate(entry: object) -> EntryCheck:
    """
    校验原始录入；通过时 EntryCheck.entry 为清洗后的条目。
    快递名 / 科学计数法在清洗前判断（清洗会把 1.5E+10 截成 1）。
    """
    if not isinstance(entry, str):
        entry = "" if entry is None else str(entry)
    s = entry.strip().strip("\"'").strip()

    # 先判快递名（"TCS" 本身也短于 5，给更准确的提示）
    if s.lower() in COURIER_NAMES:
        return EntryCheck(
            ok=False,
            entry=s,
            code=ErrorCode.INVALID_FORMAT,
            message=f"'{s}' is a courier name, not a tracking id or order number",
            suggestion="Scan the barcode under the courier logo, not the logo text",
        )

    if _SCIENTIFIC_RE.match(s):
        return EntryCheck(
            ok=False,
            entry=s,
            code=ErrorCode.INVALID_FORMAT,
            message=f"'{s}' looks like a number in scientific notation",
            suggestion="Format the Excel column as Text before copying",
        )

    s = clean_entry(s)
    if len(s) < MIN_ENTRY_LENGTH:
        return EntryCheck(
            ok=False,
            entry=s,
            code=ErrorCode.INVALID_FORMAT,
            message=f"Entry too short (min {MIN_ENTRY_LENGTH} characters)",
            suggestion="Check that the full tracking id or order number was scanned",
        )

    return EntryCheck(ok=True, entry=s)
