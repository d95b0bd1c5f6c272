# app/services/sales_order_notes.py
from __future__ import annotations

from typing import Optional

CANCEL_REASON_PREFIX = "Cancellation reason: "
NOTES_SEPARATOR = "\n\n"
ELLIPSIS = "…"


def format_cancellation_notes(existing: Optional[str], reason: str, max_len: int = 500) -> str:
    """
    取消原因追加到备注：`<原备注>\\n\\n<前缀><原因>`，总长不超过 max_len。

    截断策略（确定性）：
      1) 原因行优先保留；原因行本身超长时只截掉它的尾部
      2) 剩余空间留给原备注，保留其最近（尾部）的内容，头部以 … 标记截断
      3) 空间不足以放下分隔符 + 至少一个字符时，丢弃原备注
    """
    if max_len <= 0:
        return ""

    reason_line = CANCEL_REASON_PREFIX + (reason or "").strip()
    if len(reason_line) > max_len:
        reason_line = reason_line[:max_len]

    old = (existing or "").strip()
    if not old:
        return reason_line

    room = max_len - len(reason_line) - len(NOTES_SEPARATOR)
    if room <= len(ELLIPSIS):
        return reason_line

    if len(old) > room:
        old = ELLIPSIS + old[len(old) - (room - len(ELLIPSIS)) :]

    return old + NOTES_SEPARATOR + reason_line
