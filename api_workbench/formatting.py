"""Display helpers for response records."""

from __future__ import annotations

import json

from api_workbench.models import JsonBody, ResponseRecord, TextBody


def format_size(num_bytes: int) -> str:
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


def format_time(ms: float) -> str:
    if ms < 1:
        return "< 1ms"
    if ms < 1000:
        return f"{round(ms)}ms"
    return f"{ms / 1000:.2f}s"


def status_class(status: int) -> str:
    """Badge class: success (2xx), redirect (3xx), error (4xx/5xx), none."""
    if 200 <= status < 300:
        return "success"
    if status >= 400:
        return "error"
    if status >= 300:
        return "redirect"
    return "none"


def total_size(record: ResponseRecord) -> int:
    return record.size.headers + record.size.body


def display_text(record: ResponseRecord) -> str:
    """Body as shown and copied: text verbatim, JSON pretty-printed."""
    if isinstance(record.body, TextBody):
        return record.body.text
    if isinstance(record.body, JsonBody):
        return json.dumps(record.body.value, indent=2, ensure_ascii=False)
    return ""
