from __future__ import annotations

import time
from decimal import Decimal
from typing import Any, Dict, Optional


def _dec_to_str(x: Decimal) -> str:
    # keep as string for JSON precision safety
    return format(x, "f")


def _jsonable(v: Any) -> Any:
    if isinstance(v, Decimal):
        return _dec_to_str(v)
    if isinstance(v, (list, tuple, set, frozenset)):
        return [_jsonable(x) for x in v]
    if isinstance(v, dict):
        return {str(k): _jsonable(x) for k, x in v.items()}
    if v is None or isinstance(v, (str, int, float, bool)):
        return v
    return str(v)


def event_to_dict(event: str, data: Dict[str, Any], ts: Optional[float] = None) -> Dict[str, Any]:
    return {
        "ts": round(time.time() if ts is None else ts, 3),
        "event": event,
        "data": _jsonable(data),
    }
