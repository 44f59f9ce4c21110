from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from flowtracer.core.enums import CrawlEvent


logger = logging.getLogger("flowtracer.events")

EventCallback = Callable[[str, Dict[str, Any]], None]

_LEVELS = {
    CrawlEvent.DEPTH_EXCEEDED_WARNING: logging.WARNING,
    CrawlEvent.RETRY_WARNING: logging.WARNING,
    CrawlEvent.RATE_LIMIT_COOLDOWN: logging.WARNING,
    CrawlEvent.FATAL_CALL_ERROR: logging.ERROR,
}


class EventSink:
    """
    Single emission point for structured crawl events.

    Every event is logged, then forwarded as (event_name, data) to the optional
    callback (progress reporter, JSON-lines writer, test recorder).
    """

    def __init__(self, callback: Optional[EventCallback] = None) -> None:
        self._callback = callback

    def emit(self, event: CrawlEvent, **data: Any) -> None:
        level = _LEVELS.get(event, logging.INFO)
        if logger.isEnabledFor(level):
            details = " ".join(f"{k}={v}" for k, v in data.items())
            logger.log(level, "%s %s", event.value, details)

        if self._callback is not None:
            self._callback(event.value, dict(data))

