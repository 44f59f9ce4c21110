from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from flowtracer.core.events import EventSink
from flowtracer.core.models import CrawlConfig


class DepthRegistry:
    """
    Address -> smallest hop count from any seed seen so far.

    Depth only ever moves down, so an address keeps its nearest-path depth even
    when it is reached again through a longer path later on.
    """

    def __init__(self) -> None:
        self._depth: Dict[str, int] = {}

    def observe(self, address: str, depth: int) -> bool:
        current = self._depth.get(address)
        if current is not None and depth >= current:
            return False
        self._depth[address] = depth
        return True

    def min_depth(self, address: str) -> Optional[int]:
        return self._depth.get(address)

    def items(self) -> List[Tuple[str, int]]:
        return list(self._depth.items())

    def __contains__(self, address: object) -> bool:
        return address in self._depth

    def __len__(self) -> int:
        return len(self._depth)


@dataclass(frozen=True)
class QueueItem:
    address: str
    depth: int


class CrawlState:
    """
    Shared mutable state of one crawl run.

    Only the crawl thread mutates it; the live transport hands notifications over
    through a queue instead of touching these structures directly.
    """

    def __init__(self, config: CrawlConfig, events: Optional[EventSink] = None) -> None:
        self.config = config
        self.events = events or EventSink()

        self.registry = DepthRegistry()
        self.seen: Set[str] = set()
        self.queue: Deque[QueueItem] = deque()
        self.enqueued: Set[str] = set()
        self.backfilled: Set[str] = set()
        self.watch: Dict[str, Any] = {}

    def mark_seen(self, signature: str) -> bool:
        """Return True the first time a signature is marked."""
        if signature in self.seen:
            return False
        self.seen.add(signature)
        return True

    def current_depth(self, address: str, fallback: int = 0) -> int:
        depth = self.registry.min_depth(address)
        return fallback if depth is None else depth
