from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional, TextIO

from flowtracer.io.schemas import event_to_dict


class JsonlEventWriter:
    """Appends emitted crawl events to a JSON-lines file."""

    def __init__(self, path: str) -> None:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        self.path = str(p)
        self._fh: Optional[TextIO] = p.open("a", encoding="utf-8")
        self._lock = threading.Lock()
        self.count = 0

    def __call__(self, event: str, data: Dict[str, Any]) -> None:
        line = json.dumps(event_to_dict(event, data), sort_keys=True)
        with self._lock:
            if self._fh is None:
                return
            self._fh.write(line + "\n")
            self._fh.flush()
            self.count += 1

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None

    def __enter__(self) -> "JsonlEventWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
