"""
Timing spans exported in Chrome trace-event format.

When enabled, every span becomes a complete ("X") event and the collected
events are written to trace-<unix-microseconds>.json, which loads in
chrome://tracing or https://ui.perfetto.dev.
"""

import json
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


def _now_us() -> int:
    return time.perf_counter_ns() // 1000


class Tracer:
    """Collects spans in memory and writes them once at the end of a run."""

    def __init__(self, enabled: bool = False, directory: Optional[Path] = None):
        self.enabled = enabled
        self.directory = directory or Path.cwd()
        self.path = self.directory / f"trace-{time.time_ns() // 1000}.json"
        self.events: List[Dict] = []
        self._origin = _now_us()
        self._lock = threading.Lock()

    @contextmanager
    def span(self, name: str, **args) -> Iterator[None]:
        """Time the enclosed block as one trace event."""
        if not self.enabled:
            yield
            return

        start = _now_us()
        try:
            yield
        finally:
            event = {
                "name": name,
                "cat": "ai_cli",
                "ph": "X",
                "ts": start - self._origin,
                "dur": _now_us() - start,
                "pid": os.getpid(),
                "tid": threading.get_ident(),
            }
            if args:
                event["args"] = {k: str(v) for k, v in args.items()}
            with self._lock:
                self.events.append(event)

    def close(self) -> Optional[Path]:
        """
        Write collected events to the trace file.

        Returns:
            Path of the written file, or None when tracing is disabled
        """
        if not self.enabled:
            return None

        with self._lock:
            payload = {"traceEvents": list(self.events), "displayTimeUnit": "ms"}
        with open(self.path, "w") as f:
            json.dump(payload, f)
        logger.info(f"Trace written to {self.path} ({len(payload['traceEvents'])} events)")
        return self.path
