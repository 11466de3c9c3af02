"""
Event Log
User-facing progress lines shown on the page, mirrored to the server log.
"""
from collections import deque
from typing import Deque, List, Optional
import structlog

from pdfchat.config import get_settings
from pdfchat.models.schemas import LogEntry

logger = structlog.get_logger()


class EventLog:
    """Bounded, append-only list of log lines."""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries or get_settings().event_log_size
        self._entries: Deque[LogEntry] = deque(maxlen=self.max_entries)
        # Lines ever written, including ones already evicted
        self._total = 0

    def log(self, message: str) -> LogEntry:
        entry = LogEntry(message=message)
        self._entries.append(entry)
        self._total += 1
        logger.info("event", message=message)
        return entry

    @property
    def total(self) -> int:
        return self._total

    def entries(self, since: int = 0) -> List[LogEntry]:
        """
        Return lines written at or after position `since`.

        Positions count every line ever written, so a client can poll with
        the `total` it saw last and only receive new lines.
        """
        first_kept = self._total - len(self._entries)
        start = max(since - first_kept, 0)
        return list(self._entries)[start:]

    def clear(self) -> None:
        self._entries.clear()
        self._total = 0
