from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Tuple

from cbam_engine.errors import AuditWriteError
from cbam_engine.mrv.lineage import sha256_json

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuditRecord:
    input_hash: str
    input_summary: Dict[str, Any]
    data_sources: Tuple[str, ...]
    result_hash: str = ""
    event_type: str = "calculation"
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "input_hash": self.input_hash,
            "input_summary": dict(self.input_summary),
            "data_sources": list(self.data_sources),
            "result_hash": self.result_hash,
        }


AuditSink = Callable[[AuditRecord], None]


class AuditLog:
    """Append-only calculation trail.

    Records land in memory first, then go to each sink (e.g. SqlAuditSink).
    Every sink sees every record; failures are collected and raised as one
    AuditWriteError after the in-memory append, so the trail itself is never
    lost. The calculator reports it and moves on.
    Ordering across threads is not guaranteed, per-thread ordering is.
    """

    def __init__(self, sinks: Iterable[AuditSink] | None = None) -> None:
        self._lock = threading.Lock()
        self._records: List[AuditRecord] = []
        self._sinks: List[AuditSink] = list(sinks or [])

    def add_sink(self, sink: AuditSink) -> None:
        self._sinks.append(sink)

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self._records.append(record)
        failures = []
        for sink in list(self._sinks):
            try:
                sink(record)
            except Exception as exc:
                failures.append((sink, exc))
        if failures:
            detail = "; ".join(f"{sink!r}: {exc}" for sink, exc in failures)
            raise AuditWriteError(
                f"{len(failures)} audit sink(s) failed: {detail}",
                failures=[exc for _, exc in failures],
            ) from failures[0][1]

    def record_calculation(
        self,
        payload: Dict[str, Any],
        *,
        data_sources: Iterable[str],
        result_hash: str = "",
    ) -> AuditRecord:
        rec = AuditRecord(
            input_hash=sha256_json(payload),
            input_summary=dict(payload),
            data_sources=tuple(sorted(set(data_sources))),
            result_hash=result_hash,
        )
        self.append(rec)
        return rec

    def entries(self) -> List[AuditRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        return len(self._records)
