from __future__ import annotations

import json
from typing import Any, Dict, List

from sqlalchemy import create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cbam_engine.db.models import AuditEvent, Base
from cbam_engine.mrv.audit import AuditRecord


def make_engine(url: str) -> Engine:
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)
    if ":memory:" in url or url.rstrip("/") == "sqlite:":
        # one shared connection, otherwise every session sees an empty database
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, connect_args={"check_same_thread": False})


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


class SqlAuditSink:
    """AuditLog sink writing one AuditEvent row per record.

    Errors propagate to AuditLog.append, which wraps them in AuditWriteError.
    """

    def __init__(self, url: str) -> None:
        self.engine = make_engine(url)
        init_db(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, autocommit=False)

    def db(self):
        return self.SessionLocal()

    def __call__(self, record: AuditRecord) -> None:
        d = record.to_dict()
        ev = AuditEvent(
            event_type=str(record.event_type),
            input_hash=str(record.input_hash),
            result_hash=str(record.result_hash or ""),
            input_json=json.dumps(d["input_summary"], ensure_ascii=False, sort_keys=True, default=str),
            data_sources_json=json.dumps(d["data_sources"], ensure_ascii=False),
            created_at=record.timestamp,
        )
        with self.db() as s:
            s.add(ev)
            s.commit()

    def list_events(self) -> List[Dict[str, Any]]:
        with self.db() as s:
            rows = s.execute(select(AuditEvent).order_by(AuditEvent.id.asc())).scalars().all()
            return [
                {
                    "id": int(r.id),
                    "event_type": str(r.event_type),
                    "input_hash": str(r.input_hash),
                    "result_hash": str(r.result_hash or ""),
                    "input_summary": json.loads(r.input_json or "{}"),
                    "data_sources": json.loads(r.data_sources_json or "[]"),
                }
                for r in rows
            ]
