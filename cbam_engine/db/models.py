from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String(100), nullable=False, index=True)
    input_hash = Column(String(64), nullable=False, index=True)
    result_hash = Column(String(64), default="")

    input_json = Column(Text, default="{}")
    data_sources_json = Column(Text, default="[]")

    created_at = Column(DateTime(timezone=True), default=utcnow)
