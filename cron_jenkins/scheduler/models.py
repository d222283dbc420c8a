from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.orm import declarative_base


Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC now; every timestamp in the store is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _new_id() -> str:
    return str(uuid.uuid4())


class JenkinsConfigRecord(Base):
    __tablename__ = "jenkins_configs"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(256), unique=True, nullable=False)
    url = Column(Text, nullable=False)
    username = Column(String(256), nullable=True)
    api_token = Column(Text, nullable=True)
    verify_ssl = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)


class ScheduledJobRecord(Base):
    __tablename__ = "scheduled_jobs"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(String(256), nullable=False)
    jenkins_config_id = Column(String(36), nullable=True, index=True)

    # JSON text columns; read back through codec.normalize_job_fields.
    targets = Column(Text, default="[]", nullable=False)
    job_configs = Column(Text, default="{}", nullable=False)
    parameters = Column(Text, default="{}", nullable=False)
    # Single-target rows written before per-target configs existed.
    jenkins_job_name = Column(String(1024), nullable=True)

    schedule_kind = Column(String(16), nullable=False)
    execute_at = Column(DateTime, nullable=True)
    cron_expression = Column(String(256), nullable=True)

    status = Column(String(16), default="active", nullable=False, index=True)
    last_execution_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class ExecutionHistoryRecord(Base):
    __tablename__ = "execution_history"

    id = Column(String(36), primary_key=True, default=_new_id)
    # No foreign key: history outlives deleted jobs until purged.
    job_id = Column(String(36), nullable=False, index=True)

    status = Column(String(32), nullable=False)
    trigger = Column(String(16), default="schedule", nullable=False)
    start_time = Column(DateTime, default=utcnow, nullable=False, index=True)
    end_time = Column(DateTime, nullable=True)
    log_output = Column(Text, nullable=True)
    results = Column(Text, nullable=True)
