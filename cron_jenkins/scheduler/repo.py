from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from cron_jenkins.errors import PersistenceError, ValidationError
from cron_jenkins.scheduler.codec import dumps, normalize_job_fields, parse_list
from cron_jenkins.scheduler.db import get_engine, get_sessionmaker
from cron_jenkins.scheduler.models import (
    Base,
    ExecutionHistoryRecord,
    JenkinsConfigRecord,
    ScheduledJobRecord,
    utcnow,
)
from cron_jenkins.scheduler.types import (
    RUN_STARTED,
    STATUS_ACTIVE,
    TRIGGER_SCHEDULE,
    ExecutionHistoryEntry,
    JenkinsConfig,
    ScheduledJob,
)


@contextmanager
def _session(database_url: str) -> Iterator[Session]:
    sm = get_sessionmaker(database_url)
    try:
        with sm() as s:
            yield s
    except IntegrityError as exc:
        raise ValidationError(f"Conflicting record: {exc.orig}") from exc
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Job store error: {exc}") from exc


def init_db(database_url: str) -> None:
    try:
        Base.metadata.create_all(get_engine(database_url))
    except SQLAlchemyError as exc:
        raise PersistenceError(f"Could not initialise job store: {exc}") from exc


def _to_config(row: JenkinsConfigRecord) -> JenkinsConfig:
    return JenkinsConfig(
        id=row.id,
        name=row.name,
        url=row.url,
        username=row.username,
        api_token=row.api_token,
        verify_ssl=bool(row.verify_ssl),
        created_at=row.created_at,
    )


def _to_job(row: ScheduledJobRecord) -> ScheduledJob:
    targets, job_configs, parameters = normalize_job_fields(
        row.targets, row.job_configs, row.parameters, row.jenkins_job_name
    )
    return ScheduledJob(
        id=row.id,
        name=row.name,
        jenkins_config_id=row.jenkins_config_id,
        targets=targets,
        job_configs=job_configs,
        parameters=parameters,
        schedule_kind=row.schedule_kind,
        execute_at=row.execute_at,
        cron_expression=row.cron_expression,
        status=row.status,
        last_execution_at=row.last_execution_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_history(row: ExecutionHistoryRecord, job_name: Optional[str] = None) -> ExecutionHistoryEntry:
    return ExecutionHistoryEntry(
        id=row.id,
        job_id=row.job_id,
        status=row.status,
        trigger=row.trigger,
        start_time=row.start_time,
        end_time=row.end_time,
        log_output=row.log_output,
        results=[r for r in parse_list(row.results) if isinstance(r, dict)],
        job_name=job_name,
    )


# --- Jenkins configurations -------------------------------------------------


def create_jenkins_config(
    database_url: str,
    *,
    name: str,
    url: str,
    username: Optional[str] = None,
    api_token: Optional[str] = None,
    verify_ssl: bool = True,
) -> JenkinsConfig:
    with _session(database_url) as s:
        row = JenkinsConfigRecord(
            name=str(name),
            url=str(url).rstrip("/"),
            username=username or None,
            api_token=api_token or None,
            verify_ssl=bool(verify_ssl),
        )
        s.add(row)
        s.commit()
        return _to_config(row)


def list_jenkins_configs(database_url: str) -> List[JenkinsConfig]:
    with _session(database_url) as s:
        rows = s.execute(select(JenkinsConfigRecord).order_by(JenkinsConfigRecord.name)).scalars().all()
        return [_to_config(r) for r in rows]


def get_jenkins_config(database_url: str, config_id: Optional[str]) -> Optional[JenkinsConfig]:
    if not config_id:
        return None
    with _session(database_url) as s:
        row = s.get(JenkinsConfigRecord, str(config_id))
        return _to_config(row) if row else None


def delete_jenkins_config(database_url: str, config_id: str) -> bool:
    """Delete a configuration; rejected while any scheduled job uses it."""

    with _session(database_url) as s:
        in_use = s.execute(
            select(func.count()).select_from(ScheduledJobRecord).where(ScheduledJobRecord.jenkins_config_id == str(config_id))
        ).scalar_one()
        if in_use:
            raise ValidationError(f"Jenkins configuration {config_id} is used by {in_use} scheduled job(s)")
        row = s.get(JenkinsConfigRecord, str(config_id))
        if not row:
            return False
        s.delete(row)
        s.commit()
        return True


# --- Scheduled jobs -----------------------------------------------------------


def _apply_job_fields(
    row: ScheduledJobRecord,
    *,
    name: str,
    jenkins_config_id: Optional[str],
    targets: List[str],
    job_configs: Dict[str, Dict[str, Any]],
    parameters: Optional[Dict[str, Any]],
    schedule_kind: str,
    execute_at: Optional[datetime],
    cron_expression: Optional[str],
    status: str,
) -> None:
    row.name = str(name)
    row.jenkins_config_id = str(jenkins_config_id) if jenkins_config_id else None
    row.targets = dumps(list(targets))
    row.job_configs = dumps({t: dict(p or {}) for t, p in job_configs.items()})
    row.parameters = dumps(dict(parameters or {}))
    row.jenkins_job_name = targets[0] if targets else None
    row.schedule_kind = schedule_kind
    row.execute_at = execute_at
    row.cron_expression = cron_expression
    row.status = status


def create_job(
    database_url: str,
    *,
    name: str,
    jenkins_config_id: Optional[str],
    targets: List[str],
    job_configs: Dict[str, Dict[str, Any]],
    schedule_kind: str,
    execute_at: Optional[datetime] = None,
    cron_expression: Optional[str] = None,
    parameters: Optional[Dict[str, Any]] = None,
    status: str = STATUS_ACTIVE,
) -> ScheduledJob:
    if not targets:
        raise ValidationError("A scheduled job needs at least one target")
    with _session(database_url) as s:
        row = ScheduledJobRecord()
        _apply_job_fields(
            row,
            name=name,
            jenkins_config_id=jenkins_config_id,
            targets=targets,
            job_configs=job_configs,
            parameters=parameters,
            schedule_kind=schedule_kind,
            execute_at=execute_at,
            cron_expression=cron_expression,
            status=status,
        )
        s.add(row)
        s.commit()
        return _to_job(row)


def update_job(
    database_url: str,
    job_id: str,
    *,
    name: str,
    jenkins_config_id: Optional[str],
    targets: List[str],
    job_configs: Dict[str, Dict[str, Any]],
    schedule_kind: str,
    execute_at: Optional[datetime] = None,
    cron_expression: Optional[str] = None,
    parameters: Optional[Dict[str, Any]] = None,
    status: str = STATUS_ACTIVE,
) -> Optional[ScheduledJob]:
    if not targets:
        raise ValidationError("A scheduled job needs at least one target")
    with _session(database_url) as s:
        row = s.get(ScheduledJobRecord, str(job_id))
        if row is None:
            return None
        _apply_job_fields(
            row,
            name=name,
            jenkins_config_id=jenkins_config_id,
            targets=targets,
            job_configs=job_configs,
            parameters=parameters,
            schedule_kind=schedule_kind,
            execute_at=execute_at,
            cron_expression=cron_expression,
            status=status,
        )
        s.commit()
        return _to_job(row)


def get_job(database_url: str, job_id: str) -> Optional[ScheduledJob]:
    with _session(database_url) as s:
        row = s.get(ScheduledJobRecord, str(job_id))
        return _to_job(row) if row else None


def list_jobs(database_url: str, *, status: Optional[str] = None) -> List[ScheduledJob]:
    with _session(database_url) as s:
        q = select(ScheduledJobRecord).order_by(ScheduledJobRecord.created_at.desc())
        if status:
            q = q.where(ScheduledJobRecord.status == status)
        return [_to_job(r) for r in s.execute(q).scalars().all()]


def list_active_jobs(database_url: str) -> List[ScheduledJob]:
    return list_jobs(database_url, status=STATUS_ACTIVE)


def delete_job(database_url: str, job_id: str) -> bool:
    """Delete a job row. Its history rows are kept (see purge_history)."""

    with _session(database_url) as s:
        row = s.get(ScheduledJobRecord, str(job_id))
        if not row:
            return False
        s.delete(row)
        s.commit()
        return True


def set_job_status(database_url: str, job_id: str, status: str) -> bool:
    with _session(database_url) as s:
        result = s.execute(
            update(ScheduledJobRecord)
            .where(ScheduledJobRecord.id == str(job_id))
            .values(status=status, updated_at=utcnow())
        )
        s.commit()
        return bool(result.rowcount)


def mark_executed(database_url: str, job_id: str, *, at: Optional[datetime] = None) -> bool:
    with _session(database_url) as s:
        result = s.execute(
            update(ScheduledJobRecord)
            .where(ScheduledJobRecord.id == str(job_id))
            .values(last_execution_at=at or utcnow())
        )
        s.commit()
        return bool(result.rowcount)


# --- Execution history --------------------------------------------------------


def start_execution(database_url: str, job_id: str, *, trigger: str = TRIGGER_SCHEDULE) -> ExecutionHistoryEntry:
    with _session(database_url) as s:
        row = ExecutionHistoryRecord(
            job_id=str(job_id),
            status=RUN_STARTED,
            trigger=trigger,
            start_time=utcnow(),
        )
        s.add(row)
        s.commit()
        return _to_history(row)


def finish_execution(
    database_url: str,
    history_id: str,
    *,
    status: str,
    log_output: str,
    results: Optional[List[Dict[str, Any]]] = None,
) -> Optional[ExecutionHistoryEntry]:
    """Move a ``started`` row to its terminal status in place."""

    with _session(database_url) as s:
        row = s.get(ExecutionHistoryRecord, str(history_id))
        if row is None:
            return None
        row.status = status
        row.end_time = utcnow()
        row.log_output = log_output
        row.results = dumps(list(results or []))
        s.commit()
        return _to_history(row)


def get_history_entry(database_url: str, history_id: str) -> Optional[ExecutionHistoryEntry]:
    with _session(database_url) as s:
        row = s.get(ExecutionHistoryRecord, str(history_id))
        return _to_history(row) if row else None


def list_history(database_url: str, *, job_id: Optional[str] = None, limit: int = 50) -> List[ExecutionHistoryEntry]:
    with _session(database_url) as s:
        q = (
            select(ExecutionHistoryRecord, ScheduledJobRecord.name)
            .outerjoin(ScheduledJobRecord, ScheduledJobRecord.id == ExecutionHistoryRecord.job_id)
            .order_by(ExecutionHistoryRecord.start_time.desc())
            .limit(int(limit))
        )
        if job_id:
            q = q.where(ExecutionHistoryRecord.job_id == str(job_id))
        return [_to_history(row, job_name) for row, job_name in s.execute(q).all()]


def purge_history(database_url: str, job_id: str) -> int:
    with _session(database_url) as s:
        result = s.execute(delete(ExecutionHistoryRecord).where(ExecutionHistoryRecord.job_id == str(job_id)))
        s.commit()
        return int(result.rowcount or 0)
