from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


SCHEDULE_ONCE = "once"
SCHEDULE_RECURRING = "recurring"
SCHEDULE_KINDS = frozenset({SCHEDULE_ONCE, SCHEDULE_RECURRING})

STATUS_ACTIVE = "active"
STATUS_INACTIVE = "inactive"
STATUS_EXPIRED = "expired"
JOB_STATUSES = frozenset({STATUS_ACTIVE, STATUS_INACTIVE, STATUS_EXPIRED})

RUN_STARTED = "started"
RUN_SUCCESS = "success"
RUN_PARTIAL = "partial_success"
RUN_FAILED = "failed"
RUN_TERMINAL = frozenset({RUN_SUCCESS, RUN_PARTIAL, RUN_FAILED})

TRIGGER_SCHEDULE = "schedule"
TRIGGER_MANUAL = "manual"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


@dataclass(frozen=True)
class JenkinsConfig:
    id: str
    name: str
    url: str
    username: Optional[str] = None
    api_token: Optional[str] = field(default=None, repr=False)
    verify_ssl: bool = True
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        # The token is write-only.
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "username": self.username,
            "has_token": bool(self.api_token),
            "verify_ssl": self.verify_ssl,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class ScheduledJob:
    id: str
    name: str
    jenkins_config_id: Optional[str]
    targets: List[str]
    job_configs: Dict[str, Dict[str, Any]]
    schedule_kind: str
    status: str
    execute_at: Optional[datetime] = None
    cron_expression: Optional[str] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    last_execution_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_once(self) -> bool:
        return self.schedule_kind == SCHEDULE_ONCE

    def parameters_for(self, target: str) -> Dict[str, Any]:
        """Per-target parameters, else the job-level defaults."""

        if target in self.job_configs:
            return dict(self.job_configs[target])
        return dict(self.parameters)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "jenkins_config_id": self.jenkins_config_id,
            "targets": list(self.targets),
            "job_configs": {t: dict(p) for t, p in self.job_configs.items()},
            "parameters": dict(self.parameters),
            "schedule_kind": self.schedule_kind,
            "execute_at": _iso(self.execute_at),
            "cron_expression": self.cron_expression,
            "status": self.status,
            "last_execution_at": _iso(self.last_execution_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class ExecutionHistoryEntry:
    id: str
    job_id: str
    status: str
    trigger: str
    start_time: datetime
    end_time: Optional[datetime] = None
    log_output: Optional[str] = None
    results: List[Dict[str, Any]] = field(default_factory=list)
    job_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "job_name": self.job_name,
            "status": self.status,
            "trigger": self.trigger,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "log_output": self.log_output,
            "results": list(self.results),
        }
