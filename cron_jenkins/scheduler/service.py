from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from cron_jenkins.errors import CronJenkinsError, JobNotFound, ValidationError
from cron_jenkins.jenkins.client import JenkinsClient
from cron_jenkins.jenkins.parameters import collect_parameters
from cron_jenkins.scheduler import repo
from cron_jenkins.scheduler.config import SchedulerConfig
from cron_jenkins.scheduler.registry import SchedulingRegistry
from cron_jenkins.scheduler.runner import ClientFactory, FanOutResult
from cron_jenkins.scheduler.schemas import JenkinsConfigPayload, JobPayload, parse_payload
from cron_jenkins.scheduler.types import (
    STATUS_ACTIVE,
    STATUS_INACTIVE,
    ExecutionHistoryEntry,
    JenkinsConfig,
    ScheduledJob,
)


logger = logging.getLogger(__name__)


class SchedulerService:
    """Request-scoped operations behind the control surface.

    Every mutation goes to the job store first and is then mirrored into
    the registry (arm, re-arm or disarm).
    """

    def __init__(
        self,
        database_url: str,
        registry: SchedulingRegistry,
        client_factory: ClientFactory,
        *,
        history_limit: int = 50,
        default_verify_ssl: bool = True,
    ) -> None:
        self.database_url = database_url
        self.registry = registry
        self._client_factory = client_factory
        self.history_limit = history_limit
        self.default_verify_ssl = default_verify_ssl

    @classmethod
    def from_config(cls, cfg: SchedulerConfig, client_factory: Optional[ClientFactory] = None) -> "SchedulerService":
        registry = SchedulingRegistry.from_config(cfg, client_factory)
        return cls(
            cfg.database_url,
            registry,
            registry.client_factory,
            history_limit=cfg.history_limit,
            default_verify_ssl=cfg.jenkins_verify_ssl,
        )

    # -- scheduled jobs -----------------------------------------------------

    def _require_job(self, job_id: str) -> ScheduledJob:
        job = repo.get_job(self.database_url, str(job_id))
        if job is None:
            raise JobNotFound("scheduled job", str(job_id))
        return job

    def _require_config(self, config_id: Optional[str]) -> JenkinsConfig:
        if not config_id:
            raise ValidationError("jenkins_config_id is required")
        config = repo.get_jenkins_config(self.database_url, config_id)
        if config is None:
            raise JobNotFound("Jenkins configuration", str(config_id))
        return config

    def create_job(self, payload: Any) -> ScheduledJob:
        data = parse_payload(JobPayload, payload)
        self._require_config(data.jenkins_config_id)
        job = repo.create_job(self.database_url, **data.to_store_kwargs())
        logger.info("Created scheduled job %s (%s), %d target(s)", job.name, job.id, len(job.targets))
        return self._arm(job)

    def update_job(self, job_id: str, payload: Any) -> ScheduledJob:
        data = parse_payload(JobPayload, payload)
        previous = self._require_job(job_id)
        self._require_config(data.jenkins_config_id)

        self.registry.disarm(str(job_id))
        try:
            job = repo.update_job(self.database_url, str(job_id), **data.to_store_kwargs())
        except CronJenkinsError:
            self._rearm_after_failed_update(previous)
            raise
        if job is None:
            raise JobNotFound("scheduled job", str(job_id))
        logger.info("Updated scheduled job %s (%s)", job.name, job.id)
        return self._arm(job)

    def _rearm_after_failed_update(self, job: ScheduledJob) -> None:
        try:
            self.registry.arm(job)
        except CronJenkinsError:
            logger.exception("Could not re-arm job %s (%s) after a failed update", job.name, job.id)

    def _arm(self, job: ScheduledJob) -> ScheduledJob:
        if self.registry.arm(job):
            return job
        # arm() may have moved a past one-time job to expired.
        return repo.get_job(self.database_url, job.id) or job

    def get_job(self, job_id: str) -> ScheduledJob:
        return self._require_job(job_id)

    def list_jobs(self, status: Optional[str] = None) -> List[ScheduledJob]:
        return repo.list_jobs(self.database_url, status=status)

    def set_status(self, job_id: str, status: str) -> ScheduledJob:
        if status not in (STATUS_ACTIVE, STATUS_INACTIVE):
            raise ValidationError("status must be 'active' or 'inactive'")
        if not repo.set_job_status(self.database_url, str(job_id), status):
            raise JobNotFound("scheduled job", str(job_id))

        job = self._require_job(job_id)
        if status == STATUS_ACTIVE:
            return self._arm(job)
        self.registry.disarm(job.id)
        return job

    def delete_job(self, job_id: str) -> bool:
        """Disarm and delete a job. Its history rows stay until purged."""

        self.registry.disarm(str(job_id))
        if not repo.delete_job(self.database_url, str(job_id)):
            raise JobNotFound("scheduled job", str(job_id))
        logger.info("Deleted scheduled job %s", job_id)
        return True

    def execute_now(self, job_id: str) -> FanOutResult:
        job = self._require_job(job_id)
        return self.registry.execute_now(job)

    # -- history ------------------------------------------------------------

    def list_history(self, job_id: Optional[str] = None, limit: Optional[int] = None) -> List[ExecutionHistoryEntry]:
        return repo.list_history(self.database_url, job_id=job_id, limit=int(limit or self.history_limit))

    def purge_history(self, job_id: str) -> int:
        removed = repo.purge_history(self.database_url, str(job_id))
        logger.info("Purged %d history row(s) of job %s", removed, job_id)
        return removed

    # -- Jenkins configurations and discovery -----------------------------

    def add_jenkins_config(self, payload: Any) -> JenkinsConfig:
        data = parse_payload(JenkinsConfigPayload, payload)
        return repo.create_jenkins_config(
            self.database_url,
            name=data.name,
            url=data.url,
            username=data.username,
            api_token=data.api_token,
            verify_ssl=self.default_verify_ssl if data.verify_ssl is None else data.verify_ssl,
        )

    def list_jenkins_configs(self) -> List[JenkinsConfig]:
        return repo.list_jenkins_configs(self.database_url)

    def delete_jenkins_config(self, config_id: str) -> bool:
        if not repo.delete_jenkins_config(self.database_url, str(config_id)):
            raise JobNotFound("Jenkins configuration", str(config_id))
        return True

    def _client(self, config_id: str) -> JenkinsClient:
        return self._client_factory(self._require_config(config_id))

    def list_jenkins_jobs(self, config_id: str) -> List[Dict[str, Any]]:
        return [j.to_dict() for j in self._client(config_id).list_jobs()]

    def describe_target(self, config_id: str, target: str) -> Dict[str, Any]:
        definitions = self._client(config_id).get_parameter_definitions(target)
        return {
            "target": target,
            "parameters": [d.to_dict() for d in definitions],
            "defaults": {d.name: d.default for d in definitions if d.default is not None},
        }

    def collect_target_parameters(self, config_id: str, target: str, submitted: Mapping[str, Any]) -> Dict[str, Any]:
        """Validate submitted form values against the target's definitions."""

        definitions = self._client(config_id).get_parameter_definitions(target)
        return collect_parameters(definitions, submitted or {})

    def git_branches(self, config_id: str, target: str) -> List[str]:
        return self._client(config_id).get_git_branches(target)

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> int:
        return self.registry.start()

    def shutdown(self) -> None:
        self.registry.shutdown()

    def health(self) -> Dict[str, Any]:
        return {
            "service": "cron-jenkins",
            "db": self.database_url.split(":", 1)[0],
            **self.registry.health(),
        }
