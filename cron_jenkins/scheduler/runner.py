from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from cron_jenkins.errors import ConfigResolutionError, CronJenkinsError, ExecutionFailed, PersistenceError, UpstreamError
from cron_jenkins.jenkins.client import JenkinsAuthConfig, JenkinsClient
from cron_jenkins.scheduler import repo
from cron_jenkins.scheduler.reconcile import TargetOutcome, record_failure, record_reconciliation
from cron_jenkins.scheduler.types import RUN_FAILED, TRIGGER_SCHEDULE, JenkinsConfig, ScheduledJob


logger = logging.getLogger(__name__)

ClientFactory = Callable[[JenkinsConfig], JenkinsClient]

_SENSITIVE_KEYS = ("password", "token", "secret", "credential", "api_key", "apikey")


def make_client_factory(*, timeout: float = 30.0) -> ClientFactory:
    def factory(config: JenkinsConfig) -> JenkinsClient:
        return JenkinsClient(
            JenkinsAuthConfig(
                base_url=config.url,
                username=config.username,
                api_token=config.api_token,
                verify_ssl=config.verify_ssl,
                timeout=timeout,
            )
        )

    return factory


def _redact(params: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: ("***REDACTED***" if any(s in k.lower() for s in _SENSITIVE_KEYS) else v)
        for k, v in params.items()
    }


@dataclass
class FanOutResult:
    job_id: str
    history_id: Optional[str]
    status: str
    outcomes: List[TargetOutcome] = field(default_factory=list)
    summary: str = ""
    error: Optional[str] = None

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed_count(self) -> int:
        return len(self.outcomes) - self.success_count

    @classmethod
    def from_error(cls, job_id: str, exc: Union[ConfigResolutionError, ExecutionFailed]) -> "FanOutResult":
        return cls(job_id=job_id, history_id=exc.history_id, status=RUN_FAILED, summary=str(exc), error=str(exc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "history_id": self.history_id,
            "status": self.status,
            "total": len(self.outcomes),
            "success_count": self.success_count,
            "failed_count": self.failed_count,
            "results": [o.to_dict() for o in self.outcomes],
            "summary": self.summary,
            "error": self.error,
        }


def _trigger_target(client: JenkinsClient, job: ScheduledJob, target: str) -> TargetOutcome:
    params = job.parameters_for(target)
    shown = _redact(params)
    try:
        location = client.trigger_build(target, params)
    except UpstreamError as exc:
        logger.warning("Job %s (%s): target %s failed: %s", job.name, job.id, target, exc)
        return TargetOutcome(target=target, ok=False, error=str(exc), parameters=shown)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Job %s (%s): unexpected error triggering %s", job.name, job.id, target)
        return TargetOutcome(target=target, ok=False, error=f"{type(exc).__name__}: {exc}", parameters=shown)
    return TargetOutcome(target=target, ok=True, location=location, parameters=shown)


def _close_as_failed(database_url: str, history_id: str, message: str) -> None:
    try:
        record_failure(database_url, history_id, message)
    except PersistenceError:
        logger.exception("Could not close history row %s as failed", history_id)


def _mark_executed(database_url: str, job: ScheduledJob) -> None:
    try:
        repo.mark_executed(database_url, job.id)
    except PersistenceError:
        logger.exception("Could not record last execution of job %s (%s)", job.name, job.id)


def execute_fan_out(
    database_url: str,
    job: ScheduledJob,
    client_factory: ClientFactory,
    *,
    trigger: str = TRIGGER_SCHEDULE,
) -> FanOutResult:
    """Trigger every target of ``job`` and record one history entry.

    Target failures are isolated and recorded. Once the ``started`` row is
    written, every way out of this function leaves it terminal:

    - ConfigResolutionError when the job's Jenkins configuration is gone
      (no target is attempted);
    - a package error (e.g. PersistenceError) re-raised as is;
    - ExecutionFailed wrapping anything else.
    """

    entry = repo.start_execution(database_url, job.id, trigger=trigger)
    try:
        config = repo.get_jenkins_config(database_url, job.jenkins_config_id)
        if config is None:
            err = ConfigResolutionError(job.jenkins_config_id, history_id=entry.id)
            _close_as_failed(database_url, entry.id, str(err))
            logger.error("Job %s (%s): %s", job.name, job.id, err)
            raise err

        client = client_factory(config)
        outcomes = [_trigger_target(client, job, target) for target in job.targets]
        result = record_reconciliation(database_url, entry.id, outcomes)
    except ConfigResolutionError:
        raise
    except CronJenkinsError as exc:
        logger.error("Job %s (%s): attempt %s failed: %s", job.name, job.id, entry.id, exc)
        _close_as_failed(database_url, entry.id, f"{type(exc).__name__}: {exc}")
        raise
    except Exception as exc:  # noqa: BLE001
        message = f"{type(exc).__name__}: {exc}"
        logger.exception("Job %s (%s): attempt %s failed", job.name, job.id, entry.id)
        _close_as_failed(database_url, entry.id, message)
        raise ExecutionFailed(message, history_id=entry.id) from exc
    finally:
        _mark_executed(database_url, job)

    logger.info(
        "Job %s (%s) %s: %d/%d target(s) triggered",
        job.name,
        job.id,
        result.status,
        result.success_count,
        result.total,
    )
    return FanOutResult(
        job_id=job.id,
        history_id=entry.id,
        status=result.status,
        outcomes=outcomes,
        summary=result.summary,
    )
