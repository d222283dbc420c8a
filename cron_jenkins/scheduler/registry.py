"""In-memory registry of live triggers, keyed by scheduled job id.

The registry owns exactly one trigger handle per armed job id: a one-shot
``threading.Timer`` for ``once`` jobs or a ``CronTrigger`` thread for
``recurring`` jobs. Handles are never the source of truth; everything here
can be rebuilt from the job store with ``start()``.

Trigger callbacks only hand work to a thread pool, so a slow fan-out never
delays the next cron match. Overlapping fan-outs of the same job id are
allowed unless the registry is built with ``allow_overlap=False``.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from cron_jenkins.errors import ConfigResolutionError, CronJenkinsError, ExecutionFailed, ValidationError
from cron_jenkins.scheduler import repo
from cron_jenkins.scheduler.config import SchedulerConfig
from cron_jenkins.scheduler.cron import CronTrigger, resolve_timezone
from cron_jenkins.scheduler.models import utcnow
from cron_jenkins.scheduler.runner import ClientFactory, FanOutResult, execute_fan_out, make_client_factory
from cron_jenkins.scheduler.types import (
    SCHEDULE_ONCE,
    SCHEDULE_RECURRING,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
    TRIGGER_MANUAL,
    TRIGGER_SCHEDULE,
    ScheduledJob,
)


logger = logging.getLogger(__name__)


def _configured_timezone(name: Optional[str]) -> Optional[str]:
    """Return ``name`` if it is a known zone, else None (server local time)."""

    try:
        resolve_timezone(name)
    except ValidationError as exc:
        logger.warning("Ignoring cron timezone setting: %s; using server local time", exc)
        return None
    return name


class TriggerHandle:
    kind = ""

    def __init__(self, job: ScheduledJob) -> None:
        self.job = job
        self.armed_at = utcnow()

    @property
    def job_id(self) -> str:
        return self.job.id

    def start(self) -> None:
        raise NotImplementedError

    def cancel(self) -> None:
        raise NotImplementedError

    def next_fire_at(self) -> Optional[datetime]:
        raise NotImplementedError

    def describe(self) -> Dict[str, Any]:
        nxt = self.next_fire_at()
        return {
            "job_id": self.job_id,
            "job_name": self.job.name,
            "kind": self.kind,
            "armed_at": self.armed_at.isoformat() + "Z",
            "next_fire_at": nxt.isoformat() if nxt else None,
        }


class OneShotHandle(TriggerHandle):
    kind = "one_shot"

    def __init__(self, job: ScheduledJob, delay_seconds: float, on_fire: Callable[[TriggerHandle], None]) -> None:
        super().__init__(job)
        self.delay_seconds = delay_seconds
        self._timer = threading.Timer(delay_seconds, on_fire, args=(self,))
        self._timer.daemon = True
        self._timer.name = f"once-{job.id[:8]}"

    def start(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        self._timer.cancel()

    def next_fire_at(self) -> Optional[datetime]:
        return self.job.execute_at


class CronHandle(TriggerHandle):
    kind = "cron"

    def __init__(self, job: ScheduledJob, on_fire: Callable[[TriggerHandle], None], *, tz=None) -> None:
        super().__init__(job)
        self._trigger = CronTrigger(
            job.cron_expression or "",
            lambda: on_fire(self),
            tz=tz,
            name=f"cron-{job.id[:8]}",
        )

    def start(self) -> None:
        self._trigger.start()

    def cancel(self) -> None:
        self._trigger.cancel()

    def next_fire_at(self) -> Optional[datetime]:
        return self._trigger.next_fire_at


class SchedulingRegistry:
    def __init__(
        self,
        database_url: str,
        *,
        client_factory: ClientFactory,
        max_workers: int = 8,
        allow_overlap: bool = True,
        cron_timezone: Optional[str] = None,
    ) -> None:
        self.database_url = database_url
        self._client_factory = client_factory
        self._allow_overlap = allow_overlap
        self._tz = resolve_timezone(cron_timezone)

        self._lock = threading.RLock()
        self._handles: Dict[str, TriggerHandle] = {}
        self._running: Dict[str, int] = {}
        self._executor = ThreadPoolExecutor(max_workers=max(1, int(max_workers)), thread_name_prefix="fan-out")
        self._closed = False

        self.started_at = utcnow()
        self.fire_count = 0
        self.skipped_count = 0
        self.last_fire_at: Optional[datetime] = None

    @classmethod
    def from_config(cls, cfg: SchedulerConfig, client_factory: Optional[ClientFactory] = None) -> "SchedulingRegistry":
        return cls(
            cfg.database_url,
            client_factory=client_factory or make_client_factory(timeout=cfg.jenkins_timeout_seconds),
            max_workers=cfg.max_workers,
            allow_overlap=cfg.allow_overlap,
            cron_timezone=_configured_timezone(cfg.cron_timezone),
        )

    @property
    def client_factory(self) -> ClientFactory:
        return self._client_factory

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> int:
        """Arm every active job in the store; returns how many were armed."""

        armed = 0
        for job in repo.list_active_jobs(self.database_url):
            try:
                if self.arm(job):
                    armed += 1
            except CronJenkinsError as exc:
                logger.error("Could not arm job %s (%s): %s", job.name, job.id, exc)
        logger.info("Scheduler registry started: %d job(s) armed", armed)
        return armed

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            self._closed = True
            for handle in self._handles.values():
                handle.cancel()
            self._handles.clear()
        self._executor.shutdown(wait=wait)
        logger.info("Scheduler registry stopped")

    # -- arm / disarm -------------------------------------------------------

    def arm(self, job: ScheduledJob) -> bool:
        """Install a trigger for ``job``, replacing any existing one.

        Returns False when the job is left unarmed (not active, or a
        ``once`` job whose time has passed, which is marked expired).
        """

        with self._lock:
            if self._closed:
                raise RuntimeError("Scheduler registry is shut down")
            self._discard(job.id)

            if job.status != STATUS_ACTIVE:
                return False

            handle: Optional[TriggerHandle] = None
            if job.schedule_kind == SCHEDULE_ONCE:
                if job.execute_at is None:
                    raise ValidationError(f"Job {job.id} has no execution time")
                delay = (job.execute_at - utcnow()).total_seconds()
                if delay > 0:
                    handle = OneShotHandle(job, delay, self._on_fire)
            elif job.schedule_kind == SCHEDULE_RECURRING:
                handle = CronHandle(job, self._on_fire, tz=self._tz)
            else:
                raise ValidationError(f"Unknown schedule kind: {job.schedule_kind!r}")

            if handle is not None:
                self._handles[job.id] = handle
                handle.start()

        # No store I/O under the lock.
        if handle is None:
            repo.set_job_status(self.database_url, job.id, STATUS_EXPIRED)
            logger.info("Job %s (%s) expired: execution time %s has passed", job.name, job.id, job.execute_at)
            return False
        logger.info("Armed job %s (%s) as %s, next fire %s", job.name, job.id, handle.kind, handle.next_fire_at())
        return True

    def disarm(self, job_id: str) -> bool:
        with self._lock:
            removed = self._discard(job_id)
        if removed:
            logger.info("Disarmed job %s", job_id)
        return removed

    def _discard(self, job_id: str) -> bool:
        handle = self._handles.pop(job_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    # -- firing -------------------------------------------------------------

    def _on_fire(self, handle: TriggerHandle) -> None:
        job_id = handle.job_id
        with self._lock:
            if self._closed or self._handles.get(job_id) is not handle:
                logger.debug("Ignoring stale trigger for job %s", job_id)
                return
            if handle.kind == OneShotHandle.kind:
                del self._handles[job_id]
            if not self._allow_overlap and self._running.get(job_id):
                self.skipped_count += 1
                logger.info("Skipping fire of job %s: previous run still in progress", job_id)
                return
            self._running[job_id] = self._running.get(job_id, 0) + 1
            self.fire_count += 1
            self.last_fire_at = utcnow()

        try:
            self._executor.submit(self._run_scheduled, handle.job)
        except RuntimeError:
            self._release(job_id)
            logger.warning("Dropped fire of job %s: worker pool is shut down", job_id)

    def _run_scheduled(self, job: ScheduledJob) -> Optional[FanOutResult]:
        try:
            return execute_fan_out(self.database_url, job, self._client_factory, trigger=TRIGGER_SCHEDULE)
        except (ConfigResolutionError, ExecutionFailed):
            # Already recorded as a failed attempt and logged by the runner.
            return None
        except Exception:  # noqa: BLE001
            logger.exception("Scheduled run of job %s (%s) failed", job.name, job.id)
            return None
        finally:
            self._release(job.id)

    def _release(self, job_id: str) -> None:
        with self._lock:
            remaining = self._running.get(job_id, 0) - 1
            if remaining > 0:
                self._running[job_id] = remaining
            else:
                self._running.pop(job_id, None)

    def execute_now(self, job: ScheduledJob) -> FanOutResult:
        """Run a fan-out synchronously, outside of any trigger."""

        with self._lock:
            self._running[job.id] = self._running.get(job.id, 0) + 1
        try:
            return execute_fan_out(self.database_url, job, self._client_factory, trigger=TRIGGER_MANUAL)
        except (ConfigResolutionError, ExecutionFailed) as exc:
            return FanOutResult.from_error(job.id, exc)
        finally:
            self._release(job.id)

    # -- introspection ------------------------------------------------------

    def is_armed(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._handles

    def armed_job_ids(self) -> List[str]:
        with self._lock:
            return list(self._handles)

    def describe(self) -> List[Dict[str, Any]]:
        with self._lock:
            handles = list(self._handles.values())
        return [h.describe() for h in handles]

    def health(self) -> Dict[str, Any]:
        with self._lock:
            armed = len(self._handles)
            running = sum(self._running.values())
        return {
            "ok": not self._closed,
            "armed_jobs": armed,
            "running_fan_outs": running,
            "fire_count": self.fire_count,
            "skipped_count": self.skipped_count,
            "allow_overlap": self._allow_overlap,
            "started_at_utc": self.started_at.isoformat() + "Z",
            "last_fire_at_utc": self.last_fire_at.isoformat() + "Z" if self.last_fire_at else None,
        }
