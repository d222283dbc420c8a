import threading
import time
from datetime import timedelta

import pytest

from cron_jenkins.errors import UpstreamUnavailable
from cron_jenkins.scheduler import repo
from cron_jenkins.scheduler.db import dispose_engine
from cron_jenkins.scheduler.models import utcnow
from cron_jenkins.scheduler.registry import SchedulingRegistry
from cron_jenkins.scheduler.service import SchedulerService


class FakeClient:
    """Records trigger_build calls instead of talking to Jenkins."""

    def __init__(self):
        self.failing = set()
        self.errors = {}
        self.calls = []
        self.definitions = {}
        self.jobs = []
        self.gate = None
        self._lock = threading.Lock()

    def trigger_build(self, target, parameters=None):
        with self._lock:
            self.calls.append((target, dict(parameters or {})))
            n = len(self.calls)
        if self.gate is not None:
            self.gate.wait(5)
        if target in self.errors:
            raise self.errors[target]
        if target in self.failing:
            raise UpstreamUnavailable(f"Jenkins server error (503) for {target}", status=503)
        return f"https://jenkins.example.com/queue/item/{n}/"

    def targets_called(self):
        with self._lock:
            return [t for t, _ in self.calls]

    def list_jobs(self):
        return list(self.jobs)

    def get_parameter_definitions(self, target):
        return list(self.definitions.get(target, []))

    def get_git_branches(self, target):
        return ["origin/main", "origin/release"]


@pytest.fixture
def database_url(tmp_path):
    url = f"sqlite:///{(tmp_path / 'cron_jenkins.db').as_posix()}"
    repo.init_db(url)
    yield url
    dispose_engine(url)


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def jenkins_config(database_url):
    return repo.create_jenkins_config(
        database_url,
        name="ci",
        url="https://jenkins.example.com",
        username="bot",
        api_token="s3cret",
    )


@pytest.fixture
def registry(database_url, fake_client):
    reg = SchedulingRegistry(database_url, client_factory=lambda cfg: fake_client, max_workers=4)
    yield reg
    reg.shutdown(wait=True)


@pytest.fixture
def service(database_url, registry):
    return SchedulerService(database_url, registry, registry.client_factory)


@pytest.fixture
def make_job(database_url, jenkins_config):
    def _make(targets=("folder/app",), *, job_configs=None, schedule_kind="once", delay=None,
              cron_expression=None, status="active", config_id=None, parameters=None):
        execute_at = None
        if schedule_kind == "once":
            execute_at = utcnow() + timedelta(seconds=3600 if delay is None else delay)
        return repo.create_job(
            database_url,
            name="nightly",
            jenkins_config_id=config_id or jenkins_config.id,
            targets=list(targets),
            job_configs=job_configs if job_configs is not None else {t: {} for t in targets},
            schedule_kind=schedule_kind,
            execute_at=execute_at,
            cron_expression=cron_expression,
            parameters=parameters,
            status=status,
        )

    return _make


@pytest.fixture
def wait_until():
    def _wait(predicate, timeout=5.0, interval=0.02):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return bool(predicate())

    return _wait
