import json
from datetime import datetime

import pytest

from cron_jenkins.errors import ValidationError
from cron_jenkins.scheduler import repo
from cron_jenkins.scheduler.db import get_sessionmaker
from cron_jenkins.scheduler.models import ScheduledJobRecord


def test_job_configs_round_trip(database_url, jenkins_config):
    configs = {"folder/job/A": {"X": "1"}, "folder/job/B": {}}
    created = repo.create_job(
        database_url,
        name="multi",
        jenkins_config_id=jenkins_config.id,
        targets=list(configs),
        job_configs=configs,
        schedule_kind="recurring",
        cron_expression="0 2 * * *",
    )

    job = repo.get_job(database_url, created.id)
    assert set(job.targets) == {"folder/job/A", "folder/job/B"}
    assert job.job_configs == configs
    assert job.parameters_for("folder/job/A") == {"X": "1"}
    assert job.parameters_for("folder/job/B") == {}
    assert job.status == "active"
    assert job.created_at is not None
    assert job.last_execution_at is None


def test_create_job_requires_a_target(database_url, jenkins_config):
    with pytest.raises(ValidationError):
        repo.create_job(
            database_url,
            name="empty",
            jenkins_config_id=jenkins_config.id,
            targets=[],
            job_configs={},
            schedule_kind="recurring",
            cron_expression="0 2 * * *",
        )


def test_legacy_single_target_row_is_normalised(database_url, jenkins_config):
    with get_sessionmaker(database_url)() as s:
        row = ScheduledJobRecord(
            name="legacy",
            jenkins_config_id=jenkins_config.id,
            targets="",
            job_configs="",
            parameters=json.dumps(json.dumps({"BRANCH": "main"})),
            jenkins_job_name="legacy/app",
            schedule_kind="recurring",
            cron_expression="0 2 * * *",
            status="active",
        )
        s.add(row)
        s.commit()
        job_id = row.id

    job = repo.get_job(database_url, job_id)
    assert job.targets == ["legacy/app"]
    assert job.parameters_for("legacy/app") == {"BRANCH": "main"}


def test_update_job_replaces_definition(database_url, make_job):
    job = make_job(["a", "b"])
    updated = repo.update_job(
        database_url,
        job.id,
        name="renamed",
        jenkins_config_id=job.jenkins_config_id,
        targets=["c"],
        job_configs={"c": {"K": "v"}},
        schedule_kind="recurring",
        cron_expression="*/5 * * * *",
        status="inactive",
    )
    assert updated.name == "renamed"
    assert updated.targets == ["c"]
    assert updated.execute_at is None
    assert updated.status == "inactive"
    assert repo.update_job(database_url, "missing", **{
        "name": "x", "jenkins_config_id": None, "targets": ["c"], "job_configs": {}, "schedule_kind": "once",
    }) is None


def test_status_transitions_and_listing(database_url, make_job):
    a = make_job(["a"])
    b = make_job(["b"])

    assert repo.set_job_status(database_url, a.id, "inactive") is True
    assert repo.set_job_status(database_url, "missing", "inactive") is False

    assert [j.id for j in repo.list_active_jobs(database_url)] == [b.id]
    assert {j.id for j in repo.list_jobs(database_url)} == {a.id, b.id}
    assert [j.id for j in repo.list_jobs(database_url, status="inactive")] == [a.id]


def test_mark_executed(database_url, make_job):
    job = make_job()
    at = datetime(2030, 1, 2, 3, 4, 5)
    assert repo.mark_executed(database_url, job.id, at=at)
    assert repo.get_job(database_url, job.id).last_execution_at == at


def test_history_row_is_updated_in_place(database_url, make_job):
    job = make_job()
    started = repo.start_execution(database_url, job.id, trigger="manual")
    assert started.status == "started"
    assert started.end_time is None

    finished = repo.finish_execution(
        database_url, started.id, status="success", log_output="ok", results=[{"target": "a", "ok": True}]
    )
    assert finished.id == started.id
    assert finished.end_time is not None

    [entry] = repo.list_history(database_url, job_id=job.id)
    assert entry.status == "success"
    assert entry.trigger == "manual"
    assert entry.job_name == "nightly"
    assert entry.results == [{"target": "a", "ok": True}]
    assert repo.finish_execution(database_url, "missing", status="failed", log_output="") is None


def test_deleted_job_leaves_history_until_purged(database_url, make_job):
    job = make_job()
    entry = repo.start_execution(database_url, job.id)
    other = make_job()
    repo.start_execution(database_url, other.id)

    assert repo.delete_job(database_url, job.id) is True
    assert repo.delete_job(database_url, job.id) is False

    [orphan] = repo.list_history(database_url, job_id=job.id)
    assert orphan.id == entry.id
    assert orphan.job_name is None

    assert repo.purge_history(database_url, job.id) == 1
    assert repo.list_history(database_url, job_id=job.id) == []
    assert len(repo.list_history(database_url)) == 1


def test_list_history_limit_newest_first(database_url, make_job):
    job = make_job()
    ids = [repo.start_execution(database_url, job.id).id for _ in range(3)]
    history = repo.list_history(database_url, limit=2)
    assert [h.id for h in history] == ids[::-1][:2]


def test_jenkins_config_crud(database_url, jenkins_config, make_job):
    assert repo.get_jenkins_config(database_url, jenkins_config.id).api_token == "s3cret"
    assert "api_token" not in jenkins_config.to_dict()
    assert jenkins_config.to_dict()["has_token"] is True

    with pytest.raises(ValidationError):
        repo.create_jenkins_config(database_url, name="ci", url="https://other.example.com")

    make_job()
    with pytest.raises(ValidationError):
        repo.delete_jenkins_config(database_url, jenkins_config.id)

    spare = repo.create_jenkins_config(database_url, name="spare", url="https://spare.example.com/")
    assert spare.url == "https://spare.example.com"
    assert repo.delete_jenkins_config(database_url, spare.id) is True
    assert repo.delete_jenkins_config(database_url, spare.id) is False
    assert [c.name for c in repo.list_jenkins_configs(database_url)] == ["ci"]
