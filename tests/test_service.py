import time
from datetime import datetime, timedelta, timezone

import pytest

from cron_jenkins.errors import JobNotFound, PersistenceError, ValidationError
from cron_jenkins.jenkins import JenkinsJob, ParameterDefinition, ParameterKind
from cron_jenkins.scheduler import repo
from cron_jenkins.scheduler.mcp import error_payload, guarded


def _iso_in(seconds):
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


def _recurring(config_id, **extra):
    payload = {
        "name": "nightly",
        "buildServerConfigId": config_id,
        "scheduleKind": "recurring",
        "cronExpression": "0 2 * * *",
        "job_configs": {"folder/job/A": {"X": "1"}, "folder/job/B": {}},
    }
    payload.update(extra)
    return payload


def test_create_arms_active_job(service, jenkins_config):
    job = service.create_job(_recurring(jenkins_config.id))

    assert job.status == "active"
    assert job.targets == ["folder/job/A", "folder/job/B"]
    assert service.registry.is_armed(job.id)
    assert service.get_job(job.id).job_configs == {"folder/job/A": {"X": "1"}, "folder/job/B": {}}


def test_create_with_past_time_is_expired(service, jenkins_config):
    job = service.create_job(
        {"name": "late", "jenkins_config_id": jenkins_config.id, "execute_at": _iso_in(-60), "targets": ["app"]}
    )

    assert job.status == "expired"
    assert not service.registry.is_armed(job.id)


def test_create_requires_known_config(service):
    with pytest.raises(JobNotFound):
        service.create_job(_recurring("missing"))
    with pytest.raises(ValidationError):
        service.create_job(_recurring(None))


def test_create_once_job_runs_once(database_url, service, jenkins_config, fake_client, wait_until):
    job = service.create_job(
        {"name": "soon", "jenkins_config_id": jenkins_config.id, "execute_at": _iso_in(0.5), "targets": ["app"]}
    )

    assert wait_until(lambda: [h.status for h in service.list_history(job.id)] == ["success"], timeout=3)
    time.sleep(0.2)
    assert fake_client.calls == [("app", {})]


def test_update_disarms_and_rearms(service, jenkins_config):
    job = service.create_job(_recurring(jenkins_config.id))

    updated = service.update_job(
        job.id, _recurring(jenkins_config.id, job_configs={"other/job": {"K": "v"}}, status="inactive")
    )
    assert updated.targets == ["other/job"]
    assert updated.status == "inactive"
    assert not service.registry.is_armed(job.id)

    again = service.update_job(job.id, _recurring(jenkins_config.id))
    assert again.status == "active"
    assert service.registry.is_armed(job.id)

    with pytest.raises(JobNotFound):
        service.update_job("missing", _recurring(jenkins_config.id))


def test_failed_update_leaves_the_job_armed(service, jenkins_config, monkeypatch):
    job = service.create_job(_recurring(jenkins_config.id))

    def unavailable(*args, **kwargs):
        raise PersistenceError("store unavailable")

    monkeypatch.setattr(repo, "update_job", unavailable)

    with pytest.raises(PersistenceError):
        service.update_job(job.id, _recurring(jenkins_config.id, job_configs={"other/job": {}}))

    assert service.registry.is_armed(job.id)
    assert service.get_job(job.id).targets == ["folder/job/A", "folder/job/B"]


def test_set_status_toggles_arming(service, jenkins_config):
    job = service.create_job(_recurring(jenkins_config.id))

    assert service.set_status(job.id, "inactive").status == "inactive"
    assert not service.registry.is_armed(job.id)

    assert service.set_status(job.id, "active").status == "active"
    assert service.registry.is_armed(job.id)

    with pytest.raises(ValidationError):
        service.set_status(job.id, "expired")
    with pytest.raises(JobNotFound):
        service.set_status("missing", "active")


def test_delete_disarms_and_keeps_history(service, jenkins_config):
    job = service.create_job(_recurring(jenkins_config.id))
    service.execute_now(job.id)

    assert service.delete_job(job.id) is True
    assert not service.registry.is_armed(job.id)
    with pytest.raises(JobNotFound):
        service.get_job(job.id)
    with pytest.raises(JobNotFound):
        service.delete_job(job.id)

    assert len(service.list_history(job.id)) == 1
    assert service.purge_history(job.id) == 1
    assert service.list_history(job.id) == []


def test_execute_now_reports_per_target_results(service, jenkins_config, fake_client):
    fake_client.failing = {"folder/job/B"}
    job = service.create_job(_recurring(jenkins_config.id))

    result = service.execute_now(job.id).to_dict()

    assert result["status"] == "partial_success"
    assert (result["total"], result["success_count"], result["failed_count"]) == (2, 1, 1)
    assert [r["target"] for r in result["results"]] == ["folder/job/A", "folder/job/B"]
    assert fake_client.calls[0] == ("folder/job/A", {"X": "1"})

    [entry] = service.list_history(job.id)
    assert entry.trigger == "manual"
    assert entry.status == "partial_success"


def test_execute_now_with_deleted_config(database_url, service, make_job, fake_client):
    job = make_job(["a", "b"], config_id="gone")

    result = service.execute_now(job.id)

    assert result.status == "failed"
    assert fake_client.calls == []
    [entry] = service.list_history(job.id)
    assert entry.status == "failed"


def test_jenkins_config_operations(service, jenkins_config):
    cfg = service.add_jenkins_config({"name": "staging", "url": "https://staging.example.com/", "token": "t"})
    assert cfg.verify_ssl is True
    assert cfg.to_dict()["has_token"] is True
    assert {c.name for c in service.list_jenkins_configs()} == {"ci", "staging"}

    service.create_job(_recurring(cfg.id))
    with pytest.raises(ValidationError):
        service.delete_jenkins_config(cfg.id)
    with pytest.raises(JobNotFound):
        service.delete_jenkins_config("missing")
    with pytest.raises(ValidationError):
        service.add_jenkins_config({"name": "bad", "url": "jenkins.local"})


def test_discovery_goes_through_the_client(service, jenkins_config, fake_client):
    fake_client.jobs = [JenkinsJob(full_path="team/app", display_name="app", kind="WorkflowJob")]
    fake_client.definitions["team/app"] = [
        ParameterDefinition(name="BRANCH", kind=ParameterKind.STRING, default="main"),
        ParameterDefinition(name="DEPLOY", kind=ParameterKind.BOOLEAN, default=False),
    ]

    [listed] = service.list_jenkins_jobs(jenkins_config.id)
    assert listed["jenkins_path"] == "team/job/app"

    described = service.describe_target(jenkins_config.id, "team/app")
    assert [p["kind"] for p in described["parameters"]] == ["string", "boolean"]
    assert described["defaults"] == {"BRANCH": "main", "DEPLOY": False}

    assert service.collect_target_parameters(jenkins_config.id, "team/app", {"BRANCH": " dev ", "DEPLOY": "on"}) == {
        "BRANCH": "dev",
        "DEPLOY": True,
    }
    assert service.git_branches(jenkins_config.id, "team/app") == ["origin/main", "origin/release"]

    with pytest.raises(JobNotFound):
        service.list_jenkins_jobs("missing")


def test_health(service, jenkins_config):
    service.create_job(_recurring(jenkins_config.id))
    health = service.health()
    assert health["ok"] is True
    assert health["db"] == "sqlite"
    assert health["armed_jobs"] == 1


def test_guarded_turns_errors_into_payloads(service):
    result = guarded(lambda: {"ok": True, "job": service.get_job("missing").to_dict()})
    assert result == {"ok": False, "error": "not_found", "message": "scheduled job not found: missing"}

    assert guarded(lambda: {"ok": True}) == {"ok": True}
    assert error_payload(ValidationError("bad cron"))["error"] == "validation_error"


def test_listing_filters_by_status(service, jenkins_config, database_url):
    a = service.create_job(_recurring(jenkins_config.id))
    b = service.create_job(_recurring(jenkins_config.id))
    service.set_status(a.id, "inactive")

    assert [j.id for j in service.list_jobs(status="active")] == [b.id]
    assert {j.id for j in service.list_jobs()} == {a.id, b.id}
    assert repo.get_job(database_url, a.id).status == "inactive"
