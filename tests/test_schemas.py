from datetime import datetime

import pytest

from cron_jenkins.errors import ValidationError
from cron_jenkins.scheduler.schemas import JenkinsConfigPayload, JobPayload, parse_payload, to_utc_naive


def test_recurring_payload_with_legacy_aliases():
    data = parse_payload(
        JobPayload,
        {
            "name": " nightly ",
            "buildServerConfigId": "cfg-1",
            "scheduleKind": "recurring",
            "cronExpression": " 0 2 * * * ",
            "job_configs": {"folder/job/A": {"X": 1}, "folder/job/B": None},
        },
    )
    assert data.name == "nightly"
    assert data.jenkins_config_id == "cfg-1"
    assert data.schedule_kind == "recurring"
    assert data.cron_expression == "0 2 * * *"
    assert data.targets == ["folder/job/A", "folder/job/B"]
    assert data.job_configs == {"folder/job/A": {"X": "1"}, "folder/job/B": {}}
    assert data.status == "active"


def test_execute_once_flag_and_execute_time_alias():
    data = parse_payload(
        JobPayload,
        {
            "name": "deploy",
            "jenkins_config_id": "cfg-1",
            "execute_once": True,
            "execute_time": "2030-01-01T12:00:00+02:00",
            "cron_expression": "0 2 * * *",
            "jenkins_job_name": "legacy/app",
            "parameters": {"BRANCH": "main", "DEPLOY": True},
        },
    )
    assert data.schedule_kind == "once"
    assert data.execute_at == datetime(2030, 1, 1, 10, 0)
    assert data.cron_expression is None
    assert data.targets == ["legacy/app"]
    assert data.to_store_kwargs()["parameters"] == {"BRANCH": "main", "DEPLOY": True}


def test_schedule_kind_is_inferred():
    data = parse_payload(JobPayload, {"name": "n", "cron_expression": "*/5 * * * *", "targets": ["a"]})
    assert data.schedule_kind == "recurring"
    assert data.job_configs == {}


@pytest.mark.parametrize(
    "payload",
    [
        {"name": "n", "targets": ["a"]},
        {"name": "n", "schedule_kind": "once", "targets": ["a"]},
        {"name": "n", "schedule_kind": "recurring", "targets": ["a"]},
        {"name": "n", "schedule_kind": "recurring", "cron_expression": "99 * * * *", "targets": ["a"]},
        {"name": "n", "cron_expression": "0 2 * * *"},
        {"name": "n", "cron_expression": "0 2 * * *", "targets": ["  "]},
        {"name": "n", "cron_expression": "0 2 * * *", "targets": ["a"], "job_configs": {"b": {}}},
        {"name": "  ", "cron_expression": "0 2 * * *", "targets": ["a"]},
        {"name": "n", "cron_expression": "0 2 * * *", "targets": ["a"], "status": "expired"},
        {"cron_expression": "0 2 * * *", "targets": ["a"]},
    ],
)
def test_invalid_job_payloads(payload):
    with pytest.raises(ValidationError):
        parse_payload(JobPayload, payload)


def test_validation_message_names_the_field():
    with pytest.raises(ValidationError, match="status"):
        parse_payload(JobPayload, {"name": "n", "cron_expression": "0 2 * * *", "targets": ["a"], "status": "gone"})


def test_to_utc_naive_reads_naive_values_as_local_time():
    naive = datetime(2030, 6, 1, 9, 30)
    offset = naive.astimezone().utcoffset()
    assert to_utc_naive(naive) == naive - offset


def test_jenkins_config_payload():
    data = parse_payload(
        JenkinsConfigPayload, {"name": "ci", "url": " https://jenkins.example.com/ ", "token": "t"}
    )
    assert data.url == "https://jenkins.example.com"
    assert data.api_token == "t"
    assert data.verify_ssl is None

    with pytest.raises(ValidationError):
        parse_payload(JenkinsConfigPayload, {"name": "ci", "url": "ftp://jenkins"})
