import json

import pytest

from cron_jenkins.scheduler.codec import normalize_job_fields, parse_dict, parse_list


CONFIGS = {"folder/job/A": {"X": "1"}, "folder/job/B": {}}


@pytest.mark.parametrize(
    "raw",
    [
        json.dumps(CONFIGS),
        json.dumps(json.dumps(CONFIGS)),
        json.dumps(json.dumps(json.dumps(CONFIGS))),
        json.dumps(CONFIGS).replace('"', '\\"'),
        CONFIGS,
    ],
)
def test_parse_dict_decodes_wrapped_and_escaped_json(raw):
    assert parse_dict(raw) == CONFIGS


@pytest.mark.parametrize("raw", [None, "", "   ", "{not json", "[1, 2]", '"just a string"'])
def test_parse_dict_failure_is_empty(raw):
    assert parse_dict(raw) == {}


def test_parse_list():
    assert parse_list('["a", "b"]') == ["a", "b"]
    assert parse_list(json.dumps(json.dumps(["a"]))) == ["a"]
    assert parse_list("{}") == []
    assert parse_list("garbage") == []


def test_normalize_prefers_targets_column_order():
    targets, configs, params = normalize_job_fields('["b", "a", "b"]', json.dumps({"a": {"X": 1}, "b": {}}))
    assert targets == ["b", "a"]
    assert configs == {"a": {"X": 1}, "b": {}}
    assert params == {}


def test_normalize_derives_targets_from_job_configs():
    targets, configs, _ = normalize_job_fields("[]", json.dumps(CONFIGS))
    assert targets == ["folder/job/A", "folder/job/B"]
    assert configs == CONFIGS


def test_normalize_legacy_single_target_row():
    targets, configs, params = normalize_job_fields(None, "{}", '{"BRANCH": "main"}', "legacy/app")
    assert targets == ["legacy/app"]
    assert configs == {}
    assert params == {"BRANCH": "main"}


def test_normalize_non_dict_target_params_become_empty():
    _, configs, _ = normalize_job_fields(None, json.dumps({"a": "oops", "b": None}))
    assert configs == {"a": {}, "b": {}}
