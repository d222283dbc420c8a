"""Defensive decoding of the JSON text columns.

Rows written by older clients were sometimes double-encoded (a JSON string
holding JSON) or stored with escaped quotes. Anything that cannot be decoded
reads back as an empty collection.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Tuple


def _loads(raw: Any) -> Any:
    if raw is None:
        return None
    if not isinstance(raw, str):
        return raw

    value: Any = raw.strip()
    if not value:
        return None

    # Up to two extra levels of string wrapping.
    for _ in range(3):
        if not isinstance(value, str):
            return value
        try:
            value = json.loads(value)
        except ValueError:
            break
    if not isinstance(value, str):
        return value

    unescaped = value.replace('\\"', '"').replace("\\\\", "\\").strip()
    if len(unescaped) >= 2 and unescaped[0] == unescaped[-1] == '"':
        unescaped = unescaped[1:-1]
    try:
        return json.loads(unescaped)
    except ValueError:
        return None


def parse_dict(raw: Any) -> Dict[str, Any]:
    value = _loads(raw)
    return dict(value) if isinstance(value, dict) else {}


def parse_list(raw: Any) -> List[Any]:
    value = _loads(raw)
    return list(value) if isinstance(value, list) else []


def dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def normalize_job_fields(
    targets_raw: Any,
    job_configs_raw: Any,
    parameters_raw: Any = None,
    legacy_job_name: Optional[str] = None,
) -> Tuple[List[str], Dict[str, Dict[str, Any]], Dict[str, Any]]:
    """Return (targets, per-target parameters, job-level default parameters).

    Targets come from the targets column, else from the keys of job_configs,
    else from the legacy single job name.
    """

    job_configs: Dict[str, Dict[str, Any]] = {}
    for target, params in parse_dict(job_configs_raw).items():
        job_configs[str(target)] = dict(params) if isinstance(params, dict) else {}

    targets: List[str] = []
    for t in parse_list(targets_raw) or list(job_configs):
        name = str(t).strip()
        if name and name not in targets:
            targets.append(name)
    if not targets and legacy_job_name and legacy_job_name.strip():
        targets = [legacy_job_name.strip()]

    return targets, job_configs, parse_dict(parameters_raw)
