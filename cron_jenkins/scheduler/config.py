from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class SchedulerConfig:
    """Runtime configuration for the scheduler service.

    DB selection:
    - CRON_JENKINS_DATABASE_URL: scheduler-specific DB URL (preferred)
    - PLATFORM_DATABASE_URL: shared DB URL
    - If neither is set, defaults to local SQLite at data/cron_jenkins.db

    Jenkins calls:
    - JENKINS_TIMEOUT: per-request timeout in seconds (default: 30)
    - JENKINS_VERIFY_SSL: TLS verification for new configs (default: true)

    Execution:
    - CRON_JENKINS_MAX_WORKERS: fan-out worker pool size (default: 8)
    - CRON_JENKINS_ALLOW_OVERLAP: let a recurring job fire while its previous
      fan-out is still running (default: true)
    - CRON_JENKINS_CRON_TIMEZONE: IANA zone for cron evaluation (default: local)
    - CRON_JENKINS_HISTORY_LIMIT: default history page size (default: 50)

    MCP server:
    - CRON_JENKINS_MCP_TRANSPORT: stdio|http|sse (default: http)
    - CRON_JENKINS_MCP_HOST (default: 0.0.0.0)
    - CRON_JENKINS_MCP_PORT (default: 8020)

    Logging:
    - CRON_JENKINS_LOG_LEVEL (default: INFO)
    """

    database_url: str

    jenkins_timeout_seconds: float
    jenkins_verify_ssl: bool

    max_workers: int
    allow_overlap: bool
    cron_timezone: Optional[str]
    history_limit: int

    mcp_transport: str
    mcp_host: str
    mcp_port: int

    log_level: str

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        db_url = (
            os.environ.get("CRON_JENKINS_DATABASE_URL")
            or os.environ.get("PLATFORM_DATABASE_URL")
            or ""
        ).strip()

        if not db_url:
            # Default sqlite path under repo-root data/.
            repo_root = Path(__file__).resolve().parents[2]
            data_dir = repo_root / "data"
            data_dir.mkdir(parents=True, exist_ok=True)
            db_url = f"sqlite:///{(data_dir / 'cron_jenkins.db').as_posix()}"

        timezone = (os.environ.get("CRON_JENKINS_CRON_TIMEZONE") or "").strip() or None

        return cls(
            database_url=db_url,
            jenkins_timeout_seconds=max(1.0, _env_float("JENKINS_TIMEOUT", 30.0)),
            jenkins_verify_ssl=_env_bool("JENKINS_VERIFY_SSL", True),
            max_workers=max(1, _env_int("CRON_JENKINS_MAX_WORKERS", 8)),
            allow_overlap=_env_bool("CRON_JENKINS_ALLOW_OVERLAP", True),
            cron_timezone=timezone,
            history_limit=max(1, _env_int("CRON_JENKINS_HISTORY_LIMIT", 50)),
            mcp_transport=(os.environ.get("CRON_JENKINS_MCP_TRANSPORT") or "http").lower().strip(),
            mcp_host=(os.environ.get("CRON_JENKINS_MCP_HOST") or "0.0.0.0").strip(),
            mcp_port=_env_int("CRON_JENKINS_MCP_PORT", 8020),
            log_level=(os.environ.get("CRON_JENKINS_LOG_LEVEL") or "INFO").upper().strip(),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return int(default)
    try:
        return int(str(raw).strip())
    except ValueError:
        return int(default)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return float(default)
    try:
        return float(str(raw).strip())
    except ValueError:
        return float(default)


def _env_bool(name: str, default: bool) -> bool:
    raw = (str(os.environ.get(name) or "")).strip().lower()
    if not raw:
        return bool(default)
    if raw in {"1", "true", "yes", "y", "on"}:
        return True
    if raw in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)
