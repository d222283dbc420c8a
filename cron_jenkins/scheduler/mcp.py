from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from fastmcp import FastMCP

from cron_jenkins.errors import CronJenkinsError
from cron_jenkins.scheduler.config import SchedulerConfig
from cron_jenkins.scheduler.repo import init_db
from cron_jenkins.scheduler.service import SchedulerService


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

mcp = FastMCP("cron-jenkins")

_SERVICE: Optional[SchedulerService] = None
_SERVICE_LOCK = threading.Lock()


def get_service() -> SchedulerService:
    """Return the process-wide service, starting it on first use."""

    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            cfg = SchedulerConfig.from_env()
            init_db(cfg.database_url)
            service = SchedulerService.from_config(cfg)
            service.start()
            _SERVICE = service
        return _SERVICE


def set_service(service: Optional[SchedulerService]) -> None:
    global _SERVICE
    with _SERVICE_LOCK:
        _SERVICE = service


def error_payload(exc: CronJenkinsError) -> Dict[str, Any]:
    return {"ok": False, "error": exc.kind, "message": exc.message}


def guarded(call: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    """Run a tool body, turning package errors into ``ok: False`` payloads."""

    try:
        return call()
    except CronJenkinsError as exc:
        logger.info("Request rejected (%s): %s", exc.kind, exc.message)
        return error_payload(exc)


def _job_payload(
    *,
    name: str,
    jenkins_config_id: Optional[str],
    schedule_kind: Optional[str],
    execute_at: Optional[str],
    cron_expression: Optional[str],
    job_configs: Optional[Dict[str, Dict[str, Any]]],
    targets: Optional[List[str]],
    jenkins_job_name: Optional[str],
    parameters: Optional[Dict[str, Any]],
    execute_once: Optional[bool],
    status: str,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": name,
        "jenkins_config_id": jenkins_config_id,
        "schedule_kind": schedule_kind,
        "execute_at": execute_at,
        "cron_expression": cron_expression,
        "job_configs": job_configs or {},
        "targets": targets,
        "jenkins_job_name": jenkins_job_name,
        "parameters": parameters or {},
        "execute_once": execute_once,
        "status": status,
    }
    return {k: v for k, v in payload.items() if v is not None}


@mcp.tool
def scheduler_health() -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, **get_service().health()})


@mcp.tool
def list_armed_triggers() -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, "triggers": get_service().registry.describe()})


@mcp.tool
def create_scheduled_job(
    *,
    name: str,
    jenkins_config_id: Optional[str] = None,
    schedule_kind: Optional[str] = None,
    execute_at: Optional[str] = None,
    cron_expression: Optional[str] = None,
    job_configs: Optional[Dict[str, Dict[str, Any]]] = None,
    targets: Optional[List[str]] = None,
    jenkins_job_name: Optional[str] = None,
    parameters: Optional[Dict[str, Any]] = None,
    execute_once: Optional[bool] = None,
    status: str = "active",
) -> Dict[str, Any]:
    """Create a scheduled job and arm it when active.

    ``job_configs`` maps target job paths to their build parameters.
    ``execute_at`` is ISO-8601; without an offset it is read as server-local time.
    """

    payload = _job_payload(
        name=name,
        jenkins_config_id=jenkins_config_id,
        schedule_kind=schedule_kind,
        execute_at=execute_at,
        cron_expression=cron_expression,
        job_configs=job_configs,
        targets=targets,
        jenkins_job_name=jenkins_job_name,
        parameters=parameters,
        execute_once=execute_once,
        status=status,
    )
    return guarded(lambda: {"ok": True, "job": get_service().create_job(payload).to_dict()})


@mcp.tool
def update_scheduled_job(
    job_id: str,
    *,
    name: str,
    jenkins_config_id: Optional[str] = None,
    schedule_kind: Optional[str] = None,
    execute_at: Optional[str] = None,
    cron_expression: Optional[str] = None,
    job_configs: Optional[Dict[str, Dict[str, Any]]] = None,
    targets: Optional[List[str]] = None,
    jenkins_job_name: Optional[str] = None,
    parameters: Optional[Dict[str, Any]] = None,
    execute_once: Optional[bool] = None,
    status: str = "active",
) -> Dict[str, Any]:
    """Replace a scheduled job's definition and re-arm it."""

    payload = _job_payload(
        name=name,
        jenkins_config_id=jenkins_config_id,
        schedule_kind=schedule_kind,
        execute_at=execute_at,
        cron_expression=cron_expression,
        job_configs=job_configs,
        targets=targets,
        jenkins_job_name=jenkins_job_name,
        parameters=parameters,
        execute_once=execute_once,
        status=status,
    )
    return guarded(lambda: {"ok": True, "job": get_service().update_job(str(job_id), payload).to_dict()})


@mcp.tool
def list_scheduled_jobs(status: Optional[str] = None) -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, "jobs": [j.to_dict() for j in get_service().list_jobs(status=status)]})


@mcp.tool
def get_scheduled_job(job_id: str) -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, "job": get_service().get_job(str(job_id)).to_dict()})


@mcp.tool
def set_scheduled_job_status(job_id: str, status: str) -> Dict[str, Any]:
    """Activate (and arm) or deactivate (and disarm) a job."""

    return guarded(lambda: {"ok": True, "job": get_service().set_status(str(job_id), str(status)).to_dict()})


@mcp.tool
def delete_scheduled_job(job_id: str) -> Dict[str, Any]:
    return guarded(lambda: {"ok": get_service().delete_job(str(job_id))})


@mcp.tool
def execute_scheduled_job(job_id: str) -> Dict[str, Any]:
    """Trigger every target of a job now and wait for the per-target results."""

    return guarded(lambda: {"ok": True, "execution": get_service().execute_now(str(job_id)).to_dict()})


@mcp.tool
def list_execution_history(job_id: Optional[str] = None, limit: Optional[int] = None) -> Dict[str, Any]:
    return guarded(
        lambda: {
            "ok": True,
            "history": [h.to_dict() for h in get_service().list_history(job_id=job_id, limit=limit)],
        }
    )


@mcp.tool
def purge_execution_history(job_id: str) -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, "deleted": get_service().purge_history(str(job_id))})


@mcp.tool
def add_jenkins_config(
    name: str,
    url: str,
    username: Optional[str] = None,
    api_token: Optional[str] = None,
    verify_ssl: Optional[bool] = None,
) -> Dict[str, Any]:
    payload = {"name": name, "url": url, "username": username, "api_token": api_token, "verify_ssl": verify_ssl}
    return guarded(lambda: {"ok": True, "config": get_service().add_jenkins_config(payload).to_dict()})


@mcp.tool
def list_jenkins_configs() -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, "configs": [c.to_dict() for c in get_service().list_jenkins_configs()]})


@mcp.tool
def delete_jenkins_config(config_id: str) -> Dict[str, Any]:
    return guarded(lambda: {"ok": get_service().delete_jenkins_config(str(config_id))})


@mcp.tool
def list_jenkins_jobs(config_id: str) -> Dict[str, Any]:
    """List buildable jobs on a Jenkins server, descending into folders."""

    return guarded(lambda: {"ok": True, "jobs": get_service().list_jenkins_jobs(str(config_id))})


@mcp.tool
def describe_jenkins_target(config_id: str, target: str) -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, **get_service().describe_target(str(config_id), str(target))})


@mcp.tool
def collect_target_parameters(config_id: str, target: str, values: Dict[str, Any]) -> Dict[str, Any]:
    """Check submitted values against a target's parameter definitions."""

    return guarded(
        lambda: {
            "ok": True,
            "parameters": get_service().collect_target_parameters(str(config_id), str(target), values or {}),
        }
    )


@mcp.tool
def list_git_branches(config_id: str, target: str) -> Dict[str, Any]:
    return guarded(lambda: {"ok": True, "branches": get_service().git_branches(str(config_id), str(target))})


def run() -> None:
    cfg = SchedulerConfig.from_env()
    logging.basicConfig(level=getattr(logging, cfg.log_level, logging.INFO), format=LOG_FORMAT)

    init_db(cfg.database_url)
    service = SchedulerService.from_config(cfg)
    service.start()
    set_service(service)

    logger.info("Serving cron-jenkins MCP over %s", cfg.mcp_transport)
    try:
        if cfg.mcp_transport == "stdio":
            mcp.run(transport="stdio")
            return
        # FastMCP signature differs across versions, so keep it permissive.
        try:
            mcp.run(transport=cfg.mcp_transport, host=cfg.mcp_host, port=int(cfg.mcp_port))
        except TypeError:
            mcp.run(transport=cfg.mcp_transport)
    finally:
        service.shutdown()


if __name__ == "__main__":
    run()
