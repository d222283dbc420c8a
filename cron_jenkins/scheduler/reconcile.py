from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from cron_jenkins.scheduler import repo
from cron_jenkins.scheduler.types import RUN_FAILED, RUN_PARTIAL, RUN_SUCCESS, ExecutionHistoryEntry


@dataclass(frozen=True)
class TargetOutcome:
    target: str
    ok: bool
    location: Optional[str] = None
    error: Optional[str] = None
    parameters: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "ok": self.ok,
            "location": self.location,
            "error": self.error,
            "parameters": dict(self.parameters or {}),
        }


@dataclass(frozen=True)
class Reconciliation:
    status: str
    total: int
    success_count: int
    failed_count: int
    summary: str


def aggregate_status(total: int, success_count: int) -> str:
    if total < 1:
        raise ValueError("Cannot reconcile an attempt without targets")
    if success_count >= total:
        return RUN_SUCCESS
    if success_count > 0:
        return RUN_PARTIAL
    return RUN_FAILED


def reconcile(outcomes: Sequence[TargetOutcome]) -> Reconciliation:
    total = len(outcomes)
    success_count = sum(1 for o in outcomes if o.ok)
    status = aggregate_status(total, success_count)
    failed_count = total - success_count

    lines: List[str] = [f"Triggered {success_count}/{total} target(s), {failed_count} failed"]
    for o in outcomes:
        if o.ok:
            lines.append(f"[ok] {o.target}" + (f" -> {o.location}" if o.location else ""))
        else:
            lines.append(f"[failed] {o.target}: {o.error or 'unknown error'}")

    return Reconciliation(
        status=status,
        total=total,
        success_count=success_count,
        failed_count=failed_count,
        summary="\n".join(lines),
    )


def record_reconciliation(
    database_url: str,
    history_id: str,
    outcomes: Sequence[TargetOutcome],
) -> Reconciliation:
    """Reconcile ``outcomes`` and close the attempt's history row."""

    result = reconcile(outcomes)
    repo.finish_execution(
        database_url,
        history_id,
        status=result.status,
        log_output=result.summary,
        results=[o.to_dict() for o in outcomes],
    )
    return result


def record_failure(database_url: str, history_id: str, message: str) -> Optional[ExecutionHistoryEntry]:
    return repo.finish_execution(database_url, history_id, status=RUN_FAILED, log_output=message, results=[])
