from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Mapping, Optional, Type, TypeVar, Union

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from cron_jenkins.errors import ValidationError
from cron_jenkins.scheduler.cron import validate_cron
from cron_jenkins.scheduler.types import SCHEDULE_ONCE, SCHEDULE_RECURRING, STATUS_ACTIVE


ParamValue = Optional[Union[bool, str]]

M = TypeVar("M", bound=BaseModel)


def to_utc_naive(value: datetime) -> datetime:
    """Convert to naive UTC; naive input is read as server-local time."""

    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _stringify_numbers(params: Any) -> Any:
    if not isinstance(params, Mapping):
        return params
    return {
        k: (str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v)
        for k, v in params.items()
    }


class JobPayload(BaseModel):
    """Body of create/update requests for a scheduled job.

    ``job_configs`` maps each target to its parameters; ``targets`` is only
    needed to fix an order different from the mapping's. The legacy
    single-target shape (``jenkins_job_name`` + ``parameters``) is accepted.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    jenkins_config_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("jenkins_config_id", "build_server_config_id", "buildServerConfigId"),
    )
    schedule_kind: Optional[Literal["once", "recurring"]] = Field(
        default=None, validation_alias=AliasChoices("schedule_kind", "scheduleKind")
    )
    execute_once: Optional[bool] = None
    execute_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("execute_at", "execute_time", "executeAt")
    )
    cron_expression: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("cron_expression", "cronExpression")
    )
    targets: Optional[List[str]] = None
    job_configs: Dict[str, Dict[str, ParamValue]] = Field(default_factory=dict)
    jenkins_job_name: Optional[str] = None
    parameters: Dict[str, ParamValue] = Field(default_factory=dict)
    status: Literal["active", "inactive"] = STATUS_ACTIVE

    @field_validator("parameters", mode="before")
    @classmethod
    def _coerce_parameters(cls, value: Any) -> Any:
        return _stringify_numbers(value) if value is not None else {}

    @field_validator("job_configs", mode="before")
    @classmethod
    def _coerce_job_configs(cls, value: Any) -> Any:
        if value is None:
            return {}
        if not isinstance(value, Mapping):
            return value
        return {str(t).strip(): _stringify_numbers(p if p is not None else {}) for t, p in value.items()}

    @model_validator(mode="after")
    def _resolve(self) -> "JobPayload":
        self.name = self.name.strip()
        if not self.name:
            raise ValueError("name must not be blank")

        kind = self.schedule_kind
        if kind is None:
            if self.execute_once is not None:
                kind = SCHEDULE_ONCE if self.execute_once else SCHEDULE_RECURRING
            elif self.cron_expression:
                kind = SCHEDULE_RECURRING
            elif self.execute_at is not None:
                kind = SCHEDULE_ONCE
            else:
                raise ValueError("either execute_at (once) or cron_expression (recurring) is required")
        self.schedule_kind = kind

        if kind == SCHEDULE_ONCE:
            if self.execute_at is None:
                raise ValueError("execute_at is required for a one-time job")
            self.execute_at = to_utc_naive(self.execute_at)
            self.cron_expression = None
        else:
            self.cron_expression = validate_cron(self.cron_expression)
            self.execute_at = None

        if self.targets:
            targets = _dedupe(self.targets)
            extra = [t for t in self.job_configs if t not in targets]
            if extra:
                raise ValueError(f"job_configs has targets missing from targets: {extra}")
        elif self.job_configs:
            targets = _dedupe(self.job_configs)
        elif self.jenkins_job_name and self.jenkins_job_name.strip():
            targets = [self.jenkins_job_name.strip()]
        else:
            targets = []
        if not targets:
            raise ValueError("at least one target job is required")
        self.targets = targets
        return self

    def to_store_kwargs(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "jenkins_config_id": self.jenkins_config_id,
            "targets": list(self.targets or []),
            "job_configs": {t: dict(p) for t, p in self.job_configs.items()},
            "parameters": dict(self.parameters),
            "schedule_kind": self.schedule_kind,
            "execute_at": self.execute_at,
            "cron_expression": self.cron_expression,
            "status": self.status,
        }


def _dedupe(items: Any) -> List[str]:
    out: List[str] = []
    for item in items:
        name = str(item).strip()
        if name and name not in out:
            out.append(name)
    return out


class JenkinsConfigPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str = Field(min_length=1)
    url: str
    username: Optional[str] = None
    api_token: Optional[str] = Field(default=None, validation_alias=AliasChoices("api_token", "token"))
    verify_ssl: Optional[bool] = None

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value.rstrip("/")


def parse_payload(model: Type[M], data: Any) -> M:
    """Validate ``data`` into ``model``, raising the package ValidationError."""

    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except pydantic.ValidationError as exc:
        messages = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc") or ()) or "body"
            messages.append(f"{loc}: {err.get('msg')}")
        raise ValidationError("; ".join(messages)) from exc
