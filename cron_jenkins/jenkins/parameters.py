from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from cron_jenkins.errors import ValidationError


ParamValue = Union[str, bool]


class ParameterKind(str, Enum):
    STRING = "string"
    TEXT = "text"
    CHOICE = "choice"
    BOOLEAN = "boolean"
    GIT_REF = "git-ref"
    OTHER = "other"


_KIND_BY_CLASS: Dict[str, ParameterKind] = {
    "StringParameterDefinition": ParameterKind.STRING,
    "TextParameterDefinition": ParameterKind.TEXT,
    "ChoiceParameterDefinition": ParameterKind.CHOICE,
    "BooleanParameterDefinition": ParameterKind.BOOLEAN,
    "GitParameterDefinition": ParameterKind.GIT_REF,
}

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def kind_for_class(type_tag: Optional[str]) -> ParameterKind:
    """Map a Jenkins ``_class`` tag (full or short class name) to a kind."""

    short = str(type_tag or "").rsplit(".", 1)[-1]
    return _KIND_BY_CLASS.get(short, ParameterKind.OTHER)


@dataclass(frozen=True)
class ParameterDefinition:
    name: str
    kind: ParameterKind
    default: Optional[ParamValue] = None
    choices: Tuple[str, ...] = field(default_factory=tuple)
    description: str = ""
    type_tag: str = ""

    @classmethod
    def from_jenkins(cls, raw: Mapping[str, Any]) -> "ParameterDefinition":
        type_tag = str(raw.get("_class") or raw.get("type") or "")
        kind = kind_for_class(type_tag)

        default_raw = raw.get("defaultParameterValue")
        default: Optional[ParamValue] = None
        if isinstance(default_raw, dict) and default_raw.get("value") is not None:
            default = default_raw.get("value")

        choices: List[str] = [str(c) for c in (raw.get("choices") or [])]
        if kind is ParameterKind.GIT_REF and not choices:
            # The git-parameter plugin exposes branches/tags as allValueItems.
            items = (raw.get("allValueItems") or {}).get("values") or []
            choices = [str(i.get("value")) for i in items if isinstance(i, dict) and i.get("value")]

        if kind is ParameterKind.BOOLEAN and default is not None and not isinstance(default, bool):
            default = str(default).strip().lower() in _TRUE

        return cls(
            name=str(raw.get("name") or ""),
            kind=kind,
            default=default,
            choices=tuple(choices),
            description=str(raw.get("description") or ""),
            type_tag=type_tag,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "default": self.default,
            "choices": list(self.choices),
            "description": self.description,
            "type": self.type_tag,
        }


def _to_bool(raw: Any, *, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValidationError(f"Parameter '{name}' expects a boolean, got {raw!r}")


def collect_value(definition: ParameterDefinition, raw: Any) -> Optional[ParamValue]:
    """Turn a submitted value into a parameter value for ``definition``.

    Returns None when the value is absent so Jenkins applies its default.
    """

    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return None

    kind = definition.kind
    if kind is ParameterKind.BOOLEAN:
        return _to_bool(raw, name=definition.name)
    if kind is ParameterKind.CHOICE:
        value = str(raw)
        if definition.choices and value not in definition.choices:
            raise ValidationError(
                f"Parameter '{definition.name}' must be one of {list(definition.choices)}, got {value!r}"
            )
        return value
    if kind is ParameterKind.TEXT:
        return str(raw)
    if kind in (ParameterKind.STRING, ParameterKind.GIT_REF, ParameterKind.OTHER):
        return str(raw).strip()
    raise ValidationError(f"Unsupported parameter kind: {kind}")


def collect_parameters(
    definitions: Sequence[ParameterDefinition],
    submitted: Mapping[str, Any],
) -> Dict[str, ParamValue]:
    known = {d.name for d in definitions}
    unknown = sorted(k for k in submitted if k not in known)
    if unknown:
        raise ValidationError(f"Unknown parameters: {', '.join(unknown)}")

    out: Dict[str, ParamValue] = {}
    for definition in definitions:
        value = collect_value(definition, submitted.get(definition.name))
        if value is not None:
            out[definition.name] = value
    return out


def form_value(value: ParamValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
