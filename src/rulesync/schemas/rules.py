from __future__ import annotations

from datetime import timedelta
from typing import Annotated, Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, PlainSerializer, ValidationError, field_validator

from rulesync.errors import SerializationError
from rulesync.schemas.common import format_duration, parse_duration


def _coerce_duration(v: Any) -> Any:
    if isinstance(v, str):
        return parse_duration(v)
    return v


def _coerce_scalar(v: Any) -> Any:
    # YAML may type a bare `1` or `true` as a number or bool; rule fields are text.
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    return v


def _coerce_string_map(v: Any) -> Dict[str, str]:
    # Absent or null mappings are valid and mean "no entries".
    if v is None:
        return {}
    if not isinstance(v, dict):
        raise ValueError("expected a mapping of strings")
    return {str(k): "" if val is None else str(val) for k, val in v.items()}


Duration = Annotated[timedelta, BeforeValidator(_coerce_duration), PlainSerializer(format_duration, return_type=str)]
StringMap = Annotated[Dict[str, str], BeforeValidator(_coerce_string_map)]
ScalarStr = Annotated[str, BeforeValidator(_coerce_scalar)]


class Rule(BaseModel):
    """
    A single alerting or recording rule.

    The facade only ever touches `labels`; every other key, including ones this model does not
    declare, is carried through unchanged.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    record: Optional[ScalarStr] = Field(default=None, description="Recorded series name (recording rules).")
    alert: Optional[ScalarStr] = Field(default=None, description="Alert name (alerting rules).")
    expr: ScalarStr = Field(..., description="PromQL expression.")
    for_: Optional[Duration] = Field(default=None, alias="for", description="Pending period before firing.")
    keep_firing_for: Optional[Duration] = Field(default=None, description="How long to keep firing once cleared.")
    labels: StringMap = Field(default_factory=dict, description="Labels attached to produced series/alerts.")
    annotations: StringMap = Field(default_factory=dict, description="Alert annotations.")

    def to_yaml_dict(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True, exclude_none=True)
        for key in ("labels", "annotations"):
            if not data.get(key):
                data.pop(key, None)
        return data


class RuleGroup(BaseModel):
    """A named collection of rules sharing an evaluation interval."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(default="", description="Rule group name, unique within a tenant.")
    interval: Duration = Field(default=timedelta(0), description="Evaluation interval.")
    rules: List[Rule] = Field(default_factory=list, description="Ordered rules of the group.")

    @field_validator("rules", mode="before")
    @classmethod
    def null_rules_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def to_yaml_dict(self) -> Dict[str, Any]:
        data = self.model_dump(exclude={"rules"})
        data["rules"] = [r.to_yaml_dict() for r in self.rules]
        return data


class RuleGroups(BaseModel):
    """Ordered rule groups, as returned by the repository."""

    groups: List[RuleGroup] = Field(default_factory=list, description="Rule groups in backend order.")

    @field_validator("groups", mode="before")
    @classmethod
    def null_groups_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def to_yaml_dict(self) -> Dict[str, Any]:
        return {"groups": [g.to_yaml_dict() for g in self.groups]}


def _safe_load(data: Union[bytes, str]) -> Any:
    try:
        return yaml.safe_load(data)
    except yaml.YAMLError as exc:
        raise SerializationError(f"invalid YAML: {exc}") from exc


# PUBLIC_INTERFACE
def load_rule_group(data: Union[bytes, str]) -> RuleGroup:
    """
    Parse a YAML document into a RuleGroup; an empty document is an empty group.

    Raises SerializationError on malformed input.
    """
    raw = _safe_load(data)
    if raw is None:
        return RuleGroup()
    if not isinstance(raw, dict):
        raise SerializationError("rule group must be a YAML mapping")
    try:
        return RuleGroup.model_validate(raw)
    except (ValidationError, ValueError) as exc:
        raise SerializationError(f"invalid rule group: {exc}") from exc


# PUBLIC_INTERFACE
def load_rule_groups(data: Union[bytes, str]) -> RuleGroups:
    """Parse a YAML document with a top-level `groups` sequence."""
    raw = _safe_load(data)
    if raw is None:
        return RuleGroups()
    if not isinstance(raw, dict):
        raise SerializationError("rule groups must be a YAML mapping")
    try:
        return RuleGroups.model_validate(raw)
    except (ValidationError, ValueError) as exc:
        raise SerializationError(f"invalid rule groups: {exc}") from exc


# PUBLIC_INTERFACE
def load_rules(data: Union[bytes, str]) -> List[Rule]:
    """Parse a YAML sequence of rules (the form the repository stores)."""
    raw = _safe_load(data)
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise SerializationError("rules must be a YAML sequence")
    try:
        return [Rule.model_validate(item) for item in raw]
    except (ValidationError, ValueError) as exc:
        raise SerializationError(f"invalid rule: {exc}") from exc


# PUBLIC_INTERFACE
def dump_yaml(value: Union[RuleGroups, RuleGroup, List[Rule]]) -> bytes:
    """Render rule groups, a single group or a list of rules as YAML bytes."""
    if isinstance(value, list):
        payload: Any = [r.to_yaml_dict() for r in value]
    else:
        payload = value.to_yaml_dict()
    try:
        text = yaml.safe_dump(payload, default_flow_style=False, sort_keys=False, allow_unicode=True)
    except yaml.YAMLError as exc:
        raise SerializationError(f"failed to render YAML: {exc}") from exc
    return text.encode("utf-8")
