"""Pydantic models for autoheal configuration, rules and alerts."""

from __future__ import annotations

import hashlib
import json
import re
from datetime import datetime
from enum import Enum
from typing import Any, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# Go style durations, as accepted by time.ParseDuration: "300ms", "1m30s", "1h".
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str | int | float) -> float:
    """Parse a duration into seconds.

    Plain numbers are taken as seconds. Strings use the Go duration syntax,
    for example ``"30s"``, ``"5m"`` or ``"1h30m"``.

    Raises:
        ValueError: If the value isn't a valid duration.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Duration can't be negative: {value}")
        return float(value)

    text = value.strip()
    if not text:
        raise ValueError("Empty duration")
    if text == "0":
        return 0.0
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        if seconds < 0:
            raise ValueError(f"Duration can't be negative: {value}")
        return seconds

    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"Invalid duration: {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"Invalid duration: {value!r}")
    return total


# ============================================================================
# Alerts
# ============================================================================


class AlertStatus(str, Enum):
    """Status reported by the alert manager for an alert."""

    FIRING = "firing"
    RESOLVED = "resolved"


class Alert(BaseModel):
    """A single alert sent by the alert manager."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    status: str = AlertStatus.FIRING.value
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    starts_at: datetime | None = Field(default=None, alias="startsAt")
    ends_at: datetime | None = Field(default=None, alias="endsAt")
    generator_url: str | None = Field(default=None, alias="generatorURL")
    fingerprint: str | None = None

    @property
    def name(self) -> str:
        """Name of the alert, taken from the ``alertname`` label."""
        return self.labels.get("alertname", "")

    def to_document(self) -> dict[str, Any]:
        """Serialize the alert the way the alert manager sends it."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AlertmanagerMessage(BaseModel):
    """Webhook notification sent by the alert manager to a receiver."""

    model_config = ConfigDict(populate_by_name=True)

    version: str | None = None
    receiver: str = ""
    status: str = ""
    alerts: list[Alert] = Field(default_factory=list)
    group_labels: dict[str, str] = Field(default_factory=dict, alias="groupLabels")
    common_labels: dict[str, str] = Field(default_factory=dict, alias="commonLabels")
    common_annotations: dict[str, str] = Field(default_factory=dict, alias="commonAnnotations")
    external_url: str | None = Field(default=None, alias="externalURL")


# ============================================================================
# Healing rules and actions
# ============================================================================


class JobAction(BaseModel):
    """Launch of an AWX job template."""

    model_config = ConfigDict(populate_by_name=True)

    template: str = ""
    extra_vars: dict[str, Any] = Field(default_factory=dict, alias="extraVars")
    limit: str | None = None

    @field_validator("extra_vars", mode="before")
    @classmethod
    def parse_extra_vars(cls, v: Any) -> Any:
        # Older configurations carry the extra variables as a JSON string.
        if v is None:
            return {}
        if isinstance(v, str):
            if not v.strip():
                return {}
            try:
                parsed = yaml.safe_load(v)
            except yaml.YAMLError as e:
                raise ValueError(f"Extra variables aren't valid JSON or YAML: {e}") from e
            if not isinstance(parsed, dict):
                raise ValueError("Extra variables must be a mapping")
            return parsed
        return v


class BatchJobAction(BaseModel):
    """Creation of a Kubernetes batch job."""

    job: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def wrap_manifest(cls, data: Any) -> Any:
        # Rules usually contain the job manifest directly.
        if isinstance(data, dict) and "job" not in data:
            return {"job": data}
        return data

    @property
    def name(self) -> str:
        return (self.job.get("metadata") or {}).get("name") or ""

    @property
    def namespace(self) -> str:
        return (self.job.get("metadata") or {}).get("namespace") or ""


Action = Union[JobAction, BatchJobAction]

ACTION_TYPES: dict[type, str] = {
    JobAction: "AWXJob",
    BatchJobAction: "BatchJob",
}


def action_type(action: Action) -> str:
    """Name of the kind of action, as used in metrics and logs."""
    try:
        return ACTION_TYPES[type(action)]
    except KeyError:
        raise TypeError(f"Unknown action type '{type(action).__name__}'") from None


def _stable_hash(data: Any) -> str:
    def default(o: Any) -> Any:
        if isinstance(o, BaseModel):
            return o.model_dump(mode="json", by_alias=True)
        return str(o)

    text = json.dumps(data, sort_keys=True, default=default)
    return hashlib.sha256(text.encode()).hexdigest()[:16]


class HealingRule(BaseModel):
    """A named set of alert conditions plus the action that heals them."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    namespace: str = "default"
    version: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    awx_job: JobAction | None = Field(default=None, alias="awxJob")
    batch_job: BatchJobAction | None = Field(default=None, alias="batchJob")
    delimiters: tuple[str, str] | None = None

    @model_validator(mode="before")
    @classmethod
    def lift_metadata(cls, data: Any) -> Any:
        """Accept Kubernetes style ``metadata`` and derive the version."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        metadata = data.pop("metadata", None) or {}
        if "name" not in data and "name" in metadata:
            data["name"] = metadata["name"]
        if "namespace" not in data and metadata.get("namespace"):
            data["namespace"] = metadata["namespace"]
        if not data.get("version"):
            data["version"] = metadata.get("resourceVersion") or _stable_hash(data)
        return data

    @field_validator("delimiters")
    @classmethod
    def check_delimiters(cls, v: tuple[str, str] | None) -> tuple[str, str] | None:
        if v is not None and (not v[0] or not v[1]):
            raise ValueError("Template delimiters can't be empty")
        return v

    @model_validator(mode="after")
    def check_single_action(self) -> "HealingRule":
        if self.awx_job is not None and self.batch_job is not None:
            raise ValueError(f"Rule '{self.name}' can't have both an AWX job and a batch job")
        return self

    @property
    def action(self) -> Action | None:
        """The action of the rule, or None if it has no action."""
        if self.awx_job is not None:
            return self.awx_job
        if self.batch_job is not None:
            return self.batch_job
        return None


class ChangeType(str, Enum):
    """Kind of change made to a healing rule."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class RuleChange(BaseModel):
    """Change event consumed by the rules worker."""

    type: ChangeType
    rule: HealingRule


class JobStatus(str, Enum):
    """Status of an AWX job."""

    NEW = "new"
    PENDING = "pending"
    WAITING = "waiting"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    ERROR = "error"
    CANCELED = "canceled"

    @classmethod
    def _missing_(cls, value: object) -> "JobStatus | None":
        if isinstance(value, str) and value.lower() == "cancelled":
            return cls.CANCELED
        return None

    @property
    def is_finished(self) -> bool:
        return self in FINISHED_JOB_STATUSES


FINISHED_JOB_STATUSES = frozenset({
    JobStatus.SUCCESSFUL,
    JobStatus.FAILED,
    JobStatus.ERROR,
    JobStatus.CANCELED,
})


# ============================================================================
# Service configuration
# ============================================================================


class AWXCredentials(BaseModel):
    """Credentials used to access the AWX API."""

    username: str | None = None
    password: str | None = None
    token: str | None = None


class AWXConfig(BaseModel):
    """Connection details of the AWX server."""

    model_config = ConfigDict(populate_by_name=True)

    address: str = ""
    proxy: str | None = None
    project: str = ""
    insecure: bool = False
    ca_file: str | None = Field(default=None, alias="caFile")
    credentials: AWXCredentials = Field(default_factory=AWXCredentials)
    credentials_file: str | None = Field(default=None, alias="credentialsFile")
    job_status_check_interval: float = Field(default=300.0, alias="jobStatusCheckInterval")

    @field_validator("job_status_check_interval", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> float:
        return parse_duration(v)


class ThrottlingConfig(BaseModel):
    """How long executed actions are remembered."""

    interval: float = 3600.0

    @field_validator("interval", mode="before")
    @classmethod
    def parse_interval(cls, v: Any) -> float:
        return parse_duration(v)


class KubernetesConfig(BaseModel):
    """Access to the Kubernetes API used to create batch jobs.

    Empty values are taken from the in-cluster service account.
    """

    model_config = ConfigDict(populate_by_name=True)

    address: str | None = None
    token: str | None = None
    ca_file: str | None = Field(default=None, alias="caFile")
    insecure: bool = False


class ServerConfig(BaseModel):
    """Listener of the webhook and metrics endpoints."""

    host: str = "0.0.0.0"
    port: int = 9099


class AutohealConfig(BaseModel):
    """Complete autoheal configuration."""

    awx: AWXConfig = Field(default_factory=AWXConfig)
    throttling: ThrottlingConfig = Field(default_factory=ThrottlingConfig)
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    rules: list[HealingRule] = Field(default_factory=list)
