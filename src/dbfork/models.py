from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

SHARED_SIZING = "shared"


class ForkStrategy(str, Enum):
    NOW = "NOW"
    LAST_SNAPSHOT = "LAST_SNAPSHOT"
    PITR = "PITR"


class DeployStatus(str, Enum):
    QUEUED = "QUEUED"
    DELETING = "DELETING"
    CONFIGURING = "CONFIGURING"
    READY = "READY"
    DELETED = "DELETED"
    UNSTABLE = "UNSTABLE"
    PAUSING = "PAUSING"
    PAUSED = "PAUSED"
    RESUMING = "RESUMING"
    UPGRADING = "UPGRADING"
    OPTIMIZING = "OPTIMIZING"


class StatusClass(str, Enum):
    READY = "ready"
    TERMINAL_FAILURE = "terminal_failure"
    IN_PROGRESS = "in_progress"


TERMINAL_FAILURE_STATUSES = frozenset({DeployStatus.DELETED.value, DeployStatus.UNSTABLE.value})


def classify_status(status: str) -> StatusClass:
    # Unknown values are treated as still in progress, never as failure.
    if status == DeployStatus.READY.value:
        return StatusClass.READY
    if status in TERMINAL_FAILURE_STATUSES:
        return StatusClass.TERMINAL_FAILURE
    return StatusClass.IN_PROGRESS


@dataclass(frozen=True, slots=True)
class SizingValue:
    raw: str


@dataclass(slots=True)
class ForkRequest:
    strategy: ForkStrategy
    target_time: str | None = None
    name: str | None = None
    cpu_millis: SizingValue | None = None
    memory_gbs: SizingValue | None = None

    def to_payload(self) -> dict[str, str]:
        payload: dict[str, str] = {"fork_strategy": self.strategy.value}
        if self.name is not None:
            payload["name"] = self.name
        if self.cpu_millis is not None:
            payload["cpu_millis"] = self.cpu_millis.raw
        if self.memory_gbs is not None:
            payload["memory_gbs"] = self.memory_gbs.raw
        if self.strategy is ForkStrategy.PITR and self.target_time is not None:
            payload["target_time"] = self.target_time
        return payload


@dataclass(frozen=True, slots=True)
class Endpoint:
    host: str
    port: int


@dataclass(slots=True)
class Service:
    service_id: str
    project_id: str
    name: str
    region_code: str
    status: str
    endpoint: Endpoint | None = None
    initial_password: str | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Service:
        endpoint_raw = payload.get("endpoint")
        endpoint = None
        if isinstance(endpoint_raw, Mapping) and endpoint_raw.get("host"):
            endpoint = Endpoint(host=str(endpoint_raw["host"]), port=int(endpoint_raw.get("port") or 0))
        password = payload.get("initial_password")
        return cls(
            service_id=str(payload["service_id"]),
            project_id=str(payload.get("project_id") or ""),
            name=str(payload.get("name") or ""),
            region_code=str(payload.get("region_code") or ""),
            status=str(payload.get("status") or ""),
            endpoint=endpoint,
            initial_password=str(password) if password else None,
        )


@dataclass(frozen=True, slots=True)
class Ready:
    service: Service
    elapsed_seconds: float


@dataclass(frozen=True, slots=True)
class TerminalFailure:
    service: Service
    status: str
    elapsed_seconds: float


@dataclass(frozen=True, slots=True)
class TimedOut:
    elapsed_seconds: float


PollOutcome = Ready | TerminalFailure | TimedOut


@dataclass(frozen=True, slots=True)
class CleanupState:
    enabled: bool
    service_id: str
    project_id: str
    api_key: str
