"""Fork request validation, assembly and submission."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Protocol

from .app_logging import log_with_fields
from .errors import ValidationError
from .models import SHARED_SIZING, ForkRequest, ForkStrategy, Service, SizingValue
from .utils import blank_to_none, parse_iso8601

STRATEGY_SELECTORS: dict[str, ForkStrategy] = {
    "now": ForkStrategy.NOW,
    "last-snapshot": ForkStrategy.LAST_SNAPSHOT,
    "timestamp": ForkStrategy.PITR,
}

NUMERIC_SIZING = re.compile(r"^\d+(?:\.\d+)?$")

TIMESTAMP_IGNORED_ADVISORY = 'timestamp input is ignored when not using "timestamp" forking strategy'


class ForkClient(Protocol):
    def fork_service(self, project_id: str, service_id: str, request: ForkRequest) -> Service: ...


@dataclass(slots=True)
class ForkOptions:
    strategy: str
    target_time: str | None = None
    name: str | None = None
    cpu_millis: str | None = None
    memory_gbs: str | None = None


@dataclass(slots=True)
class PreparedFork:
    request: ForkRequest
    advisories: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ForkResult:
    service: Service
    request: ForkRequest
    advisories: list[str] = field(default_factory=list)


def map_fork_strategy(selector: str) -> ForkStrategy:
    strategy = STRATEGY_SELECTORS.get(selector.lower())
    if strategy is None:
        raise ValidationError(
            f"Invalid forking strategy: {selector}. Must be one of: {', '.join(STRATEGY_SELECTORS)}"
        )
    return strategy


def parse_sizing(field_name: str, raw: str | None, mode: str = "strict") -> tuple[SizingValue | None, str | None]:
    """Return the sizing value and an advisory, if the value was passed through unchecked."""
    value = blank_to_none(raw)
    if value is None:
        return None, None
    if value.lower() == SHARED_SIZING:
        return SizingValue(SHARED_SIZING), None
    if NUMERIC_SIZING.match(value):
        return SizingValue(value), None
    if mode == "passthrough":
        return SizingValue(value), f"{field_name} value {value!r} is neither numeric nor {SHARED_SIZING!r}; sending as-is"
    raise ValidationError(f"{field_name} must be a number or {SHARED_SIZING!r}, got {value!r}")


def build_fork_request(options: ForkOptions, sizing_mode: str = "strict") -> PreparedFork:
    strategy = map_fork_strategy(options.strategy)
    target_time = blank_to_none(options.target_time)
    advisories: list[str] = []

    if strategy is ForkStrategy.PITR:
        if target_time is None:
            raise ValidationError('timestamp input is required when using "timestamp" forking strategy')
        try:
            parse_iso8601(target_time)
        except ValueError as exc:
            raise ValidationError(f"timestamp input is not a valid ISO-8601 timestamp: {target_time}") from exc
    elif target_time is not None:
        advisories.append(TIMESTAMP_IGNORED_ADVISORY)
        target_time = None

    cpu_millis, cpu_advisory = parse_sizing("cpu_millis", options.cpu_millis, sizing_mode)
    memory_gbs, memory_advisory = parse_sizing("memory_gbs", options.memory_gbs, sizing_mode)
    advisories.extend(item for item in (cpu_advisory, memory_advisory) if item)

    request = ForkRequest(
        strategy=strategy,
        target_time=target_time,
        name=blank_to_none(options.name),
        cpu_millis=cpu_millis,
        memory_gbs=memory_gbs,
    )
    return PreparedFork(request=request, advisories=advisories)


class ForkInitiator:
    def __init__(self, client: ForkClient, logger: logging.Logger, sizing_mode: str = "strict") -> None:
        self.client = client
        self.logger = logger
        self.sizing_mode = sizing_mode

    def fork(self, project_id: str, service_id: str, options: ForkOptions) -> ForkResult:
        prepared = build_fork_request(options, self.sizing_mode)
        for advisory in prepared.advisories:
            log_with_fields(self.logger, logging.WARNING, advisory, service_id=service_id)

        request = prepared.request
        log_with_fields(
            self.logger,
            logging.INFO,
            "fork_requested",
            project_id=project_id,
            service_id=service_id,
            fork_strategy=request.strategy.value,
            target_time=request.target_time,
        )
        # Submission errors surface as-is; a rejected fork is never resubmitted.
        service = self.client.fork_service(project_id, service_id, request)
        log_with_fields(
            self.logger,
            logging.INFO,
            "fork_accepted",
            parent_service_id=service_id,
            service_id=service.service_id,
            status=service.status,
        )
        return ForkResult(service=service, request=request, advisories=prepared.advisories)
