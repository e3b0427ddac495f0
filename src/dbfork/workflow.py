from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from .app_logging import log_with_fields, register_secret
from .config import AppConfig
from .errors import ForkError
from .forking import ForkInitiator, ForkOptions
from .models import CleanupState, ForkRequest, Service
from .poller import ReadinessPoller
from .store import StateBackend, cleanup_enabled, read_cleanup_state, write_cleanup_state


class WorkflowClient(Protocol):
    def fork_service(self, project_id: str, service_id: str, request: ForkRequest) -> Service: ...

    def get_service(self, project_id: str, service_id: str) -> Service: ...

    def delete_service(self, project_id: str, service_id: str) -> None: ...

    def close(self) -> None: ...


class OutputSink(Protocol):
    def set_output(self, name: str, value: object) -> None: ...


ClientFactory = Callable[[str], WorkflowClient]


@dataclass(slots=True)
class ForkInputs:
    project_id: str
    service_id: str
    api_key: str
    options: ForkOptions
    cleanup: bool = False


@dataclass(slots=True)
class ForkOutputs:
    service_id: str
    name: str
    host: str
    port: int | None
    initial_password: str | None

    def items(self) -> list[tuple[str, object]]:
        return [
            ("service_id", self.service_id),
            ("name", self.name),
            ("host", self.host),
            ("port", "" if self.port is None else self.port),
            ("initial_password", self.initial_password or ""),
        ]


class CleanupOutcome(str, Enum):
    DISABLED = "disabled"
    INCOMPLETE_STATE = "incomplete_state"
    DELETED = "deleted"
    DELETE_FAILED = "delete_failed"


@dataclass(slots=True)
class CleanupReport:
    outcome: CleanupOutcome
    service_id: str | None = None
    error: str | None = None


class ForkWorkflow:
    def __init__(
        self,
        config: AppConfig,
        client_factory: ClientFactory,
        state_store: StateBackend,
        outputs: OutputSink,
        logger: logging.Logger,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.client_factory = client_factory
        self.state_store = state_store
        self.outputs = outputs
        self.logger = logger
        self.clock = clock
        self.sleep = sleep

    def run_fork(self, inputs: ForkInputs) -> ForkOutputs:
        register_secret(inputs.api_key)
        log_with_fields(
            self.logger,
            logging.INFO,
            "fork_started",
            project_id=inputs.project_id,
            service_id=inputs.service_id,
            strategy=inputs.options.strategy,
            cleanup=inputs.cleanup,
        )

        client = self.client_factory(inputs.api_key)
        try:
            initiator = ForkInitiator(client, self.logger, self.config.fork.sizing_validation)
            result = initiator.fork(inputs.project_id, inputs.service_id, inputs.options)
            forked = result.service
            register_secret(forked.initial_password)

            if inputs.cleanup:
                # Saved before polling so a fork that never becomes ready is still removed.
                write_cleanup_state(
                    self.state_store,
                    CleanupState(
                        enabled=True,
                        service_id=forked.service_id,
                        project_id=inputs.project_id,
                        api_key=inputs.api_key,
                    ),
                )
                log_with_fields(self.logger, logging.INFO, "cleanup_state_saved", service_id=forked.service_id)

            poller = ReadinessPoller(client, self.logger, clock=self.clock, sleep=self.sleep)
            ready = poller.wait_until_ready(
                inputs.project_id,
                forked.service_id,
                timeout_seconds=self.config.poll.timeout_seconds,
                interval_seconds=self.config.poll.interval_seconds,
                log_interval_seconds=self.config.poll.log_interval_seconds,
            )
        finally:
            client.close()

        outputs = self._collect_outputs(forked, ready)
        register_secret(outputs.initial_password)
        for name, value in outputs.items():
            self.outputs.set_output(name, value)
        log_with_fields(
            self.logger,
            logging.INFO,
            "fork_completed",
            service_id=outputs.service_id,
            name=outputs.name,
            host=outputs.host,
            port=outputs.port,
        )
        return outputs

    @staticmethod
    def _collect_outputs(forked: Service, ready: Service) -> ForkOutputs:
        endpoint = ready.endpoint or forked.endpoint
        return ForkOutputs(
            service_id=ready.service_id or forked.service_id,
            name=ready.name or forked.name,
            host=endpoint.host if endpoint else "",
            port=endpoint.port if endpoint else None,
            initial_password=ready.initial_password or forked.initial_password,
        )

    def run_cleanup(self) -> CleanupReport:
        entries = self.state_store.load_all()
        # State is consumed exactly once, whatever happens next.
        self.state_store.clear()

        if not cleanup_enabled(entries):
            log_with_fields(self.logger, logging.INFO, "cleanup_skipped", reason="disabled")
            return CleanupReport(outcome=CleanupOutcome.DISABLED)

        state, missing = read_cleanup_state(entries)
        if state is None:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "cleanup_state_incomplete",
                missing_fields=missing,
            )
            return CleanupReport(outcome=CleanupOutcome.INCOMPLETE_STATE)

        register_secret(state.api_key)
        log_with_fields(self.logger, logging.INFO, "cleanup_started", service_id=state.service_id)
        try:
            client = self.client_factory(state.api_key)
            try:
                client.delete_service(state.project_id, state.service_id)
            finally:
                client.close()
        except ForkError as exc:
            log_with_fields(
                self.logger,
                logging.WARNING,
                "cleanup_delete_failed",
                service_id=state.service_id,
                error=str(exc),
            )
            return CleanupReport(outcome=CleanupOutcome.DELETE_FAILED, service_id=state.service_id, error=str(exc))

        log_with_fields(self.logger, logging.INFO, "cleanup_deleted", service_id=state.service_id)
        return CleanupReport(outcome=CleanupOutcome.DELETED, service_id=state.service_id)
