"""Readiness polling for a freshly forked service.

The poller turns a stream of remote status snapshots into exactly one
outcome: ``Ready``, ``TerminalFailure`` or ``TimedOut``. It issues at most
one status query per iteration and never runs queries concurrently.

Transport failures while polling are transient: they are logged and retried
after the normal interval. The overall timeout is the only bound on retries.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Protocol

from .app_logging import log_with_fields
from .errors import PollTimeoutError, TerminalFailureError, TransportError
from .models import PollOutcome, Ready, Service, StatusClass, TerminalFailure, TimedOut, classify_status


class ServiceReader(Protocol):
    def get_service(self, project_id: str, service_id: str) -> Service: ...


class ReadinessPoller:
    def __init__(
        self,
        client: ServiceReader,
        logger: logging.Logger,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.logger = logger
        self.clock = clock
        self.sleep = sleep

    def poll(
        self,
        project_id: str,
        service_id: str,
        *,
        timeout_seconds: float,
        interval_seconds: float,
        log_interval_seconds: float,
    ) -> PollOutcome:
        started = self.clock()
        next_log_at = started + log_interval_seconds
        log_with_fields(
            self.logger,
            logging.INFO,
            "service_wait_started",
            service_id=service_id,
            timeout_seconds=timeout_seconds,
        )

        while True:
            elapsed = self.clock() - started
            if elapsed > timeout_seconds:
                log_with_fields(
                    self.logger,
                    logging.ERROR,
                    "service_wait_timed_out",
                    service_id=service_id,
                    elapsed_seconds=round(elapsed),
                )
                return TimedOut(elapsed_seconds=elapsed)

            # Only transport failures are retried; anything else propagates unchanged.
            try:
                service = self.client.get_service(project_id, service_id)
            except TransportError as exc:
                log_with_fields(
                    self.logger,
                    logging.WARNING,
                    "service_poll_failed",
                    service_id=service_id,
                    error=str(exc),
                    retry_in_seconds=interval_seconds,
                )
                self.sleep(interval_seconds)
                continue

            now = self.clock()
            elapsed = now - started
            status_class = classify_status(service.status)
            log_with_fields(
                self.logger,
                logging.DEBUG,
                "service_status",
                service_id=service_id,
                status=service.status,
                elapsed_seconds=round(elapsed),
            )

            if status_class is StatusClass.READY:
                log_with_fields(
                    self.logger,
                    logging.INFO,
                    "service_ready",
                    service_id=service_id,
                    elapsed_seconds=round(elapsed),
                )
                return Ready(service=service, elapsed_seconds=elapsed)

            if status_class is StatusClass.TERMINAL_FAILURE:
                log_with_fields(
                    self.logger,
                    logging.ERROR,
                    "service_terminal_state",
                    service_id=service_id,
                    status=service.status,
                    elapsed_seconds=round(elapsed),
                )
                return TerminalFailure(service=service, status=service.status, elapsed_seconds=elapsed)

            if now >= next_log_at:
                log_with_fields(
                    self.logger,
                    logging.INFO,
                    "service_waiting",
                    service_id=service_id,
                    status=service.status,
                    elapsed_seconds=round(elapsed),
                )
                # Anchored to the start time, not to the last log line.
                next_log_at += log_interval_seconds

            self.sleep(interval_seconds)

    def wait_until_ready(
        self,
        project_id: str,
        service_id: str,
        *,
        timeout_seconds: float,
        interval_seconds: float,
        log_interval_seconds: float,
    ) -> Service:
        outcome = self.poll(
            project_id,
            service_id,
            timeout_seconds=timeout_seconds,
            interval_seconds=interval_seconds,
            log_interval_seconds=log_interval_seconds,
        )
        if isinstance(outcome, Ready):
            return outcome.service
        if isinstance(outcome, TerminalFailure):
            raise TerminalFailureError(service_id, outcome.status)
        raise PollTimeoutError(service_id, timeout_seconds, outcome.elapsed_seconds)
