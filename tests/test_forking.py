from __future__ import annotations

import logging
import unittest

from dbfork.errors import ApiError, ValidationError
from dbfork.forking import (
    TIMESTAMP_IGNORED_ADVISORY,
    ForkInitiator,
    ForkOptions,
    build_fork_request,
    map_fork_strategy,
    parse_sizing,
)
from dbfork.models import ForkRequest, ForkStrategy, Service


def quiet_logger() -> logging.Logger:
    logger = logging.getLogger("test_dbfork_forking")
    logger.handlers.clear()
    logger.addHandler(logging.NullHandler())
    logger.propagate = False
    return logger


class FakeForkClient:
    def __init__(self, error: Exception | None = None) -> None:
        self.calls: list[tuple[str, str, ForkRequest]] = []
        self.error = error

    def fork_service(self, project_id: str, service_id: str, request: ForkRequest) -> Service:
        self.calls.append((project_id, service_id, request))
        if self.error is not None:
            raise self.error
        return Service(
            service_id="forked-service-123",
            project_id=project_id,
            name="test-fork",
            region_code="us-east-1",
            status="QUEUED",
        )


class StrategyMappingTest(unittest.TestCase):
    def test_selectors_are_case_insensitive(self) -> None:
        self.assertIs(map_fork_strategy("now"), ForkStrategy.NOW)
        self.assertIs(map_fork_strategy("NOW"), ForkStrategy.NOW)
        self.assertIs(map_fork_strategy("Last-Snapshot"), ForkStrategy.LAST_SNAPSHOT)
        self.assertIs(map_fork_strategy("TIMESTAMP"), ForkStrategy.PITR)

    def test_unknown_selector_names_value(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            map_fork_strategy("invalid-strategy")
        self.assertIn("Invalid forking strategy: invalid-strategy", str(ctx.exception))
        self.assertIn("now, last-snapshot, timestamp", str(ctx.exception))

    def test_wire_names_are_not_selectors(self) -> None:
        for value in ["PITR", "last_snapshot", "immediate", "", " now", "now\n", "\ttimestamp "]:
            with self.assertRaises(ValidationError):
                map_fork_strategy(value)


class BuildForkRequestTest(unittest.TestCase):
    def test_now_payload_has_only_strategy(self) -> None:
        prepared = build_fork_request(ForkOptions(strategy="now"))
        self.assertEqual(prepared.request.to_payload(), {"fork_strategy": "NOW"})
        self.assertEqual(prepared.advisories, [])

    def test_blank_optionals_are_omitted(self) -> None:
        prepared = build_fork_request(
            ForkOptions(strategy="last-snapshot", target_time="", name="  ", cpu_millis="", memory_gbs=None)
        )
        self.assertEqual(prepared.request.to_payload(), {"fork_strategy": "LAST_SNAPSHOT"})

    def test_timestamp_requires_target_time(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            build_fork_request(ForkOptions(strategy="timestamp", target_time=""))
        self.assertEqual(
            str(ctx.exception),
            'timestamp input is required when using "timestamp" forking strategy',
        )

    def test_timestamp_sends_pitr_and_target_time(self) -> None:
        prepared = build_fork_request(ForkOptions(strategy="timestamp", target_time="2025-10-01T15:29:00Z"))
        self.assertEqual(
            prepared.request.to_payload(),
            {"fork_strategy": "PITR", "target_time": "2025-10-01T15:29:00Z"},
        )

    def test_timestamp_rejects_garbage_target_time(self) -> None:
        with self.assertRaises(ValidationError):
            build_fork_request(ForkOptions(strategy="timestamp", target_time="yesterday"))

    def test_target_time_ignored_for_other_strategies(self) -> None:
        for strategy in ["now", "last-snapshot"]:
            prepared = build_fork_request(ForkOptions(strategy=strategy, target_time="2025-10-01T15:29:00Z"))
            self.assertNotIn("target_time", prepared.request.to_payload())
            self.assertEqual(prepared.advisories, [TIMESTAMP_IGNORED_ADVISORY])

    def test_optional_fields_included_when_supplied(self) -> None:
        prepared = build_fork_request(
            ForkOptions(strategy="now", name="ci-fork", cpu_millis="1000", memory_gbs="SHARED")
        )
        self.assertEqual(
            prepared.request.to_payload(),
            {"fork_strategy": "NOW", "name": "ci-fork", "cpu_millis": "1000", "memory_gbs": "shared"},
        )

    def test_malformed_sizing_strict(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            build_fork_request(ForkOptions(strategy="now", cpu_millis="lots"))
        self.assertIn("cpu_millis", str(ctx.exception))

    def test_malformed_sizing_passthrough(self) -> None:
        prepared = build_fork_request(ForkOptions(strategy="now", memory_gbs="8Gi"), sizing_mode="passthrough")
        self.assertEqual(prepared.request.to_payload()["memory_gbs"], "8Gi")
        self.assertEqual(len(prepared.advisories), 1)

    def test_parse_sizing_accepts_decimal(self) -> None:
        value, advisory = parse_sizing("memory_gbs", "0.5")
        assert value is not None
        self.assertEqual(value.raw, "0.5")
        self.assertIsNone(advisory)


class ForkInitiatorTest(unittest.TestCase):
    def test_invalid_strategy_makes_no_call(self) -> None:
        client = FakeForkClient()
        initiator = ForkInitiator(client, quiet_logger())
        for strategy in ["invalid-strategy", "snapshot", "pitr"]:
            with self.assertRaises(ValidationError):
                initiator.fork("project-456", "service-789", ForkOptions(strategy=strategy))
        self.assertEqual(client.calls, [])

    def test_missing_timestamp_makes_no_call(self) -> None:
        client = FakeForkClient()
        with self.assertRaises(ValidationError):
            ForkInitiator(client, quiet_logger()).fork(
                "project-456", "service-789", ForkOptions(strategy="timestamp")
            )
        self.assertEqual(client.calls, [])

    def test_advisory_is_logged_and_returned(self) -> None:
        client = FakeForkClient()
        logger = quiet_logger()
        with self.assertLogs(logger, level="WARNING") as captured:
            result = ForkInitiator(client, logger).fork(
                "project-456",
                "service-789",
                ForkOptions(strategy="now", target_time="2025-10-01T15:29:00Z"),
            )
        self.assertEqual(result.advisories, [TIMESTAMP_IGNORED_ADVISORY])
        self.assertIn(TIMESTAMP_IGNORED_ADVISORY, captured.output[0])
        self.assertEqual(client.calls[0][2].to_payload(), {"fork_strategy": "NOW"})
        self.assertEqual(result.service.service_id, "forked-service-123")

    def test_api_error_is_not_retried(self) -> None:
        client = FakeForkClient(error=ApiError("API Error: Unauthorized", status_code=401))
        with self.assertRaises(ApiError) as ctx:
            ForkInitiator(client, quiet_logger()).fork("project-456", "service-789", ForkOptions(strategy="now"))
        self.assertEqual(str(ctx.exception), "API Error: Unauthorized")
        self.assertEqual(len(client.calls), 1)


if __name__ == "__main__":
    unittest.main()
