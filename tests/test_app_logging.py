from __future__ import annotations

import io
import json
import logging
from pathlib import Path
from tempfile import TemporaryDirectory
import unittest

from dbfork.app_logging import (
    REDACTED,
    JsonFormatter,
    RedactingFilter,
    SecretRedactor,
    log_with_fields,
    register_secret,
    setup_logger,
)


def capture_logger(redactor: SecretRedactor) -> tuple[logging.Logger, io.StringIO]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RedactingFilter(redactor))
    logger = logging.getLogger("test_dbfork_logging")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.propagate = False
    logger.setLevel(logging.INFO)
    return logger, stream


class SecretRedactorTest(unittest.TestCase):
    def test_redacts_registered_values(self) -> None:
        redactor = SecretRedactor()
        redactor.register("super-secret-value")
        self.assertEqual(redactor.redact("token=super-secret-value;"), f"token={REDACTED};")

    def test_short_credentials_are_redacted(self) -> None:
        redactor = SecretRedactor()
        redactor.register("pub:sec")
        redactor.register("pw1")
        self.assertEqual(redactor.redact("key=pub:sec password=pw1"), f"key={REDACTED} password={REDACTED}")

    def test_empty_values_are_ignored(self) -> None:
        redactor = SecretRedactor()
        redactor.register("")
        redactor.register(None)
        self.assertEqual(redactor.redact("nothing to hide"), "nothing to hide")

    def test_longest_secret_wins(self) -> None:
        redactor = SecretRedactor()
        redactor.register("secret-key-1")
        redactor.register("public-key:secret-key-1")
        self.assertEqual(redactor.redact("key public-key:secret-key-1"), f"key {REDACTED}")


class RedactingFilterTest(unittest.TestCase):
    def test_message_and_fields_are_redacted(self) -> None:
        redactor = SecretRedactor()
        logger, stream = capture_logger(redactor)
        redactor.register("initial-password-123")

        logger.warning("password is %s", "initial-password-123")
        log_with_fields(
            logger,
            logging.INFO,
            "fork_completed",
            error="got initial-password-123",
            nested={"a": ["initial-password-123"]},
        )

        first, second = [json.loads(line) for line in stream.getvalue().splitlines()]
        self.assertEqual(first["message"], f"password is {REDACTED}")
        self.assertEqual(second["error"], f"got {REDACTED}")
        self.assertEqual(second["nested"], {"a": [REDACTED]})

    def test_secret_registered_later_is_redacted_from_then_on(self) -> None:
        redactor = SecretRedactor()
        logger, stream = capture_logger(redactor)
        log_with_fields(logger, logging.INFO, "before", value="late-secret-value")
        redactor.register("late-secret-value")
        log_with_fields(logger, logging.INFO, "after", value="late-secret-value")
        before, after = [json.loads(line) for line in stream.getvalue().splitlines()]
        self.assertEqual(before["value"], "late-secret-value")
        self.assertEqual(after["value"], REDACTED)


class SetupLoggerTest(unittest.TestCase):
    def test_file_log_is_json_and_redacted(self) -> None:
        with TemporaryDirectory() as temp_dir:
            log_path = Path(temp_dir) / "dbfork.log"
            logger = setup_logger(log_path)
            register_secret("process-wide-secret")
            log_with_fields(logger, logging.INFO, "cleanup_started", api_key="process-wide-secret")
            for handler in logger.handlers:
                handler.flush()
            payload = json.loads(log_path.read_text(encoding="utf-8").splitlines()[-1])
            self.assertEqual(payload["message"], "cleanup_started")
            self.assertEqual(payload["api_key"], REDACTED)
            self.assertEqual(payload["level"], "INFO")
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()


if __name__ == "__main__":
    unittest.main()
