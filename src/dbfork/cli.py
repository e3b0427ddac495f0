from __future__ import annotations

import argparse
import logging
import os
import sqlite3
import sys
from pathlib import Path

import yaml

from .api import ApiClient, ApiCredentials
from .app_logging import get_redactor, log_with_fields, setup_logger
from .config import AppConfig, ensure_local_paths, load_config
from .errors import ForkError
from .forking import ForkOptions
from .outputs import OutputWriter
from .store import StateStore
from .workflow import ForkInputs, ForkWorkflow

API_KEY_ENV = "DBFORK_API_KEY"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dbfork", description="Fork a managed database service and wait for it")
    parser.add_argument("--config", default=None, help="Path to dbfork YAML config")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fork = subparsers.add_parser("fork", help="Fork a service and wait until it is ready")
    fork.add_argument("--project-id", required=True, help="Project that owns the parent service")
    fork.add_argument("--service-id", required=True, help="Parent service to fork")
    fork.add_argument(
        "--api-key",
        default=os.environ.get(API_KEY_ENV),
        help=f"API key as publicKey:secretKey (default: ${API_KEY_ENV})",
    )
    fork.add_argument("--strategy", required=True, help="Forking strategy: now, last-snapshot or timestamp")
    fork.add_argument("--timestamp", default=None, help="ISO-8601 target time for the timestamp strategy")
    fork.add_argument("--name", default=None, help="Name for the forked service")
    fork.add_argument("--cpu-millis", default=None, help="CPU allocation in millicores, or `shared`")
    fork.add_argument("--memory-gbs", default=None, help="Memory allocation in GB, or `shared`")
    fork.add_argument("--cleanup", action="store_true", help="Delete the fork on the next `cleanup` run")
    fork.add_argument("--output-file", default=None, help="Append outputs to this file instead of stdout")

    subparsers.add_parser("cleanup", help="Delete a fork recorded by a previous `fork --cleanup` run")
    return parser


def _client_factory(config: AppConfig):
    def build(api_key: str) -> ApiClient:
        return ApiClient(config.api, ApiCredentials.from_api_key(api_key))

    return build


def cmd_fork(config: AppConfig, args: argparse.Namespace) -> int:
    ensure_local_paths(config)
    logger = setup_logger(config.paths.log)
    if not args.api_key:
        log_with_fields(logger, logging.ERROR, "fork_failed", error=f"--api-key or ${API_KEY_ENV} is required")
        print(f"--api-key or ${API_KEY_ENV} is required", file=sys.stderr)
        return 1

    store = StateStore(config.paths.state)
    try:
        store.init_schema()
        workflow = ForkWorkflow(
            config,
            _client_factory(config),
            store,
            OutputWriter(Path(args.output_file) if args.output_file else None),
            logger,
        )
        inputs = ForkInputs(
            project_id=args.project_id,
            service_id=args.service_id,
            api_key=args.api_key,
            options=ForkOptions(
                strategy=args.strategy,
                target_time=args.timestamp,
                name=args.name,
                cpu_millis=args.cpu_millis,
                memory_gbs=args.memory_gbs,
            ),
            cleanup=bool(args.cleanup),
        )
        workflow.run_fork(inputs)
        return 0
    except ForkError as exc:
        log_with_fields(logger, logging.ERROR, "fork_failed", error=str(exc))
        print(get_redactor().redact(str(exc)), file=sys.stderr)
        return 1
    finally:
        store.close()


def cmd_cleanup(config_path: str | None) -> int:
    try:
        config = load_config(config_path)
        ensure_local_paths(config)
        logger = setup_logger(config.paths.log)
    except (ValueError, yaml.YAMLError, OSError) as exc:
        print(f"cleanup skipped: {get_redactor().redact(str(exc))}", file=sys.stderr)
        return 0
    try:
        store = StateStore(config.paths.state)
    except sqlite3.Error as exc:
        log_with_fields(logger, logging.WARNING, "cleanup_state_unavailable", error=str(exc))
        return 0
    try:
        store.init_schema()
        workflow = ForkWorkflow(config, _client_factory(config), store, OutputWriter(), logger)
        workflow.run_cleanup()
    except sqlite3.Error as exc:
        log_with_fields(logger, logging.WARNING, "cleanup_state_unavailable", error=str(exc))
    finally:
        store.close()
    # Cleanup never fails the surrounding workflow.
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "cleanup":
        return cmd_cleanup(args.config)

    config = load_config(args.config)
    if args.command == "fork":
        return cmd_fork(config, args)
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
