"""Command line entry point for awstools."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

import structlog

from awstools import __version__
from awstools.config import ToolsConfig, set_config
from awstools.core.aws_profiles import AwsProfileStore
from awstools.core.context import effective_environment
from awstools.core.credentials import CredentialResolver
from awstools.core.exceptions import AuthResolutionError, ConfigLoadError
from awstools.execution.engine import ExecutionRequest, Executor

logger = structlog.get_logger()


def configure_logging(level: str = "WARNING", json_output: bool = False) -> None:
    """Configure structured logging to stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.WARNING),
        force=True,
    )
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="awstools",
        description="Run AWS CLI commands with layered config, retries and rate limiting",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--profile", help="awstools profile (config layer set) to use")
    parser.add_argument("--aws-profile", help="AWS named profile for the CLI call")
    parser.add_argument("--region", help="Override the AWS region")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-json", action="store_true", help="Emit logs as JSON")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    exec_parser = subparsers.add_parser("exec", help="Run one AWS CLI command")
    exec_parser.description = """
    Run an AWS CLI command through the execution engine.

    Examples:
      awstools exec rds -- rds describe-db-instances --output table
      awstools --region eu-west-1 exec --timeout 60 ec2 -- ec2 describe-instances
    """
    exec_parser.add_argument("--timeout", type=float, help="Seconds per attempt")
    exec_parser.add_argument("--max-retries", type=int, help="Retry budget for transient errors")
    exec_parser.add_argument("--max-output-size", type=int, help="Characters of output kept")
    exec_parser.add_argument("service", help="Service name used for rate limiting")
    exec_parser.add_argument("cli_args", nargs=argparse.REMAINDER, help="Arguments for the AWS CLI")

    subparsers.add_parser("detect-auth", help="Detect the authentication method")

    show_parser = subparsers.add_parser("show-config", help="Show the effective configuration")
    show_parser.add_argument("--service", help="Include this service's layers")

    subparsers.add_parser("list-profiles", help="List AWS named profiles and their type")

    return parser


def _run_exec(executor: Executor, args: argparse.Namespace) -> int:
    cli_args = list(args.cli_args)
    if cli_args and cli_args[0] == "--":
        cli_args = cli_args[1:]
    if not cli_args:
        print("exec: no AWS CLI arguments given", file=sys.stderr)
        return 2

    request = ExecutionRequest(
        service=args.service,
        argv=[executor.config.cli_executable, *cli_args],
        region=args.region,
        profile=args.aws_profile,
        timeout=args.timeout,
        max_retries=args.max_retries,
        max_output_size=args.max_output_size,
    )
    result = executor.execute(request)

    if result.stdout:
        sys.stdout.write(result.stdout)
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if not result.success:
        print(result.diagnostic(), file=sys.stderr)
    return result.process_exit_code


def _run_detect_auth(executor: Executor, args: argparse.Namespace) -> int:
    merged = executor.merged_config()
    env = effective_environment(executor.environ, merged, args.aws_profile)
    resolver = CredentialResolver(env, metadata=executor.metadata)
    try:
        method = resolver.require()
    except AuthResolutionError as e:
        print("Detected authentication method: unknown")
        print(e.message, file=sys.stderr)
        if e.details.get("suggestion"):
            print(e.details["suggestion"], file=sys.stderr)
        return 1
    print(f"Detected authentication method: {method}")
    return 0


def _run_show_config(executor: Executor, args: argparse.Namespace) -> int:
    merged = executor.merged_config(args.service)
    print(json.dumps(merged.describe(), indent=2))
    return 0


def _run_list_profiles(executor: Executor, args: argparse.Namespace) -> int:
    profiles = AwsProfileStore(executor.environ).list_profiles()
    if not profiles:
        print("No AWS profiles found", file=sys.stderr)
        return 1
    for profile in profiles:
        print(f"{profile['name']}\t{profile['type']}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    config = ToolsConfig.from_env()
    set_config(config)
    configure_logging("DEBUG" if args.verbose else config.log_level, args.log_json)

    executor = Executor(config=config, profile_name=args.profile)
    handlers = {
        "exec": _run_exec,
        "detect-auth": _run_detect_auth,
        "show-config": _run_show_config,
        "list-profiles": _run_list_profiles,
    }
    try:
        return handlers[args.command](executor, args)
    except ConfigLoadError as e:
        logger.error("config_load_failed", **e.details)
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
