"""Configuration management for awstools."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping

import structlog

logger = structlog.get_logger()

RATE_LIMIT_PREFIX = "AWSTOOLS_RATE_LIMIT_"

DEFAULT_MAX_OUTPUT_SIZE = 1024 * 1024


def _default_rate_limits() -> dict[str, float]:
    return {
        "quicksight": 10.0,  # reporting / analytics
        "ec2": 20.0,
        "s3": 100.0,
    }


@dataclass(frozen=True)
class ToolsConfig:
    """Tunables for the execution engine."""

    # Locations
    config_dir: Path = field(default_factory=lambda: Path("config"))
    user_config_file: Path = field(
        default_factory=lambda: Path.home() / ".config" / "awstools" / "config"
    )
    cli_executable: str = "aws"

    # Retry / timeout / output
    max_retries: int = 3
    retry_base_delay: float = 2.0
    timeout: float = 300.0
    max_output_size: int = DEFAULT_MAX_OUTPUT_SIZE

    # Rate limiting (tokens per second)
    rate_limits: Mapping[str, float] = field(default_factory=_default_rate_limits)
    default_rate_limit: float = 50.0
    rate_limit_burst: float = 1.0

    # Region / credential probing
    metadata_timeout: float = 2.0
    fallback_region: str = "us-east-1"

    log_level: str = "WARNING"

    def rate_limit_for(self, service: str) -> float:
        """Get the configured tokens/sec for a service."""
        return self.rate_limits.get(service.lower(), self.default_rate_limit)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ToolsConfig":
        """Load configuration from environment variables."""
        env = os.environ if environ is None else environ
        config = cls()

        if env.get("AWSTOOLS_CONFIG_DIR"):
            config = replace(config, config_dir=Path(env["AWSTOOLS_CONFIG_DIR"]).expanduser())
        if env.get("AWSTOOLS_USER_CONFIG"):
            config = replace(
                config, user_config_file=Path(env["AWSTOOLS_USER_CONFIG"]).expanduser()
            )
        if env.get("AWSTOOLS_LOG_LEVEL"):
            config = replace(config, log_level=env["AWSTOOLS_LOG_LEVEL"].upper())

        return config.with_overrides(env)

    def with_overrides(self, values: Mapping[str, str]) -> "ToolsConfig":
        """Return a copy with tunables taken from a key/value mapping.

        Used both for the process environment and for the merged layered
        configuration. Values that cannot be parsed are logged and ignored.
        """
        changes: dict[str, Any] = {}

        if values.get("AWSTOOLS_CLI"):
            changes["cli_executable"] = values["AWSTOOLS_CLI"]
        if values.get("AWSTOOLS_FALLBACK_REGION"):
            changes["fallback_region"] = values["AWSTOOLS_FALLBACK_REGION"]

        # (key, attribute, type, zero allowed)
        numeric: list[tuple[str, str, type, bool]] = [
            ("AWSTOOLS_MAX_RETRIES", "max_retries", int, True),
            ("AWSTOOLS_RETRY_BASE_DELAY", "retry_base_delay", float, True),
            ("AWSTOOLS_TIMEOUT", "timeout", float, False),
            ("AWSTOOLS_MAX_OUTPUT_SIZE", "max_output_size", int, False),
            ("AWSTOOLS_RATE_LIMIT_DEFAULT", "default_rate_limit", float, False),
            ("AWSTOOLS_RATE_LIMIT_BURST", "rate_limit_burst", float, False),
            ("AWSTOOLS_METADATA_TIMEOUT", "metadata_timeout", float, False),
        ]
        for key, attr, kind, allow_zero in numeric:
            parsed = _parse_number(values, key, kind, allow_zero)
            if parsed is not None:
                changes[attr] = parsed

        rate_limits = dict(self.rate_limits)
        for key in values:
            if not key.startswith(RATE_LIMIT_PREFIX) or key in (
                "AWSTOOLS_RATE_LIMIT_DEFAULT",
                "AWSTOOLS_RATE_LIMIT_BURST",
            ):
                continue
            rate = _parse_number(values, key, float, allow_zero=False)
            if rate is not None:
                service = key[len(RATE_LIMIT_PREFIX):].lower().replace("_", "-")
                rate_limits[service] = rate
        if rate_limits != dict(self.rate_limits):
            changes["rate_limits"] = rate_limits

        return replace(self, **changes) if changes else self


def _parse_number(
    values: Mapping[str, str], key: str, kind: type, allow_zero: bool = True
) -> Any:
    raw = values.get(key)
    if raw is None or raw == "":
        return None
    try:
        value = kind(raw)
    except ValueError:
        logger.warning("invalid_config_value", key=key, value=raw)
        return None
    if value < 0 or (value == 0 and not allow_zero):
        logger.warning("invalid_config_value", key=key, value=raw)
        return None
    return value


# Global configuration instance
_config: ToolsConfig | None = None


def get_config() -> ToolsConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ToolsConfig.from_env()
    return _config


def set_config(config: ToolsConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration (for testing)."""
    global _config
    _config = None
