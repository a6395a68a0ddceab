"""Immutable execution context threaded through every provider call."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

import structlog

from awstools.config import ToolsConfig
from awstools.core.aws_profiles import AwsProfileStore
from awstools.core.config_loader import MergedConfig
from awstools.core.credentials import AuthMethod, CredentialResolver
from awstools.core.metadata import InstanceMetadata
from awstools.core.region import RegionResolver

logger = structlog.get_logger()

# Ambient variables the child process may see besides AWS_* ones
PASSTHROUGH_VARIABLES = (
    "PATH",
    "HOME",
    "USER",
    "LOGNAME",
    "LANG",
    "LC_ALL",
    "TMPDIR",
    "SYSTEMROOT",
    "HTTP_PROXY",
    "HTTPS_PROXY",
    "NO_PROXY",
)


@dataclass(frozen=True)
class ExecutionContext:
    """Resolved profile, config, credentials and region for one call."""

    config: MergedConfig
    auth_method: AuthMethod
    region: str
    region_source: str
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    @property
    def profile_name(self) -> str:
        return self.config.profile.name

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile_name,
            "service": self.config.service,
            "auth_method": str(self.auth_method),
            "region": self.region,
            "region_source": self.region_source,
        }


def effective_environment(
    ambient: Mapping[str, str],
    config: MergedConfig,
    aws_profile: str | None = None,
) -> dict[str, str]:
    """Ambient snapshot overlaid by the merged config and a profile override."""
    env = {
        key: value
        for key, value in ambient.items()
        if key in PASSTHROUGH_VARIABLES or key.startswith("AWS_")
    }
    env.update(config.values)
    if aws_profile:
        env["AWS_PROFILE"] = aws_profile
    return env


def build_execution_context(
    config: MergedConfig,
    ambient: Mapping[str, str],
    tools_config: ToolsConfig,
    region_override: str | None = None,
    aws_profile: str | None = None,
    metadata: InstanceMetadata | None = None,
) -> ExecutionContext:
    """Run the resolvers once and freeze their answers.

    Args:
        config: Merged layered configuration
        ambient: Snapshot of the process environment
        tools_config: Tunables (metadata timeout, fallback region)
        region_override: Explicit per-call region
        aws_profile: Explicit per-call AWS named profile
        metadata: Instance metadata probe to share between resolvers

    Returns:
        ExecutionContext whose ``env`` is the full child-process environment
    """
    env = effective_environment(ambient, config, aws_profile)
    profiles = AwsProfileStore(env)
    metadata = metadata or InstanceMetadata(env, timeout=tools_config.metadata_timeout)

    auth_method = CredentialResolver(env, profiles=profiles, metadata=metadata).detect()
    resolved = RegionResolver(
        config.values,
        env,
        profiles=profiles,
        metadata=metadata,
        profile_name=aws_profile,
        fallback=tools_config.fallback_region,
    ).resolve_with_source(region_override)

    env["AWS_REGION"] = resolved.region
    env["AWS_DEFAULT_REGION"] = resolved.region
    env["AWS_PAGER"] = ""

    context = ExecutionContext(
        config=config,
        auth_method=auth_method,
        region=resolved.region,
        region_source=resolved.source,
        env=env,
    )
    logger.debug("execution_context_built", **context.to_dict())
    return context
