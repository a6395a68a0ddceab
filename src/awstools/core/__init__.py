"""Core modules for awstools."""

from awstools.core.config_loader import (
    ConfigLayer,
    ConfigResolver,
    MergedConfig,
    Profile,
    merge_layers,
    parse_env_text,
)
from awstools.core.context import ExecutionContext, build_execution_context
from awstools.core.credentials import AuthKind, AuthMethod, CredentialResolver
from awstools.core.exceptions import (
    AWSToolsError,
    AuthResolutionError,
    ConfigLoadError,
    ExecutionError,
    ExecutionTimeoutError,
    FatalExecutionError,
    FatalKind,
    RetriesExhaustedError,
    RetryableExecutionError,
)
from awstools.core.region import RegionResolver

__all__ = [
    # Configuration
    "ConfigLayer",
    "ConfigResolver",
    "MergedConfig",
    "Profile",
    "merge_layers",
    "parse_env_text",
    # Context
    "ExecutionContext",
    "build_execution_context",
    # Credentials / region
    "AuthKind",
    "AuthMethod",
    "CredentialResolver",
    "RegionResolver",
    # Exceptions
    "AWSToolsError",
    "AuthResolutionError",
    "ConfigLoadError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "FatalExecutionError",
    "FatalKind",
    "RetriesExhaustedError",
    "RetryableExecutionError",
]
