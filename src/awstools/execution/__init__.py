"""Execution engine for awstools."""

from awstools.execution.engine import (
    ExecutionRequest,
    ExecutionResult,
    ExecutionStatus,
    Executor,
    execute,
    get_executor,
)
from awstools.execution.errors import classify_failure
from awstools.execution.rate_limit import RateLimiter
from awstools.execution.retry import RetryEngine, RetryPolicy

__all__ = [
    "ExecutionRequest",
    "ExecutionResult",
    "ExecutionStatus",
    "Executor",
    "execute",
    "get_executor",
    "classify_failure",
    "RateLimiter",
    "RetryEngine",
    "RetryPolicy",
]
