"""Main execution engine for provider CLI calls."""

from __future__ import annotations

import json
import os
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping, Optional

import structlog
from pydantic import BaseModel, Field, field_validator

from awstools.config import ToolsConfig, get_config
from awstools.core.config_loader import ConfigResolver, MergedConfig
from awstools.core.context import ExecutionContext, build_execution_context
from awstools.core.exceptions import (
    ExecutionTimeoutError,
    FatalExecutionError,
    FatalKind,
    RetriesExhaustedError,
    RetryableExecutionError,
)
from awstools.core.metadata import InstanceMetadata
from awstools.execution.errors import (
    FailureCategory,
    classify_failure,
    remediation_hint,
)
from awstools.execution.process import ProcessOutcome, ProcessRunner
from awstools.execution.rate_limit import RateLimiter
from awstools.execution.retry import RetryEngine, RetryPolicy

logger = structlog.get_logger()


class ExecutionRequest(BaseModel):
    """One call of the external CLI."""

    service: str = Field(..., min_length=1, description="Service name (rate limiting, diagnostics)")
    argv: list[str] = Field(..., min_length=1, description="Argument vector, executable first")
    region: Optional[str] = Field(None, description="Per-call region override")
    profile: Optional[str] = Field(None, description="Per-call AWS named profile override")
    timeout: Optional[float] = Field(None, gt=0, description="Seconds per attempt")
    max_retries: Optional[int] = Field(None, ge=0)
    max_output_size: Optional[int] = Field(None, gt=0, description="Characters of stdout kept")

    @field_validator("service")
    @classmethod
    def lowercase_service(cls, v: str) -> str:
        return v.lower()

    @classmethod
    def cli(
        cls, service: str, *args: str, executable: str | None = None, **kwargs: Any
    ) -> "ExecutionRequest":
        """Build a request for ``<executable> <args...>``."""
        executable = executable or get_config().cli_executable
        return cls(service=service, argv=[executable, *args], **kwargs)


class ExecutionStatus(Enum):
    """Terminal state of one call."""

    SUCCESS = "success"
    RETRIES_EXHAUSTED = "retries_exhausted"
    FATAL_ERROR = "fatal_error"
    TIMEOUT = "timeout"


@dataclass
class ExecutionResult:
    """Result of executing one provider CLI call."""

    status: ExecutionStatus
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    retries: int = 0
    output_truncated: bool = False

    # Failure details
    fatal_kind: FatalKind | None = None
    error: str | None = None
    error_code: str | None = None
    hint: str | None = None
    exit_code: int | None = None

    # Metadata
    service: str | None = None
    region: str | None = None
    profile: str | None = None
    auth_method: str | None = None

    warnings: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @property
    def process_exit_code(self) -> int:
        """Exit code for the tool itself: 0 only on success."""
        return 0 if self.success else 1

    def diagnostic(self) -> str:
        """Verbatim error text followed by the category and remediation hint."""
        if self.success:
            return ""
        label = self.status.value
        if self.fatal_kind is not None:
            label = f"{label}:{self.fatal_kind.value}"
        lines = []
        if self.error:
            lines.append(self.error.rstrip())
        lines.append(f"[{label}] after {self.retries} retries")
        if self.hint:
            lines.append(f"Hint: {self.hint}")
        return "\n".join(lines)

    def raise_for_status(self) -> None:
        """Raise the matching ``ExecutionError`` for a non-success result."""
        if self.success:
            return
        kwargs = dict(
            service=self.service, error_code=self.error_code, retries=self.retries, hint=self.hint
        )
        message = self.error or self.status.value
        if self.status == ExecutionStatus.FATAL_ERROR:
            raise FatalExecutionError(message, self.fatal_kind or FatalKind.UNCLASSIFIED, **kwargs)
        if self.status == ExecutionStatus.TIMEOUT:
            raise RetriesExhaustedError(ExecutionTimeoutError(message, **kwargs), self.retries)
        raise RetriesExhaustedError(RetryableExecutionError(message, **kwargs), self.retries)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: dict[str, Any] = {
            "status": self.status.value,
            "retries": self.retries,
            "elapsed": round(self.elapsed, 3),
        }
        if self.success:
            result["stdout"] = self.stdout
        else:
            result["error"] = self.error
            if self.fatal_kind:
                result["fatal_kind"] = self.fatal_kind.value
            if self.error_code:
                result["error_code"] = self.error_code
            if self.hint:
                result["hint"] = self.hint
        if self.output_truncated:
            result["output_truncated"] = True
        if self.warnings:
            result["warnings"] = self.warnings
        for key in ("service", "region", "profile", "auth_method"):
            value = getattr(self, key)
            if value:
                result[key] = value
        return result

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2, default=str)


class Executor:
    """Resolves context, throttles, runs and retries provider CLI calls.

    One call at a time; every wait (rate limit, process, backoff) blocks the
    calling thread.
    """

    def __init__(
        self,
        config: ToolsConfig | None = None,
        config_resolver: ConfigResolver | None = None,
        profile_name: str | None = None,
        environ: Mapping[str, str] | None = None,
        runner: ProcessRunner | None = None,
        rate_limiter: RateLimiter | None = None,
        metadata: InstanceMetadata | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            config: Tunables; the process-global config by default
            config_resolver: Layered configuration source
            profile_name: Explicit awstools profile override
            environ: Environment snapshot; a copy of ``os.environ`` by default
            runner: Process runner (replaceable for fault injection)
            rate_limiter: Shared rate limiter
            metadata: Instance metadata probe
            clock: Monotonic clock
            sleep: Blocking sleep used for backoff and throttling
            rng: Random source for backoff jitter
        """
        self.config = config or get_config()
        self.config_resolver = config_resolver or ConfigResolver(
            self.config.config_dir, self.config.user_config_file
        )
        self.profile_name = profile_name
        self.environ = dict(os.environ if environ is None else environ)
        self.runner = runner or ProcessRunner()
        self.rate_limiter = rate_limiter or RateLimiter.from_config(
            self.config, clock=clock, sleep=sleep
        )
        self.metadata = metadata or InstanceMetadata(
            self.environ, timeout=self.config.metadata_timeout
        )
        self.clock = clock
        self.sleep = sleep
        self.rng = rng
        self._merged: dict[str, MergedConfig] = {}

    def merged_config(self, service: str | None = None) -> MergedConfig:
        """Merged configuration for a service, resolved once and cached."""
        key = service or ""
        if key not in self._merged:
            self._merged[key] = self.config_resolver.resolve(self.profile_name, service)
        return self._merged[key]

    def context_for(self, request: ExecutionRequest) -> ExecutionContext:
        return build_execution_context(
            self.merged_config(request.service),
            self.environ,
            self.config,
            region_override=request.region,
            aws_profile=request.profile,
            metadata=self.metadata,
        )

    def execute(self, request: ExecutionRequest) -> ExecutionResult:
        """Execute one request.

        Returns:
            ExecutionResult in one of the four terminal states

        Raises:
            ConfigLoadError: If an existing configuration file is malformed
        """
        started = self.clock()
        context = self.context_for(request)
        tunables = self.config.with_overrides(context.config.values)
        timeout = request.timeout or tunables.timeout
        max_output_size = request.max_output_size or tunables.max_output_size
        policy = RetryPolicy(
            max_retries=tunables.max_retries if request.max_retries is None else request.max_retries,
            base_delay=tunables.retry_base_delay,
        )
        engine = RetryEngine(policy, sleep=self.sleep, rng=self.rng)

        logger.info(
            "executing_request",
            service=request.service,
            command=request.argv[1:3],
            region=context.region,
            profile=context.profile_name,
            auth_method=str(context.auth_method),
        )

        state = _AttemptState(max_output_size=max_output_size)

        def attempt(number: int) -> ProcessOutcome:
            state.attempts = number
            state.last_outcome = None
            return self._attempt(request, context, timeout, max_output_size, state)

        try:
            self.rate_limiter.acquire(
                request.service, rate=tunables.rate_limit_for(request.service)
            )
            _, retries = engine.run(attempt)
        except KeyboardInterrupt:
            return self._finish(
                request,
                context,
                started,
                state,
                ExecutionStatus.FATAL_ERROR,
                retries=state.attempts,
                fatal_kind=FatalKind.INTERRUPTED,
                error="Interrupted by user",
                category=FailureCategory.INTERRUPTED,
            )
        except FatalExecutionError as e:
            return self._finish(
                request,
                context,
                started,
                state,
                ExecutionStatus.FATAL_ERROR,
                retries=e.retries,
                fatal_kind=e.kind,
                error=e.message,
                error_code=e.error_code,
                category=state.last_category,
            )
        except RetriesExhaustedError as e:
            status = ExecutionStatus.TIMEOUT if e.timed_out else ExecutionStatus.RETRIES_EXHAUSTED
            return self._finish(
                request,
                context,
                started,
                state,
                status,
                retries=e.retries,
                error=e.message,
                error_code=e.error_code,
                category=state.last_category,
            )

        return self._finish(
            request, context, started, state, ExecutionStatus.SUCCESS, retries=retries
        )

    def _attempt(
        self,
        request: ExecutionRequest,
        context: ExecutionContext,
        timeout: float,
        max_output_size: int,
        state: "_AttemptState",
    ) -> ProcessOutcome:
        logger.debug("attempt_started", service=request.service, attempt=state.attempts)
        try:
            outcome = self.runner.run(request.argv, context.env, timeout, max_output_size)
        except OSError as e:
            state.last_category = FailureCategory.LAUNCH
            raise FatalExecutionError(
                f"Cannot start {request.argv[0]!r}: {e}",
                FatalKind.LAUNCH_FAILED,
                service=request.service,
                retries=state.attempts,
            ) from e

        state.last_outcome = outcome

        if outcome.timed_out:
            state.last_category = FailureCategory.TIMEOUT
            raise ExecutionTimeoutError(
                f"Command timed out after {timeout:g}s",
                service=request.service,
                retries=state.attempts,
            )

        if outcome.exit_code == 0:
            return outcome

        classification = classify_failure(outcome.exit_code, outcome.stderr)
        state.last_category = classification.category
        message = outcome.stderr.strip() or f"Command exited with status {outcome.exit_code}"
        logger.info(
            "attempt_failed",
            service=request.service,
            attempt=state.attempts,
            exit_code=outcome.exit_code,
            category=classification.category.value,
            retryable=classification.retryable,
        )
        if classification.retryable:
            raise RetryableExecutionError(
                message,
                service=request.service,
                error_code=classification.error_code,
                retries=state.attempts,
            )
        raise FatalExecutionError(
            message,
            classification.fatal_kind or FatalKind.UNCLASSIFIED,
            service=request.service,
            error_code=classification.error_code,
            retries=state.attempts,
        )

    def _finish(
        self,
        request: ExecutionRequest,
        context: ExecutionContext,
        started: float,
        state: "_AttemptState",
        status: ExecutionStatus,
        retries: int,
        fatal_kind: FatalKind | None = None,
        error: str | None = None,
        error_code: str | None = None,
        category: FailureCategory | None = None,
    ) -> ExecutionResult:
        last = state.last_outcome
        result = ExecutionResult(
            status=status,
            stdout=last.stdout if last else "",
            stderr=last.stderr if last else "",
            elapsed=self.clock() - started,
            retries=retries,
            output_truncated=bool(last and last.stdout_truncated),
            fatal_kind=fatal_kind,
            error=error,
            error_code=error_code,
            hint=remediation_hint(category) if category and status != ExecutionStatus.SUCCESS else None,
            exit_code=last.exit_code if last else None,
            service=request.service,
            region=context.region,
            profile=context.profile_name,
            auth_method=str(context.auth_method),
        )
        if result.output_truncated:
            result.warnings.append(f"Output truncated to {state.max_output_size} characters")
            logger.warning(
                "output_truncated", service=request.service, limit=state.max_output_size
            )

        log = logger.info if result.success else logger.warning
        log(
            "execution_finished",
            service=request.service,
            status=status.value,
            retries=retries,
            elapsed=round(result.elapsed, 3),
            error_code=error_code,
        )
        return result


@dataclass
class _AttemptState:
    max_output_size: int = 0
    attempts: int = 0
    last_outcome: ProcessOutcome | None = None
    last_category: FailureCategory | None = None


# Global executor instance
_executor: Executor | None = None


def get_executor() -> Executor:
    """Get the global executor."""
    global _executor
    if _executor is None:
        _executor = Executor()
    return _executor


def reset_executor() -> None:
    """Reset the global executor (for testing)."""
    global _executor
    _executor = None


def execute(request: ExecutionRequest) -> ExecutionResult:
    """Execute a request with the global executor."""
    return get_executor().execute(request)
