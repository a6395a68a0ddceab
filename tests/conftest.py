"""Pytest configuration and fixtures for awstools tests."""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Generator, Sequence

import pytest
import structlog

from awstools.config import ToolsConfig, reset_config
from awstools.execution.engine import reset_executor
from awstools.execution.process import ProcessOutcome


@pytest.fixture(autouse=True)
def reset_globals() -> Generator[None, None, None]:
    """Reset global state after each test."""
    yield
    reset_config()
    reset_executor()
    structlog.reset_defaults()


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeMetadata:
    """Instance metadata stand-in; never touches the network."""

    def __init__(self, has_role: bool = False, region: str | None = None) -> None:
        self._has_role = has_role
        self._region = region
        self.calls = 0

    def has_role_credentials(self) -> bool:
        self.calls += 1
        return self._has_role

    def region(self) -> str | None:
        return self._region


class ScriptedRunner:
    """Process runner returning scripted outcomes, one per attempt."""

    def __init__(
        self,
        outcomes: Sequence[ProcessOutcome | BaseException],
        clock: FakeClock | None = None,
        duration: float = 0.0,
    ) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []
        self.clock = clock
        self.duration = duration

    def run(self, argv, env, timeout, max_output_size) -> ProcessOutcome:
        self.calls.append(
            {"argv": list(argv), "env": dict(env), "timeout": timeout, "max_output_size": max_output_size}
        )
        if self.clock is not None:
            self.clock.now += self.duration
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def ok(stdout: str = "{}") -> ProcessOutcome:
    return ProcessOutcome(exit_code=0, stdout=stdout, stderr="")


def failed(stderr: str, exit_code: int = 254) -> ProcessOutcome:
    return ProcessOutcome(exit_code=exit_code, stdout="", stderr=stderr)


THROTTLED = (
    "\nAn error occurred (ThrottlingException) when calling the DescribeInstances "
    "operation (reached max retries: 2): Rate exceeded\n"
)
ACCESS_DENIED = (
    "\nAn error occurred (AccessDeniedException) when calling the ListDashboards "
    "operation: User is not authorized to perform quicksight:ListDashboards\n"
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def metadata() -> FakeMetadata:
    return FakeMetadata()


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a file relative to tmp_path, creating parents."""

    def _write(relative: str, content: str) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    return _write


@pytest.fixture
def aws_files(tmp_path: Path, write_file: Callable[[str, str], Path]) -> dict[str, str]:
    """Environment pointing at an empty AWS config/credentials pair."""
    config = write_file("aws/config", "")
    credentials = write_file("aws/credentials", "")
    return {
        "AWS_CONFIG_FILE": str(config),
        "AWS_SHARED_CREDENTIALS_FILE": str(credentials),
    }


@pytest.fixture
def tools_config(tmp_path: Path) -> ToolsConfig:
    """Tunables pointing at temporary, initially empty, locations."""
    return ToolsConfig(
        config_dir=tmp_path / "config",
        user_config_file=tmp_path / "user" / "config",
        retry_base_delay=2.0,
    )
