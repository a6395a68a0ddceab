"""Runs the external CLI with a timeout and bounded output capture."""

from __future__ import annotations

import subprocess
import threading
import time
from dataclasses import dataclass
from typing import IO, Mapping, Sequence

import structlog

logger = structlog.get_logger()

READ_CHUNK_SIZE = 64 * 1024
# Longest UTF-8 encoding of one character
MAX_CHAR_BYTES = 4
READER_JOIN_TIMEOUT = 5.0


@dataclass(frozen=True)
class ProcessOutcome:
    """What one run of the external process produced."""

    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False
    stdout_truncated: bool = False
    duration: float = 0.0


class _BoundedSink:
    """Keeps the first ``limit`` characters of a UTF-8 stream, drains the rest.

    At most ``limit * MAX_CHAR_BYTES`` bytes are buffered, which always
    holds ``limit`` whole characters when the stream has that many.
    """

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.byte_limit = limit * MAX_CHAR_BYTES
        self.chunks: list[bytes] = []
        self.size = 0
        self.overflowed = False

    def drain(self, stream: IO[bytes]) -> None:
        try:
            for chunk in iter(lambda: stream.read(READ_CHUNK_SIZE), b""):
                room = self.byte_limit - self.size
                if room <= 0:
                    self.overflowed = True
                    continue
                if len(chunk) > room:
                    self.overflowed = True
                    chunk = chunk[:room]
                self.chunks.append(chunk)
                self.size += len(chunk)
        except (OSError, ValueError):
            # Pipe closed underneath us after a kill
            pass

    def result(self) -> tuple[str, bool]:
        """Decoded text and whether anything was cut off."""
        text = b"".join(self.chunks).decode("utf-8", errors="replace")
        if len(text) > self.limit:
            return text[: self.limit], True
        return text, self.overflowed


class ProcessRunner:
    """Runs an argument vector (never through a shell) with an explicit environment."""

    def run(
        self,
        argv: Sequence[str],
        env: Mapping[str, str],
        timeout: float,
        max_output_size: int,
    ) -> ProcessOutcome:
        """Run the process to completion or timeout.

        A ``KeyboardInterrupt`` while waiting kills the child and is re-raised.

        Raises:
            OSError: If the executable cannot be started
        """
        started = time.monotonic()
        process = subprocess.Popen(
            list(argv),
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
        stdout_sink = _BoundedSink(max_output_size)
        stderr_sink = _BoundedSink(max_output_size)
        readers = [
            threading.Thread(target=stdout_sink.drain, args=(process.stdout,), daemon=True),
            threading.Thread(target=stderr_sink.drain, args=(process.stderr,), daemon=True),
        ]
        for reader in readers:
            reader.start()

        timed_out = False
        try:
            exit_code: int | None = process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("process_timeout", argv=list(argv)[:3], timeout=timeout)
            _terminate(process)
            timed_out = True
            exit_code = None
        except KeyboardInterrupt:
            logger.warning("process_interrupted", argv=list(argv)[:3])
            _terminate(process)
            raise
        finally:
            for reader in readers:
                reader.join(READER_JOIN_TIMEOUT)
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()

        stdout, stdout_truncated = stdout_sink.result()
        stderr, _ = stderr_sink.result()
        return ProcessOutcome(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            stdout_truncated=stdout_truncated,
            duration=time.monotonic() - started,
        )


def _terminate(process: subprocess.Popen) -> None:
    process.kill()
    process.wait()
