"""Bounded-time probes against the instance metadata service."""

from __future__ import annotations

from typing import Mapping

import structlog
from botocore.exceptions import BotoCoreError
from botocore.utils import InstanceMetadataFetcher, InstanceMetadataRegionFetcher

logger = structlog.get_logger()


class InstanceMetadata:
    """Answers "are we on an instance with a role?" and "which region?".

    Each question is asked at most once per instance; one attempt, bounded by
    ``timeout`` seconds. Failures are reported as "no answer".
    """

    def __init__(self, environ: Mapping[str, str], timeout: float = 2.0) -> None:
        self._env = dict(environ)
        self.timeout = timeout
        self._has_role: bool | None = None
        self._region: str | None = None
        self._region_checked = False

    def has_role_credentials(self) -> bool:
        if self._has_role is None:
            try:
                fetcher = InstanceMetadataFetcher(
                    timeout=self.timeout, num_attempts=1, env=self._env
                )
                self._has_role = bool(fetcher.retrieve_iam_role_credentials())
            except (BotoCoreError, OSError, ValueError) as e:
                logger.debug("metadata_probe_failed", probe="credentials", error=str(e))
                self._has_role = False
        return self._has_role

    def region(self) -> str | None:
        if not self._region_checked:
            self._region_checked = True
            try:
                fetcher = InstanceMetadataRegionFetcher(
                    timeout=self.timeout, num_attempts=1, env=self._env
                )
                self._region = fetcher.retrieve_region()
            except (BotoCoreError, OSError, ValueError) as e:
                logger.debug("metadata_probe_failed", probe="region", error=str(e))
                self._region = None
        return self._region
