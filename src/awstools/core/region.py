"""Effective region resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping

import structlog

from awstools.core.aws_profiles import AwsProfileStore
from awstools.core.metadata import InstanceMetadata

logger = structlog.get_logger()

FALLBACK_REGION = "us-east-1"

# Keys looked up in the merged layered configuration, in order
CONFIG_REGION_KEYS = ("default_region", "DEFAULT_REGION", "REGION")


@dataclass(frozen=True)
class ResolvedRegion:
    region: str
    source: str


class RegionResolver:
    """Ordered fallback over the places a region can come from.

    1. explicit per-call override
    2. merged configuration (``default_region`` / ``REGION``)
    3. ``AWS_REGION``
    4. ``AWS_DEFAULT_REGION``
    5. the active profile's stored ``region``
    6. instance metadata
    7. a fixed fallback
    """

    def __init__(
        self,
        config: Mapping[str, str],
        environ: Mapping[str, str],
        profiles: AwsProfileStore | None = None,
        metadata: InstanceMetadata | None = None,
        profile_name: str | None = None,
        fallback: str = FALLBACK_REGION,
    ) -> None:
        self.config = config
        self.environ = environ
        self.profiles = profiles or AwsProfileStore(environ)
        self.metadata = metadata or InstanceMetadata(environ)
        self.profile_name = profile_name
        self.fallback = fallback

    def resolve(self, override: str | None = None) -> str:
        return self.resolve_with_source(override).region

    def resolve_with_source(self, override: str | None = None) -> ResolvedRegion:
        sources: list[tuple[str, Callable[[], str | None]]] = [
            ("override", lambda: override),
            ("config", self._from_config),
            ("AWS_REGION", lambda: self.environ.get("AWS_REGION")),
            ("AWS_DEFAULT_REGION", lambda: self.environ.get("AWS_DEFAULT_REGION")),
            ("profile", self._from_profile),
            ("instance-metadata", self._from_metadata),
        ]
        for source, lookup in sources:
            region = lookup()
            if region:
                logger.debug("region_resolved", region=region, source=source)
                return ResolvedRegion(region=region, source=source)

        logger.debug("region_resolved", region=self.fallback, source="fallback")
        return ResolvedRegion(region=self.fallback, source="fallback")

    def _from_config(self) -> str | None:
        for key in CONFIG_REGION_KEYS:
            if self.config.get(key):
                return self.config[key]
        return None

    def _from_profile(self) -> str | None:
        name = self.profile_name or self.environ.get("AWS_PROFILE") or "default"
        attributes = self.profiles.get(name) or {}
        return attributes.get("region") or None

    def _from_metadata(self) -> str | None:
        return self.metadata.region()
