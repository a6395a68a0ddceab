"""Read-only access to the AWS shared config and credentials files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import structlog
from botocore import configloader
from botocore.exceptions import BotoCoreError

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = "~/.aws/config"
DEFAULT_CREDENTIALS_FILE = "~/.aws/credentials"


def profile_type(attributes: Mapping[str, Any]) -> str:
    """Classify a profile by its stored attributes."""
    if "sso_start_url" in attributes or "sso_session" in attributes:
        return "sso"
    if "role_arn" in attributes:
        return "assume_role"
    if "aws_access_key_id" in attributes:
        return "accesskey"
    return "unknown"


class AwsProfileStore:
    """Named profiles from the provider's shared files.

    Paths honour ``AWS_CONFIG_FILE`` and ``AWS_SHARED_CREDENTIALS_FILE`` in the
    given environment snapshot. A missing or unparsable file contributes no
    profiles.
    """

    def __init__(self, environ: Mapping[str, str]) -> None:
        self.config_file = Path(
            environ.get("AWS_CONFIG_FILE") or DEFAULT_CONFIG_FILE
        ).expanduser()
        self.credentials_file = Path(
            environ.get("AWS_SHARED_CREDENTIALS_FILE") or DEFAULT_CREDENTIALS_FILE
        ).expanduser()
        self._profiles: dict[str, dict[str, Any]] | None = None

    @property
    def profiles(self) -> dict[str, dict[str, Any]]:
        if self._profiles is None:
            self._profiles = self._load()
        return self._profiles

    def _load(self) -> dict[str, dict[str, Any]]:
        profiles: dict[str, dict[str, Any]] = {}

        try:
            config = configloader.load_config(str(self.config_file))
            for name, attributes in config.get("profiles", {}).items():
                profiles.setdefault(name, {}).update(attributes)
        except BotoCoreError as e:
            logger.debug("aws_config_unavailable", path=str(self.config_file), error=str(e))

        # The credentials file names sections without the "profile " prefix
        try:
            credentials = configloader.raw_config_parse(str(self.credentials_file))
            for name, attributes in credentials.items():
                profiles.setdefault(name, {}).update(attributes)
        except BotoCoreError as e:
            logger.debug(
                "aws_credentials_unavailable", path=str(self.credentials_file), error=str(e)
            )

        return profiles

    def exists(self, name: str) -> bool:
        return name in self.profiles

    def get(self, name: str) -> dict[str, Any] | None:
        """Get the stored attributes of a profile."""
        return self.profiles.get(name)

    def list_profiles(self) -> list[dict[str, str]]:
        """List all profiles with their type."""
        return [
            {"name": name, "type": profile_type(attributes)}
            for name, attributes in sorted(self.profiles.items())
        ]
