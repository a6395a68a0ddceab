"""Detection of the active AWS authentication method.

Detection walks an ordered list of probes. Each probe looks at an immutable
environment snapshot and returns an ``AuthMethod`` or ``None``; the first
match wins and a probe that fails is treated as "no match".
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Callable, Mapping, Sequence

import structlog
from botocore.exceptions import BotoCoreError

from awstools.core.aws_profiles import AwsProfileStore, profile_type
from awstools.core.exceptions import AuthResolutionError
from awstools.core.metadata import InstanceMetadata

logger = structlog.get_logger()


class AuthKind(Enum):
    """Authentication method, in the tool's ``kind[:profile]`` notation."""

    ENV_VARS = "env-vars"
    ENV_VARS_WITH_SESSION_TOKEN = "env-vars-session"
    PROFILE_SSO = "profile-sso"
    PROFILE_ASSUME_ROLE = "profile-assume"
    PROFILE_ACCESS_KEY = "profile-accesskey"
    INSTANCE_PROFILE = "instance-profile"
    WEB_IDENTITY = "web-identity"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AuthMethod:
    """Detected authentication method."""

    kind: AuthKind
    profile: str | None = None

    def __str__(self) -> str:
        if self.profile:
            return f"{self.kind.value}:{self.profile}"
        return self.kind.value


UNKNOWN = AuthMethod(AuthKind.UNKNOWN)

_PROFILE_KINDS = {
    "sso": AuthKind.PROFILE_SSO,
    "assume_role": AuthKind.PROFILE_ASSUME_ROLE,
}

Probe = Callable[["CredentialResolver"], "AuthMethod | None"]


class CredentialResolver:
    """Determines the active authentication method by ordered probing."""

    def __init__(
        self,
        environ: Mapping[str, str],
        profiles: AwsProfileStore | None = None,
        metadata: InstanceMetadata | None = None,
        probes: Sequence[Probe] | None = None,
    ) -> None:
        self.environ = MappingProxyType(dict(environ))
        self.profiles = profiles or AwsProfileStore(self.environ)
        self.metadata = metadata or InstanceMetadata(self.environ)
        self.probes = tuple(probes) if probes is not None else DEFAULT_PROBES

    def detect(self) -> AuthMethod:
        """Run the probes in order and return the first match."""
        for probe in self.probes:
            try:
                method = probe(self)
            except (BotoCoreError, OSError, ValueError, KeyError) as e:
                logger.debug("auth_probe_failed", probe=probe.__name__, error=str(e))
                continue
            if method is not None:
                logger.debug("auth_method_detected", method=str(method), probe=probe.__name__)
                return method
        logger.debug("auth_method_detected", method=str(UNKNOWN))
        return UNKNOWN

    def require(self) -> AuthMethod:
        """Like ``detect`` but raises when nothing was found.

        Raises:
            AuthResolutionError: If no authentication method could be detected
        """
        method = self.detect()
        if method.kind == AuthKind.UNKNOWN:
            raise AuthResolutionError(
                "No AWS authentication method detected",
                suggestion="Run 'aws configure' or 'aws sso login' to set up credentials",
            )
        return method

    def classify_profile(self, name: str) -> AuthMethod | None:
        """Classify a named profile, or None if it is not defined."""
        attributes = self.profiles.get(name)
        if attributes is None:
            return None
        kind = _PROFILE_KINDS.get(profile_type(attributes), AuthKind.PROFILE_ACCESS_KEY)
        return AuthMethod(kind, profile=name)


def probe_env_vars(resolver: CredentialResolver) -> AuthMethod | None:
    env = resolver.environ
    if env.get("AWS_ACCESS_KEY_ID") and env.get("AWS_SECRET_ACCESS_KEY"):
        if env.get("AWS_SESSION_TOKEN"):
            return AuthMethod(AuthKind.ENV_VARS_WITH_SESSION_TOKEN)
        return AuthMethod(AuthKind.ENV_VARS)
    return None


def probe_active_profile(resolver: CredentialResolver) -> AuthMethod | None:
    name = resolver.environ.get("AWS_PROFILE")
    if not name:
        return None
    return resolver.classify_profile(name)


def probe_instance_metadata(resolver: CredentialResolver) -> AuthMethod | None:
    if resolver.metadata.has_role_credentials():
        return AuthMethod(AuthKind.INSTANCE_PROFILE)
    return None


def probe_web_identity(resolver: CredentialResolver) -> AuthMethod | None:
    env = resolver.environ
    if env.get("AWS_WEB_IDENTITY_TOKEN_FILE") and env.get("AWS_ROLE_ARN"):
        return AuthMethod(AuthKind.WEB_IDENTITY)
    return None


def probe_default_profile(resolver: CredentialResolver) -> AuthMethod | None:
    return resolver.classify_profile("default")


DEFAULT_PROBES: tuple[Probe, ...] = (
    probe_env_vars,
    probe_active_profile,
    probe_instance_metadata,
    probe_web_identity,
    probe_default_profile,
)
