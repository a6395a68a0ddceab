"""Classification of failed provider CLI calls."""

from __future__ import annotations

import re
import signal
from dataclasses import dataclass
from enum import Enum

from awstools.core.exceptions import FatalKind

# Bump when an entry changes disposition.
CLASSIFICATION_TABLE_VERSION = "2"


class FailureCategory(Enum):
    """Broad failure category; selects retry behaviour and remediation hint."""

    THROTTLING = "throttling"
    NETWORK = "network"
    SERVICE = "service"
    TIMEOUT = "timeout"
    PERMISSION = "permission"
    CREDENTIALS = "credentials"
    INTERRUPTED = "interrupted"
    LAUNCH = "launch"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorRule:
    """How one error identifier is handled."""

    category: FailureCategory
    retryable: bool

    @property
    def fatal_kind(self) -> FatalKind | None:
        if self.retryable:
            return None
        return _FATAL_KINDS.get(self.category, FatalKind.UNCLASSIFIED)


_FATAL_KINDS = {
    FailureCategory.PERMISSION: FatalKind.PERMISSION_DENIED,
    FailureCategory.CREDENTIALS: FatalKind.CREDENTIALS,
    FailureCategory.INTERRUPTED: FatalKind.INTERRUPTED,
    FailureCategory.LAUNCH: FatalKind.LAUNCH_FAILED,
}

_THROTTLING = ErrorRule(FailureCategory.THROTTLING, retryable=True)
_NETWORK = ErrorRule(FailureCategory.NETWORK, retryable=True)
_SERVICE = ErrorRule(FailureCategory.SERVICE, retryable=True)
_PERMISSION = ErrorRule(FailureCategory.PERMISSION, retryable=False)
_CREDENTIALS = ErrorRule(FailureCategory.CREDENTIALS, retryable=False)
_INTERRUPTED = ErrorRule(FailureCategory.INTERRUPTED, retryable=False)
_UNKNOWN = ErrorRule(FailureCategory.UNKNOWN, retryable=False)

# Provider error codes, as printed by the CLI: "An error occurred (<Code>) ..."
ERROR_CODE_TABLE: dict[str, ErrorRule] = {
    # Rate limiting
    "Throttling": _THROTTLING,
    "ThrottlingException": _THROTTLING,
    "ThrottledException": _THROTTLING,
    "RequestThrottled": _THROTTLING,
    "RequestThrottledException": _THROTTLING,
    "TooManyRequestsException": _THROTTLING,
    "RequestLimitExceeded": _THROTTLING,
    "ProvisionedThroughputExceededException": _THROTTLING,
    "BandwidthLimitExceeded": _THROTTLING,
    "SlowDown": _THROTTLING,
    "EC2ThrottledException": _THROTTLING,
    "PriorRequestNotComplete": _THROTTLING,
    # Service availability
    "ServiceUnavailable": _SERVICE,
    "ServiceUnavailableException": _SERVICE,
    "InternalError": _SERVICE,
    "InternalFailure": _SERVICE,
    "InternalServerError": _SERVICE,
    "InternalServerException": _SERVICE,
    "InternalServiceError": _SERVICE,
    "RequestTimeout": _NETWORK,
    "RequestTimeoutException": _NETWORK,
    "IDPCommunicationError": _NETWORK,
    # Authorization
    "AccessDenied": _PERMISSION,
    "AccessDeniedException": _PERMISSION,
    "UnauthorizedOperation": _PERMISSION,
    "UnauthorizedAccess": _PERMISSION,
    "AuthorizationError": _PERMISSION,
    "Forbidden": _PERMISSION,
    # Authentication
    "ExpiredToken": _CREDENTIALS,
    "ExpiredTokenException": _CREDENTIALS,
    "InvalidClientTokenId": _CREDENTIALS,
    "UnrecognizedClientException": _CREDENTIALS,
    "InvalidIdentityToken": _CREDENTIALS,
    "SignatureDoesNotMatch": _CREDENTIALS,
    "AuthFailure": _CREDENTIALS,
    "InvalidToken": _CREDENTIALS,
    "MissingAuthenticationToken": _CREDENTIALS,
}

# Messages without an error code (client-side failures), matched lowercase
MESSAGE_SIGNALS: tuple[tuple[str, ErrorRule], ...] = (
    ("unable to locate credentials", _CREDENTIALS),
    ("token has expired", _CREDENTIALS),
    ("sso session associated with this profile has expired", _CREDENTIALS),
    ("error loading sso token", _CREDENTIALS),
    ("error when retrieving token from sso", _CREDENTIALS),
    ("partial credentials found", _CREDENTIALS),
    ("not authorized to perform", _PERMISSION),
    ("could not connect to the endpoint url", _NETWORK),
    ("connection was closed before we received a valid response", _NETWORK),
    ("read timeout on endpoint url", _NETWORK),
    ("connect timeout on endpoint url", _NETWORK),
    ("connection reset by peer", _NETWORK),
    ("temporary failure in name resolution", _NETWORK),
    ("rate exceeded", _THROTTLING),
    ("too many requests", _THROTTLING),
)

# CLI exit statuses with a fixed meaning
EXIT_STATUS_RULES: dict[int, ErrorRule] = {
    130: _INTERRUPTED,
    -signal.SIGINT: _INTERRUPTED,
    253: _CREDENTIALS,  # invalid environment or configuration
}

REMEDIATION_HINTS: dict[FailureCategory, str] = {
    FailureCategory.CREDENTIALS: "Re-authenticate (e.g. 'aws sso login') and retry.",
    FailureCategory.PERMISSION: "Check the access policy attached to this identity.",
}

_ERROR_CODE_PATTERN = re.compile(r"An error occurred \(([A-Za-z0-9_.\-]+)\)")


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one failed attempt."""

    category: FailureCategory
    retryable: bool
    error_code: str | None = None

    @property
    def fatal_kind(self) -> FatalKind | None:
        return ErrorRule(self.category, self.retryable).fatal_kind


def extract_error_code(text: str) -> str | None:
    """Extract the provider error code from CLI diagnostic text."""
    match = _ERROR_CODE_PATTERN.search(text)
    return match.group(1) if match else None


def classify_failure(exit_code: int | None, stderr: str) -> Classification:
    """Classify a failed CLI call.

    A recognised interrupt status wins. An explicit error code is looked up
    in ``ERROR_CODE_TABLE`` only; code-less messages are matched against
    ``MESSAGE_SIGNALS`` and then the exit status. Anything unmatched is
    fatal.
    """
    if exit_code is not None:
        rule = EXIT_STATUS_RULES.get(exit_code)
        if rule is not None and rule.category == FailureCategory.INTERRUPTED:
            return Classification(rule.category, rule.retryable)

    error_code = extract_error_code(stderr)
    if error_code is not None:
        rule = ERROR_CODE_TABLE.get(error_code, _UNKNOWN)
        return Classification(rule.category, rule.retryable, error_code)

    lowered = stderr.lower()
    for signal_text, rule in MESSAGE_SIGNALS:
        if signal_text in lowered:
            return Classification(rule.category, rule.retryable)

    if exit_code is not None and exit_code in EXIT_STATUS_RULES:
        rule = EXIT_STATUS_RULES[exit_code]
        return Classification(rule.category, rule.retryable)

    return Classification(_UNKNOWN.category, _UNKNOWN.retryable)


def remediation_hint(category: FailureCategory) -> str | None:
    """Short, category-specific remediation hint."""
    return REMEDIATION_HINTS.get(category)
