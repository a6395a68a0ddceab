"""Layered KEY=VALUE configuration for awstools.

Configuration is merged from, in order:

1. the repository ``default`` layer,
2. the repository ``overwrite`` layer,
3. every ``*.env`` file under the active profile's directory.

Within the repository layers each layer contributes ``common.env``, then
``environments/<profile>.env``, then ``services/<service>.env``. Later
values win. Files are parsed strictly: no variable expansion, no command
substitution, nothing is ever executed.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

import structlog
from dotenv.parser import Binding, parse_stream

from awstools.core.exceptions import ConfigLoadError

logger = structlog.get_logger()

DEFAULT_PROFILE = "default"
REPOSITORY_LAYERS = ("default", "overwrite")
ENV_SUFFIX = ".env"

PROFILE_KEY = "AWSTOOLS_PROFILE"
PROFILE_DIR_KEY = "AWSTOOLS_PROFILE_DIR"

_KEY_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_env_text(text: str, source: Path | str = "<string>") -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines with python-dotenv's parser.

    Blank lines and ``#`` comments are skipped and a leading ``export`` is
    accepted. Values are taken as written: nothing is interpolated.

    Raises:
        ConfigLoadError: If a line is not a valid assignment
    """
    values: dict[str, str] = {}
    for binding in parse_stream(io.StringIO(text)):
        if binding.key is None and not binding.error:
            continue
        if binding.error or binding.value is None or not _KEY_PATTERN.match(binding.key or ""):
            number = _binding_line(binding)
            raise ConfigLoadError(
                f"Malformed configuration line {number} in {source}: "
                f"{binding.original.string.strip()!r}",
                path=source,
                line_number=number,
            )
        values[binding.key] = binding.value
    return values


def _binding_line(binding: Binding) -> int:
    # The marked text starts with any blank lines consumed before the binding
    raw = binding.original.string
    leading = raw[: len(raw) - len(raw.lstrip())]
    return binding.original.line + leading.count("\n")


def load_env_file(path: Path) -> dict[str, str] | None:
    """Load one file. Returns None when it does not exist."""
    if not path.is_file():
        return None
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigLoadError(f"Cannot read configuration file {path}: {e}", path=path) from e
    return parse_env_text(text, source=path)


@dataclass(frozen=True)
class ConfigLayer:
    """One named source of configuration values."""

    name: str
    source: Path | None = None
    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))


@dataclass(frozen=True)
class Profile:
    """A profile name plus the layers selected for it, in merge order."""

    name: str
    layers: tuple[ConfigLayer, ...] = ()


def merge_layers(layers: Iterable[ConfigLayer]) -> dict[str, str]:
    """Merge layers in order; a later layer overwrites an earlier one."""
    merged: dict[str, str] = {}
    for layer in layers:
        merged.update(layer.values)
    return merged


@dataclass(frozen=True)
class MergedConfig:
    """Effective configuration for one profile/service combination."""

    profile: Profile
    service: str | None = None
    values: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    @classmethod
    def from_profile(cls, profile: Profile, service: str | None = None) -> "MergedConfig":
        return cls(profile=profile, service=service, values=merge_layers(profile.layers))

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.values.get(key, default)

    def __contains__(self, key: object) -> bool:
        return key in self.values

    def origin(self, key: str) -> ConfigLayer | None:
        """The layer that supplied the effective value of ``key``."""
        for layer in reversed(self.profile.layers):
            if key in layer.values:
                return layer
        return None

    def describe(self) -> dict:
        """Describe every layer and the origin of every effective value."""
        return {
            "profile": self.profile.name,
            "service": self.service,
            "layers": [
                {
                    "name": layer.name,
                    "source": str(layer.source) if layer.source else None,
                    "keys": sorted(layer.values),
                }
                for layer in self.profile.layers
            ],
            "values": {
                key: {"value": value, "layer": self.origin(key).name}  # type: ignore[union-attr]
                for key, value in sorted(self.values.items())
            },
        }


def resolve_profile_name(override: str | None, user_settings: Mapping[str, str]) -> str:
    """Explicit override, then the persisted setting, then ``default``."""
    if override:
        return override
    persisted = user_settings.get(PROFILE_KEY)
    if persisted:
        return persisted
    return DEFAULT_PROFILE


class ConfigResolver:
    """Builds the effective configuration from layered ``.env`` files."""

    def __init__(
        self,
        config_dir: Path,
        user_config_file: Path | None = None,
        profile_dir: Path | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            config_dir: Repository config dir holding ``default/`` and ``overwrite/``
            user_config_file: Persisted user settings (``AWSTOOLS_PROFILE``, ``AWSTOOLS_PROFILE_DIR``)
            profile_dir: Root of per-profile directories; overrides the user setting
        """
        self.config_dir = Path(config_dir)
        self.user_config_file = user_config_file
        self._user_settings: dict[str, str] | None = None
        self._profile_dir = profile_dir

    @property
    def user_settings(self) -> Mapping[str, str]:
        if self._user_settings is None:
            loaded = None
            if self.user_config_file is not None:
                loaded = load_env_file(Path(self.user_config_file).expanduser())
            self._user_settings = loaded or {}
        return MappingProxyType(self._user_settings)

    @property
    def profile_root(self) -> Path | None:
        if self._profile_dir is not None:
            return self._profile_dir
        configured = self.user_settings.get(PROFILE_DIR_KEY)
        return Path(configured).expanduser() if configured else None

    def resolve(
        self, environment_name: str | None = None, service_name: str | None = None
    ) -> MergedConfig:
        """Resolve the merged configuration.

        Args:
            environment_name: Explicit profile override
            service_name: Service whose ``services/<name>.env`` files apply

        Returns:
            MergedConfig with the selected profile and its layers

        Raises:
            ConfigLoadError: If an existing file is malformed
        """
        profile_name = resolve_profile_name(environment_name, self.user_settings)
        layers: list[ConfigLayer] = []

        for layer_name in REPOSITORY_LAYERS:
            layers.extend(self._repository_layers(layer_name, profile_name, service_name))

        if self.profile_root is not None:
            layers.extend(
                self._profile_layers(self.profile_root / profile_name, profile_name, service_name)
            )

        profile = Profile(name=profile_name, layers=tuple(layers))
        merged = MergedConfig.from_profile(profile, service=service_name)
        logger.debug(
            "config_resolved",
            profile=profile_name,
            service=service_name,
            layers=[layer.name for layer in layers],
            keys=len(merged.values),
        )
        return merged

    def _repository_layers(
        self, layer_name: str, profile_name: str, service_name: str | None
    ) -> list[ConfigLayer]:
        base = self.config_dir / layer_name
        candidates = [
            (f"{layer_name}-common", base / f"common{ENV_SUFFIX}"),
            (f"{layer_name}-environment", base / "environments" / f"{profile_name}{ENV_SUFFIX}"),
        ]
        if service_name:
            candidates.append(
                (f"{layer_name}-service", base / "services" / f"{service_name}{ENV_SUFFIX}")
            )

        layers = []
        for name, path in candidates:
            values = load_env_file(path)
            if values is None:
                logger.debug("config_layer_skipped", layer=name, path=str(path))
                continue
            layers.append(ConfigLayer(name=name, source=path, values=values))
        return layers

    def _profile_layers(
        self, directory: Path, profile_name: str, service_name: str | None
    ) -> list[ConfigLayer]:
        if not directory.is_dir():
            logger.debug("profile_dir_missing", path=str(directory))
            return []

        layers = []
        for path in sorted(directory.rglob(f"*{ENV_SUFFIX}"), key=lambda p: p.as_posix()):
            if not path.is_file():
                continue
            scope = _profile_file_scope(path.relative_to(directory), profile_name, service_name)
            if scope is None:
                continue
            values = load_env_file(path)
            if values is None:
                continue
            layers.append(ConfigLayer(name=f"profile-{scope}", source=path, values=values))
        return layers


def _profile_file_scope(
    relative: Path, profile_name: str, service_name: str | None
) -> str | None:
    """Scope of a profile file, or None if it does not apply to this call."""
    parents = {part for part in relative.parts[:-1]}
    if "services" in parents:
        return "service" if relative.stem == service_name else None
    if "environments" in parents:
        return "environment" if relative.stem == profile_name else None
    return "common"
