"""
Configuration file parsing and management.

Reads YAML (or JSON) configuration files and merges them from multiple
sources (explicit path → project → user → system → defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import Any

import yaml

from .common import is_windows, vlog


def _user_config_dir() -> str:
    if is_windows():
        base = os.environ.get("APPDATA") or os.path.expanduser("~")
        return os.path.join(base, "runtime-switch")
    return os.path.expanduser("~/.config/runtime-switch")


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    ".runtime-switch.yml",
    ".runtime-switch.yaml",
    os.path.join(_user_config_dir(), "config.yml"),
    os.path.join(_user_config_dir(), "config.yaml"),
    "/etc/runtime-switch/config.yml",
    "/etc/runtime-switch/config.yaml",
]

VALID_ENV_STORES = {"auto", "registry", "file"}


def default_scoop_root() -> str:
    """Scoop user root: $SCOOP, else ~/scoop."""
    return os.environ.get("SCOOP") or os.path.join(os.path.expanduser("~"), "scoop")


def default_scoop_global_root() -> str:
    """Scoop global root: $SCOOP_GLOBAL, else %ProgramData%\\scoop."""
    if os.environ.get("SCOOP_GLOBAL"):
        return os.environ["SCOOP_GLOBAL"]
    program_data = os.environ.get("ProgramData", r"C:\ProgramData")
    return os.path.join(program_data, "scoop")


@dataclass(frozen=True)
class ScoopConfig:
    """
    Settings for the Scoop package manager collaborator.

    Attributes:
        root: Scoop user root (None = $SCOOP or ~/scoop)
        global_root: Scoop global root (None = $SCOOP_GLOBAL or %ProgramData%\\scoop)
        executable: Command used to invoke Scoop
        timeout_seconds: Per-command timeout (None = wait for Scoop to finish)
        auto_bootstrap: Install Scoop automatically when it is missing
    """
    root: str | None = None
    global_root: str | None = None
    executable: str = "scoop"
    timeout_seconds: int | None = None
    auto_bootstrap: bool = False
    explicit: frozenset[str] = field(default=frozenset(), compare=False, repr=False)

    def __post_init__(self):
        if not self.executable:
            raise ValueError("scoop.executable must not be empty")
        if self.timeout_seconds is not None and self.timeout_seconds < 1:
            raise ValueError(
                f"Invalid scoop.timeout_seconds: {self.timeout_seconds}. Must be at least 1"
            )

    @property
    def resolved_root(self) -> str:
        return os.path.expanduser(self.root) if self.root else default_scoop_root()

    @property
    def resolved_global_root(self) -> str:
        return os.path.expanduser(self.global_root) if self.global_root else default_scoop_global_root()

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ScoopConfig:
        """Create ScoopConfig from dictionary."""
        return ScoopConfig(
            root=data.get("root"),
            global_root=data.get("global_root"),
            executable=data.get("executable", "scoop"),
            timeout_seconds=data.get("timeout_seconds"),
            auto_bootstrap=data.get("auto_bootstrap", False),
            explicit=frozenset(data),
        )


@dataclass(frozen=True)
class FamilyConfig:
    """
    Per-family overrides.

    Attributes:
        extra_identifiers: Additional package identifiers to probe for
        probe_roots: Additional directories searched for runtime homes
        bucket: Bucket to add before installing (None = family default)
    """
    extra_identifiers: tuple[str, ...] = ()
    probe_roots: tuple[str, ...] = ()
    bucket: str | None = None

    @staticmethod
    def from_dict(data: dict[str, Any]) -> FamilyConfig:
        """Create FamilyConfig from dictionary."""
        return FamilyConfig(
            extra_identifiers=tuple(data.get("extra_identifiers", ())),
            probe_roots=tuple(os.path.expanduser(p) for p in data.get("probe_roots", ())),
            bucket=data.get("bucket"),
        )


@dataclass(frozen=True)
class Preferences:
    """
    Behavior preferences.

    Attributes:
        forced_cleanup: Remove install dir and shims when `scoop uninstall` fails
        sync_environment: Run the environment synchronizer after mutations
        env_store: Persisted environment backend ('auto', 'registry' or 'file')
        env_file: YAML file used by the 'file' backend
    """
    forced_cleanup: bool = True
    sync_environment: bool = True
    env_store: str = "auto"
    env_file: str | None = None
    explicit: frozenset[str] = field(default=frozenset(), compare=False, repr=False)

    def __post_init__(self):
        if self.env_store not in VALID_ENV_STORES:
            raise ValueError(
                f"Invalid env_store: {self.env_store}. "
                f"Must be one of: {', '.join(sorted(VALID_ENV_STORES))}"
            )

    @property
    def resolved_env_file(self) -> str:
        if self.env_file:
            return os.path.expanduser(self.env_file)
        return os.path.join(_user_config_dir(), "environment.yml")

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Preferences:
        """Create Preferences from dictionary."""
        return Preferences(
            forced_cleanup=data.get("forced_cleanup", True),
            sync_environment=data.get("sync_environment", True),
            env_store=data.get("env_store", "auto"),
            env_file=data.get("env_file"),
            explicit=frozenset(data),
        )


_SCOOP_DEFAULTS = {
    "root": None,
    "global_root": None,
    "executable": "scoop",
    "timeout_seconds": None,
    "auto_bootstrap": False,
}
_PREFERENCE_DEFAULTS = {
    "forced_cleanup": True,
    "sync_environment": True,
    "env_store": "auto",
    "env_file": None,
}


def _prefer(high: Any, low: Any, name: str, default: Any) -> Any:
    """Value from `high` when it was set there (even to the default), else from `low`."""
    value = getattr(high, name)
    if value is not None and (name in high.explicit or value != default):
        return value
    return getattr(low, name)


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for runtime-switch.

    Attributes:
        version: Config schema version
        scoop: Package manager settings
        families: Per-family overrides keyed by family name
        preferences: Global preferences
        source: Path to the configuration file that was loaded
    """
    version: int = 1
    scoop: ScoopConfig = field(default_factory=ScoopConfig)
    families: dict[str, FamilyConfig] = field(default_factory=dict)
    preferences: Preferences = field(default_factory=Preferences)
    source: str = ""

    def __post_init__(self):
        if self.version != 1:
            raise ValueError(f"Unsupported config version: {self.version}. Expected version 1")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        families = {
            name.lower(): FamilyConfig.from_dict(family_data or {})
            for name, family_data in (data.get("families") or {}).items()
        }
        return Config(
            version=data.get("version", 1),
            scoop=ScoopConfig.from_dict(data.get("scoop") or {}),
            families=families,
            preferences=Preferences.from_dict(data.get("preferences") or {}),
            source=source,
        )

    def get_family_config(self, family_name: str) -> FamilyConfig:
        """
        Get overrides for a runtime family.

        Returns:
            FamilyConfig for the family, or an empty FamilyConfig if not configured
        """
        return self.families.get(family_name.lower(), FamilyConfig())

    def merge_with(self, other: Config) -> Config:
        """
        Merge this config with another, preferring values from this config.

        Args:
            other: Other config to merge (lower priority)

        Returns:
            New merged Config object
        """
        merged_families = dict(other.families)
        merged_families.update(self.families)

        merged_scoop = ScoopConfig(
            **{name: _prefer(self.scoop, other.scoop, name, default) for name, default in _SCOOP_DEFAULTS.items()},
            explicit=self.scoop.explicit | other.scoop.explicit,
        )
        merged_preferences = Preferences(
            **{name: _prefer(self.preferences, other.preferences, name, default)
               for name, default in _PREFERENCE_DEFAULTS.items()},
            explicit=self.preferences.explicit | other.preferences.explicit,
        )

        return Config(
            version=self.version,
            scoop=merged_scoop,
            families=merged_families,
            preferences=merged_preferences,
            source=self.source or other.source,
        )


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Returns:
        Parsed configuration dictionary, or None if the file is unreadable or invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Files ending in .json are parsed as JSON, everything else as YAML.

    Args:
        file_path: Path to configuration file
        verbose: Enable verbose logging

    Returns:
        Config object, or None if file cannot be loaded
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if file_path.endswith(".json"):
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        vlog(f"Invalid config file: {file_path}", verbose)
        return None

    try:
        config = Config.from_dict(data, source=file_path)
    except (ValueError, TypeError, AttributeError) as e:
        vlog(f"Config validation failed for {file_path}: {e}", verbose)
        return None

    vlog(f"Loaded config successfully: {file_path}", verbose)
    return config


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. Project .runtime-switch.yml
    3. User config.yml (~/.config/runtime-switch or %APPDATA%\\runtime-switch)
    4. System /etc/runtime-switch/config.yml
    5. Default configuration

    Raises:
        ValueError: If custom_path is provided but file cannot be loaded
    """
    configs: list[Config] = []

    if custom_path:
        config = load_config_file(custom_path, verbose)
        if config is None:
            raise ValueError(f"Could not load config from specified path: {custom_path}")
        configs.append(config)

    for location in CONFIG_LOCATIONS:
        config = load_config_file(location, verbose)
        if config is not None:
            configs.append(config)

    if not configs:
        vlog("No config files found, using defaults", verbose)
        return Config()

    merged = configs[0]
    for config in configs[1:]:
        merged = merged.merge_with(config)

    vlog(f"Merged {len(configs)} config files", verbose)
    return merged


def validate_config(config: Config, known_families: set[str] | None = None) -> list[str]:
    """
    Validate configuration and return list of warnings.

    Args:
        config: Config object to validate
        known_families: Family names that may appear under `families`

    Returns:
        List of validation warning messages (empty if valid)
    """
    warnings = []

    for name, family_config in config.families.items():
        if known_families is not None and name not in known_families:
            warnings.append(f"Unknown runtime family in config: {name}")
        if len(family_config.extra_identifiers) != len(set(family_config.extra_identifiers)):
            warnings.append(f"Duplicate extra_identifiers for {name}")
        for root in family_config.probe_roots:
            if not os.path.isdir(root):
                warnings.append(f"Probe root for {name} does not exist: {root}")

    if config.preferences.env_store == "registry" and not is_windows():
        warnings.append("env_store 'registry' is only available on Windows")

    return warnings
