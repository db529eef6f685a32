"""
runtime-switch - Install and switch PHP, Python, Java and Node.js runtimes via Scoop.

Core Modules:
- Resolution: family catalog and version string normalization
- Probing: installed variants and the active one, from disk and PATH
- Mutation: install, switch and uninstall with candidate fallback and forced cleanup
- Environment: PATH and JAVA_HOME synchronization across user/machine scope
- Discovery: JDK home directory scanning
"""

__version__ = "1.0.0"

VERSION = __version__

# Resolution
from .families import (
    RuntimeFamily,
    FAMILIES,
    PHP,
    PYTHON,
    JAVA,
    NODE,
    get_family,
    family_names,
)
from .normalizer import VersionSpec, PackageCandidate, normalize

# Package manager
from .package_managers import (
    CommandResult,
    InstalledList,
    InstalledPackage,
    ScoopLayout,
    ScoopPackageManager,
    interpret_failure,
    parse_installed_list,
)

# Probing
from .probe import (
    InstalledVariant,
    FamilyStatus,
    list_installed,
    active_variant,
    probe_family,
    resolve_executable,
)

# Mutation
from .installer import AttemptResult, MutationResult, MutationDriver

# Environment
from .environment import (
    EnvironmentPlan,
    EnvironmentStore,
    FileEnvironmentStore,
    RegistryEnvironmentStore,
    EnvironmentSynchronizer,
    default_store,
)

# Discovery
from .discovery import HomeCandidate, scan_homes, validate_home

# Foundation
from .config import (
    Config,
    ScoopConfig,
    FamilyConfig,
    Preferences,
    load_config,
    load_config_file,
    validate_config,
)
from .errors import (
    SwitchError,
    PreconditionError,
    ResolutionExhaustedError,
    EnvironmentStoreError,
)
from .logging_config import setup_logging, get_logger

__all__ = [
    # Version
    "__version__",
    "VERSION",
    # Resolution
    "RuntimeFamily",
    "FAMILIES",
    "PHP",
    "PYTHON",
    "JAVA",
    "NODE",
    "get_family",
    "family_names",
    "VersionSpec",
    "PackageCandidate",
    "normalize",
    # Package manager
    "CommandResult",
    "InstalledList",
    "InstalledPackage",
    "ScoopLayout",
    "ScoopPackageManager",
    "interpret_failure",
    "parse_installed_list",
    # Probing
    "InstalledVariant",
    "FamilyStatus",
    "list_installed",
    "active_variant",
    "probe_family",
    "resolve_executable",
    # Mutation
    "AttemptResult",
    "MutationResult",
    "MutationDriver",
    # Environment
    "EnvironmentPlan",
    "EnvironmentStore",
    "FileEnvironmentStore",
    "RegistryEnvironmentStore",
    "EnvironmentSynchronizer",
    "default_store",
    # Discovery
    "HomeCandidate",
    "scan_homes",
    "validate_home",
    # Foundation
    "Config",
    "ScoopConfig",
    "FamilyConfig",
    "Preferences",
    "load_config",
    "load_config_file",
    "validate_config",
    "SwitchError",
    "PreconditionError",
    "ResolutionExhaustedError",
    "EnvironmentStoreError",
    "setup_logging",
    "get_logger",
]
