"""
Installation probing.

Finds which variants of a runtime family are installed and which one is
active. The package manager's own bookkeeping is not trusted: installs are
found by scanning Scoop's apps directories, and the active variant is the
one the current PATH actually resolves the family's executable to.
Nothing is cached; every call re-reads the filesystem and PATH.
"""

from __future__ import annotations

import os
import re
import shutil
from dataclasses import dataclass
from typing import Iterable

from .common import is_within, vlog
from .config import Config
from .families import RuntimeFamily
from .package_managers import ScoopLayout


_SHIM_PATH_RE = re.compile(r'^\s*path\s*=\s*"?(?P<path>[^"\r\n]+?)"?\s*$', re.IGNORECASE)
_CMD_TARGET_RE = re.compile(r'"(?P<path>[^"]+\.(?:exe|bat|cmd))"', re.IGNORECASE)


@dataclass(frozen=True)
class InstalledVariant:
    """
    One installed, distinctly versioned build of a runtime family.

    Attributes:
        identifier: Canonical package identifier
        path: Install path (the package's `current` directory)
        executable: Primary executable inside the install
        active: Whether PATH resolves the family executable to this install
        global_install: Installed under Scoop's global root
    """
    identifier: str
    path: str
    executable: str
    active: bool = False
    global_install: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "identifier": self.identifier,
            "path": self.path,
            "executable": self.executable,
            "active": self.active,
            "global": self.global_install,
        }


@dataclass(frozen=True)
class FamilyStatus:
    """
    Probe result for one runtime family.

    Attributes:
        family: Family name
        installed: Installed variants in catalog order
        active: Active variant, if PATH resolves to a managed install
        resolved_executable: What PATH resolves the executable to (shims followed)
        unmanaged: Executable resolves, but outside any managed install
    """
    family: str
    installed: tuple[InstalledVariant, ...]
    active: InstalledVariant | None
    resolved_executable: str | None
    unmanaged: bool = False

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "family": self.family,
            "installed": [v.to_dict() for v in self.installed],
            "active": self.active.to_dict() if self.active else None,
            "resolved_executable": self.resolved_executable,
            "unmanaged": self.unmanaged,
        }


def read_shim_target(shim_file: str) -> str | None:
    """
    Read the target executable from a Scoop `.shim` descriptor.

    Returns:
        Target path, or None if the descriptor is missing or has no path line
    """
    try:
        with open(shim_file, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                match = _SHIM_PATH_RE.match(line)
                if match:
                    return match.group("path").strip()
    except OSError:
        return None
    return None


def _shim_descriptor_for(executable_path: str) -> str:
    return os.path.splitext(executable_path)[0] + ".shim"


def read_cmd_shim_target(cmd_file: str) -> str | None:
    """Read the quoted target from a Scoop `.cmd` launcher."""
    try:
        with open(cmd_file, "r", encoding="utf-8", errors="replace") as f:
            match = _CMD_TARGET_RE.search(f.read())
    except OSError:
        return None
    return match.group("path") if match else None


def _candidate_identifiers(family: RuntimeFamily, layout: ScoopLayout, extra: Iterable[str]) -> list[str]:
    identifiers: list[str] = list(family.known_identifiers)
    for identifier in extra:
        if identifier not in identifiers:
            identifiers.append(identifier)

    for root in layout.roots():
        apps_dir = layout.apps_dir(root)
        try:
            entries = sorted(os.listdir(apps_dir))
        except OSError:
            continue
        for entry in entries:
            if entry not in identifiers and family.matches_identifier(entry):
                identifiers.append(entry)
    return identifiers


def variant_for(
    family: RuntimeFamily,
    layout: ScoopLayout,
    identifier: str,
    verbose: bool = False,
) -> InstalledVariant | None:
    """
    Look up one identifier on disk, whether or not it is in the family catalog.

    Returns:
        The variant (active flag unset), or None if it is not installed
    """
    for root in layout.roots():
        current = layout.current_dir(identifier, root)
        if not os.path.isdir(current):
            continue
        executable = family.find_executable(current)
        if executable is None:
            vlog(f"Ignoring {current}: no {family.executable} executable", verbose)
            continue
        return InstalledVariant(
            identifier=identifier,
            path=current,
            executable=executable,
            global_install=root != layout.root,
        )
    return None


def list_installed(
    family: RuntimeFamily,
    layout: ScoopLayout,
    config: Config | None = None,
    verbose: bool = False,
) -> list[InstalledVariant]:
    """
    Enumerate installed variants of a family.

    A variant counts only when `apps/<id>/current` exists and holds the
    family executable; an empty or half-removed directory does not.
    Variants are reported without the active flag; see probe_family.

    Args:
        family: Runtime family
        layout: Scoop layout to scan
        config: Configuration (for extra identifiers)
        verbose: Enable verbose logging

    Returns:
        Installed variants, in catalog order
    """
    extra = config.get_family_config(family.name).extra_identifiers if config else ()
    variants: list[InstalledVariant] = []
    seen: set[str] = set()

    for identifier in _candidate_identifiers(family, layout, extra):
        key = identifier.lower()
        if key in seen:
            continue
        variant = variant_for(family, layout, identifier, verbose)
        if variant is not None:
            seen.add(key)
            variants.append(variant)

    return variants


def resolve_executable(
    family: RuntimeFamily,
    layout: ScoopLayout | None = None,
    search_path: str | None = None,
) -> str | None:
    """
    Resolve the family executable through the command search path.

    When the first hit is a Scoop shim, the `.shim` descriptor is followed
    to the real executable.

    Args:
        family: Runtime family
        layout: Scoop layout (to recognize shims directories)
        search_path: PATH to search; defaults to the live process PATH

    Returns:
        Path of the executable that would run, or None if not found
    """
    path_value = search_path if search_path is not None else os.environ.get("PATH", "")
    found = shutil.which(family.executable, path=path_value)
    if not found:
        return None

    descriptor = _shim_descriptor_for(found)
    in_shims_dir = layout is not None and any(
        is_within(found, shims) for shims in layout.shims_dirs()
    )
    if in_shims_dir or os.path.isfile(descriptor):
        target = read_shim_target(descriptor)
        if target is None and found.lower().endswith(".cmd"):
            target = read_cmd_shim_target(found)
        if target:
            return target
    return found


def probe_family(
    family: RuntimeFamily,
    layout: ScoopLayout,
    config: Config | None = None,
    search_path: str | None = None,
    verbose: bool = False,
) -> FamilyStatus:
    """
    Probe installed and active variants of a family.

    The active variant is the one whose install directory contains the
    executable PATH resolves to. At most one variant is marked active, even
    if the package manager left several `current` markers behind.
    """
    installed = list_installed(family, layout, config, verbose)
    resolved = resolve_executable(family, layout, search_path)

    active_index = None
    if resolved:
        for index, variant in enumerate(installed):
            if is_within(resolved, variant.path):
                active_index = index
                break

    variants = tuple(
        InstalledVariant(
            identifier=v.identifier,
            path=v.path,
            executable=v.executable,
            active=(index == active_index),
            global_install=v.global_install,
        )
        for index, v in enumerate(installed)
    )
    active = variants[active_index] if active_index is not None else None
    unmanaged = resolved is not None and active is None

    if resolved:
        vlog(f"{family.display_name}: PATH resolves {family.executable} to {resolved}", verbose)
    if unmanaged:
        vlog(f"{family.display_name}: {resolved} is not managed by Scoop", verbose)

    return FamilyStatus(
        family=family.name,
        installed=variants,
        active=active,
        resolved_executable=resolved,
        unmanaged=unmanaged,
    )


def active_variant(
    family: RuntimeFamily,
    layout: ScoopLayout,
    config: Config | None = None,
    search_path: str | None = None,
    verbose: bool = False,
) -> InstalledVariant | None:
    """Return the active variant of a family, or None."""
    return probe_family(family, layout, config, search_path, verbose).active


def find_variant(variants: Iterable[InstalledVariant], identifier: str) -> InstalledVariant | None:
    """Find a variant by identifier (case-insensitive)."""
    key = identifier.lower()
    for variant in variants:
        if variant.identifier.lower() == key:
            return variant
    return None
