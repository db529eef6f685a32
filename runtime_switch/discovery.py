"""
Runtime home discovery.

Walks package manager install roots and conventional system install
roots to list runtime home directories (JDKs, mostly) a user can pick
from when setting up JAVA_HOME.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass

from .common import normalize_entry, vlog
from .config import Config
from .families import RuntimeFamily
from .package_managers import ScoopLayout


@dataclass(frozen=True)
class HomeCandidate:
    """
    A directory that can serve as a runtime home.

    Attributes:
        label: Short description shown in the selection menu
        path: Home directory (contains bin/<executable>)
        source: Where it was found ("scoop", "system" or "config")
    """
    label: str
    path: str
    source: str

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {"label": self.label, "path": self.path, "source": self.source}


def validate_home(family: RuntimeFamily, path: str) -> bool:
    """Check that a directory holds the family executable in its bin dir."""
    if not path or not os.path.isdir(path):
        return False
    return family.find_executable(path) is not None


def conventional_roots(family: RuntimeFamily) -> list[str]:
    """
    System install roots for a family on this OS.

    Each root is a directory whose children are candidate homes.
    """
    if family.name != "java":
        return []

    home = os.path.expanduser("~")
    if sys.platform == "win32":
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        program_files_x86 = os.environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
        return [
            os.path.join(program_files, "Java"),
            os.path.join(program_files, "Eclipse Adoptium"),
            os.path.join(program_files, "Eclipse Foundation"),
            os.path.join(program_files, "AdoptOpenJDK"),
            os.path.join(program_files, "Microsoft"),
            os.path.join(program_files, "Zulu"),
            os.path.join(program_files, "BellSoft"),
            os.path.join(program_files, "Amazon Corretto"),
            os.path.join(program_files_x86, "Java"),
            os.path.join(home, ".jdks"),
            r"C:\Java",
        ]
    if sys.platform == "darwin":
        return [
            "/Library/Java/JavaVirtualMachines",
            os.path.join(home, "Library", "Java", "JavaVirtualMachines"),
            os.path.join(home, ".sdkman", "candidates", "java"),
            os.path.join(home, ".jdks"),
        ]
    return [
        "/usr/lib/jvm",
        "/usr/java",
        "/opt/java",
        os.path.join(home, ".sdkman", "candidates", "java"),
        os.path.join(home, ".jdks"),
    ]


def _home_in(directory: str) -> str:
    """Return the home inside a vendor dir (macOS bundles nest it under Contents/Home)."""
    bundle_home = os.path.join(directory, "Contents", "Home")
    if os.path.isdir(bundle_home):
        return bundle_home
    return directory


def _children(root: str) -> list[str]:
    try:
        return sorted(
            os.path.join(root, name)
            for name in os.listdir(root)
            if os.path.isdir(os.path.join(root, name))
        )
    except OSError:
        return []


def scan_homes(
    family: RuntimeFamily,
    layout: ScoopLayout | None = None,
    config: Config | None = None,
    verbose: bool = False,
) -> list[HomeCandidate]:
    """
    List valid home directories for a family.

    Search order: Scoop installs (user root, then global root), then the
    conventional system roots, then config `probe_roots`. Results are
    deduplicated by resolved path and each is validated before listing.

    Returns:
        Candidates in search order
    """
    candidates: list[HomeCandidate] = []
    seen: set[str] = set()

    def add(label: str, path: str, source: str) -> None:
        key = normalize_entry(os.path.realpath(path))
        if key in seen:
            return
        if not validate_home(family, path):
            vlog(f"Skipping {path}: no {family.executable} in bin", verbose)
            return
        seen.add(key)
        candidates.append(HomeCandidate(label=label, path=path, source=source))

    if layout is not None:
        for root in layout.roots():
            scope = "global" if root != layout.root else "scoop"
            for app_dir in _children(layout.apps_dir(root)):
                identifier = os.path.basename(app_dir)
                if not family.matches_identifier(identifier):
                    continue
                add(f"{identifier} ({scope})", os.path.join(app_dir, "current"), "scoop")

    for root in conventional_roots(family):
        for child in _children(root):
            add(os.path.basename(child), _home_in(child), "system")

    if config is not None:
        for root in config.get_family_config(family.name).probe_roots:
            if validate_home(family, root):
                add(os.path.basename(root.rstrip("\\/")) or root, root, "config")
                continue
            for child in _children(root):
                add(os.path.basename(child), _home_in(child), "config")

    vlog(f"Found {len(candidates)} {family.display_name} home candidate(s)", verbose)
    return candidates
