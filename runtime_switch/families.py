"""
Runtime family definitions.

Each family knows its Scoop identifiers (newest first), where its primary
executable lives under an install's `current` directory, and the shape of
its version strings.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RuntimeFamily:
    """
    Runtime family definition.

    Attributes:
        name: Family key ("php", "python", "java", "node")
        display_name: Human-readable name
        prefix: Prefix joined with version digits to build identifiers
        flagship: Unsuffixed identifier for the newest release
        known_identifiers: Identifiers probed for, newest first
        executable: Primary executable name (without extension)
        executable_dirs: Directories under `current` holding the executable
        bucket: Scoop bucket that provides the family's manifests
        significant_components: Version components kept in short identifiers
        aliases: Extra identifiers for a short version, most canonical first
        keywords: Tokens that map straight to an identifier
        home_variable: Home-directory variable the family publishes, if any
        identifier_pattern: Regex matching this family's identifiers
    """
    name: str
    display_name: str
    prefix: str
    flagship: str
    known_identifiers: tuple[str, ...]
    executable: str
    executable_dirs: tuple[str, ...] = ("",)
    bucket: str = "versions"
    significant_components: int = 2
    aliases: dict[str, tuple[str, ...]] = field(default_factory=dict)
    keywords: dict[str, str] = field(default_factory=dict)
    home_variable: str | None = None
    identifier_pattern: str = ""

    def matches_identifier(self, identifier: str) -> bool:
        """Check whether an identifier belongs to this family."""
        if not self.identifier_pattern:
            return identifier in self.known_identifiers
        return re.fullmatch(self.identifier_pattern, identifier.lower()) is not None

    def executable_names(self) -> tuple[str, ...]:
        """File names the primary executable may have on disk."""
        return (self.executable, f"{self.executable}.exe", f"{self.executable}.cmd")

    def find_executable(self, install_dir: str) -> str | None:
        """
        Locate the primary executable inside an install directory.

        Args:
            install_dir: Directory the package manager installed into

        Returns:
            Path to the executable, or None if the install has no executable
        """
        for sub in self.executable_dirs:
            base = os.path.join(install_dir, sub) if sub else install_dir
            for name in self.executable_names():
                candidate = os.path.join(base, name)
                if os.path.isfile(candidate):
                    return candidate
        return None

    def bin_dir(self, home: str) -> str:
        """Directory under a home that goes on PATH."""
        sub = self.executable_dirs[0]
        return os.path.join(home, sub) if sub else home


PHP = RuntimeFamily(
    name="php",
    display_name="PHP",
    prefix="php",
    flagship="php",
    known_identifiers=(
        "php", "php84", "php83", "php82", "php81", "php80",
        "php74", "php73", "php72", "php71", "php70", "php56",
    ),
    executable="php",
    identifier_pattern=r"php(\d+)?(-nts)?",
)

PYTHON = RuntimeFamily(
    name="python",
    display_name="Python",
    prefix="python",
    flagship="python",
    known_identifiers=(
        "python", "python313", "python312", "python311", "python310",
        "python39", "python38", "python37", "python36", "python27",
    ),
    executable="python",
    identifier_pattern=r"python(\d+)?",
)

JAVA = RuntimeFamily(
    name="java",
    display_name="Java",
    prefix="openjdk",
    flagship="openjdk",
    known_identifiers=(
        "openjdk", "openjdk23", "openjdk22", "openjdk21", "openjdk20",
        "openjdk19", "openjdk18", "openjdk17", "openjdk16", "openjdk15",
        "openjdk14", "openjdk13", "openjdk12", "openjdk11", "openjdk10",
        "openjdk9", "openjdk8", "temurin21-jdk", "temurin17-jdk",
        "temurin11-jdk", "temurin8-jdk", "ojdkbuild8", "zulujdk8",
    ),
    executable="java",
    executable_dirs=("bin",),
    bucket="java",
    significant_components=1,
    aliases={
        "8": ("openjdk8", "temurin8-jdk", "ojdkbuild8", "zulujdk8"),
        "11": ("openjdk11", "temurin11-jdk"),
        "17": ("openjdk17", "temurin17-jdk"),
        "21": ("openjdk21", "temurin21-jdk"),
    },
    home_variable="JAVA_HOME",
    identifier_pattern=r"(openjdk|temurin|ojdkbuild|zulujdk|zulu|microsoft|corretto)\d*(-jdk|-jre)?",
)

NODE = RuntimeFamily(
    name="node",
    display_name="Node.js",
    prefix="nodejs",
    flagship="nodejs",
    known_identifiers=(
        "nodejs", "nodejs-lts", "nodejs22", "nodejs20", "nodejs18",
        "nodejs16", "nodejs14", "nodejs12", "nodejs10",
    ),
    executable="node",
    significant_components=1,
    keywords={"lts": "nodejs-lts"},
    identifier_pattern=r"nodejs(\d+|-lts)?",
)

FAMILIES: tuple[RuntimeFamily, ...] = (PHP, PYTHON, JAVA, NODE)

_FAMILY_BY_NAME: dict[str, RuntimeFamily] = {f.name: f for f in FAMILIES}

_FAMILY_ALIASES = {
    "nodejs": "node",
    "js": "node",
    "node.js": "node",
    "py": "python",
    "jdk": "java",
    "openjdk": "java",
}


def get_family(name: str) -> RuntimeFamily:
    """
    Look up a runtime family by name or alias.

    Raises:
        ValueError: If the name is not a known family
    """
    key = name.strip().lower()
    key = _FAMILY_ALIASES.get(key, key)
    family = _FAMILY_BY_NAME.get(key)
    if family is None:
        raise ValueError(
            f"Unknown runtime family: {name}. "
            f"Must be one of: {', '.join(f.name for f in FAMILIES)}"
        )
    return family


def family_names() -> list[str]:
    """Names of all runtime families, in menu order."""
    return [f.name for f in FAMILIES]
