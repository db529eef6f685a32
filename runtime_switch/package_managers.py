"""
Scoop package manager collaborator.

Wraps the Scoop command line (install, uninstall, reset, bucket and list
commands) and describes Scoop's on-disk layout. Command failures come back
as CommandResult values; nothing here raises on a failed command.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import time
from dataclasses import dataclass, field

from .common import is_windows, vlog
from .config import ScoopConfig
from .errors import PreconditionError


# Output that means failure even when Scoop exits 0
FAILURE_MARKERS = (
    "couldn't find manifest",
    "could not find manifest",
    "isn't installed",
    "is not installed",
    "error ",
    "access is denied",
)

BOOTSTRAP_COMMAND = (
    "powershell",
    "-NoProfile",
    "-ExecutionPolicy", "RemoteSigned",
    "-Command", "irm get.scoop.sh | iex",
)

_ANSI_ESCAPE_RE = re.compile(r"\x1b\[[0-9;]*m")


@dataclass(frozen=True)
class CommandResult:
    """
    Result of running one package manager command.

    Attributes:
        command: Argument vector that was run
        exit_code: Process exit code (-1 if the process could not be started)
        stdout: Standard output
        stderr: Standard error
        duration_seconds: Time taken
        error_message: Human-readable error message if failed
    """
    command: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    error_message: str | None = None

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and interpret_failure(self) is None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "command": list(self.command),
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_seconds": self.duration_seconds,
            "error_message": self.error_message,
            "success": self.success,
        }


def interpret_failure(result: CommandResult) -> str | None:
    """
    Decide whether a command failed and why.

    Scoop reports several failures (unknown manifest, package not installed)
    with exit code 0, so the output is checked as well.

    Returns:
        Failure description, or None if the command succeeded
    """
    if result.error_message and result.exit_code != 0:
        return result.error_message
    if result.exit_code != 0:
        detail = (result.stderr or result.stdout).strip().splitlines()
        suffix = f": {detail[-1][:200]}" if detail else ""
        return f"exit code {result.exit_code}{suffix}"

    output = _ANSI_ESCAPE_RE.sub("", f"{result.stdout}\n{result.stderr}").lower()
    for marker in FAILURE_MARKERS:
        if marker in output:
            for line in output.splitlines():
                if marker in line:
                    return line.strip()[:200]
    return None


@dataclass(frozen=True)
class InstalledPackage:
    """
    One row of `scoop list` output.

    Attributes:
        name: Package identifier
        version: Version Scoop reports
        source: Bucket (or URL) the package came from
        global_install: Installed under the global root
        path: Expected `current` directory for the package
    """
    name: str
    version: str
    source: str
    global_install: bool
    path: str


@dataclass(frozen=True)
class InstalledList:
    """Typed result of parsing `scoop list`."""
    packages: dict[str, InstalledPackage] = field(default_factory=dict)

    def lookup(self, identifier: str) -> InstalledPackage | None:
        """Return the package, or None when it is not listed."""
        return self.packages.get(identifier.lower())

    def names(self) -> list[str]:
        return list(self.packages)

    def __contains__(self, identifier: object) -> bool:
        return isinstance(identifier, str) and identifier.lower() in self.packages

    def __len__(self) -> int:
        return len(self.packages)


_LIST_ROW_RE = re.compile(r"^(?P<name>[A-Za-z0-9][\w.+-]*)\s+(?P<version>\S+)(?:\s+(?P<rest>.*))?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")


def parse_installed_list(text: str, root: str, global_root: str | None = None) -> InstalledList:
    """
    Parse `scoop list` output into a typed mapping.

    Understands both the tabular format ("Name Version Source Updated Info")
    and the older "  name version [bucket] {global}" format. Headers,
    separators, banners and anything else unrecognized are skipped.

    Args:
        text: Raw output of `scoop list`
        root: Scoop user root, used to build install paths
        global_root: Scoop global root

    Returns:
        InstalledList keyed by lower-cased identifier
    """
    packages: dict[str, InstalledPackage] = {}

    for raw_line in _ANSI_ESCAPE_RE.sub("", text or "").splitlines():
        line = raw_line.strip()
        if not line or set(line) <= {"-", " "}:
            continue
        lowered = line.lower()
        if lowered.startswith(("installed apps", "name ", "warn", "error", "info")):
            continue

        match = _LIST_ROW_RE.match(line)
        if not match:
            continue

        name = match.group("name")
        version = match.group("version")
        rest = match.group("rest") or ""
        if not re.search(r"\d", version) and version.lower() not in ("nightly", "latest"):
            continue

        global_install = "global" in rest.lower().split() or "*global*" in rest.lower() or "{global}" in rest.lower()
        source = ""
        for token in rest.replace("[", " ").replace("]", " ").split():
            if _DATE_RE.match(token) or token.lower() in ("global", "*global*", "{global}"):
                continue
            source = token
            break

        base = global_root if (global_install and global_root) else root
        packages[name.lower()] = InstalledPackage(
            name=name,
            version=version,
            source=source,
            global_install=global_install,
            path=os.path.join(base, "apps", name, "current"),
        )

    return InstalledList(packages=packages)


def parse_bucket_list(text: str) -> set[str]:
    """Parse `scoop bucket list` output into bucket names."""
    buckets = set()
    for raw_line in _ANSI_ESCAPE_RE.sub("", text or "").splitlines():
        line = raw_line.strip()
        if not line or set(line) <= {"-", " "}:
            continue
        first = line.split()[0]
        if first.lower() in ("name", "warn", "error"):
            continue
        if re.fullmatch(r"[A-Za-z0-9][\w.-]*", first):
            buckets.add(first.lower())
    return buckets


@dataclass(frozen=True)
class ScoopLayout:
    """
    Scoop directory layout.

    Attributes:
        root: User install root
        global_root: Global install root
    """
    root: str
    global_root: str | None = None

    @staticmethod
    def from_config(config: ScoopConfig) -> ScoopLayout:
        return ScoopLayout(root=config.resolved_root, global_root=config.resolved_global_root)

    def roots(self) -> list[str]:
        """Install roots in search order (user first)."""
        result = [self.root]
        if self.global_root and self.global_root != self.root:
            result.append(self.global_root)
        return result

    def apps_dir(self, root: str | None = None) -> str:
        return os.path.join(root or self.root, "apps")

    def app_dir(self, identifier: str, root: str | None = None) -> str:
        return os.path.join(self.apps_dir(root), identifier)

    def current_dir(self, identifier: str, root: str | None = None) -> str:
        return os.path.join(self.app_dir(identifier, root), "current")

    def shims_dir(self, root: str | None = None) -> str:
        return os.path.join(root or self.root, "shims")

    def shims_dirs(self) -> list[str]:
        return [self.shims_dir(root) for root in self.roots()]


@dataclass(frozen=True)
class ScoopPackageManager:
    """
    Scoop command-line collaborator.

    Attributes:
        layout: Scoop directory layout
        executable: Command used to invoke Scoop
        timeout: Per-command timeout in seconds (None = no timeout)
        verbose: Enable verbose logging
    """
    layout: ScoopLayout
    executable: str = "scoop"
    timeout: int | None = None
    verbose: bool = False

    @staticmethod
    def from_config(config: ScoopConfig, verbose: bool = False) -> ScoopPackageManager:
        return ScoopPackageManager(
            layout=ScoopLayout.from_config(config),
            executable=config.executable,
            timeout=config.timeout_seconds,
            verbose=verbose,
        )

    def _argv(self, *args: str) -> list[str]:
        # scoop is a .ps1/.cmd shim on Windows; resolve it so CreateProcess can run it
        resolved = shutil.which(self.executable) or self.executable
        return [resolved, *args]

    def run(self, *args: str) -> CommandResult:
        """
        Run one Scoop command.

        Returns:
            CommandResult; launch failures and timeouts give exit code -1
        """
        command = self._argv(*args)
        vlog(f"Executing: {' '.join(command)}", self.verbose)
        start_time = time.time()

        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            return CommandResult(
                command=tuple(command),
                exit_code=-1,
                stdout=e.stdout.decode(errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or ""),
                stderr=e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or ""),
                duration_seconds=time.time() - start_time,
                error_message=f"Command timed out after {self.timeout}s",
            )
        except FileNotFoundError:
            return CommandResult(
                command=tuple(command),
                exit_code=-1,
                duration_seconds=time.time() - start_time,
                error_message=f"Command not found: {command[0]}",
            )
        except OSError as e:
            return CommandResult(
                command=tuple(command),
                exit_code=-1,
                duration_seconds=time.time() - start_time,
                error_message=f"Could not start {command[0]}: {e}",
            )

        command_result = CommandResult(
            command=tuple(command),
            exit_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration_seconds=time.time() - start_time,
        )
        failure = interpret_failure(command_result)
        if failure:
            vlog(f"Command failed ({failure}): {' '.join(command)}", self.verbose)
        return command_result

    def is_available(self) -> bool:
        """Check whether Scoop can be invoked."""
        if shutil.which(self.executable) is None:
            return False
        return self.run("--version").exit_code == 0

    def bootstrap(self) -> CommandResult:
        """Install Scoop with the official installer (Windows only)."""
        if not is_windows():
            return CommandResult(
                command=BOOTSTRAP_COMMAND,
                exit_code=-1,
                error_message="Scoop can only be bootstrapped on Windows",
            )
        start_time = time.time()
        try:
            result = subprocess.run(
                list(BOOTSTRAP_COMMAND),
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            return CommandResult(
                command=BOOTSTRAP_COMMAND,
                exit_code=-1,
                duration_seconds=time.time() - start_time,
                error_message=f"Could not start installer: {e}",
            )
        return CommandResult(
            command=BOOTSTRAP_COMMAND,
            exit_code=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration_seconds=time.time() - start_time,
        )

    def ensure_available(self, auto_bootstrap: bool = False) -> None:
        """
        Make sure Scoop is usable.

        Raises:
            PreconditionError: Scoop is missing and could not be bootstrapped
        """
        if self.is_available():
            return
        if not auto_bootstrap:
            raise PreconditionError(
                "Scoop is not installed or not on PATH",
                remediation="Install Scoop from https://scoop.sh or set scoop.auto_bootstrap: true",
            )
        vlog("Scoop not found, running bootstrap installer", True)
        result = self.bootstrap()
        if not result.success or not self.is_available():
            raise PreconditionError(
                f"Scoop bootstrap failed: {interpret_failure(result) or 'scoop still not available'}",
                remediation="Install Scoop manually from https://scoop.sh",
            )

    def list_buckets(self) -> set[str]:
        result = self.run("bucket", "list")
        if result.exit_code != 0:
            return set()
        return parse_bucket_list(result.stdout)

    def add_bucket(self, name: str) -> CommandResult:
        """Add a bucket; no-op when it is already present."""
        if name.lower() in self.list_buckets():
            return CommandResult(command=("bucket", "add", name), exit_code=0, stdout="already added")
        return self.run("bucket", "add", name)

    def install_package(self, identifier: str) -> CommandResult:
        return self.run("install", identifier)

    def uninstall_package(self, identifier: str, global_install: bool = False) -> CommandResult:
        """Uninstall a package; apps under the global root need `--global`."""
        if global_install:
            return self.run("uninstall", identifier, "--global")
        return self.run("uninstall", identifier)

    def activate_package(self, identifier: str) -> CommandResult:
        """Make an installed package the one its shims point to (`scoop reset`)."""
        return self.run("reset", identifier)

    def list_installed_packages(self) -> str:
        """Raw `scoop list` output (empty when the command fails)."""
        result = self.run("list")
        if result.exit_code != 0:
            return ""
        return result.stdout

    def installed(self) -> InstalledList:
        """Parsed `scoop list` output."""
        return parse_installed_list(
            self.list_installed_packages(), self.layout.root, self.layout.global_root
        )
