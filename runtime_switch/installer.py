"""
Install, switch and uninstall execution.

The MutationDriver runs the package manager for one runtime family at a
time: it walks the ordered candidate identifiers until one installs,
activates already-installed variants, and falls back to removing files
directly when the package manager cannot finish an uninstall. Every
successful mutation is followed by an environment synchronization pass.
"""

from __future__ import annotations

import os
import re
import shutil
import stat
from dataclasses import dataclass, replace
from typing import Any, Callable

from .common import vlog
from .config import Config
from .environment import EnvironmentSynchronizer
from .errors import EnvironmentStoreError
from .families import RuntimeFamily
from .logging_config import get_logger
from .normalizer import normalize
from .package_managers import CommandResult, InstalledPackage, ScoopPackageManager, interpret_failure
from .probe import (
    FamilyStatus,
    InstalledVariant,
    find_variant,
    probe_family,
    read_cmd_shim_target,
    read_shim_target,
    variant_for,
)


# Outcome of a mutation
SUCCESS = "success"
FAILED_RECOVERABLE = "failed_recoverable"
FAILED_FATAL = "failed_fatal"

# Terminal states
INSTALLED = "installed"
NO_CANDIDATE_SUCCEEDED = "no_candidate_succeeded"
SWITCHED = "switched"
SWITCH_FAILED = "switch_failed"
UNINSTALLED = "uninstalled"
UNINSTALLED_DEGRADED = "uninstalled_degraded"
UNINSTALL_FAILED = "uninstall_failed"

SHIM_SCRIPT_EXTENSIONS = ("", ".cmd", ".ps1")
SHIM_EXTENSIONS = ("", ".exe", ".cmd", ".ps1", ".shim")


@dataclass(frozen=True)
class AttemptResult:
    """
    Outcome of one package manager attempt.

    Attributes:
        identifier: Identifier that was tried
        success: Whether the attempt succeeded
        message: What happened
        command: Command result, if a command was run
    """
    identifier: str
    success: bool
    message: str
    command: CommandResult | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "identifier": self.identifier,
            "success": self.success,
            "message": self.message,
            "command": self.command.to_dict() if self.command else None,
        }


@dataclass(frozen=True)
class MutationResult:
    """
    Result of an install, switch or uninstall.

    Attributes:
        operation: "install", "switch", "activate" or "uninstall"
        family: Runtime family name
        requested: Version string or identifier exactly as requested
        status: SUCCESS, FAILED_RECOVERABLE or FAILED_FATAL
        state: Terminal state (INSTALLED, SWITCHED, UNINSTALLED_DEGRADED, ...)
        identifier: Identifier the operation ended on, if any
        attempts: Every package manager attempt, in order
        message: Human-readable summary
        degraded: Uninstall completed only through forced cleanup
        leftovers: Paths forced cleanup could not remove
        warnings: Advisory messages (PATH conflicts, partial cleanup)
    """
    operation: str
    family: str
    requested: str
    status: str
    state: str
    identifier: str | None = None
    attempts: tuple[AttemptResult, ...] = ()
    message: str = ""
    degraded: bool = False
    leftovers: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def success(self) -> bool:
        return self.status == SUCCESS

    @property
    def attempted(self) -> tuple[str, ...]:
        return tuple(a.identifier for a in self.attempts)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "operation": self.operation,
            "family": self.family,
            "requested": self.requested,
            "status": self.status,
            "state": self.state,
            "identifier": self.identifier,
            "attempts": [a.to_dict() for a in self.attempts],
            "message": self.message,
            "degraded": self.degraded,
            "leftovers": list(self.leftovers),
            "warnings": list(self.warnings),
        }


def _references_app(text: str, identifier: str) -> bool:
    pattern = r"[\\/]apps[\\/]" + re.escape(identifier) + r"[\\/]"
    return re.search(pattern, text, re.IGNORECASE) is not None


def _read_text(path: str, limit: int = 65536) -> str:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read(limit)
    except OSError:
        return ""


def _make_writable(path: str) -> None:
    try:
        mode = os.lstat(path).st_mode
        os.chmod(path, mode | stat.S_IWRITE | stat.S_IREAD)
    except OSError as e:
        get_logger().debug(f"Could not clear read-only flag on {path}: {e}")


def remove_file(path: str) -> str | None:
    """
    Remove a file, clearing a read-only flag if needed.

    Returns:
        Error message, or None if the file is gone
    """
    try:
        os.remove(path)
        return None
    except FileNotFoundError:
        return None
    except OSError:
        _make_writable(path)
    try:
        os.remove(path)
        return None
    except OSError as e:
        return str(e)


def remove_tree(path: str) -> str | None:
    """
    Remove a directory tree, clearing read-only flags on a second pass.

    Returns:
        Error message, or None if the directory is gone
    """
    if os.path.islink(path):
        return remove_file(path)
    try:
        shutil.rmtree(path)
        return None
    except FileNotFoundError:
        return None
    except OSError:
        for dirpath, dirnames, filenames in os.walk(path):
            for name in dirnames + filenames:
                _make_writable(os.path.join(dirpath, name))
    try:
        shutil.rmtree(path)
        return None
    except FileNotFoundError:
        return None
    except OSError as e:
        return str(e)


class MutationDriver:
    """
    Runs install, switch and uninstall for runtime families.

    Args:
        package_manager: Scoop collaborator
        synchronizer: Environment synchronizer (None = skip synchronization)
        config: Configuration
        verbose: Enable verbose logging
    """

    def __init__(
        self,
        package_manager: ScoopPackageManager,
        synchronizer: EnvironmentSynchronizer | None = None,
        config: Config | None = None,
        verbose: bool = False,
    ):
        self.package_manager = package_manager
        self.layout = package_manager.layout
        self.synchronizer = synchronizer
        self.config = config or Config()
        self.verbose = verbose
        self.logger = get_logger()

    # Probing -------------------------------------------------------------

    def status(self, family: RuntimeFamily) -> FamilyStatus:
        """Probe installed and active variants (never cached)."""
        return probe_family(family, self.layout, self.config, verbose=self.verbose)

    def unlisted_variants(self, family: RuntimeFamily, status: FamilyStatus | None = None) -> list[InstalledPackage]:
        """
        Packages `scoop list` reports for the family that the directory scan did not find.

        A non-empty result means the configured roots and Scoop disagree
        (e.g. SCOOP points somewhere else).
        """
        status = status or self.status(family)
        found = {v.identifier.lower() for v in status.installed}
        listed = self.package_manager.installed()
        return [
            package for name, package in listed.packages.items()
            if family.matches_identifier(name) and name not in found
        ]

    def ensure_ready(self) -> None:
        """
        Make sure the package manager can be used.

        Raises:
            PreconditionError: Package manager missing and bootstrap failed
        """
        self.package_manager.ensure_available(self.config.scoop.auto_bootstrap)

    # Package manager boundary ----------------------------------------------

    def _call(self, operation: Callable[..., CommandResult], *args: Any) -> CommandResult:
        try:
            return operation(*args)
        except Exception as e:
            name = getattr(operation, "__name__", "package manager")
            self.logger.debug(f"{name}{args} raised {e!r}")
            return CommandResult(
                command=(name, *(str(a) for a in args)),
                exit_code=-1,
                error_message=f"{name} failed: {e}",
            )

    def _ensure_bucket(self, family: RuntimeFamily) -> str | None:
        bucket = self.config.get_family_config(family.name).bucket or family.bucket
        if not bucket:
            return None
        result = self._call(self.package_manager.add_bucket, bucket)
        failure = interpret_failure(result)
        if failure:
            message = f"Could not add bucket '{bucket}': {failure}"
            self.logger.warning(message)
            return message
        return None

    # Environment ----------------------------------------------------------

    def _synchronize(self, family: RuntimeFamily, variant: InstalledVariant | None) -> list[str]:
        if self.synchronizer is None or not self.config.preferences.sync_environment:
            return []
        try:
            if variant is None:
                self.synchronizer.refresh()
                return []
            root = self.layout.global_root if variant.global_install else self.layout.root
            checked = None if family.home_variable else family
            warnings = self.synchronizer.persist_path_prepend(self.layout.shims_dir(root), family=checked)
            if family.home_variable:
                # bin dir of the home goes in front of the shims
                warnings.extend(self.synchronizer.set_home(family, variant.path))
            return warnings
        except EnvironmentStoreError as e:
            message = f"Environment not updated: {e.message}"
            self.logger.warning(message)
            return [message]

    def _synchronize_removal(self, family: RuntimeFamily, app_dirs: list[str]) -> list[str]:
        if self.synchronizer is None or not self.config.preferences.sync_environment:
            return []
        try:
            for app_dir in app_dirs:
                self.synchronizer.clear_home(family, app_dir)
            self.synchronizer.refresh()
            return []
        except EnvironmentStoreError as e:
            message = f"Environment not updated: {e.message}"
            self.logger.warning(message)
            return [message]

    # Install --------------------------------------------------------------

    def _attempt_install(self, family: RuntimeFamily, identifier: str) -> AttemptResult:
        if not identifier.strip():
            return AttemptResult(identifier=identifier, success=False, message="Empty package identifier")

        self.logger.info(f"Installing {identifier}...")
        result = self._call(self.package_manager.install_package, identifier)
        failure = interpret_failure(result)
        if failure:
            return AttemptResult(identifier=identifier, success=False, message=failure, command=result)

        if variant_for(family, self.layout, identifier, self.verbose) is None:
            return AttemptResult(
                identifier=identifier,
                success=False,
                message=f"Package manager reported success but no {family.executable} executable was found",
                command=result,
            )
        return AttemptResult(identifier=identifier, success=True, message="installed", command=result)

    def install(self, family: RuntimeFamily, requested: str) -> MutationResult:
        """
        Install the first candidate for `requested` that succeeds.

        A candidate that is already installed is activated instead of being
        reinstalled. Failed attempts are logged and the next candidate is
        tried; only running out of candidates is fatal.
        """
        candidate = normalize(family, requested)
        vlog(f"Candidates for {family.name} '{requested}': {', '.join(candidate)}", self.verbose)

        status = self.status(family)
        for identifier in candidate:
            existing = find_variant(status.installed, identifier)
            if existing is None:
                continue
            self.logger.info(f"{existing.identifier} is already installed")
            activated = self.activate(family, existing.identifier, requested=requested)
            if not activated.success:
                return replace(activated, operation="install")
            return replace(
                activated,
                operation="install",
                state=INSTALLED,
                message=f"{existing.identifier} was already installed and is now active",
            )

        warnings: list[str] = []
        bucket_warning = self._ensure_bucket(family)
        if bucket_warning:
            warnings.append(bucket_warning)

        attempts: list[AttemptResult] = []
        for identifier in candidate:
            attempt = self._attempt_install(family, identifier)
            attempts.append(attempt)
            if not attempt.success:
                self.logger.warning(f"Could not install {identifier or repr(identifier)}: {attempt.message}")
                continue

            variant = variant_for(family, self.layout, identifier, self.verbose)
            warnings.extend(self._synchronize(family, variant))
            self.logger.info(f"Installed {identifier}")
            return MutationResult(
                operation="install",
                family=family.name,
                requested=requested,
                status=SUCCESS,
                state=INSTALLED,
                identifier=identifier,
                attempts=tuple(attempts),
                message=f"Installed {identifier}",
                warnings=tuple(warnings),
            )

        tried = ", ".join(a.identifier for a in attempts)
        return MutationResult(
            operation="install",
            family=family.name,
            requested=requested,
            status=FAILED_FATAL,
            state=NO_CANDIDATE_SUCCEEDED,
            attempts=tuple(attempts),
            message=f"No candidate for '{requested}' could be installed (tried: {tried})",
            warnings=tuple(warnings),
        )

    # Switch ---------------------------------------------------------------

    def activate(self, family: RuntimeFamily, identifier: str, requested: str | None = None) -> MutationResult:
        """
        Make an installed variant the active one (`scoop reset`).

        Never uninstalls or reinstalls anything on failure.
        """
        requested = identifier if requested is None else requested
        variant = variant_for(family, self.layout, identifier, self.verbose)
        if variant is None:
            return MutationResult(
                operation="activate",
                family=family.name,
                requested=requested,
                status=FAILED_RECOVERABLE,
                state=SWITCH_FAILED,
                identifier=identifier,
                message=f"{identifier} is not installed",
            )

        result = self._call(self.package_manager.activate_package, identifier)
        failure = interpret_failure(result)
        attempt = AttemptResult(
            identifier=identifier,
            success=failure is None,
            message=failure or "activated",
            command=result,
        )
        if failure:
            self.logger.error(f"Could not switch to {identifier}: {failure}")
            return MutationResult(
                operation="activate",
                family=family.name,
                requested=requested,
                status=FAILED_RECOVERABLE,
                state=SWITCH_FAILED,
                identifier=identifier,
                attempts=(attempt,),
                message=f"Could not switch to {identifier}: {failure}",
            )

        warnings = self._synchronize(family, variant)
        self.logger.info(f"Switched to {identifier}")
        return MutationResult(
            operation="activate",
            family=family.name,
            requested=requested,
            status=SUCCESS,
            state=SWITCHED,
            identifier=identifier,
            attempts=(attempt,),
            message=f"Switched to {identifier}",
            warnings=tuple(warnings),
        )

    def switch(self, family: RuntimeFamily, requested: str) -> MutationResult:
        """
        Make the version `requested` the family's one active variant.

        If a candidate is already installed it is activated. Otherwise every
        installed variant of the family is uninstalled and the candidates
        are installed in order.
        """
        candidate = normalize(family, requested)
        status = self.status(family)

        for identifier in candidate:
            existing = find_variant(status.installed, identifier)
            if existing is not None:
                return replace(self.activate(family, existing.identifier, requested=requested), operation="switch")

        warnings: list[str] = []
        for variant in status.installed:
            self.logger.info(f"Replacing {variant.identifier} with {candidate.primary}")
            removal = self.uninstall(family, variant.identifier)
            warnings.extend(removal.warnings)
            if not removal.success:
                warnings.append(f"{variant.identifier} could not be removed: {removal.message}")

        result = self.install(family, requested)
        return replace(result, operation="switch", warnings=tuple(warnings) + result.warnings)

    # Uninstall ------------------------------------------------------------

    def _shim_stems(self, shims_dir: str, identifier: str) -> set[str]:
        try:
            names = os.listdir(shims_dir)
        except OSError:
            return set()

        stems = set()
        for name in names:
            path = os.path.join(shims_dir, name)
            stem, ext = os.path.splitext(name)
            ext = ext.lower()
            if ext == ".shim":
                target = read_shim_target(path)
                if target and _references_app(target, identifier):
                    stems.add(stem)
            elif ext == ".cmd":
                target = read_cmd_shim_target(path)
                if target and _references_app(target, identifier):
                    stems.add(stem)
            elif ext in SHIM_SCRIPT_EXTENSIONS and os.path.isfile(path):
                if _references_app(_read_text(path), identifier):
                    stems.add(stem)
        return stems

    def forced_cleanup(self, identifier: str) -> list[str]:
        """
        Remove an identifier's install directories and launcher shims directly.

        Best effort: each failure is logged and skipped.

        Returns:
            Paths that could not be removed
        """
        leftovers: list[str] = []

        for root in self.layout.roots():
            app_dir = self.layout.app_dir(identifier, root)
            if not os.path.lexists(app_dir):
                continue
            error = remove_tree(app_dir)
            if error:
                self.logger.warning(f"Could not remove {app_dir}: {error}")
                leftovers.append(app_dir)
            else:
                vlog(f"Removed {app_dir}", self.verbose)

        for shims_dir in self.layout.shims_dirs():
            for stem in sorted(self._shim_stems(shims_dir, identifier)):
                for ext in SHIM_EXTENSIONS:
                    path = os.path.join(shims_dir, stem + ext)
                    if not os.path.lexists(path):
                        continue
                    error = remove_file(path)
                    if error:
                        self.logger.warning(f"Could not remove shim {path}: {error}")
                        leftovers.append(path)
                    else:
                        vlog(f"Removed shim {path}", self.verbose)

        return leftovers

    def uninstall(self, family: RuntimeFamily, identifier: str) -> MutationResult:
        """
        Uninstall a variant, falling back to forced cleanup.

        When the package manager fails (or claims success but leaves the
        install directory behind), the install directory and shims are
        removed directly. The result is UNINSTALLED_DEGRADED when the install
        directory is gone, with anything else that could not be removed in
        `leftovers`; UNINSTALL_FAILED when the install directory remains.
        """
        scoped_dirs = [
            (root != self.layout.root, self.layout.app_dir(identifier, root))
            for root in self.layout.roots()
            if os.path.lexists(self.layout.app_dir(identifier, root))
        ]
        app_dirs = [app_dir for _, app_dir in scoped_dirs]
        if not app_dirs:
            return MutationResult(
                operation="uninstall",
                family=family.name,
                requested=identifier,
                status=SUCCESS,
                state=UNINSTALLED,
                identifier=identifier,
                message=f"{identifier} is not installed",
            )

        self.logger.info(f"Uninstalling {identifier}...")
        failure = None
        for global_install, _ in scoped_dirs:
            result = self._call(self.package_manager.uninstall_package, identifier, global_install)
            failure = failure or interpret_failure(result)
        remaining = [d for d in app_dirs if os.path.lexists(d)]
        if failure is None and remaining:
            failure = f"package manager reported success but {remaining[0]} remains"

        attempt = AttemptResult(
            identifier=identifier,
            success=failure is None,
            message=failure or "uninstalled",
            command=result,
        )

        if failure is None:
            warnings = self._synchronize_removal(family, app_dirs)
            self.logger.info(f"Uninstalled {identifier}")
            return MutationResult(
                operation="uninstall",
                family=family.name,
                requested=identifier,
                status=SUCCESS,
                state=UNINSTALLED,
                identifier=identifier,
                attempts=(attempt,),
                message=f"Uninstalled {identifier}",
                warnings=tuple(warnings),
            )

        if not self.config.preferences.forced_cleanup:
            self.logger.error(f"Could not uninstall {identifier}: {failure}")
            return MutationResult(
                operation="uninstall",
                family=family.name,
                requested=identifier,
                status=FAILED_RECOVERABLE,
                state=UNINSTALL_FAILED,
                identifier=identifier,
                attempts=(attempt,),
                message=f"Could not uninstall {identifier}: {failure}",
            )

        self.logger.warning(f"Uninstall of {identifier} failed ({failure}); removing files directly")
        leftovers = self.forced_cleanup(identifier)
        still_installed = [d for d in app_dirs if os.path.lexists(d)]

        if still_installed:
            return MutationResult(
                operation="uninstall",
                family=family.name,
                requested=identifier,
                status=FAILED_RECOVERABLE,
                state=UNINSTALL_FAILED,
                identifier=identifier,
                attempts=(attempt,),
                message=f"Could not remove {', '.join(still_installed)}",
                leftovers=tuple(leftovers),
            )

        warnings = self._synchronize_removal(family, app_dirs)
        return MutationResult(
            operation="uninstall",
            family=family.name,
            requested=identifier,
            status=SUCCESS,
            state=UNINSTALLED_DEGRADED,
            identifier=identifier,
            attempts=(attempt,),
            message=(
                f"Removed {identifier} by forced cleanup"
                + (f"; {len(leftovers)} item(s) could not be removed" if leftovers else "")
            ),
            degraded=True,
            leftovers=tuple(leftovers),
            warnings=tuple(warnings),
        )
