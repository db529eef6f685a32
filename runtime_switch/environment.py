"""
Environment synchronization.

Keeps PATH (and JAVA_HOME) consistent between the persisted user-scope
environment, the machine-scope environment and the live process, so that
a freshly installed or switched runtime is visible without restarting the
shell.

All changes flow through EnvironmentSynchronizer.apply(), which takes an
EnvironmentPlan value. Precedence rules live here and nowhere else:
- the live process sees user-scope PATH entries before machine-scope ones
- new processes started by Windows see machine-scope entries first, which
  a user-scope change cannot override; such conflicts are reported
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Mapping, MutableMapping

import yaml

from .common import is_windows, is_within, normalize_entry, same_path, split_path, vlog
from .config import Config
from .errors import EnvironmentStoreError
from .families import FAMILIES, RuntimeFamily
from .logging_config import get_logger


USER = "user"
MACHINE = "machine"
SCOPES = (USER, MACHINE)

_WINDOWS_VAR_RE = re.compile(r"%([^%]+)%")


@dataclass(frozen=True)
class EnvironmentPlan:
    """
    Proposed change to the persisted user-scope environment.

    Attributes:
        path_entries: Complete new user-scope PATH (None = leave PATH alone)
        variables: Variables to set; a None value deletes the variable
        removed_entries: PATH entries dropped by this plan (for reporting)
    """
    path_entries: tuple[str, ...] | None = None
    variables: dict[str, str | None] = field(default_factory=dict)
    removed_entries: tuple[str, ...] = ()

    @property
    def path_value(self) -> str | None:
        if self.path_entries is None:
            return None
        return os.pathsep.join(self.path_entries)

    def merge(self, other: EnvironmentPlan) -> EnvironmentPlan:
        """Combine two plans; `other` wins on conflicts."""
        variables = dict(self.variables)
        variables.update(other.variables)
        return EnvironmentPlan(
            path_entries=other.path_entries if other.path_entries is not None else self.path_entries,
            variables=variables,
            removed_entries=self.removed_entries + other.removed_entries,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "path_entries": list(self.path_entries) if self.path_entries is not None else None,
            "variables": dict(self.variables),
            "removed_entries": list(self.removed_entries),
        }


class EnvironmentStore:
    """
    Persisted environment variables in user and machine scope.

    Subclasses implement read/write/delete; `notify` tells other processes
    the environment changed.
    """

    def read(self, scope: str, name: str) -> str | None:
        raise NotImplementedError

    def write(self, scope: str, name: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, scope: str, name: str) -> None:
        raise NotImplementedError

    def notify(self) -> None:
        """Broadcast an environment change (no-op by default)."""


def _check_scope(scope: str) -> None:
    if scope not in SCOPES:
        raise ValueError(f"Invalid scope: {scope}. Must be one of: {', '.join(SCOPES)}")


class FileEnvironmentStore(EnvironmentStore):
    """
    Environment store backed by a YAML file.

    The file holds `user` and `machine` maps. Machine-scope variables missing
    from the file fall back to `base_environ` (by default the environment
    this process inherited), so the login PATH is never lost.
    """

    def __init__(self, path: str, base_environ: Mapping[str, str] | None = None):
        self.path = path
        self.base_environ = dict(os.environ if base_environ is None else base_environ)

    def _load(self) -> dict[str, dict[str, str]]:
        if not os.path.exists(self.path):
            return {USER: {}, MACHINE: {}}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise EnvironmentStoreError(f"Cannot read environment file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise EnvironmentStoreError(f"Environment file {self.path} is not a mapping")
        return {
            scope: {str(k): str(v) for k, v in (data.get(scope) or {}).items()}
            for scope in SCOPES
        }

    def _save(self, data: dict[str, dict[str, str]]) -> None:
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
        except OSError as e:
            raise EnvironmentStoreError(f"Cannot write environment file {self.path}: {e}") from e

    def read(self, scope: str, name: str) -> str | None:
        _check_scope(scope)
        value = self._load()[scope].get(name)
        if value is None and scope == MACHINE:
            return self.base_environ.get(name)
        return value

    def write(self, scope: str, name: str, value: str) -> None:
        _check_scope(scope)
        data = self._load()
        data[scope][name] = value
        self._save(data)

    def delete(self, scope: str, name: str) -> None:
        _check_scope(scope)
        data = self._load()
        if name in data[scope]:
            del data[scope][name]
            self._save(data)


class RegistryEnvironmentStore(EnvironmentStore):
    """
    Windows registry environment store.

    User scope is HKCU\\Environment; machine scope is the session manager
    key under HKLM (writing it requires an elevated process).
    """

    USER_KEY = "Environment"
    MACHINE_KEY = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"

    def _open(self, scope: str, write: bool = False):
        import winreg

        _check_scope(scope)
        hive = winreg.HKEY_CURRENT_USER if scope == USER else winreg.HKEY_LOCAL_MACHINE
        sub_key = self.USER_KEY if scope == USER else self.MACHINE_KEY
        access = winreg.KEY_READ | (winreg.KEY_SET_VALUE if write else 0)
        return winreg.OpenKey(hive, sub_key, 0, access)

    def _read_raw(self, scope: str, name: str) -> tuple[str, int] | None:
        import winreg

        try:
            with self._open(scope) as key:
                value, value_type = winreg.QueryValueEx(key, name)
                return str(value), value_type
        except FileNotFoundError:
            return None
        except OSError as e:
            raise EnvironmentStoreError(f"Cannot read {scope} {name} from registry: {e}") from e

    def read(self, scope: str, name: str) -> str | None:
        raw = self._read_raw(scope, name)
        return raw[0] if raw else None

    def write(self, scope: str, name: str, value: str) -> None:
        import winreg

        existing = self._read_raw(scope, name)
        value_type = winreg.REG_EXPAND_SZ if "%" in value else winreg.REG_SZ
        if existing and existing[1] == winreg.REG_EXPAND_SZ:
            value_type = winreg.REG_EXPAND_SZ
        try:
            with self._open(scope, write=True) as key:
                winreg.SetValueEx(key, name, 0, value_type, value)
        except PermissionError as e:
            raise EnvironmentStoreError(
                f"Permission denied writing {scope} {name}",
                remediation="Machine-scope changes require an elevated shell",
            ) from e
        except OSError as e:
            raise EnvironmentStoreError(f"Cannot write {scope} {name} to registry: {e}") from e

    def delete(self, scope: str, name: str) -> None:
        import winreg

        try:
            with self._open(scope, write=True) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            return
        except OSError as e:
            raise EnvironmentStoreError(f"Cannot delete {scope} {name} from registry: {e}") from e

    def notify(self) -> None:
        import ctypes
        from ctypes import wintypes

        HWND_BROADCAST = 0xFFFF
        WM_SETTINGCHANGE = 0x001A
        SMTO_ABORTIFHUNG = 0x0002
        result = wintypes.DWORD()
        ctypes.windll.user32.SendMessageTimeoutW(
            HWND_BROADCAST, WM_SETTINGCHANGE, 0, "Environment",
            SMTO_ABORTIFHUNG, 5000, ctypes.byref(result),
        )


def default_store(config: Config) -> EnvironmentStore:
    """
    Pick the environment store for this host and configuration.

    Raises:
        ValueError: If the registry store is requested off Windows
    """
    choice = config.preferences.env_store
    if choice == "registry" or (choice == "auto" and is_windows()):
        if not is_windows():
            raise ValueError("env_store 'registry' is only available on Windows")
        return RegistryEnvironmentStore()
    return FileEnvironmentStore(config.preferences.resolved_env_file)


def dedupe_entries(entries: list[str]) -> list[str]:
    """Remove duplicate PATH entries, keeping the first occurrence."""
    seen: set[str] = set()
    result = []
    for entry in entries:
        key = normalize_entry(entry)
        if not key or key in seen:
            continue
        seen.add(key)
        result.append(entry)
    return result


class EnvironmentSynchronizer:
    """
    Applies EnvironmentPlans to the persisted store and the live process.

    Args:
        store: Persisted environment store
        environ: Live process environment (default: os.environ)
        verbose: Enable verbose logging
    """

    def __init__(
        self,
        store: EnvironmentStore,
        environ: MutableMapping[str, str] | None = None,
        verbose: bool = False,
    ):
        self.store = store
        self.environ = os.environ if environ is None else environ
        self.verbose = verbose

    def _lookup(self, name: str) -> str | None:
        return (
            self.store.read(USER, name)
            or self.store.read(MACHINE, name)
            or self.environ.get(name)
        )

    def expand(self, value: str) -> str:
        """Expand %NAME% references using persisted, then process, values."""
        def replace(match: re.Match) -> str:
            resolved = self._lookup(match.group(1))
            return resolved if resolved is not None else match.group(0)
        return _WINDOWS_VAR_RE.sub(replace, value)

    def user_path(self) -> list[str]:
        return split_path(self.store.read(USER, "PATH"))

    def machine_path(self) -> list[str]:
        return split_path(self.store.read(MACHINE, "PATH"))

    def effective_path(self) -> list[str]:
        """PATH the live process should see: user entries, then machine entries."""
        entries = [self.expand(e) for e in self.user_path() + self.machine_path()]
        return dedupe_entries(entries)

    def refresh(self) -> str:
        """
        Recompute the live process PATH and home variables from persisted state.

        Any stale in-process value is discarded. Idempotent.

        Returns:
            The new process PATH
        """
        for family in FAMILIES:
            if not family.home_variable:
                continue
            value = self.store.read(USER, family.home_variable) or self.store.read(MACHINE, family.home_variable)
            if value:
                self.environ[family.home_variable] = self.expand(value)
            else:
                self.environ.pop(family.home_variable, None)

        path = os.pathsep.join(self.effective_path())
        self.environ["PATH"] = path
        vlog(f"Process PATH refreshed ({len(split_path(path))} entries)", self.verbose)
        return path

    def plan_path_prepend(self, entry: str, remove: tuple[str, ...] = ()) -> EnvironmentPlan:
        """
        Plan moving `entry` to the front of the user-scope PATH.

        Existing occurrences of `entry` (and of any `remove` entries) are
        dropped; every other entry keeps its relative order.
        """
        target = normalize_entry(entry)
        drop = {normalize_entry(r) for r in remove if r}
        kept = []
        removed = []
        for existing in self.user_path():
            key = normalize_entry(existing)
            if key == target:
                continue
            if key in drop:
                removed.append(existing)
                continue
            kept.append(existing)
        return EnvironmentPlan(path_entries=(entry, *kept), removed_entries=tuple(removed))

    def plan_path_remove(self, entries: tuple[str, ...]) -> EnvironmentPlan:
        """Plan dropping entries from the user-scope PATH."""
        drop = {normalize_entry(e) for e in entries if e}
        current = self.user_path()
        kept = tuple(e for e in current if normalize_entry(e) not in drop)
        removed = tuple(e for e in current if normalize_entry(e) in drop)
        return EnvironmentPlan(path_entries=kept, removed_entries=removed)

    def apply(
        self,
        plan: EnvironmentPlan,
        family: RuntimeFamily | None = None,
        preferred_dir: str | None = None,
    ) -> list[str]:
        """
        Persist a plan to user scope, then refresh the live process.

        Args:
            plan: Plan to apply
            family: Family to check for machine-scope conflicts
            preferred_dir: Directory that should provide the family executable

        Returns:
            Conflict warnings (empty when there are none)

        Raises:
            EnvironmentStoreError: If the persisted store cannot be written
        """
        for name, value in plan.variables.items():
            if value is None:
                self.store.delete(USER, name)
                vlog(f"Removed user variable {name}", self.verbose)
            else:
                self.store.write(USER, name, value)
                vlog(f"Set user variable {name}={value}", self.verbose)

        if plan.path_value is not None and plan.path_value != self.store.read(USER, "PATH"):
            self.store.write(USER, "PATH", plan.path_value)
            vlog(f"User PATH now starts with {plan.path_entries[0] if plan.path_entries else '(empty)'}", self.verbose)

        self.store.notify()
        self.refresh()

        warnings = self.detect_conflicts(family, preferred_dir) if family else []
        for warning in warnings:
            get_logger().warning(warning)
        return warnings

    def persist_path_prepend(self, path: str, family: RuntimeFamily | None = None) -> list[str]:
        """Move `path` to the front of the user-scope PATH and refresh."""
        return self.apply(self.plan_path_prepend(path), family=family, preferred_dir=path)

    def persist_variable(self, name: str, value: str | None) -> None:
        """Set (or with None, delete) a user-scope variable and refresh."""
        self.apply(EnvironmentPlan(variables={name: value}))

    def set_home(self, family: RuntimeFamily, home: str) -> list[str]:
        """
        Point the family home variable at `home` and put its bin dir first on PATH.

        The previous home's bin dir is dropped from the user-scope PATH.
        """
        if not family.home_variable:
            raise ValueError(f"{family.display_name} has no home variable")

        previous = self.store.read(USER, family.home_variable)
        remove = ()
        if previous and not same_path(previous, home):
            remove = (family.bin_dir(previous),)

        bin_dir = family.bin_dir(home)
        plan = self.plan_path_prepend(bin_dir, remove=remove).merge(
            EnvironmentPlan(variables={family.home_variable: home})
        )
        get_logger().info(f"{family.home_variable} set to {home}")
        return self.apply(plan, family=family, preferred_dir=bin_dir)

    def clear_home(self, family: RuntimeFamily, removed_dir: str) -> bool:
        """
        Clear the home variable if it points inside a removed install.

        Returns:
            True if the variable was cleared
        """
        if not family.home_variable:
            return False
        current = self.store.read(USER, family.home_variable)
        if not current or not is_within(current, removed_dir):
            return False
        plan = self.plan_path_remove((family.bin_dir(current),)).merge(
            EnvironmentPlan(variables={family.home_variable: None})
        )
        self.apply(plan)
        get_logger().info(f"{family.home_variable} cleared (pointed to removed {current})")
        return True

    def detect_conflicts(self, family: RuntimeFamily, preferred_dir: str | None = None) -> list[str]:
        """
        Find machine-scope settings that shadow the user-scope selection.

        Machine-scope PATH entries are resolved before user-scope ones for
        processes Windows starts, so an entry there that provides the same
        executable wins no matter what the user scope says.

        Returns:
            Warning messages
        """
        warnings = []
        for raw_entry in self.machine_path():
            entry = self.expand(raw_entry)
            if preferred_dir and same_path(entry, preferred_dir):
                continue
            if any(os.path.isfile(os.path.join(entry, name)) for name in family.executable_names()):
                target = f" instead of {preferred_dir}" if preferred_dir else ""
                warnings.append(
                    f"Machine-scope PATH entry {entry} provides {family.executable} and is "
                    f"resolved before user-scope entries{target}; remove or reorder it manually"
                )

        return warnings
