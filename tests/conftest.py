"""
Shared fixtures: an on-disk Scoop tree and a filesystem-backed Scoop fake.
"""

import os
import shutil
from pathlib import Path

import pytest

from runtime_switch.environment import EnvironmentSynchronizer, FileEnvironmentStore
from runtime_switch.package_managers import CommandResult, ScoopLayout


class ScoopTree:
    """Scoop user and global roots under a temporary directory."""

    def __init__(self, base: Path):
        self.root = base / "scoop"
        self.global_root = base / "scoop-global"
        self.root.mkdir()
        self.global_root.mkdir()
        self.layout = ScoopLayout(root=str(self.root), global_root=str(self.global_root))

    def _root(self, global_install: bool) -> Path:
        return self.global_root if global_install else self.root

    def app_dir(self, identifier, global_install=False) -> Path:
        return self._root(global_install) / "apps" / identifier

    def current_dir(self, identifier, global_install=False) -> Path:
        return self.app_dir(identifier, global_install) / "current"

    def shims_dir(self, global_install=False) -> Path:
        return self._root(global_install) / "shims"

    def executable(self, family, identifier, global_install=False) -> Path:
        current = self.current_dir(identifier, global_install)
        sub = family.executable_dirs[0]
        return (current / sub if sub else current) / family.executable

    def install(self, family, identifier, global_install=False, with_executable=True) -> Path:
        """Lay out apps/<identifier>/current (with the family executable)."""
        exe = self.executable(family, identifier, global_install)
        exe.parent.mkdir(parents=True, exist_ok=True)
        if with_executable:
            exe.write_text("#!/bin/sh\nexit 0\n")
            exe.chmod(0o755)
        return self.current_dir(identifier, global_install)

    def shim(self, family, identifier, global_install=False) -> Path:
        """Point the family shim at an install, the way `scoop reset` does."""
        shims = self.shims_dir(global_install)
        shims.mkdir(parents=True, exist_ok=True)
        launcher = shims / family.executable
        launcher.write_text("#!/bin/sh\nexit 0\n")
        launcher.chmod(0o755)
        target = self.executable(family, identifier, global_install)
        (shims / f"{family.executable}.shim").write_text(f'path = "{target}"\n')
        return launcher

    def search_path(self) -> str:
        return os.pathsep.join([str(self.shims_dir()), str(self.shims_dir(True))])


class FakeScoop:
    """
    Scoop stand-in that mutates a ScoopTree the way the real commands do.

    Args:
        tree: Scoop tree to mutate
        family: Family whose layout installs follow
        available: Identifiers that have a manifest
        fail_uninstall: Identifiers whose uninstall fails without removing anything
        fail_activate: Identifiers whose reset fails
        hollow: Identifiers that install without an executable
        raising: Identifiers whose install raises
    """

    def __init__(self, tree, family, available=(), fail_uninstall=(), fail_activate=(), hollow=(), raising=()):
        self.tree = tree
        self.layout = tree.layout
        self.family = family
        self.available = set(available)
        self.fail_uninstall = set(fail_uninstall)
        self.fail_activate = set(fail_activate)
        self.hollow = set(hollow)
        self.raising = set(raising)
        self.calls = []

    def ensure_available(self, auto_bootstrap=False):
        self.calls.append(("ensure",))

    def add_bucket(self, name):
        self.calls.append(("bucket", name))
        return CommandResult(command=("scoop", "bucket", "add", name), exit_code=0)

    def install_package(self, identifier):
        self.calls.append(("install", identifier))
        command = ("scoop", "install", identifier)
        if identifier in self.raising:
            raise RuntimeError("scoop crashed")
        if identifier not in self.available and identifier not in self.hollow:
            return CommandResult(command=command, exit_code=0, stdout=f"Couldn't find manifest for '{identifier}'.")
        self.tree.install(self.family, identifier, with_executable=identifier not in self.hollow)
        if identifier not in self.hollow:
            self.tree.shim(self.family, identifier)
        return CommandResult(command=command, exit_code=0, stdout=f"'{identifier}' was installed successfully!")

    def uninstall_package(self, identifier, global_install=False):
        self.calls.append(("uninstall", identifier, "--global") if global_install else ("uninstall", identifier))
        command = ("scoop", "uninstall", identifier) + (("--global",) if global_install else ())
        if identifier in self.fail_uninstall:
            return CommandResult(command=command, exit_code=1, stderr="Access is denied.")
        app_dir = self.tree.app_dir(identifier, global_install)
        if not app_dir.exists():
            return CommandResult(command=command, exit_code=0, stdout=f"'{identifier}' isn't installed.")
        shutil.rmtree(app_dir, ignore_errors=True)
        return CommandResult(command=command, exit_code=0, stdout=f"'{identifier}' was uninstalled.")

    def activate_package(self, identifier):
        self.calls.append(("reset", identifier))
        command = ("scoop", "reset", identifier)
        if identifier in self.fail_activate:
            return CommandResult(command=command, exit_code=1, stderr=f"ERROR '{identifier}' could not be reset")
        self.tree.shim(self.family, identifier)
        return CommandResult(command=command, exit_code=0, stdout=f"Resetting {identifier}")

    def operations(self, kind):
        return [call[1] for call in self.calls if call[0] == kind]


@pytest.fixture
def scoop_tree(tmp_path, monkeypatch):
    """Scoop tree whose shims dirs make up the process PATH."""
    tree = ScoopTree(tmp_path)
    monkeypatch.setenv("PATH", tree.search_path())
    return tree


@pytest.fixture
def fake_scoop(scoop_tree):
    """Factory for FakeScoop instances bound to the scoop_tree fixture."""
    def factory(family, **kwargs):
        return FakeScoop(scoop_tree, family, **kwargs)
    return factory


@pytest.fixture
def env_file(tmp_path):
    return tmp_path / "environment.yml"


@pytest.fixture
def synchronizer(env_file):
    """Synchronizer over a YAML store with an empty machine scope and a private process env."""
    store = FileEnvironmentStore(str(env_file), base_environ={"PATH": ""})
    return EnvironmentSynchronizer(store, environ={})
