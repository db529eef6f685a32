"""
Tests for environment synchronization (runtime_switch/environment.py).
"""

import os
from unittest.mock import patch

import pytest
import yaml

from runtime_switch.config import Config, Preferences
from runtime_switch.environment import (
    MACHINE,
    USER,
    EnvironmentPlan,
    EnvironmentSynchronizer,
    FileEnvironmentStore,
    default_store,
    dedupe_entries,
)
from runtime_switch.errors import EnvironmentStoreError
from runtime_switch.families import JAVA, NODE


def _join(*entries):
    return os.pathsep.join(str(e) for e in entries)


def _make_dir_with(tmp_path, name, executable=None):
    directory = tmp_path / name
    directory.mkdir(parents=True)
    if executable:
        (directory / executable).write_text("")
    return directory


class TestEnvironmentPlan:
    """Tests for EnvironmentPlan."""

    def test_path_value(self):
        plan = EnvironmentPlan(path_entries=("a", "b"))
        assert plan.path_value == _join("a", "b")

    def test_no_path_change(self):
        assert EnvironmentPlan(variables={"X": "1"}).path_value is None

    def test_merge(self):
        first = EnvironmentPlan(path_entries=("a",), variables={"X": "1"}, removed_entries=("old",))
        second = EnvironmentPlan(variables={"X": "2", "Y": None})
        merged = first.merge(second)

        assert merged.path_entries == ("a",)
        assert merged.variables == {"X": "2", "Y": None}
        assert merged.removed_entries == ("old",)

    def test_to_dict(self):
        data = EnvironmentPlan(path_entries=("a",)).to_dict()
        assert data == {"path_entries": ["a"], "variables": {}, "removed_entries": []}


class TestFileEnvironmentStore:
    """Tests for the YAML-backed store."""

    def test_write_and_read(self, tmp_path):
        store = FileEnvironmentStore(str(tmp_path / "env.yml"), base_environ={})
        store.write(USER, "JAVA_HOME", "/jdk")

        assert store.read(USER, "JAVA_HOME") == "/jdk"
        data = yaml.safe_load((tmp_path / "env.yml").read_text())
        assert data["user"] == {"JAVA_HOME": "/jdk"}

    def test_delete(self, tmp_path):
        store = FileEnvironmentStore(str(tmp_path / "env.yml"), base_environ={})
        store.write(USER, "JAVA_HOME", "/jdk")
        store.delete(USER, "JAVA_HOME")
        store.delete(USER, "NEVER_SET")

        assert store.read(USER, "JAVA_HOME") is None

    def test_machine_falls_back_to_base_environ(self, tmp_path):
        store = FileEnvironmentStore(str(tmp_path / "env.yml"), base_environ={"PATH": "/usr/bin"})
        assert store.read(MACHINE, "PATH") == "/usr/bin"
        assert store.read(USER, "PATH") is None

        store.write(MACHINE, "PATH", "/opt/bin")
        assert store.read(MACHINE, "PATH") == "/opt/bin"

    def test_invalid_scope(self, tmp_path):
        store = FileEnvironmentStore(str(tmp_path / "env.yml"), base_environ={})
        with pytest.raises(ValueError, match="Invalid scope"):
            store.read("process", "PATH")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "env.yml"
        path.write_text("user: [unclosed\n")
        with pytest.raises(EnvironmentStoreError):
            FileEnvironmentStore(str(path), base_environ={}).read(USER, "PATH")

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "env.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(EnvironmentStoreError, match="not a mapping"):
            FileEnvironmentStore(str(path), base_environ={}).read(USER, "PATH")


class TestDefaultStore:
    """Tests for store selection."""

    @patch("runtime_switch.environment.is_windows", return_value=False)
    def test_file_store_off_windows(self, mock_windows, tmp_path):
        config = Config(preferences=Preferences(env_file=str(tmp_path / "e.yml")))
        store = default_store(config)
        assert isinstance(store, FileEnvironmentStore)
        assert store.path == str(tmp_path / "e.yml")

    @patch("runtime_switch.environment.is_windows", return_value=False)
    def test_registry_off_windows(self, mock_windows):
        with pytest.raises(ValueError, match="only available on Windows"):
            default_store(Config(preferences=Preferences(env_store="registry")))


class TestDedupeEntries:

    def test_keeps_first_occurrence(self):
        assert dedupe_entries(["/a", "/b", "/a/", "/c", "/b"]) == ["/a", "/b", "/c"]

    def test_drops_blank(self):
        assert dedupe_entries(["/a", "  ", ""]) == ["/a"]


class TestPersistPathPrepend:
    """Tests for persisted PATH prepending."""

    def test_prepend_twice_keeps_one_occurrence(self, synchronizer):
        """Test repeated prepends do not accumulate duplicates."""
        synchronizer.store.write(USER, "PATH", _join("/a", "/b"))
        synchronizer.persist_path_prepend("/new")
        synchronizer.persist_path_prepend("/new")

        entries = synchronizer.user_path()
        assert entries == ["/new", "/a", "/b"]
        assert entries.count("/new") == 1

    def test_moves_existing_entry_to_front(self, synchronizer):
        synchronizer.store.write(USER, "PATH", _join("/a", "/new", "/b", "/c"))
        synchronizer.persist_path_prepend("/new")
        assert synchronizer.user_path() == ["/new", "/a", "/b", "/c"]

    def test_trailing_separator_is_same_entry(self, synchronizer):
        synchronizer.store.write(USER, "PATH", _join("/a", "/new" + os.sep))
        synchronizer.persist_path_prepend("/new")
        assert synchronizer.user_path() == ["/new", "/a"]

    def test_empty_user_path(self, synchronizer):
        synchronizer.persist_path_prepend("/new")
        assert synchronizer.user_path() == ["/new"]

    def test_updates_process_path(self, synchronizer):
        synchronizer.persist_path_prepend("/new")
        assert synchronizer.environ["PATH"].split(os.pathsep)[0] == "/new"


class TestRefresh:
    """Tests for process environment refresh."""

    def test_user_before_machine(self, env_file):
        store = FileEnvironmentStore(str(env_file), base_environ={"PATH": _join("/machine", "/shared")})
        store.write(USER, "PATH", _join("/user", "/shared"))
        environ = {"PATH": "/stale"}

        path = EnvironmentSynchronizer(store, environ=environ).refresh()

        assert path == _join("/user", "/shared", "/machine")
        assert environ["PATH"] == path

    def test_idempotent(self, synchronizer):
        synchronizer.store.write(USER, "PATH", "/user")
        assert synchronizer.refresh() == synchronizer.refresh()

    def test_expands_variable_references(self, synchronizer):
        synchronizer.store.write(USER, "JAVA_HOME", "/jdk")
        synchronizer.store.write(USER, "PATH", "%JAVA_HOME%/bin")
        synchronizer.refresh()
        assert synchronizer.environ["PATH"] == "/jdk/bin"

    def test_unknown_reference_left_alone(self, synchronizer):
        assert synchronizer.expand("%NOPE%/bin") == "%NOPE%/bin"

    def test_home_variable_published(self, synchronizer):
        synchronizer.store.write(USER, "JAVA_HOME", "/jdk")
        synchronizer.refresh()
        assert synchronizer.environ["JAVA_HOME"] == "/jdk"

    def test_stale_home_variable_dropped(self, synchronizer):
        synchronizer.environ["JAVA_HOME"] = "/old-jdk"
        synchronizer.refresh()
        assert "JAVA_HOME" not in synchronizer.environ


class TestConflicts:
    """Tests for machine-scope conflict detection."""

    def test_machine_entry_providing_executable(self, env_file, tmp_path):
        machine_node = _make_dir_with(tmp_path, "nodejs-msi", "node.exe")
        preferred = _make_dir_with(tmp_path, "shims", "node")
        store = FileEnvironmentStore(str(env_file), base_environ={"PATH": str(machine_node)})
        sync = EnvironmentSynchronizer(store, environ={})

        warnings = sync.persist_path_prepend(str(preferred), family=NODE)

        assert len(warnings) == 1
        assert str(machine_node) in warnings[0]
        assert "resolved before user-scope entries" in warnings[0]

    def test_unrelated_machine_entries(self, env_file, tmp_path):
        other = _make_dir_with(tmp_path, "tools", "git")
        store = FileEnvironmentStore(str(env_file), base_environ={"PATH": str(other)})
        sync = EnvironmentSynchronizer(store, environ={})
        assert sync.detect_conflicts(NODE, "/preferred") == []

    def test_preferred_dir_in_machine_scope_is_not_a_conflict(self, env_file, tmp_path):
        preferred = _make_dir_with(tmp_path, "shims", "node")
        store = FileEnvironmentStore(str(env_file), base_environ={"PATH": str(preferred)})
        sync = EnvironmentSynchronizer(store, environ={})
        assert sync.detect_conflicts(NODE, str(preferred)) == []

    def test_no_family_no_check(self, env_file, tmp_path):
        machine_node = _make_dir_with(tmp_path, "nodejs-msi", "node")
        store = FileEnvironmentStore(str(env_file), base_environ={"PATH": str(machine_node)})
        sync = EnvironmentSynchronizer(store, environ={})
        assert sync.persist_path_prepend("/shims") == []


class TestHomeVariable:
    """Tests for JAVA_HOME handling."""

    def test_set_home(self, synchronizer, tmp_path):
        home = _make_dir_with(tmp_path, "jdk21/bin", "java").parent
        synchronizer.set_home(JAVA, str(home))

        assert synchronizer.store.read(USER, "JAVA_HOME") == str(home)
        assert synchronizer.user_path()[0] == str(home / "bin")
        assert synchronizer.environ["JAVA_HOME"] == str(home)

    def test_set_home_replaces_previous_bin(self, synchronizer, tmp_path):
        old = _make_dir_with(tmp_path, "jdk17/bin", "java").parent
        new = _make_dir_with(tmp_path, "jdk21/bin", "java").parent
        synchronizer.store.write(USER, "PATH", "/usr/local/bin")

        synchronizer.set_home(JAVA, str(old))
        synchronizer.set_home(JAVA, str(new))

        assert synchronizer.user_path() == [str(new / "bin"), "/usr/local/bin"]

    def test_set_home_requires_home_variable(self, synchronizer):
        with pytest.raises(ValueError):
            synchronizer.set_home(NODE, "/node")

    def test_clear_home_inside_removed_dir(self, synchronizer, tmp_path):
        app_dir = tmp_path / "apps" / "openjdk21"
        home = app_dir / "current"
        synchronizer.set_home(JAVA, str(home))

        assert synchronizer.clear_home(JAVA, str(app_dir)) is True
        assert synchronizer.store.read(USER, "JAVA_HOME") is None
        assert str(home / "bin") not in synchronizer.user_path()
        assert "JAVA_HOME" not in synchronizer.environ

    def test_clear_home_elsewhere_kept(self, synchronizer, tmp_path):
        synchronizer.set_home(JAVA, str(tmp_path / "apps" / "openjdk17" / "current"))
        assert synchronizer.clear_home(JAVA, str(tmp_path / "apps" / "openjdk21")) is False
        assert synchronizer.store.read(USER, "JAVA_HOME") is not None

    def test_persist_variable(self, synchronizer):
        synchronizer.persist_variable("JAVA_HOME", "/jdk")
        assert synchronizer.environ["JAVA_HOME"] == "/jdk"
        synchronizer.persist_variable("JAVA_HOME", None)
        assert "JAVA_HOME" not in synchronizer.environ
