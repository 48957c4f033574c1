"""Tests for the persistent home bootstrap."""

from __future__ import annotations

import os
import stat
from pathlib import Path

import pytest

from agent_sandbox import bootstrap
from agent_sandbox.bootstrap import HomeBootstrap
from agent_sandbox.errors import BootstrapError
from agent_sandbox.models.enums import BootstrapState

MARKER = ".home-initialized"


def _disk_full(*args, **kwargs):
    raise OSError(28, "No space left on device")


def _snapshot(root: Path) -> dict[str, bytes | str]:
    """Map every file and symlink under *root* to its content or target."""
    result: dict[str, bytes | str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        for name in dirnames + filenames:
            path = Path(dirpath) / name
            rel = str(path.relative_to(root))
            if path.is_symlink():
                result[rel] = f"-> {os.readlink(path)}"
            elif path.is_file():
                result[rel] = path.read_bytes()
    return result


@pytest.fixture
def template(tmp_path: Path) -> Path:
    skel = tmp_path / "agent.skel"
    (skel / ".npm-global" / "bin").mkdir(parents=True)
    (skel / ".claude").mkdir()
    (skel / ".bashrc").write_text("export PATH=$HOME/.cargo/bin:$PATH\n")
    tool = skel / ".npm-global" / "bin" / "claude"
    tool.write_text("#!/bin/sh\necho claude\n")
    tool.chmod(0o755)
    (skel / ".profile").symlink_to(".bashrc")
    return skel


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home"
    path.mkdir()
    return path


class TestFirstRun:
    def test_copies_template_and_writes_marker(self, home, template):
        machine = HomeBootstrap(home, template, MARKER)
        assert machine.state is BootstrapState.UNINITIALIZED

        assert machine.run() is BootstrapState.INITIALIZED

        assert (home / MARKER).is_file()
        assert (home / ".npm-global" / "bin" / "claude").is_file()
        assert (home / ".claude").is_dir()
        assert (home / ".bashrc").read_text().startswith("export PATH")

    def test_preserves_attributes(self, home, template):
        HomeBootstrap(home, template, MARKER).run()
        copied = home / ".npm-global" / "bin" / "claude"
        assert stat.S_IMODE(copied.stat().st_mode) == 0o755
        assert (home / ".profile").is_symlink()
        assert os.readlink(home / ".profile") == ".bashrc"

    def test_does_not_clobber_existing_files(self, home, template):
        (home / ".bashrc").write_text("user customisation\n")
        (home / ".npm-global" / "bin").mkdir(parents=True)
        (home / ".npm-global" / "bin" / "extra-tool").write_text("mine")

        HomeBootstrap(home, template, MARKER).run()

        assert (home / ".bashrc").read_text() == "user customisation\n"
        assert (home / ".npm-global" / "bin" / "extra-tool").read_text() == "mine"
        assert (home / ".npm-global" / "bin" / "claude").is_file()
        assert (home / MARKER).is_file()

    def test_mounted_directories_left_untouched(self, home, template, monkeypatch):
        (template / ".claude" / "settings.json").write_text("{}")
        mounted = home / ".claude"
        mounted.mkdir()
        (mounted / ".credentials.json").write_text("{}")
        real_ismount = os.path.ismount
        monkeypatch.setattr(bootstrap.os.path, "ismount", lambda p: Path(p) == mounted or real_ismount(p))
        before = _snapshot(mounted)

        assert HomeBootstrap(home, template, MARKER).run() is BootstrapState.INITIALIZED

        assert _snapshot(mounted) == before
        assert not (mounted / "settings.json").exists()
        assert (home / ".npm-global" / "bin" / "claude").is_file()

    def test_other_device_directory_left_untouched(self, home, template, monkeypatch):
        (template / ".claude" / "settings.json").write_text("{}")
        mounted = home / ".claude"
        mounted.mkdir()
        home_dev = home.stat().st_dev
        real_stat = Path.stat

        class _OtherDevice:
            def __init__(self, st):
                self._st = st
                self.st_dev = home_dev + 1

            def __getattr__(self, name):
                return getattr(self._st, name)

        def fake_stat(self, *args, **kwargs):
            st = real_stat(self, *args, **kwargs)
            return _OtherDevice(st) if self == mounted else st

        monkeypatch.setattr(Path, "stat", fake_stat)

        HomeBootstrap(home, template, MARKER).run()

        assert not (mounted / "settings.json").exists()
        assert (home / MARKER).is_file()

    def test_creates_missing_home(self, tmp_path, template):
        home = tmp_path / "fresh" / "home"
        HomeBootstrap(home, template, MARKER).run()
        assert (home / MARKER).is_file()


class TestIdempotence:
    def test_second_run_is_a_no_op(self, home, template):
        HomeBootstrap(home, template, MARKER).run()
        after_first = _snapshot(home)

        assert HomeBootstrap(home, template, MARKER).run() is BootstrapState.INITIALIZED
        assert _snapshot(home) == after_first

    def test_files_added_between_runs_survive(self, home, template):
        HomeBootstrap(home, template, MARKER).run()
        (home / ".canary").write_text("canary")
        (home / ".bashrc").write_text("edited by the user\n")
        (template / "late-addition").write_text("should not be copied")
        before_second = _snapshot(home)

        HomeBootstrap(home, template, MARKER).run()

        assert _snapshot(home) == before_second
        assert not (home / "late-addition").exists()

    def test_marker_already_present_without_template(self, home, tmp_path):
        (home / MARKER).touch()
        machine = HomeBootstrap(home, tmp_path / "missing", MARKER)
        assert machine.state is BootstrapState.INITIALIZED
        assert machine.run() is BootstrapState.INITIALIZED


class TestNoTemplate:
    def test_missing_template_is_a_no_op(self, home, tmp_path):
        machine = HomeBootstrap(home, tmp_path / "missing", MARKER)
        assert machine.run() is BootstrapState.UNINITIALIZED
        assert not (home / MARKER).exists()
        assert list(home.iterdir()) == []


class TestCopyFailure:
    def test_failure_propagates_and_leaves_no_marker(self, home, template, monkeypatch):
        monkeypatch.setattr(bootstrap.shutil, "copytree", _disk_full)
        machine = HomeBootstrap(home, template, MARKER)

        with pytest.raises(BootstrapError, match="No space left on device"):
            machine.run()

        assert not (home / MARKER).exists()
        assert machine.state is BootstrapState.UNINITIALIZED

    def test_retry_after_failure_copies(self, home, template, monkeypatch):
        original = bootstrap.shutil.copytree
        monkeypatch.setattr(bootstrap.shutil, "copytree", _disk_full)
        with pytest.raises(BootstrapError):
            HomeBootstrap(home, template, MARKER).run()

        monkeypatch.setattr(bootstrap.shutil, "copytree", original)
        assert HomeBootstrap(home, template, MARKER).run() is BootstrapState.INITIALIZED
        assert (home / ".bashrc").is_file()


class TestEntrypoint:
    def test_bootstraps_then_execs(self, home, template, monkeypatch):
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.setenv("AGENT_SANDBOX_HOME_TEMPLATE", str(template))
        calls = []
        monkeypatch.setattr(bootstrap.os, "execvp", lambda file, args: calls.append((file, args)))

        assert bootstrap.main(["claude", "--version"]) == 0

        assert (home / MARKER).is_file()
        assert calls == [("claude", ["claude", "--version"])]

    def test_failure_exits_non_zero_without_exec(self, home, template, monkeypatch):
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.setenv("AGENT_SANDBOX_HOME_TEMPLATE", str(template))
        monkeypatch.setattr(bootstrap.shutil, "copytree", _disk_full)
        calls = []
        monkeypatch.setattr(bootstrap.os, "execvp", lambda file, args: calls.append(file))

        assert bootstrap.main(["claude"]) == 1
        assert calls == []

    def test_no_command(self, home, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.setenv("AGENT_SANDBOX_HOME_TEMPLATE", str(tmp_path / "missing"))
        assert bootstrap.main([]) == 0
