"""Shared fakes for the cargo subprocess boundary."""

from __future__ import annotations

import io
import subprocess
from pathlib import Path
from typing import Callable

import pytest

import cargo_updater
from cargo_updater import CargoUpdater


class FakeCargo:
    """Stands in for `subprocess.run` with canned `cargo` output."""

    def __init__(self, installed: str = "", search: dict[str, str] | None = None) -> None:
        self.installed = installed
        self.search = search or {}
        self.list_return_code = 0
        self.calls: list[list[str]] = []

    def __call__(self, command, **kwargs):
        self.calls.append(list(command))
        args = list(command[1:])
        return_code = 0
        if args[:2] == ["install", "--list"]:
            stdout = self.installed
            return_code = self.list_return_code
        elif args and args[0] == "search":
            stdout = self.search.get(args[1], "")
        else:
            stdout = ""
        return subprocess.CompletedProcess(command, return_code, stdout=stdout, stderr="")


class FakeProcess:
    def __init__(self, recorder: "PopenRecorder", stderr, return_code: int) -> None:
        self._recorder = recorder
        self._return_code = return_code
        self.stdin = io.StringIO()
        self.stdout = io.StringIO()
        self.stderr = stderr
        self.returncode: int | None = None
        self.killed = False

    def wait(self) -> int:
        if self.returncode is None:
            self.returncode = self._return_code
            self._recorder.running -= 1
        return self.returncode

    def kill(self) -> None:
        self.killed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc_info) -> bool:
        self.wait()
        return False


class PopenRecorder:
    """
    Stands in for `subprocess.Popen`. Refuses to start a process while
    another one has not been waited on.
    """

    def __init__(self) -> None:
        self.scripts: dict[str, tuple[list[str], int]] = {}
        self.started: list[list[str]] = []
        self.processes: list[FakeProcess] = []
        self.kwargs: list[dict] = []
        self.running = 0
        self.on_start: Callable[[list[str]], None] | None = None
        self.broken_streams: set[str] = set()

    def script(self, name: str, lines: list[str], return_code: int = 0) -> None:
        self.scripts[name] = (lines, return_code)

    def __call__(self, command, **kwargs):
        assert self.running == 0, "install started before the previous one finished"
        command = list(command)
        if self.on_start is not None:
            self.on_start(command)
        self.started.append(command)
        self.kwargs.append(kwargs)
        self.running += 1
        name = command[2]
        lines, return_code = self.scripts.get(name, ([f"  Installed package `{name}`"], 0))
        if name in self.broken_streams:
            stderr = BrokenStream(lines)
        else:
            stderr = io.StringIO("".join(f"{line}\n" for line in lines))
        process = FakeProcess(self, stderr, return_code)
        self.processes.append(process)
        return process


class BrokenStream:
    """Yields its lines, then fails like a dead pipe."""

    def __init__(self, lines: list[str]) -> None:
        self._lines = lines

    def __iter__(self):
        for line in self._lines:
            yield f"{line}\n"
        raise OSError("pipe went away")


class RecordingReporter:
    def __init__(self) -> None:
        self.events: list[tuple[str, str | None]] = []

    def start(self, text: str) -> None:
        self.events.append(("start", text))

    def update(self, text: str) -> None:
        self.events.append(("update", text))

    def clear(self) -> None:
        self.events.append(("clear", None))

    def success(self, text: str) -> None:
        self.events.append(("success", text))

    def fail(self, text: str) -> None:
        self.events.append(("fail", text))

    def warn(self, text: str) -> None:
        self.events.append(("warn", text))

    def finals(self) -> list[tuple[str, str | None]]:
        return [e for e in self.events if e[0] in {"success", "fail", "warn"}]


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    cargo_updater.logger.remove()


@pytest.fixture
def fake_cargo(monkeypatch: pytest.MonkeyPatch) -> FakeCargo:
    fake = FakeCargo()
    monkeypatch.setattr(cargo_updater.subprocess, "run", fake)
    return fake


@pytest.fixture
def popen(monkeypatch: pytest.MonkeyPatch) -> PopenRecorder:
    recorder = PopenRecorder()
    monkeypatch.setattr(cargo_updater.subprocess, "Popen", recorder)
    return recorder


@pytest.fixture
def executable(tmp_path: Path) -> Path:
    exe = tmp_path / "bin" / "cargo-updater"
    exe.parent.mkdir()
    exe.write_text("#!/bin/sh\n")
    return exe


@pytest.fixture
def temp_root(tmp_path: Path) -> Path:
    root = tmp_path / "tmp"
    root.mkdir()
    return root


@pytest.fixture
def make_updater(fake_cargo: FakeCargo, executable: Path, temp_root: Path):
    def factory(**kwargs) -> CargoUpdater:
        options = dict(
            log_to_file=False,
            rich_console=False,
            dev_mode=False,
            executable_path=executable,
            temp_root=temp_root,
        )
        options.update(kwargs)
        updater = CargoUpdater(**options)
        updater.reporter = RecordingReporter()
        return updater

    return factory


@pytest.fixture
def updater(make_updater) -> CargoUpdater:
    return make_updater()
