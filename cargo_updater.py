#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Cargo Crate Updater
============================

This module provides a class `CargoUpdater` to check for and install updates
for crates installed globally with `cargo install`, including the updater's
own binary, which is moved out of the way before it gets replaced.
"""

import sys

REQUIRED_PYTHON_VERSION = (3, 11)

current_version = sys.version_info

if current_version < REQUIRED_PYTHON_VERSION:
    print(
        f"Error: This script requires Python version {REQUIRED_PYTHON_VERSION[0]}.{REQUIRED_PYTHON_VERSION[1]} or later."
    )
    print(
        f"You are using Python {current_version.major}.{current_version.minor}.{current_version.micro}."
    )
    sys.exit(1)

import argparse
import contextlib
import platform
import shutil
import subprocess
import tempfile
import time

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import (
    Final,
    Iterable,
    List,
    Optional,
    Self,
    Tuple,
)

try:
    from loguru import logger
    from rich.console import Console
    from rich.logging import RichHandler
    from rich.markup import escape
    from rich.status import Status
    from rich.table import Table
    from rich.theme import Theme
    from packaging.version import parse as parse_version, InvalidVersion
except ImportError as e:
    print(
        f"Error: Missing required libraries ({e.name}). Please install them: pip install loguru rich packaging"
    )
    sys.exit(1)

__version__ = "0.4.0"

# --- Constants ---
PACKAGE_NAME: Final[str] = "cargo-updater"
DEFAULT_CARGO_BINARY: Final[str] = "cargo"
DEFAULT_LOG_FILE_PATH = Path("cargo_updater.log")
DEFAULT_CONSOLE_LOG_LEVEL: Final[str] = "WARNING"
VERSION_PREFIX: Final[str] = "v"

UPDATE_COMMANDS: Final = frozenset({"update", "upgrade", "u"})
OUTDATED_COMMANDS: Final = frozenset({"outdated", "list", "show", "o", "l"})
VERSION_COMMANDS: Final = frozenset({"version", "v"})

# --- Custom Exceptions ---


class CargoUpdaterError(Exception):
    """Base exception for the CargoUpdater class."""

    phase: str = "unknown"


class CargoCommandError(CargoUpdaterError):
    """Raised when a cargo command cannot be run."""

    def __init__(
        self,
        command: str,
        stderr: str,
        return_code: int,
        phase: str,
        package_name: Optional[str] = None,
    ):
        self.command = command
        self.stderr = stderr
        self.return_code = return_code
        self.phase = phase
        self.package_name = package_name
        pkg_info = f" (crate '{package_name}')" if package_name else ""
        super().__init__(
            f"Cargo command '{command}'{pkg_info} failed with code {return_code}:\n{stderr}"
        )


class RegistryResponseError(CargoUpdaterError):
    """Raised when a registry search response is truncated or malformed."""

    phase = "resolve"

    def __init__(self, package_name: str, response: str):
        self.package_name = package_name
        self.response = response
        super().__init__(
            f"Malformed registry response for '{package_name}': no closing quote in {response!r}"
        )


class SelfRelocationError(CargoUpdaterError):
    """Raised when the running executable cannot be moved aside."""

    phase = "relocate"

    def __init__(self, source: Path, target: Path, details: OSError):
        self.source = source
        self.target = target
        self.details = details
        super().__init__(f"Could not relocate '{source}' to '{target}': {details}")


class PackageUpdateError(CargoUpdaterError):
    """Raised when the install process for a crate cannot be run to completion."""

    phase = "upgrade"

    def __init__(self, package_name: str, reason: str):
        self.package_name = package_name
        self.reason = reason
        super().__init__(f"Failed to update crate '{package_name}': {reason}")


# --- Data Structures ---


@dataclass(frozen=True, kw_only=True)
class PackageRecord:
    """An installed crate as reported by `cargo install --list`."""

    name: str
    installed_version: str

    def resolve(self, latest_version: str) -> "ResolvedPackage":
        return ResolvedPackage(
            name=self.name,
            installed_version=self.installed_version,
            latest_version=latest_version,
        )


@dataclass(frozen=True, kw_only=True)
class ResolvedPackage(PackageRecord):
    """An installed crate paired with the latest version on the registry."""

    latest_version: str

    @property
    def is_outdated(self) -> bool:
        """Plain string inequality; a differing local build counts as outdated too."""
        return self.latest_version != self.installed_version

    @property
    def is_local_ahead(self) -> bool:
        """True when the installed version sorts after the registry's one."""
        try:
            return parse_version(self.installed_version) > parse_version(
                self.latest_version
            )
        except InvalidVersion:
            return False


class UpgradeOutcome(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"

    @classmethod
    def from_return_code(cls, return_code: int) -> Self:
        """
        Maps an install exit code to an outcome.

        A negative code means the child was killed by a signal and never
        produced an exit code; that is reported as a failure.
        """
        if return_code == 0:
            return cls.SUCCESS
        if return_code == 1 or return_code < 0:
            return cls.FAILURE
        return cls.WARNING


@dataclass(frozen=True, kw_only=True)
class UpgradeResult:
    """Terminal status of one `cargo install` run."""

    name: str
    old_version: str
    new_version: str
    outcome: UpgradeOutcome
    return_code: int
    last_line: str
    elapsed: float

    @property
    def status_text(self) -> str:
        return f"{self.last_line.strip()} [{format_elapsed(self.elapsed)}]"


@dataclass
class UpdateStats:
    """Stores statistics about the update process."""

    checked_count: int = 0
    unmatched_count: int = 0
    outdated_count: int = 0
    excluded_count: int = 0
    attempted_update_count: int = 0
    successful_update_count: int = 0
    failed_update_count: int = 0
    warned_update_count: int = 0
    skipped_self_count: int = 0
    results: List[UpgradeResult] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def duration(self) -> Optional[float]:
        """Calculates the duration of the update process in seconds."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def record(self, result: UpgradeResult) -> None:
        self.results.append(result)
        self.attempted_update_count += 1
        if result.outcome is UpgradeOutcome.SUCCESS:
            self.successful_update_count += 1
        elif result.outcome is UpgradeOutcome.FAILURE:
            self.failed_update_count += 1
        else:
            self.warned_update_count += 1


# --- Time Operations ---
@contextlib.contextmanager
def timed_block(name: Optional[str] = "Updater"):
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.debug(f"{name} completed in {format_elapsed(time.perf_counter() - start)}")


def format_elapsed(seconds: float) -> str:
    """
    Renders a wall-clock duration with two decimals in the largest unit
    that keeps the value at or above one.

    Args:
        seconds (float): The elapsed time in seconds.

    Returns:
        str: e.g. ``"12.35s"``, ``"480.02ms"``, ``"3.10µs"`` or ``"250.00ns"``.
    """
    if seconds >= 1:
        return f"{seconds:.2f}s"
    if seconds >= 1e-3:
        return f"{seconds * 1e3:.2f}ms"
    if seconds >= 1e-6:
        return f"{seconds * 1e6:.2f}µs"
    return f"{seconds * 1e9:.2f}ns"


# --- Inventory Parsing ---


def parse_installed_packages(text: str) -> List[PackageRecord]:
    """
    Parses the output of `cargo install --list` into package records.

    Crate headers look like ``ripgrep v14.1.0:``; the indented binary names
    underneath them, and anything else that does not have that shape, are
    skipped. Git and path installs carry a source annotation after the
    version (``foo v0.1.0 (https://...):``) which is dropped.

    Args:
        text: Raw stdout of the list command.

    Returns:
        Records in the order cargo printed them.
    """
    packages: List[PackageRecord] = []
    for line in text.splitlines():
        if not line.endswith(":"):
            continue
        name, sep, remainder = line.partition(" ")
        if not sep or not remainder.startswith(VERSION_PREFIX):
            continue
        name = name.strip()
        tokens = remainder.rstrip(":").split()
        if not name or not tokens:
            continue
        version = tokens[0].lstrip(VERSION_PREFIX)
        if not version:
            continue
        packages.append(PackageRecord(name=name, installed_version=version))
    return packages


# --- Registry Lookup ---


def parse_search_response(name: str, text: str) -> Optional[str]:
    """
    Extracts the latest version of `name` from `cargo search` output.

    Returns None when the first result is not exactly `name` (renamed,
    yanked or fuzzy matches).

    Raises:
        RegistryResponseError: If the result line matches but is cut short.
    """
    prefix = f'{name} = "'
    if not text.startswith(prefix):
        return None
    value = text[len(prefix) :]
    quote_end = value.find('"')
    if quote_end == -1:
        raise RegistryResponseError(name, text)
    return value[:quote_end]


def select_outdated(packages: Iterable[ResolvedPackage]) -> List[ResolvedPackage]:
    """Keeps the resolved packages whose registry version differs, in order."""
    return [pkg for pkg in packages if pkg.is_outdated]


# --- Self Relocation ---


def current_executable() -> Path:
    """Path of the running program: the bundled binary when frozen, else the script."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve()
    return Path(sys.argv[0]).resolve()


def unique_destination(directory: Path, source: Path) -> Path:
    """
    Returns a free path for `source` inside `directory`.

    Tries the original file name first, then ``<stem>-1<suffix>``,
    ``<stem>-2<suffix>`` and so on.
    """
    candidate = directory / source.name
    counter = 0
    while candidate.exists():
        counter += 1
        candidate = directory / f"{source.stem}-{counter}{source.suffix}"
    return candidate


class SelfRelocator:
    """
    Moves the running executable into a scratch directory under the system
    temp root so `cargo install` can write a fresh binary to its path.

    Most platforms refuse to overwrite or delete the image of a running
    process; a rename is allowed and the old code keeps running from its
    new location until the process exits.

    Args:
        tool_name (str): Name of the scratch directory under the temp root.
        executable (Optional[Path]): File to move. Defaults to the running program.
        temp_root (Optional[Path]): Defaults to the system temp directory.
    """

    def __init__(
        self: Self,
        tool_name: str,
        executable: Optional[Path] = None,
        temp_root: Optional[Path] = None,
    ) -> None:
        self.tool_name = tool_name
        self._executable = executable
        self.temp_root = Path(temp_root or tempfile.gettempdir())

    @property
    def executable(self: Self) -> Path:
        return self._executable or current_executable()

    @property
    def scratch_dir(self: Self) -> Path:
        return self.temp_root / self.tool_name

    def relocate(self: Self) -> Path:
        """
        Clears the scratch directory and renames the executable into it.

        Returns:
            The executable's new path.

        Raises:
            SelfRelocationError: On any filesystem error. Nothing is retried.
        """
        source = self.executable
        scratch = self.scratch_dir
        try:
            if scratch.exists():
                logger.debug(f"Removing stale scratch directory: {scratch}")
                shutil.rmtree(scratch)
            scratch.mkdir()
        except OSError as e:
            logger.error(f"Could not prepare scratch directory '{scratch}': {e}")
            raise SelfRelocationError(source, scratch, e) from e

        destination = unique_destination(scratch, source)
        try:
            source.rename(destination)
        except OSError as e:
            logger.error(f"Could not move '{source}' to '{destination}': {e}")
            raise SelfRelocationError(source, destination, e) from e

        logger.info(f"Moved running executable to {destination}")
        return destination


# --- Progress Rendering ---


class StatusReporter:
    """
    A single-line spinner whose text can be replaced while it runs and
    which ends with a success, failure or warning mark.

    With rich output disabled the same signals go to the logger instead.
    """

    def __init__(self: Self, console: Console, enabled: bool = True) -> None:
        self.console = console
        self.enabled = enabled
        self._status: Optional[Status] = None

    def start(self: Self, text: str) -> None:
        self.clear()
        if not self.enabled:
            logger.debug(text)
            return
        self._status = self.console.status(
            escape(text), spinner="dots", spinner_style="cyan"
        )
        self._status.start()

    def update(self: Self, text: str) -> None:
        if self._status is not None:
            self._status.update(escape(text))
        else:
            logger.debug(text)

    def clear(self: Self) -> None:
        if self._status is not None:
            self._status.stop()
            self._status = None

    def success(self: Self, text: str) -> None:
        self._finish("[bold green]✔[/]", text, "SUCCESS")

    def fail(self: Self, text: str) -> None:
        self._finish("[bold red]✖[/]", text, "ERROR")

    def warn(self: Self, text: str) -> None:
        self._finish("[bold yellow]⚠[/]", text, "WARNING")

    def _finish(self: Self, symbol: str, text: str, level: str) -> None:
        self.clear()
        if self.enabled:
            self.console.print(f"{symbol} {escape(text)}")
        else:
            logger.log(level, text)


# --- Updater Class ---


class CargoUpdater:
    """
    Checks for and installs updates for globally installed cargo crates,
    one crate at a time, with live progress and a summary report.

    Args:
        cargo_binary (str): Cargo executable to invoke.
        self_package_name (str): Crate name of this tool, to detect a self update.
        dev_mode (Optional[bool]): Skip the self update. Defaults to True unless frozen.
        exclude_packages (Optional[List[str]]): Crates to never upgrade.
        executable_path (Optional[Path]): Binary to move aside on self update.
        temp_root (Optional[Path]): Parent of the relocation scratch directory.
        log_level (str): Minimum console logging level.
        log_to_file (bool): Whether to log to a file.
        log_file_path (str | Path): Path for the log file.
        rich_console (bool): Use Rich for spinners, colors and tables.
    """

    def __init__(
        self: Self,
        cargo_binary: str = DEFAULT_CARGO_BINARY,
        self_package_name: str = PACKAGE_NAME,
        dev_mode: Optional[bool] = None,
        exclude_packages: Optional[List[str]] = None,
        executable_path: Optional[Path] = None,
        temp_root: Optional[Path] = None,
        log_level: str = DEFAULT_CONSOLE_LOG_LEVEL,
        log_to_file: bool = True,
        log_file_path: str | Path = DEFAULT_LOG_FILE_PATH,
        rich_console: bool = True,
    ) -> None:
        self.cargo_binary: str = cargo_binary
        self.self_package_name: str = self_package_name
        self.dev_mode: bool = (
            dev_mode if dev_mode is not None else not getattr(sys, "frozen", False)
        )
        self.exclude_packages: List[str] = exclude_packages or []
        self.log_level: str = log_level.upper()
        self.log_to_file: bool = log_to_file
        self.log_file_path: Path = Path(log_file_path)
        self.use_rich_console: bool = rich_console
        self.console = Console(
            stderr=True,
            theme=Theme(
                {
                    "logging.level.info": "bold magenta",
                }
            ),
        )
        self.out = Console(highlight=False, no_color=not rich_console)

        self._setup_logger()

        self.reporter = StatusReporter(self.console, enabled=self.use_rich_console)
        self.relocator = SelfRelocator(
            self.self_package_name, executable=executable_path, temp_root=temp_root
        )

        self.installed_packages: List[PackageRecord] = []
        self.outdated_packages: List[ResolvedPackage] = []
        self.packages_to_update: List[ResolvedPackage] = []
        self.stats: UpdateStats = UpdateStats()

        logger.info("CargoUpdater initialized")
        logger.debug(f"Cargo binary: {self.cargo_binary}")
        logger.debug(f"Self crate: {self.self_package_name} (dev mode: {self.dev_mode})")
        logger.debug(f"Excluded crates: {self.exclude_packages}")
        logger.debug(f"Log level: {self.log_level}")
        logger.debug(
            f"Log to file: {self.log_to_file} (Path: {self.log_file_path if self.log_to_file else 'Disabled'})"
        )
        logger.debug(f"Rich console: {self.use_rich_console}")
        logger.debug(f"Scratch directory: {self.relocator.scratch_dir}")
        logger.debug(f"Python version: {sys.version}")
        logger.debug(f"Cargo version: {self._get_cargo_version()}")
        logger.debug(
            f"Platform: {platform.system()} {platform.release()} ({platform.machine()})"
        )

    def _setup_logger(self: Self) -> None:
        """Configures the Loguru logger."""
        logger.remove()  # Remove default handler

        file_log_format = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"
        stderr_log_format = "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"

        if self.use_rich_console:
            logger.add(
                RichHandler(
                    console=self.console,
                    rich_tracebacks=True,
                    markup=True,
                    show_path=True,
                ),
                level=self.log_level,
                format="{message}",
            )
        else:
            logger.add(
                sys.stderr,
                level=self.log_level,
                format=stderr_log_format,
                colorize=True,
            )

        if self.log_to_file:
            try:
                self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
                logger.add(
                    self.log_file_path,
                    level="DEBUG",
                    format=file_log_format,
                    rotation="10 MB",
                    retention="7 days",
                    encoding="utf-8",
                )
                logger.info(f"Logging detailed output to file: {self.log_file_path}")
            except OSError as e:
                print(
                    f"ERROR: Failed to configure file logging to {self.log_file_path}: {e}",
                    file=sys.stderr,
                )
                self.log_to_file = False

        logger.debug("Logger configured successfully.")

    def _run_cargo_command(
        self: Self,
        args: List[str],
        phase: str,
        package_name: Optional[str] = None,
    ) -> Tuple[str, str, int]:
        """Runs a cargo command to completion, ensuring UTF-8 decoding."""
        full_command = [self.cargo_binary] + args
        command_str = " ".join(full_command)
        logger.debug(f"Executing command: {command_str}")
        try:
            process = subprocess.run(
                full_command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=False,
            )
        except OSError as e:
            logger.debug(f"Could not run '{command_str}': {e}")
            raise CargoCommandError(
                command=command_str,
                stderr=str(e),
                return_code=-1,
                phase=phase,
                package_name=package_name,
            ) from e

        logger.debug(f"Command finished with return code: {process.returncode}")
        stdout = process.stdout or ""
        stderr = process.stderr or ""
        if stdout.strip():
            logger.trace(f"Command stdout:\n{stdout.strip()}")
        if stderr.strip():
            logger.log(
                "WARNING" if process.returncode != 0 else "DEBUG",
                f"Command stderr: {stderr.strip()}",
            )
        return stdout, stderr, process.returncode

    def _get_cargo_version(self: Self) -> str:
        """Gets the cargo version string, for diagnostics only."""
        try:
            stdout, _, return_code = self._run_cargo_command(["--version"], "startup")
        except CargoCommandError:
            return "Unavailable"
        if return_code == 0 and stdout.strip():
            return stdout.strip()
        return "Unknown"

    def _get_installed_packages(self: Self) -> List[PackageRecord]:
        """Retrieves all globally installed crates using `cargo install --list`."""
        logger.info("Retrieving list of installed crates...")
        stdout, _, return_code = self._run_cargo_command(["install", "--list"], "scan")
        if return_code != 0:
            logger.warning(
                f"'cargo install --list' returned code {return_code}; parsing whatever it printed."
            )
        packages = parse_installed_packages(stdout)
        logger.info(f"Found {len(packages)} installed crates.")
        self.stats.checked_count = len(packages)
        return packages

    def _resolve_latest_version(self: Self, name: str) -> Optional[str]:
        """Looks up the newest published version of one crate."""
        stdout, _, _ = self._run_cargo_command(
            ["search", name, "--limit=1", "--color=never", "-q"],
            "resolve",
            package_name=name,
        )
        latest = parse_search_response(name, stdout)
        if latest is None:
            logger.debug(f"No exact registry match for '{name}'; skipping.")
        return latest

    def _filter_packages_to_update(self: Self) -> List[ResolvedPackage]:
        """Drops excluded crates from the outdated set."""
        filtered: List[ResolvedPackage] = []
        for pkg in self.outdated_packages:
            if pkg.name in self.exclude_packages:
                logger.info(f"Skipping update for '{pkg.name}': explicitly excluded by user.")
                self.stats.excluded_count += 1
                continue
            filtered.append(pkg)
        return filtered

    def check_updates(self: Self) -> List[ResolvedPackage]:
        """
        Scans installed crates against the registry.

        Returns:
            Outdated crates in inventory order, minus exclusions. The full
            diff stays available as `outdated_packages`.

        Raises:
            CargoCommandError: If cargo cannot be run.
            RegistryResponseError: If a search response is cut short.
        """
        logger.info("Starting Crate Update Check")
        self.stats = UpdateStats(start_time=datetime.now())

        self.reporter.start("Scanning for outdated crates...")
        try:
            with timed_block("Outdated scan"):
                self.installed_packages = self._get_installed_packages()
                resolved: List[ResolvedPackage] = []
                for pkg in self.installed_packages:
                    latest = self._resolve_latest_version(pkg.name)
                    if latest is None:
                        self.stats.unmatched_count += 1
                        continue
                    resolved.append(pkg.resolve(latest))
        finally:
            self.reporter.clear()

        self.outdated_packages = select_outdated(resolved)
        self.stats.outdated_count = len(self.outdated_packages)
        for pkg in self.outdated_packages:
            if pkg.is_local_ahead:
                logger.warning(
                    f"Installed '{pkg.name}' {pkg.installed_version} is newer than the registry's {pkg.latest_version}; it will be replaced."
                )

        self.packages_to_update = self._filter_packages_to_update()
        logger.info(
            f"Found {self.stats.outdated_count} outdated crates, {len(self.packages_to_update)} to update."
        )
        return self.packages_to_update

    def show_outdated_packages(self: Self) -> List[ResolvedPackage]:
        """Prints the outdated crates, or nothing when all are current."""
        self.check_updates()
        if not self.outdated_packages:
            logger.info("All installed crates are up-to-date.")
            return self.outdated_packages

        self.out.print("Outdated global cargo crates:")
        self.out.print("===============================")
        for pkg in self.outdated_packages:
            old, new = self._format_versions(pkg)
            self.out.print(f"📦 {escape(pkg.name)}: {old} -> {new}")
        return self.outdated_packages

    @staticmethod
    def _format_versions(pkg: ResolvedPackage) -> Tuple[str, str]:
        return (
            f"[bright_red]{VERSION_PREFIX}{escape(pkg.installed_version)}[/]",
            f"[bright_green]{VERSION_PREFIX}{escape(pkg.latest_version)}[/]",
        )

    def _update_package(self: Self, pkg: ResolvedPackage) -> UpgradeResult:
        """
        Runs `cargo install <name> --locked`, streaming its stderr into the
        spinner, and reports the outcome from the exit code.

        Raises:
            PackageUpdateError: If the process cannot be spawned, read or waited on.
        """
        command = [self.cargo_binary, "install", pkg.name, "--locked"]
        logger.debug(f"Executing command: {' '.join(command)}")
        self.reporter.start("Loading...")
        start = time.perf_counter()
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            self.reporter.clear()
            raise PackageUpdateError(pkg.name, f"could not start '{command[0]}': {e}") from e

        last_line = ""
        with process:
            try:
                for line in process.stderr:
                    last_line = line.rstrip("\r\n")
                    logger.trace(f"[{pkg.name}] {last_line}")
                    self.reporter.update(last_line.strip())
                return_code = process.wait()
            except OSError as e:
                # must die before Popen.__exit__ waits on it
                process.kill()
                self.reporter.clear()
                raise PackageUpdateError(
                    pkg.name, f"error reading install output: {e}"
                ) from e
        elapsed = time.perf_counter() - start

        result = UpgradeResult(
            name=pkg.name,
            old_version=pkg.installed_version,
            new_version=pkg.latest_version,
            outcome=UpgradeOutcome.from_return_code(return_code),
            return_code=return_code,
            last_line=last_line,
            elapsed=elapsed,
        )
        if result.outcome is UpgradeOutcome.SUCCESS:
            self.reporter.success(result.status_text)
        elif result.outcome is UpgradeOutcome.FAILURE:
            self.reporter.fail(result.status_text)
        else:
            self.reporter.warn(result.status_text)
        logger.debug(
            f"'{pkg.name}' install finished with code {return_code} ({result.outcome.value})"
        )
        return result

    def update_packages(self: Self) -> UpdateStats:
        """Upgrades the outdated crates one by one, in inventory order."""
        if not self.stats.start_time:
            logger.info("Statistics not initialized. Running check_updates first.")
            self.check_updates()

        if not self.packages_to_update:
            logger.info("No crates identified for update. Nothing to do.")
            self.stats.end_time = datetime.now()
            return self.stats

        logger.info(
            f"Starting Crate Update Process for {len(self.packages_to_update)} crates"
        )
        done_one = False
        for pkg in self.packages_to_update:
            if pkg.name == self.self_package_name:
                if self.dev_mode:
                    self.out.print("Skipping self update in dev mode")
                    logger.warning(f"Not updating '{pkg.name}' while running in dev mode.")
                    self.stats.skipped_self_count += 1
                    continue
                self.relocator.relocate()

            if done_one:
                self.out.print()
            old, new = self._format_versions(pkg)
            self.out.print(f"Upgrading {escape(pkg.name)} from {old} to {new}")
            self.stats.record(self._update_package(pkg))
            done_one = True

        self.stats.end_time = datetime.now()
        logger.info("Crate Update Process Finished")
        self._log_summary()
        return self.stats

    def _log_summary(self: Self) -> None:
        """Logs a summary report of the update process, using Rich tables if enabled."""
        stats = self.stats
        duration = stats.duration
        duration_str = f"{duration:.2f} seconds" if duration is not None else "N/A"
        logger.info("=" * 45)
        logger.info(f"{'Update Summary Report'.center(45)}")
        logger.info("=" * 45)
        logger.info(f"Process duration: {duration_str}")
        logger.info(f"Total crates checked: {stats.checked_count}")
        logger.info(f"Crates without registry match: {stats.unmatched_count}")
        logger.info(f"Outdated crates found: {stats.outdated_count}")
        logger.info(f"Crates skipped (excluded): {stats.excluded_count}")
        logger.info(f"Self update skipped (dev mode): {stats.skipped_self_count}")
        logger.info(f"Crates attempted to update: {stats.attempted_update_count}")
        logger.info(f"Successfully updated: {stats.successful_update_count}")
        logger.info(f"Failed to update: {stats.failed_update_count}")
        logger.info(f"Finished with warnings: {stats.warned_update_count}")

        if not stats.results:
            return
        if self.use_rich_console and logger_enabled_for("INFO", self.log_level):
            table = Table(
                title="[bold]Update Results[/]",
                show_header=True,
                header_style="bold blue",
                expand=True,
            )
            table.add_column("Crate", style="cyan", width=30, no_wrap=True)
            table.add_column("Old Version", style="yellow")
            table.add_column("New Version", style="green")
            table.add_column("Outcome")
            table.add_column("Time", justify="right")
            styles = {
                UpgradeOutcome.SUCCESS: "green",
                UpgradeOutcome.FAILURE: "red",
                UpgradeOutcome.WARNING: "yellow",
            }
            for result in stats.results:
                style = styles[result.outcome]
                table.add_row(
                    result.name,
                    result.old_version,
                    result.new_version,
                    f"[{style}]{result.outcome.value}[/]",
                    format_elapsed(result.elapsed),
                )
            self.console.print(table)
        else:
            for result in stats.results:
                logger.info(
                    f"  - {result.name}: {result.old_version} -> {result.new_version} "
                    f"({result.outcome.value}, {format_elapsed(result.elapsed)})"
                )


def logger_enabled_for(level: str, threshold: str) -> bool:
    """Whether a message at `level` passes a sink filtered at `threshold`."""
    return logger.level(level.upper()).no >= logger.level(threshold.upper()).no


# --- CLI Argument Parsing ---


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PACKAGE_NAME,
        description="Upgrade crates installed with `cargo install`.",
        add_help=False,
        allow_abbrev=False,
        formatter_class=lambda prog: argparse.RawTextHelpFormatter(
            prog, max_help_position=80
        ),
        epilog=f"""
Commands (the last word given wins, leading dashes are ignored):
  -h, --help                Print this help message
  -u, --update, --upgrade   Update all outdated crates
  -o, --outdated, --list    Show all outdated crates
  -v, --version             Print the version

Example Usage:
  # List outdated crates
  cargo updater outdated

  # Upgrade everything, logging debug output to the console
  {PACKAGE_NAME} --log-level DEBUG --update
""",
    )

    logging_group = parser.add_argument_group("Logging Options")
    execution_group = parser.add_argument_group("Execution Options")

    parser.add_argument(
        "command",
        nargs="?",
        default=None,
        help="update | outdated | version | help",
    )

    logging_group.add_argument(
        "--log-level",
        type=str.upper,
        choices=["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"],
        default=DEFAULT_CONSOLE_LOG_LEVEL,
        help=f"Set the minimum console logging level (default: {DEFAULT_CONSOLE_LOG_LEVEL}).",
    )
    logging_group.add_argument(
        "--log-file-path",
        type=Path,
        default=DEFAULT_LOG_FILE_PATH,
        metavar="PATH",
        help=f"Path to the log file (default: {DEFAULT_LOG_FILE_PATH}).",
    )
    logging_group.add_argument(
        "--no-log-file",
        action="store_false",
        dest="log_to_file",
        help="Disable logging to a file.",
    )
    logging_group.add_argument(
        "--no-rich-console",
        action="store_false",
        dest="rich_console",
        help="Disable rich formatting (colors, spinners, tables) in console output.",
    )

    execution_group.add_argument(
        "--cargo",
        default=DEFAULT_CARGO_BINARY,
        metavar="PATH",
        help=f"Cargo executable to run (default: {DEFAULT_CARGO_BINARY}).",
    )
    execution_group.add_argument(
        "--exclude",
        type=str,
        nargs="*",
        default=[],
        metavar="CRATE",
        help="Crates that should never be upgraded.",
    )
    execution_group.add_argument(
        "--self-name",
        default=PACKAGE_NAME,
        metavar="CRATE",
        help=f"Crate name of this tool, used to detect self updates (default: {PACKAGE_NAME}).",
    )
    execution_group.add_argument(
        "--dev-mode",
        action="store_true",
        default=None,
        help="Never replace this tool's own binary (default when not running as a bundled binary).",
    )
    return parser


def parse_arguments(
    argv: Optional[List[str]] = None,
) -> Tuple[argparse.ArgumentParser, argparse.Namespace, str]:
    """
    Parses command-line arguments.

    Returns:
        The parser, the parsed options and the raw command word. The command
        is the last bare or dashed word not consumed by an option, so cargo's
        own `updater` subcommand argument is overridden by anything after it.
    """
    parser = build_parser()
    args, extras = parser.parse_known_args(argv)
    words = ([args.command] if args.command else []) + extras
    raw_command = words[-1] if words else "help"
    return parser, args, raw_command


def resolve_command(raw: str) -> str:
    """Maps a command word such as ``--list`` or ``u`` to its canonical name."""
    word = raw.lstrip("-")
    if word in UPDATE_COMMANDS:
        return "update"
    if word in OUTDATED_COMMANDS:
        return "outdated"
    if word in VERSION_COMMANDS:
        return "version"
    return "help"


def version_line() -> str:
    return f"{PACKAGE_NAME} v{__version__}"


# --- Main Execution Block ---


def main(argv: Optional[List[str]] = None):
    """Main function to parse arguments and run the updater."""
    parser, args, raw_command = parse_arguments(argv)
    command = resolve_command(raw_command)

    if command == "version":
        print(version_line())
        sys.exit(0)
    if command == "help":
        print(version_line())
        parser.print_help()
        sys.exit(0)

    exit_code = 0
    try:
        updater = CargoUpdater(
            cargo_binary=args.cargo,
            self_package_name=args.self_name,
            dev_mode=args.dev_mode,
            exclude_packages=args.exclude,
            log_level=args.log_level,
            log_to_file=args.log_to_file,
            log_file_path=args.log_file_path,
            rich_console=args.rich_console,
        )
        if command == "outdated":
            updater.show_outdated_packages()
        else:
            stats = updater.update_packages()
            if stats.failed_update_count or stats.warned_update_count:
                exit_code = 1
    except CargoUpdaterError as e:
        logger.critical(f"A critical error occurred during {e.phase}: {e}")
        exit_code = 1
    except KeyboardInterrupt:
        logger.warning("\nProcess interrupted by user (Ctrl+C).")
        exit_code = 1
    except Exception as e:
        logger.opt(exception=True).critical(f"An unexpected error occurred: {e}")
        exit_code = 1
    finally:
        logger.debug(f"CargoUpdater finished with exit code {exit_code}.")
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
