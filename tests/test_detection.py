"""Tests for the existence detector and its strategies."""

from __future__ import annotations

import os
import subprocess

import pytest

from src.local.supervisor import detection
from src.local.supervisor.detection import (
    DetectionStrategy,
    ExistenceDetector,
    PgrepStrategy,
    PidofStrategy,
    ProcessTableStrategy,
    ProcFilesystemStrategy,
    available_strategies,
    parse_process_table,
)


class RecordingStrategy(DetectionStrategy):
    def __init__(self, name, found=False, available=True, error=None, log=None):
        self.name = name
        self.found = found
        self.available = available
        self.error = error
        self.log = log if log is not None else []

    def is_available(self):
        return self.available

    def exists(self, process_name):
        self.log.append(self.name)
        if self.error is not None:
            raise self.error
        return self.found


# --- ExistenceDetector ---

def test_first_strategy_hit_short_circuits_the_rest():
    calls = []
    detector = ExistenceDetector([
        RecordingStrategy("fast", found=True, log=calls),
        RecordingStrategy("slow", found=True, log=calls),
    ])

    assert detector.exists("tmpapp") is True
    assert calls == ["fast"]


def test_all_strategies_consulted_in_order_when_absent():
    calls = []
    detector = ExistenceDetector([
        RecordingStrategy("a", log=calls),
        RecordingStrategy("b", log=calls),
        RecordingStrategy("c", log=calls),
    ])

    assert detector.exists("tmpapp") is False
    assert calls == ["a", "b", "c"]


def test_failing_strategy_degrades_to_the_next():
    calls = []
    detector = ExistenceDetector([
        RecordingStrategy("broken", error=PermissionError("denied"), log=calls),
        RecordingStrategy("bad-argv", error=ValueError("embedded null byte"), log=calls),
        RecordingStrategy("working", found=True, log=calls),
    ])

    assert detector.exists("tmpapp") is True
    assert calls == ["broken", "bad-argv", "working"]


@pytest.mark.parametrize("name", ["", "   "])
def test_empty_name_never_matches(name):
    calls = []
    detector = ExistenceDetector([RecordingStrategy("any", found=True, log=calls)])

    assert detector.exists(name) is False
    assert calls == []


def test_detector_without_strategies_reports_absent():
    assert ExistenceDetector([]).exists("tmpapp") is False


# --- Strategy selection ---

def test_unavailable_tools_are_filtered_out():
    candidates = [
        RecordingStrategy("pgrep", available=False),
        RecordingStrategy("pidof"),
        RecordingStrategy("ps"),
    ]
    fallback = RecordingStrategy("procfs")

    strategies = available_strategies(candidates=candidates, fallback=fallback)

    assert [s.name for s in strategies] == ["pidof", "ps"]


def test_proc_scan_used_only_without_any_tool():
    candidates = [RecordingStrategy(n, available=False) for n in ("pgrep", "pidof", "ps")]
    fallback = RecordingStrategy("procfs")

    strategies = available_strategies(candidates=candidates, fallback=fallback)

    assert [s.name for s in strategies] == ["procfs"]


def test_no_tools_and_unreadable_proc_yields_false(tmp_path):
    candidates = [RecordingStrategy(n, available=False) for n in ("pgrep", "pidof", "ps")]
    fallback = ProcFilesystemStrategy(root=tmp_path / "missing")

    detector = ExistenceDetector(available_strategies(candidates=candidates, fallback=fallback))

    assert detector.strategies == ()
    assert detector.exists("tmpapp") is False


def test_no_tools_falls_back_to_readable_proc(tmp_path):
    (tmp_path / "321").mkdir()
    (tmp_path / "321" / "cmdline").write_bytes(b"./tmpapp\0--serve\0")
    candidates = [RecordingStrategy(n, available=False) for n in ("pgrep", "pidof", "ps")]

    detector = ExistenceDetector(available_strategies(
        candidates=candidates, fallback=ProcFilesystemStrategy(root=tmp_path)))

    assert detector.strategy_names == ["procfs"]
    assert detector.exists("tmpapp") is True


def test_from_host_builds_ordered_strategies(monkeypatch):
    monkeypatch.setattr(detection.shutil, "which", lambda cmd: None if cmd == "pgrep" else f"/usr/bin/{cmd}")

    detector = ExistenceDetector.from_host(timeout=1.0)

    assert detector.strategy_names == ["pidof", "ps"]
    assert all(s.timeout == 1.0 for s in detector.strategies)


# --- Command strategies ---

def test_command_strategy_unavailable_without_binary(monkeypatch):
    monkeypatch.setattr(detection.shutil, "which", lambda cmd: None)

    assert PgrepStrategy().is_available() is False
    assert PidofStrategy().is_available() is False
    assert ProcessTableStrategy().is_available() is False


def test_pgrep_treats_name_as_literal():
    assert PgrepStrategy().build_args("my.app") == ["pgrep", "--", r"my\.app"]


@pytest.mark.parametrize("returncode, expected", [(0, True), (1, False), (2, False)])
def test_command_strategy_uses_exit_status(monkeypatch, returncode, expected):
    seen = []

    def fake_run(args, **kwargs):
        seen.append((args, kwargs["timeout"]))
        return subprocess.CompletedProcess(args, returncode)

    monkeypatch.setattr(detection.subprocess, "run", fake_run)

    assert PidofStrategy(timeout=1.5).exists("tmpapp") is expected
    assert seen == [(["pidof", "tmpapp"], 1.5)]


def test_command_timeout_counts_as_not_found(monkeypatch):
    def fake_run(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    monkeypatch.setattr(detection.subprocess, "run", fake_run)

    assert PgrepStrategy(timeout=0.1).exists("tmpapp") is False


def test_missing_command_counts_as_not_found(monkeypatch):
    def fake_run(args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", args[0])

    monkeypatch.setattr(detection.subprocess, "run", fake_run)

    assert PgrepStrategy().exists("tmpapp") is False


class FakePs:
    """Popen stand-in returning a canned process table."""
    pid = 4242
    output = b""
    returncode = 0

    def __init__(self, args, **kwargs):
        self.args = args

    def communicate(self, timeout=None):
        return self.output, b""

    def kill(self):
        pass


def test_process_table_excludes_itself_and_the_supervisor(monkeypatch):
    FakePs.output = (
        f"{os.getpid()} python -m src.main tmpapp\n"
        f"{FakePs.pid} ps -eo pid=,args= tmpapp\n"
        "1 /sbin/init\n"
    ).encode()
    monkeypatch.setattr(detection.subprocess, "Popen", FakePs)

    assert ProcessTableStrategy().exists("tmpapp") is False


def test_process_table_matches_other_command_lines(monkeypatch):
    FakePs.output = b"1 /sbin/init\n  77 /opt/app/tmpapp --port 4000\n"
    monkeypatch.setattr(detection.subprocess, "Popen", FakePs)

    assert ProcessTableStrategy().exists("tmpapp") is True


def test_parse_process_table_skips_malformed_lines():
    rows = list(parse_process_table("  12 /bin/sh -c x\n\nnot-a-pid foo\n 7 \n"))

    assert rows == [(12, "/bin/sh -c x"), (7, "")]


# --- /proc scan ---

def make_proc_entry(root, pid, cmdline: bytes | None):
    entry = root / str(pid)
    entry.mkdir()
    if cmdline is not None:
        (entry / "cmdline").write_bytes(cmdline)


def test_proc_scan_matches_nul_separated_cmdline(tmp_path):
    make_proc_entry(tmp_path, 10, b"/bin/sh\0./start.sh\0")
    make_proc_entry(tmp_path, 11, b"/usr/local/bin/tmpapp\0--port\x004000\0")
    strategy = ProcFilesystemStrategy(root=tmp_path)

    assert strategy.is_available()
    assert strategy.exists("tmpapp") is True
    assert strategy.exists("--port 4000") is True
    assert strategy.exists("nginx") is False


def test_proc_scan_ignores_non_numeric_vanished_and_own_entries(tmp_path):
    (tmp_path / "self").mkdir()
    (tmp_path / "self" / "cmdline").write_bytes(b"ghost\0")
    make_proc_entry(tmp_path, 12, None)  # vanished mid-scan
    make_proc_entry(tmp_path, os.getpid(), b"python\0ghost\0")
    strategy = ProcFilesystemStrategy(root=tmp_path)

    assert strategy.exists("ghost") is False


def test_proc_scan_unavailable_without_root(tmp_path):
    assert ProcFilesystemStrategy(root=tmp_path / "nope").is_available() is False
    assert ProcFilesystemStrategy(root=tmp_path / "nope").exists("tmpapp") is False
