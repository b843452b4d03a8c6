"""Argument handling and exit-code mapping of the podconsole command."""

from __future__ import annotations

import logging

import pytest

from conftest import make_pods
from podconsole import podconsole_main
from podconsole.console.relay import OutcomeKind, SessionOutcome
from podconsole.utils import verbosity_to_level


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "PODCONSOLE_SOCKET_DIR",
        "PODCONSOLE_PORT",
        "PODCONSOLE_HANDSHAKE_TIMEOUT",
        "PODCONSOLE_POLL_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)


def test_ps_lists_pods(tmp_path, capsys):
    make_pods(tmp_path, ["pod-b", "pod-a"])
    (tmp_path / "not-a-pod").mkdir()
    assert podconsole_main.main(["ps", "-d", str(tmp_path)]) == 0
    assert capsys.readouterr().out.splitlines() == ["pod-a", "pod-b"]


def test_ps_with_missing_directory(tmp_path, capsys):
    assert podconsole_main.main(["ps", "-d", str(tmp_path / "gone")]) == 0
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "No pods found" in captured.err


def test_exec_not_found_exit_code(tmp_path, capsys):
    make_pods(tmp_path, ["pod-001"])
    assert podconsole_main.main(["exec", "-d", str(tmp_path), "zzz", "ls"]) == 1
    err = capsys.readouterr().err
    assert err.startswith("Error: ")
    assert "pod-001" in err


def test_exec_ambiguous_exit_code(tmp_path, capsys):
    make_pods(tmp_path, ["pod-001", "pod-002", "pod-abc-123"])
    assert podconsole_main.main(["exec", "-d", str(tmp_path), "pod", "ls"]) == 1
    err = capsys.readouterr().err
    for pod in ("pod-001", "pod-002", "pod-abc-123"):
        assert pod in err


def test_exec_connection_failure_exit_code(sock_dir, capsys):
    make_pods(sock_dir, ["pod-1"])
    assert podconsole_main.main(["exec", "-d", sock_dir, "pod-1", "ls"]) == 3
    assert "Failed to connect" in capsys.readouterr().err


def test_exec_rejected_command_exit_code(tmp_path, capsys):
    assert podconsole_main.main(["exec", "-d", str(tmp_path), "pod", "echo", "a\0b"]) == 2
    assert "null byte" in capsys.readouterr().err


def test_exec_invalid_port_exit_code(tmp_path, capsys):
    assert podconsole_main.main(["exec", "-p", "-1", "-d", str(tmp_path), "pod"]) == 2
    assert "invalid configuration" in capsys.readouterr().err


def test_exec_passes_arguments_to_attach(tmp_path, monkeypatch):
    calls = []

    def fake_attach(config, pod_id, **kwargs):
        calls.append((config, pod_id, kwargs))
        return SessionOutcome(OutcomeKind.COMPLETED)

    monkeypatch.setattr(podconsole_main, "attach", fake_attach)
    code = podconsole_main.main(
        ["exec", "-it", "-p", "2000", "-d", str(tmp_path), "pod-1", "--", "ls", "-la"]
    )
    assert code == 0
    config, pod_id, kwargs = calls[0]
    assert pod_id == "pod-1"
    assert config.port == 2000
    assert config.socket_dir == str(tmp_path)
    assert kwargs == {"command": ["ls", "-la"], "tty": True, "interactive": True}


@pytest.mark.parametrize(
    "kind,code",
    [
        (OutcomeKind.COMPLETED, 0),
        (OutcomeKind.REMOTE_CLOSED, 0),
        (OutcomeKind.LOCAL_CLOSED, 0),
        (OutcomeKind.INTERRUPTED, 0),
        (OutcomeKind.FAILED, 126),
    ],
)
def test_outcome_exit_codes(tmp_path, monkeypatch, capsys, kind, code):
    reason = "stdin read error: boom" if kind is OutcomeKind.FAILED else None
    monkeypatch.setattr(podconsole_main, "attach", lambda *a, **k: SessionOutcome(kind, reason))
    assert podconsole_main.main(["exec", "-d", str(tmp_path), "pod-1"]) == code
    if reason:
        assert reason in capsys.readouterr().err


def test_exec_requires_pod_id():
    with pytest.raises(SystemExit) as excinfo:
        podconsole_main.main(["exec"])
    assert excinfo.value.code == 2


def test_verbosity_levels():
    assert verbosity_to_level(0) == logging.WARNING
    assert verbosity_to_level(1) == logging.INFO
    assert verbosity_to_level(2) == logging.DEBUG
    assert verbosity_to_level(5) == logging.DEBUG
