"""Tests for pid_run.py — the command wrapper (subprocess and in-process)."""
import os, signal, subprocess, sys, time
from pathlib import Path

import pytest
from pidguard.lib.pid_file import PidFile
from pidguard.pid_run import main, parse_args

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


def pid_run(*args, **kwargs):
    return subprocess.run(
        [sys.executable, "-m", "pidguard.pid_run", *args],
        capture_output=True, text=True, cwd=PROJECT_ROOT, timeout=30, **kwargs,
    )


def py(code):
    return [sys.executable, "-c", code]


def test_runs_command_holding_pid_file(pid_path):
    r = pid_run("--file", str(pid_path), "--",
                *py(f"print(open({str(pid_path)!r}).read())"))
    assert r.returncode == 0, r.stderr
    # the wrapper wrote its own pid, which is the child's parent
    assert r.stdout.strip().isdigit()
    assert not pid_path.exists()


def test_propagates_exit_code(pid_path):
    r = pid_run("--file", str(pid_path), *py("import sys; sys.exit(7)"))
    assert r.returncode == 7
    assert not pid_path.exists()


def test_refuses_second_instance(pid_path):
    pf = PidFile(pid_path)
    assert pf.create()
    try:
        r = pid_run("--file", str(pid_path), "--retries", "1", "--sleep", "0", "true")
        assert r.returncode == 1
        assert "Already running" in r.stderr
        assert pid_path.exists()
    finally:
        pf.remove()


def test_missing_command_fails(pid_path):
    r = pid_run("--file", str(pid_path), "--", "definitely-not-a-command-xyz")
    assert r.returncode == 1
    assert "Cannot run" in r.stderr
    assert not pid_path.exists()


def test_sigterm_removes_pid_file(pid_path, tmp_path):
    ready = tmp_path / "ready"
    proc = subprocess.Popen(
        [sys.executable, "-m", "pidguard.pid_run", "--file", str(pid_path), "--",
         *py(f"import pathlib, time; pathlib.Path({str(ready)!r}).touch(); time.sleep(30)")],
        cwd=PROJECT_ROOT, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
    )
    try:
        deadline = time.monotonic() + 10
        while not ready.exists() and time.monotonic() < deadline:
            time.sleep(0.05)
        assert ready.exists()
        assert pid_path.read_text() == str(proc.pid)

        proc.send_signal(signal.SIGTERM)
        assert proc.wait(timeout=10) == 128 + signal.SIGTERM
        assert not pid_path.exists()
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_check_not_running(pid_path, capsys):
    assert main(["--file", str(pid_path), "--check"]) == 1
    assert "not running" in capsys.readouterr().out


def test_check_running(pid_path, sleeper, capsys):
    pid_path.write_text(str(sleeper.pid))
    assert main(["--file", str(pid_path), "--check"]) == 0
    assert f"running {sleeper.pid}" in capsys.readouterr().out


def test_remove_clears_stale_file(pid_path, sleeper):
    pid_path.write_text(str(sleeper.pid))
    assert main(["--file", str(pid_path), "--remove"]) == 0
    assert not pid_path.exists()


def test_command_required():
    with pytest.raises(SystemExit) as exc:
        parse_args([])
    assert exc.value.code == 2


def test_check_rejects_command(pid_path):
    with pytest.raises(SystemExit) as exc:
        parse_args(["--file", str(pid_path), "--check", "true"])
    assert exc.value.code == 2


def test_env_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("PIDGUARD_FILE", str(tmp_path / "env.pid"))
    monkeypatch.setenv("PIDGUARD_RETRIES", "3")
    monkeypatch.setenv("PIDGUARD_SLEEP", "0.5")
    args = parse_args(["true"])
    assert args.file == tmp_path / "env.pid"
    assert args.retries == 3
    assert args.sleep == 0.5
    assert args.command == ["true"]


def test_flags_override_env(monkeypatch):
    monkeypatch.setenv("PIDGUARD_RETRIES", "3")
    args = parse_args(["--retries", "0", "--", "true", "-x"])
    assert args.retries == 0
    assert args.command == ["true", "-x"]


def test_relative_file_is_cwd_relative(tmp_path):
    os.chdir(tmp_path)
    args = parse_args(["--file", "here.pid", "--check"])
    assert args.file == Path.cwd() / "here.pid"
