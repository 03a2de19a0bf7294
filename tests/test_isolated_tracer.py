import os
import signal
import time

import pytest

from jailsmith import isolated_tracer
from jailsmith._types import BuildConfig
from jailsmith.isolated_tracer import (
    SupervisedRun,
    allocate_artifacts,
    build_command,
    kill_process_group,
    run_supervised,
)


# ------------------ Test Fixtures ---------------------


@pytest.fixture
def killpg_calls(monkeypatch):
    """Record (pgid, signal) for every os.killpg call, still delivering the signal."""
    calls = []
    real_killpg = os.killpg

    def _killpg(pgid, sig):
        calls.append((pgid, sig))
        real_killpg(pgid, sig)

    monkeypatch.setattr(isolated_tracer.os, "killpg", _killpg)
    return calls


def _group_is_gone(pgid):
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return True
    return False


# ------------------ Command -----------------------


def test_build_command_minimal():
    cmd = build_command(BuildConfig(), ["ls", "-l", "--", "x"], "/tmp/t", "/tmp/s")
    assert cmd == [
        "firejail", "--quiet", "--noprofile", "--seccomp=!chroot", "--trace=/tmp/t",
        "/usr/bin/strace", "-f", "-qq", "-o", "/tmp/s", "-e", "trace=%syscall", "--",
        "ls", "-l", "--", "x",
    ]


def test_build_command_caps_and_appimage():
    config = BuildConfig(caps_keep="net_admin,sys_ptrace", appimage=True, firejail="/opt/firejail")
    cmd = build_command(config, ["app.AppImage"], "/tmp/t", "/tmp/s")
    assert cmd[0] == "/opt/firejail"
    assert cmd[5:7] == ["--caps.keep=net_admin,sys_ptrace", "--appimage"]
    assert cmd.index("--appimage") < cmd.index("/usr/bin/strace") < cmd.index("--")
    assert cmd[-1] == "app.AppImage"


def test_build_command_empty_caps_ignored():
    cmd = build_command(BuildConfig(caps_keep=""), ["ls"], "/tmp/t", "/tmp/s")
    assert not any(arg.startswith("--caps.keep") for arg in cmd)


# ------------------ Artifacts -----------------------


def test_allocate_artifacts_unique(tmp_path):
    first = allocate_artifacts(str(tmp_path))
    second = allocate_artifacts(str(tmp_path))
    paths = set(first + second)
    assert len(paths) == 4
    assert all(os.path.exists(p) and os.path.getsize(p) == 0 for p in paths)
    assert os.path.basename(first[0]).startswith("jailsmith-trace.")
    assert os.path.basename(first[1]).startswith("jailsmith-syscalls.")


def test_supervised_run_cleans_up(tmp_path):
    config = BuildConfig(tmp_dir=str(tmp_path))
    with SupervisedRun(config, ["true"]) as run:
        trace_path, syscall_path = run.trace_path, run.syscall_path
        with open(trace_path + ".1", "w") as f:
            f.write("rotated\n")
        assert run.command[-1] == "true"
    assert list(tmp_path.iterdir()) == []


def test_supervised_run_keeps_files_in_debug(tmp_path):
    config = BuildConfig(tmp_dir=str(tmp_path), debug=True)
    with SupervisedRun(config, ["true"]) as run:
        pass
    assert os.path.exists(run.trace_path)
    assert os.path.exists(run.syscall_path)


# ------------------ Process group handling -----------------------


def test_kill_process_group_signal_order(monkeypatch):
    calls = []
    monkeypatch.setattr(isolated_tracer.os, "killpg", lambda pgid, sig: calls.append((pgid, sig)))
    monkeypatch.setattr(isolated_tracer.time, "sleep", lambda s: calls.append(("sleep", s)))

    kill_process_group(4321, 0.25)

    assert calls == [(4321, signal.SIGTERM), ("sleep", 0.25), (4321, signal.SIGKILL)]


def test_kill_process_group_already_gone(monkeypatch):
    calls = []

    def _killpg(pgid, sig):
        calls.append(sig)
        raise ProcessLookupError

    monkeypatch.setattr(isolated_tracer.os, "killpg", _killpg)
    kill_process_group(4321, 0)
    assert calls == [signal.SIGTERM]


def test_timeout_terminates_group(killpg_calls):
    start = time.monotonic()
    outcome = run_supervised(["sleep", "10"], timeout=1, grace_period=0.25)
    elapsed = time.monotonic() - start

    assert outcome.status == "timed_out"
    assert outcome.returncode == -signal.SIGTERM
    assert elapsed < 1.5 + 0.5, f"controller took {elapsed:.2f}s"
    assert [sig for _, sig in killpg_calls] == [signal.SIGTERM, signal.SIGKILL]
    assert all(pgid == outcome.pgid for pgid, _ in killpg_calls)
    assert _group_is_gone(outcome.pgid)


def test_timeout_escalates_to_sigkill(killpg_calls):
    # the shell ignores SIGTERM, only SIGKILL ends it
    outcome = run_supervised(["sh", "-c", "trap '' TERM; sleep 10"], timeout=1, grace_period=0.1)

    assert outcome.status == "timed_out"
    assert outcome.returncode == -signal.SIGKILL
    assert [sig for _, sig in killpg_calls] == [signal.SIGTERM, signal.SIGKILL]


def test_runs_in_own_process_group():
    outcome = run_supervised(["true"])
    assert outcome.pgid != os.getpgrp()


def test_child_exits_before_timeout(killpg_calls):
    outcome = run_supervised(["sh", "-c", "exit 3"], timeout=5)
    assert outcome.status == "exited"
    assert outcome.returncode == 3
    assert killpg_calls == []


def test_no_timeout_waits_for_exit():
    outcome = run_supervised(["sh", "-c", "sleep 0.2"], timeout=0)
    assert outcome.status == "exited"
    assert outcome.returncode == 0
    assert outcome.elapsed >= 0.2


def test_signaled_child():
    outcome = run_supervised(["sh", "-c", "kill -TERM $$"])
    assert outcome.status == "signaled"
    assert outcome.returncode == -signal.SIGTERM


def test_exec_failure_is_fatal(tmp_path):
    with pytest.raises(SystemExit) as exc:
        run_supervised([str(tmp_path / "no-such-program")])
    assert exc.value.code == 1
