from __future__ import annotations

import logging
import os
import signal
import subprocess
import tempfile
import time
from typing import List, Optional, Sequence, Tuple

from ._types import BuildConfig, RunOutcome
from .protocol import trace_files

logger = logging.getLogger("tracer")

TRACE_PREFIX = "jailsmith-trace."
SYSCALL_PREFIX = "jailsmith-syscalls."


def allocate_artifacts(tmp_dir: Optional[str] = None) -> Tuple[str, str]:
    """Create the sandbox trace file and the strace log file (both empty)."""
    with tempfile.NamedTemporaryFile(prefix=TRACE_PREFIX, dir=tmp_dir, delete=False) as tmp_file:
        trace_path = tmp_file.name
    try:
        with tempfile.NamedTemporaryFile(prefix=SYSCALL_PREFIX, dir=tmp_dir, delete=False) as tmp_file:
            syscall_path = tmp_file.name
    except OSError:
        _unlink(trace_path)
        raise
    return trace_path, syscall_path


def remove_artifacts(trace_path: str, syscall_path: str) -> None:
    for path in trace_files(trace_path) + [syscall_path]:
        _unlink(path)


def _unlink(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug("Could not remove %s: %r", path, e)


def build_command(
        config: BuildConfig,
        program_args: Sequence[str],
        trace_path: str,
        syscall_path: str,
) -> List[str]:
    # strace runs inside the sandbox and follows the program and its descendants
    cmd = [config.firejail, "--quiet", "--noprofile", "--seccomp=!chroot", f"--trace={trace_path}"]

    if config.caps_keep:
        cmd.append(f"--caps.keep={config.caps_keep}")

    if config.appimage:
        cmd.append("--appimage")

    cmd += [config.strace, "-f", "-qq", "-o", syscall_path, "-e", "trace=%syscall", "--"]
    cmd += list(program_args)
    return cmd


def kill_process_group(pgid: int, grace_period: float = 0.25) -> None:
    """SIGTERM the whole group, give it grace_period seconds, then SIGKILL what is left."""
    for sig in (signal.SIGTERM, signal.SIGKILL):
        try:
            os.killpg(pgid, sig)
        except ProcessLookupError:
            logger.debug("Process group %d already gone", pgid)
            return
        if sig == signal.SIGTERM:
            time.sleep(grace_period)


def run_supervised(cmd: Sequence[str], timeout: int = 0, grace_period: float = 0.25) -> RunOutcome:
    """
    Run cmd in its own process group and wait for it, at most `timeout` seconds
    when timeout > 0. A timed out group is terminated with SIGTERM then SIGKILL
    and reaped before returning.

    Failing to start the command is fatal (SystemExit(1)).
    """
    start = time.monotonic()
    try:
        proc = subprocess.Popen(list(cmd), process_group=0)
    except OSError as e:
        logger.error("Cannot execute %s: %s", cmd[0] if cmd else "<empty command>", e)
        raise SystemExit(1)

    pgid = proc.pid
    logger.debug("Started pid %d (process group %d)", proc.pid, pgid)

    timed_out = False
    if timeout > 0:
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.warning("Build timeout of %ss reached, terminating process group %d", timeout, pgid)
            kill_process_group(pgid, grace_period)
            proc.wait()
    else:
        proc.wait()

    returncode = proc.returncode
    if timed_out:
        status = "timed_out"
    elif returncode is not None and returncode < 0:
        status = "signaled"
    else:
        status = "exited"

    outcome = RunOutcome(status, returncode, pgid, time.monotonic() - start)
    logger.info("Program finished: %s", outcome)
    return outcome


class SupervisedRun:
    """
    One supervised execution: allocates both trace artifacts on enter and
    removes them on exit unless `keep` is set.

        with SupervisedRun(config, ["ls", "-l"]) as run:
            outcome = run.run()
            ... read run.trace_path / run.syscall_path ...
    """

    def __init__(self, config: BuildConfig, program_args: Sequence[str], keep: Optional[bool] = None):
        self.config = config
        self.program_args = list(program_args)
        self.keep = config.debug if keep is None else keep
        self.trace_path: Optional[str] = None
        self.syscall_path: Optional[str] = None
        self.command: List[str] = []
        self.outcome: Optional[RunOutcome] = None

    def __enter__(self) -> SupervisedRun:
        try:
            self.trace_path, self.syscall_path = allocate_artifacts(self.config.tmp_dir)
        except OSError as e:
            logger.error("Cannot create trace files: %s", e)
            raise SystemExit(1)
        self.command = build_command(self.config, self.program_args, self.trace_path, self.syscall_path)
        return self

    def run(self) -> RunOutcome:
        self.outcome = run_supervised(self.command, self.config.timeout, self.config.grace_period)
        return self.outcome

    def __exit__(self, exec_type, exec_value, traceback) -> None:
        if self.trace_path is None or self.syscall_path is None:
            return
        if self.keep:
            logger.info("Keeping trace files: %s %s", self.trace_path, self.syscall_path)
            return
        remove_artifacts(self.trace_path, self.syscall_path)
