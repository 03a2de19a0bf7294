"""
Syscall allow-list extraction
=============================

- Reads the raw `strace -f -qq -o FILE` log of one sandboxed run.
- One syscall name per entry line; `[pid N]` tags and bare pid columns are skipped.
- Tracer noise (`+++ exited ...`, `--- SIGCHLD ...`, `strace: ...`, `Process ...`) is ignored.
- `<... read resumed>` lines carry no name: the call was already seen on its `<unfinished ...>` line.
- Output is sorted, so two runs that observe the same calls produce the same profile.

Usage:
  names = collect_syscalls("/tmp/jailsmith-syscalls.abc123")
  write_seccomp(names, sys.stdout)
"""

import logging
import re
from typing import IO, Iterable, Iterator, List, Optional

logger = logging.getLogger("syscall_analyzer")

MAX_NAME_LENGTH = 127

NOISE_MARKERS = ("+++", "---", "strace:", "Process")

_TAG_RE = re.compile(r"^\[[^\]]*\]\s*")
_PID_COLUMN_RE = re.compile(r"^\d+\s+")
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

SECCOMP_HINT = (
    "# Probably you will need to add more syscalls to seccomp.keep. Look for\n"
    "# seccomp errors in /var/log/syslog or /var/log/audit/audit.log while\n"
    "# running your sandbox.\n"
)


def extract_syscall_name(line: str) -> Optional[str]:
    """Return the syscall name of an strace entry line, or None for anything else."""
    p = line.lstrip()

    m = _TAG_RE.match(p)
    if m:
        p = p[m.end():]
    else:
        m = _PID_COLUMN_RE.match(p)
        if m:
            p = p[m.end():]

    if p.startswith(NOISE_MARKERS):
        return None

    m = _NAME_RE.match(p)
    if not m:
        return None

    rest = p[m.end():].lstrip()
    if not rest.startswith("("):
        return None

    return m.group(0)[:MAX_NAME_LENGTH]


class SyscallSet:
    """
    Deduplicated collection of syscall names.

    `capacity=None` means unbounded. With a capacity, names beyond it are
    dropped without error.
    """

    def __init__(self, capacity: Optional[int] = None):
        self.capacity = capacity
        self._names: List[str] = []
        self.dropped = 0

    def add(self, name: str) -> bool:
        if not name or name in self._names:
            return False
        if self.capacity is not None and len(self._names) >= self.capacity:
            self.dropped += 1
            return False
        self._names.append(name)
        return True

    def update(self, names: Iterable[str]) -> None:
        for name in names:
            self.add(name)

    def sorted(self) -> List[str]:
        return sorted(self._names)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)


def iter_syscall_names(lines: Iterable[str]) -> Iterator[str]:
    for raw in lines:
        name = extract_syscall_name(raw.rstrip("\n"))
        if name:
            yield name


def collect_syscalls(path: str, capacity: Optional[int] = None) -> List[str]:
    syscalls = SyscallSet(capacity)
    try:
        with open(path, "r", errors="replace") as f:
            syscalls.update(iter_syscall_names(f))
    except OSError as e:
        logger.debug("Cannot read syscall log %s: %r", path, e)
        return []

    if syscalls.dropped:
        logger.warning("Syscall set full (%d entries), dropped %d names", syscalls.capacity, syscalls.dropped)

    logger.debug("Collected %d distinct syscalls from %s", len(syscalls), path)
    return syscalls.sorted()


def write_seccomp(names: List[str], fp: IO[str]) -> None:
    if names:
        fp.write("seccomp.keep " + ",".join(names) + "\n")
    fp.write(f"# {len(names)} syscalls total\n")
    fp.write(SECCOMP_HINT)


def build_seccomp(path: str, fp: IO[str], capacity: Optional[int] = None) -> List[str]:
    names = collect_syscalls(path, capacity)
    write_seccomp(names, fp)
    return names
