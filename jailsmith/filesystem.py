"""
Filesystem whitelisting from the firejail --trace log.

Each `build_*` function looks at the paths the sandboxed program touched and
writes the matching profile directives. They share one parsed view of the
trace (`load_accesses`) and never fail on a missing or unreadable trace.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import IO, Iterable, List, Optional

logger = logging.getLogger("filesystem")

# "<pid>:<program>:<op> <path>:<result>"
_ACCESS_RE = re.compile(
    r"^\d+:[^:\n]*:(?P<op>open64|openat|open|fopen64|fopen|freopen|stat64|stat|lstat|access"
    r"|opendir|mkdirat|mkdir|rmdir|unlinkat|unlink|rename|exec) (?P<rest>/.*)$"
)

BIN_DIRS = ("/bin", "/sbin", "/usr/bin", "/usr/sbin", "/usr/local/bin")

# devices firejail keeps available under private-dev
PRIVATE_DEV_ENTRIES = {
    "null", "zero", "full", "random", "urandom", "tty", "shm", "pts", "ptmx",
    "log", "fd", "stdin", "stdout", "stderr", "console", "dri", "snd", "video0",
}

# dynamic loader files every program reads
IGNORED_ETC_ENTRIES = {"ld.so.cache", "ld.so.preload", "ld.so.conf", "ld.so.conf.d"}


@dataclass(frozen=True)
class FileAccess:
    op: str
    path: str


def parse_access(line: str) -> Optional[FileAccess]:
    m = _ACCESS_RE.match(line.rstrip("\n"))
    if not m:
        return None
    rest = m.group("rest")
    # strip the trailing ":<result>" column; paths may contain ':'
    path, sep, _ = rest.rpartition(":")
    if not sep:
        path = rest
    path = os.path.normpath(path)
    return FileAccess(m.group("op"), path)


def load_accesses(path: str) -> List[FileAccess]:
    accesses: List[FileAccess] = []
    try:
        with open(path, "r", errors="replace") as f:
            for line in f:
                access = parse_access(line)
                if access:
                    accesses.append(access)
    except OSError as e:
        logger.debug("Cannot read trace file %s: %r", path, e)
        return []
    return accesses


def _first_components(accesses: Iterable[FileAccess], root: str) -> List[str]:
    """Sorted first path components below root."""
    prefix = root.rstrip("/") + "/"
    found = set()
    for access in accesses:
        if not access.path.startswith(prefix):
            continue
        head = access.path[len(prefix):].split("/", 1)[0]
        if head and head not in (".", ".."):
            found.add(head)
    return sorted(found)


def _write_whitelist(entries: List[str], prefix: str, include: str, fp: IO[str]) -> None:
    for entry in entries:
        fp.write(f"whitelist {prefix}/{entry}\n")
    fp.write(f"include {include}\n")


def build_home(accesses: List[FileAccess], fp: IO[str], home: Optional[str] = None) -> None:
    home = home if home is not None else os.path.expanduser("~")
    entries = _first_components(accesses, home) if home and home != "/" else []
    if not entries:
        fp.write("private\n")
        return
    for entry in entries:
        fp.write(f"noblacklist ${{HOME}}/{entry}\n")
        fp.write(f"whitelist ${{HOME}}/{entry}\n")
    fp.write("include whitelist-common.inc\n")


def build_run(accesses: List[FileAccess], fp: IO[str]) -> None:
    entries = [e for e in _first_components(accesses, "/run") if e != "user"]
    _write_whitelist(entries, "/run", "whitelist-run-common.inc", fp)


def build_runuser(accesses: List[FileAccess], fp: IO[str], uid: Optional[int] = None) -> None:
    uid = os.getuid() if uid is None else uid
    entries = _first_components(accesses, f"/run/user/{uid}")
    _write_whitelist(entries, "${RUNUSER}", "whitelist-runuser-common.inc", fp)


def build_share(accesses: List[FileAccess], fp: IO[str]) -> None:
    entries = _first_components(accesses, "/usr/share")
    _write_whitelist(entries, "/usr/share", "whitelist-usr-share-common.inc", fp)


def build_var(accesses: List[FileAccess], fp: IO[str]) -> None:
    entries = _first_components(accesses, "/var")
    _write_whitelist(entries, "/var", "whitelist-var-common.inc", fp)


def build_bin(accesses: List[FileAccess], fp: IO[str]) -> None:
    programs = set()
    for access in accesses:
        if access.op != "exec":
            continue
        directory, name = os.path.split(access.path)
        if directory in BIN_DIRS and name:
            programs.add(name)
    if programs:
        fp.write("private-bin " + ",".join(sorted(programs)) + "\n")
    else:
        fp.write("#private-bin\n")


def build_dev(accesses: List[FileAccess], fp: IO[str]) -> None:
    extra = [e for e in _first_components(accesses, "/dev") if e not in PRIVATE_DEV_ENTRIES]
    if extra:
        fp.write("#private-dev\t# devices used: " + ",".join(extra) + "\n")
    else:
        fp.write("private-dev\n")


def build_etc(accesses: List[FileAccess], fp: IO[str]) -> None:
    entries = [e for e in _first_components(accesses, "/etc") if e not in IGNORED_ETC_ENTRIES]
    if entries:
        fp.write("private-etc " + ",".join(entries) + "\n")
    else:
        fp.write("#private-etc\n")


def build_tmp(accesses: List[FileAccess], fp: IO[str]) -> None:
    entries = _first_components(accesses, "/tmp")
    if entries:
        fp.write("#private-tmp\t# /tmp used: " + ",".join(entries) + "\n")
    else:
        fp.write("private-tmp\n")
