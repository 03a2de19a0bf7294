from __future__ import annotations

import logging
import re
from dataclasses import replace
from typing import IO, Iterable, List

from ._types import ProtocolFlags

logger = logging.getLogger("protocol")

MAX_ROTATIONS = 5

# firejail --trace line: "<pid>:<program>:socket AF_INET SOCK_STREAM IPPROTO_IP:3"
_SOCKET_RE = re.compile(r"^\d+:[^:\n]*:socket (AF_[A-Z0-9_]+)")

FAMILY_FLAGS = {
    "AF_LOCAL": "unix",
    "AF_UNIX": "unix",
    "AF_INET": "inet",
    "AF_INET6": "inet6",
    "AF_NETLINK": "netlink",
    "AF_PACKET": "packet",
    "AF_BLUETOOTH": "bluetooth",
}


def trace_files(base: str) -> List[str]:
    """The trace file followed by its rotations, oldest last."""
    return [base] + [f"{base}.{i}" for i in range(1, MAX_ROTATIONS + 1)]


def scan_lines(lines: Iterable[str], flags: ProtocolFlags = ProtocolFlags()) -> ProtocolFlags:
    seen = {}
    for line in lines:
        m = _SOCKET_RE.match(line)
        if not m:
            continue
        flag = FAMILY_FLAGS.get(m.group(1))
        if flag:
            seen[flag] = True
    return replace(flags, **seen) if seen else flags


def scan_protocols(base: str) -> ProtocolFlags:
    flags = ProtocolFlags()
    for path in trace_files(base):
        try:
            with open(path, "r", errors="replace") as f:
                flags = scan_lines(f, flags)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.debug("Cannot read trace file %s: %r", path, e)
    return flags


def write_protocols(flags: ProtocolFlags, fp: IO[str]) -> None:
    if flags.any():
        fp.write("protocol ")
        if flags.unix:
            fp.write("unix,")
        if flags.inet or flags.inet6:
            fp.write("inet,inet6,")
        if flags.netlink:
            fp.write("netlink,")
        if flags.packet:
            fp.write("packet,")
        if flags.bluetooth:
            fp.write("bluetooth,")
        fp.write("\n")

    if flags.networked():
        fp.write("#net eth0\n")
        fp.write("netfilter\n")
    else:
        fp.write("net none\n")


def build_protocol(base: str, fp: IO[str]) -> ProtocolFlags:
    flags = scan_protocols(base)
    logger.debug("Protocol families observed: %s", flags)
    write_protocols(flags, fp)
    return flags
