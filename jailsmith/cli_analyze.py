from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from .profile_builder import write_profile


def main(argv: Optional[Sequence[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    parser = argparse.ArgumentParser(
        prog="jailsmith-analyze",
        description="Rebuild a firejail profile from trace files kept by 'jailsmith --debug'"
    )

    parser.add_argument("--syscalls", required=True,
                        help="strace log of the run (jailsmith-syscalls.*).")
    parser.add_argument("--trace", default=None,
                        help="firejail trace of the run (jailsmith-trace.*).")
    parser.add_argument("--program", default=None,
                        help="Program name used in the profile header (default: 'application').")
    parser.add_argument("--caps.keep", dest="caps_keep", default=None, metavar="LIST",
                        help="Capabilities to keep.")
    parser.add_argument("--appimage", action="store_true",
                        help="Skip sections that do not apply to AppImages.")

    args = parser.parse_args(argv)

    syscalls_file = Path(args.syscalls).expanduser()
    if not syscalls_file.is_file():
        print(f"Error: {syscalls_file} is not a file", file=sys.stderr)
        return 1

    trace_file = str(Path(args.trace).expanduser()) if args.trace else None

    write_profile(
        args.program or "application",
        trace_file,
        str(syscalls_file),
        sys.stdout,
        appimage=args.appimage,
        caps_keep=args.caps_keep,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
