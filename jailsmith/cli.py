from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional, Sequence, Tuple

from .config import load_config, make_build_config
from .profile_builder import build_profile

# options that take their value as the next argument when not written as --opt=value
_VALUE_OPTIONS = {"--caps.keep", "--build-timeout", "--config", "--report-file"}


def split_argv(argv: Sequence[str]) -> Tuple[List[str], List[str]]:
    """
    Split the command line into our own options and the program to run.

    Options end at the first non-option argument or at "--"; everything after
    belongs to the program, its own flags included.
    """
    options: List[str] = []
    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == "--":
            return options, list(argv[i + 1:])
        if not arg.startswith("-") or arg == "-":
            return options, list(argv[i:])
        options.append(arg)
        if arg in _VALUE_OPTIONS and i + 1 < len(argv):
            options.append(argv[i + 1])
            i += 1
        i += 1
    return options, []


def _timeout(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid timeout: {value!r}")
    if n < 0:
        raise argparse.ArgumentTypeError(f"timeout must be a non-negative integer, got {n}")
    return n


def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="jailsmith",
        allow_abbrev=False,
        description="Build a firejail profile by tracing one run of a program",
        usage="%(prog)s [--debug] --build[=FILE] [--caps.keep=LIST] [--build-timeout=SECONDS] "
              "[--appimage] program-and-arguments",
    )

    parser.add_argument(
        "--build",
        nargs="?",
        const="",
        default=None,
        metavar="FILE",
        help="Build a profile; write it to FILE (must not exist) or to stdout."
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Keep the trace files and print the instrumented command."
    )

    parser.add_argument(
        "--caps.keep",
        dest="caps_keep",
        default=None,
        metavar="LIST",
        help="Capabilities to keep in the sandbox (also written to the profile)."
    )

    parser.add_argument(
        "--build-timeout",
        type=_timeout,
        default=None,
        metavar="SECONDS",
        help="Stop the program after SECONDS (0 = wait until it exits)."
    )

    parser.add_argument(
        "--appimage",
        action="store_true",
        help="The program is an AppImage; skip /usr/share and private-bin sections."
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML configuration file."
    )

    parser.add_argument(
        "--report-file",
        type=str,
        default=None,
        help="Write a JSON build report to this path."
    )

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    options, program_args = split_argv(argv)

    parser = make_parser()
    args = parser.parse_args(options)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger = logging.getLogger("jailsmith")

    if args.build is None:
        parser.error("--build is required")
    if "--build=" in options:
        parser.error("--build= needs a file name")
    if not program_args:
        parser.error("program name missing")

    try:
        settings = load_config(args.config)
        config = make_build_config(
            settings,
            caps_keep=args.caps_keep,
            timeout=args.build_timeout,
            debug=args.debug,
            appimage=args.appimage,
            output=args.build or None,
            report_file=args.report_file,
        )
    except (OSError, ValueError, TypeError) as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    if not config.output:
        build_profile(config, program_args, sys.stdout)
        return 0

    try:
        out = open(config.output, "x")
    except OSError as e:
        logger.error("Cannot open %s: %s", config.output, e)
        return 1

    try:
        with out:
            build_profile(config, program_args, out)
    except SystemExit:
        # the build stopped before the profile was written
        os.unlink(config.output)
        raise
    logger.info("Profile written to %s", config.output)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
