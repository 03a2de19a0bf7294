import logging
import platform
import shutil
from typing import IO, Callable, List, Optional, Sequence, Tuple

from . import filesystem
from ._types import BuildConfig, BuildReport, ProtocolFlags
from .isolated_tracer import SupervisedRun
from .protocol import build_protocol, write_protocols
from .syscall_analyzer import build_seccomp
from .utils import ReportSerializer

logger = logging.getLogger("profile_builder")

STDOUT_MARKER = "--- Built profile begins after this line ---\n"

HEADER = (
    "# Save this file as \"application.profile\" (change \"application\" with the\n"
    "# program name) in ~/.config/firejail directory. Firejail will find it\n"
    "# automatically every time you sandbox your application.\n#\n"
    "# Run \"firejail application\" to test it. In the file there are\n"
    "# some other commands you can try. Enable them by removing the \"#\".\n\n"
)

BASIC_BLACKLISTING = (
    "### Basic Blacklisting ###\n"
    "### Enable as many of them as you can! A very important one is\n"
    "### \"disable-exec.inc\". This will make among other things your home\n"
    "### and /tmp directories non-executable.\n"
    "include disable-common.inc\t# dangerous directories like ~/.ssh and ~/.gnupg\n"
    "#include disable-devel.inc\t# development tools such as gcc and gdb\n"
    "#include disable-exec.inc\t# non-executable directories such as /var, /tmp, and /home\n"
    "#include disable-interpreters.inc\t# perl, python, lua etc.\n"
    "include disable-programs.inc\t# user configuration for programs such as firefox, vlc etc.\n"
    "#include disable-shell.inc\t# sh, bash, zsh etc.\n"
    "#include disable-xdg.inc\t# standard user directories: Documents, Pictures, Videos, Music\n"
    "\n"
)

HOME_WHITELISTING = (
    "### Home Directory Whitelisting ###\n"
    "### If something goes wrong, this section is the first one to comment out.\n"
    "### Instead, you'll have to relay on the basic blacklisting above.\n"
)

HARDENING = (
    "ipc-namespace\n"
    "netfilter\n"
    "#no3d\t# disable 3D acceleration\n"
    "#nodvd\t# disable DVD and CD devices\n"
    "#nogroups\t# disable supplementary user groups\n"
    "#noinput\t# disable input devices\n"
    "nonewprivs\n"
    "noroot\n"
    "#notv\t# disable DVB TV devices\n"
    "#nou2f\t# disable U2F devices\n"
    "#novideo\t# disable video capture devices\n"
)

FOOTER = (
    "#dbus-user none\n"
    "#dbus-system none\n"
    "\n"
    "#memory-deny-write-execute\n"
)


def _section(name: str, fn: Callable, *args, **kwargs):
    """Run one profile section; a failing section is logged and skipped."""
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.error("Could not build %s section: %r", name, e, exc_info=logger.isEnabledFor(logging.DEBUG))
        return None


def write_profile(
        program: str,
        trace_path: Optional[str],
        syscall_path: str,
        fp: IO[str],
        appimage: bool = False,
        caps_keep: Optional[str] = None,
        stdout_marker: bool = False,
        capacity: Optional[int] = None,
        home: Optional[str] = None,
        uid: Optional[int] = None,
) -> Tuple[List[str], ProtocolFlags]:
    """
    Write a complete firejail profile for `program` from the two trace files.

    Returns the syscalls and protocol families that went into the profile.
    Missing or unreadable trace files produce fallback sections, never errors.
    """
    if stdout_marker:
        fp.write(STDOUT_MARKER)

    fp.write(HEADER)
    fp.write(f"# Firejail profile for {program}\n")
    fp.write("# Persistent local customizations\n")
    fp.write(f"#include {program}.local\n")
    fp.write("# Persistent global definitions\n")
    fp.write("#include globals.local\n")
    fp.write("\n")

    fp.write(BASIC_BLACKLISTING)

    accesses = []
    if trace_path:
        accesses = _section("filesystem trace", filesystem.load_accesses, trace_path) or []

    fp.write(HOME_WHITELISTING)
    _section("home", filesystem.build_home, accesses, fp, home=home)
    fp.write("\n")

    fp.write("### Filesystem Whitelisting ###\n")
    _section("/run", filesystem.build_run, accesses, fp)
    _section("${RUNUSER}", filesystem.build_runuser, accesses, fp, uid=uid)
    if not appimage:
        _section("/usr/share", filesystem.build_share, accesses, fp)
    _section("/var", filesystem.build_var, accesses, fp)
    fp.write("\n")

    fp.write("#apparmor\t# if you have AppArmor running, try this one!\n")
    if caps_keep:
        fp.write(f"caps.keep {caps_keep}\n")
    fp.write(HARDENING)

    if trace_path:
        protocols = _section("protocol", build_protocol, trace_path, fp) or ProtocolFlags()
    else:
        protocols = ProtocolFlags()
        write_protocols(protocols, fp)
    syscalls = _section("seccomp", build_seccomp, syscall_path, fp, capacity) or []

    fp.write("#tracelog\t# send blacklist violations to syslog\n")
    fp.write("\n")

    fp.write("#disable-mnt\t# no access to /mnt, /media, /run/mount and /run/media\n")
    if not appimage:
        _section("/bin", filesystem.build_bin, accesses, fp)
    fp.write("#private-cache\t# run with an empty ~/.cache directory\n")
    _section("/dev", filesystem.build_dev, accesses, fp)
    _section("/etc", filesystem.build_etc, accesses, fp)
    fp.write("#private-lib\n")
    _section("/tmp", filesystem.build_tmp, accesses, fp)
    fp.write("\n")

    fp.write(FOOTER)
    fp.flush()

    return syscalls, protocols


def build_profile(config: BuildConfig, program_args: Sequence[str], fp: IO[str]) -> BuildReport:
    """
    Run `program_args` once under firejail + strace and write the resulting
    profile to fp. The profile is written however the program terminated.
    """
    if not program_args:
        logger.error("Application name missing")
        raise SystemExit(1)

    ensure_prereqs(config)

    program = program_args[0]
    with SupervisedRun(config, program_args) as run:
        if config.debug:
            for i, token in enumerate(run.command):
                print(("\t" if i else "") + token, flush=True)

        outcome = run.run()

        syscalls, protocols = write_profile(
            program,
            run.trace_path,
            run.syscall_path,
            fp,
            appimage=config.appimage,
            caps_keep=config.caps_keep,
            stdout_marker=config.output is None,
            capacity=config.max_syscalls,
        )

        report = BuildReport(
            program=program,
            command=run.command,
            outcome=outcome,
            syscalls=syscalls,
            protocols=protocols,
            artifacts={"trace": run.trace_path, "syscalls": run.syscall_path},
        )

    logger.info("Profile for %s: %d syscalls, network %s", program, len(syscalls),
                "enabled" if protocols.networked() else "none")

    if config.report_file:
        try:
            ReportSerializer.dump(report, config.report_file)
        except OSError as e:
            logger.error("Could not write report file %s: %s", config.report_file, e)

    return report


def ensure_prereqs(config: BuildConfig) -> None:
    """
    Strict preflight:
      - Linux only
      - the sandbox (firejail) and the tracer (strace) must exist
    On failure: logs a clear error and exits the process.
    """
    if platform.system() != "Linux":
        logger.error("Profile building requires Linux.")
        raise SystemExit(1)

    if shutil.which(config.firejail) is None:
        logger.error(
            "Missing dependency: '%s' not found in PATH.\n"
            "Fix: sudo apt-get update && sudo apt-get install -y firejail",
            config.firejail,
        )
        raise SystemExit(1)

    if shutil.which(config.strace) is None:
        logger.error(
            "Missing dependency: '%s' not found.\n"
            "Fix: sudo apt-get update && sudo apt-get install -y strace",
            config.strace,
        )
        raise SystemExit(1)

    logger.debug("Prerequisites OK (%s, %s).", config.firejail, config.strace)
