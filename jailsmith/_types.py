from __future__ import annotations

from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, List, Literal, Optional


@dataclass(frozen=True)
class BuildConfig:
    caps_keep: Optional[str] = None
    timeout: int = 0
    debug: bool = False
    appimage: bool = False
    output: Optional[str] = None
    report_file: Optional[str] = None
    firejail: str = "firejail"
    strace: str = "/usr/bin/strace"
    grace_period: float = 0.25
    tmp_dir: Optional[str] = None
    max_syscalls: Optional[int] = None


@dataclass(frozen=True)
class ProtocolFlags:
    unix: bool = False
    inet: bool = False
    inet6: bool = False
    netlink: bool = False
    packet: bool = False
    bluetooth: bool = False

    def any(self) -> bool:
        return any(getattr(self, f.name) for f in fields(self))

    def networked(self) -> bool:
        """True when a family that reaches beyond the host was observed."""
        return self.inet or self.inet6 or self.packet or self.bluetooth

    def to_dict(self) -> Dict[str, bool]:
        return asdict(self)


@dataclass
class RunOutcome:
    status: Literal["exited", "signaled", "timed_out"]
    returncode: Optional[int]
    pgid: int
    elapsed: float

    def __str__(self):
        return f"{self.status} (returncode={self.returncode}, {self.elapsed:.2f}s)"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BuildReport:
    program: str
    command: List[str]
    outcome: Optional[RunOutcome]
    syscalls: List[str]
    protocols: ProtocolFlags
    artifacts: Dict[str, str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "program": self.program,
            "command": list(self.command),
            "outcome": self.outcome.to_dict() if self.outcome else None,
            "syscalls": list(self.syscalls),
            "syscalls_total": len(self.syscalls),
            "protocols": self.protocols.to_dict(),
            "artifacts": dict(self.artifacts),
        }
