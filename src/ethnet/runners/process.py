from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from ..contracts.v1 import ProcessRecord
from ..errors import RunInterruptedError, SetupStepError
from ..util.fs import read_last_lines

logger = logging.getLogger("ethnet.process")

# Linux truncates /proc/<pid>/comm to this many bytes.
COMM_LEN = 15


def _best_effort_killpg(pid: int, sig: signal.Signals) -> bool:
    # children run in their own session, so pgid == pid
    if pid <= 0:
        return False
    try:
        os.killpg(pid, sig)
        return True
    except OSError:
        return False


def _open_sink(sink: Optional[Path]):
    if sink is None:
        return open(os.devnull, "wb")
    sink.parent.mkdir(parents=True, exist_ok=True)
    return sink.open("ab")


@dataclass
class ProcessHandle:
    name: str
    argv: List[str]
    popen: subprocess.Popen
    sink: Optional[Path] = None
    node: int = -1

    @property
    def pid(self) -> int:
        return int(self.popen.pid)

    def alive(self) -> bool:
        return self.popen.poll() is None

    def terminate(self, sig: signal.Signals = signal.SIGTERM) -> bool:
        if not self.alive():
            return False
        return _best_effort_killpg(self.pid, sig)

    def record(self) -> ProcessRecord:
        return ProcessRecord(
            name=self.name,
            pid=self.pid,
            node=self.node,
            sink=str(self.sink or os.devnull),
            exe=Path(self.argv[0]).name if self.argv else "",
        )


def launch(name: str, argv: Sequence[str], sink: Optional[Path], *, node: int = -1) -> ProcessHandle:
    """Start `argv` in the background with stdout+stderr appended to `sink`.

    `sink=None` discards output. The child gets its own session so it can be
    signalled as a process group and outlives the orchestrator.
    """
    cmd = [str(a) for a in argv]
    out = _open_sink(sink)
    try:
        p = subprocess.Popen(
            cmd,
            stdout=out,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        raise SetupStepError(f"failed to start {name}: {e}", details={"argv": cmd}) from e
    finally:
        out.close()
    logger.info("launched %s", name, extra={"proc": name, "pid": p.pid, "node": node if node >= 0 else None})
    return ProcessHandle(name=name, argv=cmd, popen=p, sink=sink, node=node)


def run_step(name: str, argv: Sequence[str], log_path: Path, *, timeout_s: Optional[float] = None) -> None:
    """Run a synchronous setup step; non-zero exit or timeout raises SetupStepError."""
    cmd = [str(a) for a in argv]
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with log_path.open("ab") as out:
        try:
            p = subprocess.run(
                cmd,
                stdout=out,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                timeout=timeout_s,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise SetupStepError(f"{name} failed: {e}", details={"argv": cmd, "log": str(log_path)}) from e
    if p.returncode != 0:
        tail = read_last_lines(log_path, 10)
        raise SetupStepError(
            f"{name} exited with code {p.returncode} (see {log_path})",
            details={"argv": cmd, "log": str(log_path), "tail": tail},
        )
    logger.debug("step ok: %s", name, extra={"step": name})


def capture(argv: Sequence[str], *, timeout_s: float = 10.0) -> str:
    """Run a short command and return its stdout; failure raises SetupStepError."""
    cmd = [str(a) for a in argv]
    try:
        p = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=timeout_s, check=False)
    except (OSError, subprocess.TimeoutExpired) as e:
        raise SetupStepError(f"{cmd[0]} failed: {e}", details={"argv": cmd}) from e
    if p.returncode != 0:
        raise SetupStepError(f"{cmd[0]} exited with code {p.returncode}: {(p.stderr or '').strip()}", details={"argv": cmd})
    return p.stdout or ""




def process_name(pid: int) -> str:
    """Short command name of a running process, or "" if it is gone."""
    if pid <= 0:
        return ""
    try:
        return Path(f"/proc/{pid}/comm").read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        if Path("/proc/self").exists():
            return ""
    except OSError:
        return ""
    # no procfs (macOS)
    try:
        p = subprocess.run(
            ["ps", "-o", "comm=", "-p", str(pid)],
            stdout=subprocess.PIPE,
            stderr=subprocess.DEVNULL,
            text=True,
            timeout=5.0,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired):
        return ""
    return Path((p.stdout or "").strip()).name if p.returncode == 0 else ""


def _same_program(comm: str, rec: ProcessRecord) -> bool:
    if not comm:
        return False
    return any(comm == c[:COMM_LEN] for c in (rec.exe, rec.name) if c)


def terminate_record(rec: ProcessRecord, sig: signal.Signals = signal.SIGTERM) -> bool:
    """Signal a process group from a previous run, if its pid still runs that program.

    Pids get reused; a record whose pid now belongs to something else is skipped.
    """
    comm = process_name(rec.pid)
    if not _same_program(comm, rec):
        logger.debug("skip stale pid %s (%s now %r)", rec.pid, rec.name, comm, extra={"proc": rec.name, "pid": rec.pid})
        return False
    return _best_effort_killpg(rec.pid, sig)


def terminate_by_name(name: str, sig: signal.Signals = signal.SIGTERM) -> bool:
    """`pkill` fallback: True if at least one process matched. Never raises."""
    if not name.strip():
        return False
    try:
        p = subprocess.run(
            ["pkill", f"-{int(sig)}", name],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=5.0,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("pkill %s failed: %s", name, e, extra={"proc": name})
        return False
    return p.returncode == 0


@dataclass
class ProcessTable:
    """Handles launched by this run, in launch order.

    Once closed, the table refuses to start anything else.
    """

    # reentrant: the SIGINT handler may close the table while the main thread holds it
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    _handles: List[ProcessHandle] = field(default_factory=list)
    _closed: bool = False

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def spawn(self, name: str, start: Callable[[], ProcessHandle]) -> ProcessHandle:
        """Run `start` and track the handle it returns, unless the table is closed."""
        with self._lock:
            # start() runs under the lock so close() cannot slip in between
            if self._closed:
                raise RunInterruptedError(f"not starting {name}: run is shutting down", details={"proc": name})
            handle = start()
            self._handles.append(handle)
        return handle

    def close(self) -> None:
        with self._lock:
            self._closed = True

    def handles(self) -> List[ProcessHandle]:
        with self._lock:
            return list(self._handles)

    def records(self) -> List[ProcessRecord]:
        return [h.record() for h in self.handles()]

    def terminate_all(self, sig: signal.Signals = signal.SIGTERM) -> int:
        """Signal every tracked process group, newest first. Returns how many were signalled."""
        n = 0
        for h in reversed(self.handles()):
            if h.terminate(sig):
                n += 1
        return n
