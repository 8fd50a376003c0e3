from __future__ import annotations

import logging
import shlex
import subprocess
from typing import List, Sequence, Tuple

from ..errors import DisplayError

logger = logging.getLogger("ethnet.tmux")


def _run_tmux(args: Sequence[str], *, timeout_s: float = 3.0) -> Tuple[int, str, str]:
    try:
        p = subprocess.run(
            ["tmux", *args],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=timeout_s,
            check=False,
        )
        return int(p.returncode), (p.stdout or ""), (p.stderr or "")
    except subprocess.TimeoutExpired:
        return 124, "", "tmux timeout"
    except OSError as e:
        return 1, "", str(e)


def has_session(session: str) -> bool:
    code, _, _ = _run_tmux(["has-session", "-t", session])
    return code == 0


def kill_session(session: str) -> bool:
    """True if a session existed and was killed. Absence is not an error."""
    if not has_session(session):
        return False
    code, _, err = _run_tmux(["kill-session", "-t", session])
    if code != 0:
        logger.warning("tmux kill-session failed: %s", err.strip(), extra={"session": session})
        return False
    return True


def window_target(session: str, window: int) -> str:
    return f"{session}:{window}"


def pane_target(session: str, window: int, pane: int) -> str:
    return f"{session}:{window}.{pane}"


def tail_line(path: str) -> str:
    return f"tail -F {shlex.quote(path)}"


def send_line(target: str, line: str) -> List[List[str]]:
    """send-keys pair: literal text, then Enter."""
    return [["send-keys", "-t", target, "-l", line], ["send-keys", "-t", target, "Enter"]]


def apply_commands(commands: Sequence[Sequence[str]]) -> None:
    """Run tmux commands in order; the first failure raises DisplayError."""
    for args in commands:
        code, _, err = _run_tmux(list(args))
        if code != 0:
            raise DisplayError(
                f"tmux {args[0]} failed: {err.strip() or code}",
                details={"args": list(args)},
            )
