"""Tmux layout for per-node log tails.

Each node contributes one panel-pair (execution log + consensus log). Pairs are
packed into windows ("pages") holding at most ``capacity`` pairs; a full page
starts a new window. The plan depends only on the number of nodes and the
capacity, so it can be printed as a dry run and checked in tests.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Sequence, Tuple

from ..runners.tmux import pane_target, send_line, tail_line, window_target

DEFAULT_CAPACITY = 4
FIRST_WINDOW_NAME = "logs"


@dataclass(frozen=True)
class PanelPair:
    node: int
    page: int
    slot: int  # pair index inside the page

    @property
    def execution_pane(self) -> int:
        return 2 * self.slot

    @property
    def consensus_pane(self) -> int:
        return 2 * self.slot + 1


def plan_panels(num_logs: int, capacity: int = DEFAULT_CAPACITY) -> List[PanelPair]:
    if capacity < 1:
        raise ValueError("capacity must be >= 1")
    pairs: List[PanelPair] = []
    page = 0
    slot = 0
    for node in range(max(0, int(num_logs))):
        if slot == capacity:
            page += 1
            slot = 0
        pairs.append(PanelPair(node=node, page=page, slot=slot))
        slot += 1
    return pairs


def page_count(num_logs: int, capacity: int = DEFAULT_CAPACITY) -> int:
    pairs = plan_panels(num_logs, capacity)
    return (pairs[-1].page + 1) if pairs else 1


def build_commands(
    session: str,
    log_pairs: Sequence[Tuple[str, str]],
    capacity: int = DEFAULT_CAPACITY,
) -> List[List[str]]:
    """tmux argument lists that create `session` with one panel-pair per entry.

    `log_pairs[i]` is `(execution_log, consensus_log)` for node i.
    """
    cmds: List[List[str]] = [["new-session", "-d", "-s", session, "-n", FIRST_WINDOW_NAME]]
    page = 0
    for pair in plan_panels(len(log_pairs), capacity):
        geth_log, beacon_log = log_pairs[pair.node]
        win = window_target(session, pair.page)
        if pair.page != page:
            page = pair.page
            cmds.append(["new-window", "-t", win, "-n", f"{FIRST_WINDOW_NAME}-{page}"])

        if pair.slot == 0:
            cmds.extend(send_line(win, tail_line(geth_log)))
            cmds.append(["split-window", "-v", "-t", win])
        else:
            cmds.append(["select-layout", "-t", win, "tiled"])
            cmds.append(["split-window", "-h", "-t", win])
            cmds.extend(send_line(pane_target(session, page, pair.execution_pane), tail_line(geth_log)))
            cmds.append(["split-window", "-v", "-t", win])
        cmds.extend(send_line(pane_target(session, page, pair.consensus_pane), tail_line(beacon_log)))

    cmds.append(["select-layout", "-t", window_target(session, page), "tiled"])
    return cmds
