"""Peer discovery records.

Two records bootstrap the network:

* the bootnode's ``enode://`` line, read from its log once it has started;
* node 0's consensus ENR, read from its beacon API once node 0 is up.

Both used to be a single read after a fixed sleep. Here the sleep is kept as
an initial settle interval and is followed by bounded polling against an
explicit readiness check, so slow hosts get a timeout error with context
rather than a spurious empty value.
"""
from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import requests

from ..errors import ExtractionError
from ..util.fs import first_line_with_prefix

logger = logging.getLogger("ethnet.discovery")

T = TypeVar("T")

ENODE_PREFIX = "enode"
ENR_PREFIX = "enr"
IDENTITY_PATH = "/eth/v1/node/identity"


def wait_until(
    probe: Callable[[], Optional[T]],
    *,
    timeout_s: float,
    interval_s: float = 0.25,
    backoff: float = 2.0,
    max_interval_s: float = 2.0,
    what: str = "condition",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Call `probe` until it returns a truthy value or `timeout_s` elapses.

    The probe always runs at least once. Raises ExtractionError on timeout.
    """
    deadline = clock() + max(0.0, float(timeout_s))
    delay = max(0.0, float(interval_s))
    attempts = 0
    while True:
        attempts += 1
        value = probe()
        if value:
            return value
        remaining = deadline - clock()
        if remaining <= 0:
            raise ExtractionError(
                f"timed out after {timeout_s:g}s waiting for {what}",
                details={"attempts": attempts},
            )
        sleep(min(delay, remaining))
        delay = min(max_interval_s, delay * backoff if delay > 0 else interval_s)


def read_enode(log_path: Path) -> str:
    line = first_line_with_prefix(log_path, ENODE_PREFIX)
    return line if line.startswith(ENODE_PREFIX) else ""


def extract_bootnode_enode(
    log_path: Path,
    *,
    settle_s: float = 2.0,
    timeout_s: float = 10.0,
    interval_s: float = 0.25,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Wait for the bootnode to print its enode line and return it."""
    if settle_s > 0:
        sleep(settle_s)
    try:
        enode = wait_until(
            lambda: read_enode(log_path),
            timeout_s=timeout_s,
            interval_s=interval_s,
            what=f"an enode line in {log_path}",
            sleep=sleep,
        )
    except ExtractionError as e:
        raise ExtractionError(f"failed to extract bootnode enode: {e.message}", details=e.details) from e
    logger.info("bootnode enode: %s", enode)
    return enode


def parse_identity(doc: Any) -> str:
    """`data.enr` from a beacon identity response, validated; "" if absent or malformed."""
    if not isinstance(doc, dict):
        return ""
    data = doc.get("data")
    if not isinstance(data, dict):
        return ""
    enr = data.get("enr")
    if not isinstance(enr, str):
        return ""
    enr = enr.strip()
    return enr if enr.startswith(ENR_PREFIX) else ""


def identity_url(gateway_port: int, host: str = "127.0.0.1") -> str:
    return f"http://{host}:{int(gateway_port)}{IDENTITY_PATH}"


def _probe_identity(session: requests.Session, url: str, http_timeout_s: float) -> str:
    try:
        r = session.get(url, timeout=http_timeout_s)
        r.raise_for_status()
        return parse_identity(r.json())
    except (requests.RequestException, ValueError) as e:
        logger.debug("identity probe failed: %s", e, extra={"url": url})
        return ""


def fetch_bootstrap_enr(
    url: str,
    *,
    settle_s: float = 3.0,
    timeout_s: float = 30.0,
    attempts: int = 5,
    http_timeout_s: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    session: Optional[requests.Session] = None,
) -> str:
    """GET the beacon identity endpoint until it serves a valid ENR.

    At most `attempts` requests are made within `timeout_s`.
    """
    if settle_s > 0:
        sleep(settle_s)
    sess = session or requests.Session()
    left = max(1, int(attempts))

    def probe() -> str:
        nonlocal left
        if left <= 0:
            raise ExtractionError(f"no valid ENR after {attempts} attempts")
        left -= 1
        return _probe_identity(sess, url, http_timeout_s)

    try:
        enr = wait_until(
            probe,
            timeout_s=timeout_s,
            interval_s=min(1.0, max(0.1, timeout_s / max(1, attempts * 2))),
            what=f"a bootstrap ENR from {url}",
            sleep=sleep,
        )
    except ExtractionError as e:
        raise ExtractionError(f"failed to obtain bootstrap ENR: {e.message}", details={"url": url}) from e
    finally:
        if session is None:
            sess.close()
    logger.info("bootstrap enr: %s", enr, extra={"url": url})
    return enr


def external_enode(pubkey: str, host: str, port: int) -> str:
    return f"enode://{pubkey.strip()}@{host}:{int(port)}"


class BootstrapRecord:
    """Single-assignment cell holding node 0's ENR."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ready = threading.Event()
        self._value = ""

    def is_set(self) -> bool:
        return self._ready.is_set()

    def set(self, value: str) -> None:
        v = str(value or "").strip()
        if not v.startswith(ENR_PREFIX):
            raise ValueError(f"not an ENR: {value!r}")
        with self._lock:
            if self._ready.is_set():
                raise RuntimeError("bootstrap record already set")
            self._value = v
            self._ready.set()

    def get(self, timeout: Optional[float] = None) -> str:
        if not self._ready.wait(timeout):
            raise ExtractionError("bootstrap record is not available")
        return self._value

    def peek(self) -> str:
        return self._value if self._ready.is_set() else ""
