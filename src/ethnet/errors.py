"""Error taxonomy for the testnet orchestrator.

Every error carries a stable ``code``, a human ``message`` and optional
``details`` for the JSONL log.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class NetworkError(Exception):
    code = "network_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})


class MissingDependencyError(NetworkError):
    code = "missing_dependency"


class ArgumentError(NetworkError):
    code = "invalid_argument"


class ExtractionError(NetworkError):
    """A discovery record (enode/ENR) could not be obtained."""

    code = "extraction_failed"


class SetupStepError(NetworkError):
    """A synchronous setup step exited non-zero or failed to start."""

    code = "setup_step_failed"


class DisplayError(NetworkError):
    code = "display_failed"


class RunInterruptedError(NetworkError):
    """The run is being torn down; no further processes are started."""

    code = "interrupted"
