"""Domain errors raised by the analysis engine."""

from __future__ import annotations


class RecordSourceError(RuntimeError):
    """Raised when provisioning records cannot be fetched from the upstream source."""


class AnalysisAlreadyRunningError(RuntimeError):
    """Raised when a refresh is requested while another run holds the single-flight lock."""

    def __init__(self, active_run_id: str | None = None) -> None:
        self.active_run_id = active_run_id
        message = "A package change analysis is already running"
        if active_run_id:
            message = f"{message} ({active_run_id})"
        super().__init__(message)
