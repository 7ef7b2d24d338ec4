# pipeline/errors.py
from __future__ import annotations

from typing import Optional


class ScannerError(Exception):
    """Base error for the scanning pipeline."""

    def __init__(
        self,
        message: str,
        component: Optional[str] = None,
        original_error: Optional[BaseException] = None,
    ):
        self.message = message
        self.component = component
        self.original_error = original_error
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        msg = self.message
        if self.component:
            msg += f" (component: {self.component})"
        if self.original_error:
            msg += f" [{type(self.original_error).__name__}: {self.original_error}]"
        return msg


class CapabilityUnavailable(ScannerError):
    """An external capability failed to initialize; scanning cannot start."""
    pass


class StageTransientFailure(ScannerError):
    """A single tick's capability call failed; the stage recovers locally."""
    pass


class CatalogResponseError(StageTransientFailure):
    """Catalog API returned a payload that failed validation."""
    pass
