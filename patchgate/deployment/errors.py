# FILE: patchgate/deployment/errors.py
"""Exception types for the deployment engine."""

from __future__ import annotations


class PatchgateError(Exception):
    """Base class for deployment engine errors."""


class ToolNotFoundError(PatchgateError):
    """Raised when an external build/test tool cannot be located."""

    def __init__(self, tool_name: str, searched: list | None = None):
        self.tool_name = tool_name
        self.searched = list(searched or [])
        where = f" (searched: {', '.join(self.searched)})" if self.searched else ""
        super().__init__(f"{tool_name} not found{where}")


class BuildSetupError(PatchgateError):
    """Raised before any build starts when the build cannot be attempted."""


class VerificationSetupError(PatchgateError):
    """Raised before any test run starts when verification cannot be attempted."""


class OperationCancelledError(PatchgateError):
    pass


class RecordNotFoundError(PatchgateError):
    pass


class RollbackConflictError(PatchgateError):
    """Raised when a deployment record was already rolled back."""
