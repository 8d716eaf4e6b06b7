# FILE: patchgate/deployment/cancellation.py
"""Cooperative cancellation shared by every long-running deployment step.

A single token is threaded through copy loops, manifest loops, each module
build and each test task. Work already committed when the token fires is
left in place; rollback is always an explicit caller decision.
"""

from __future__ import annotations

import threading
from typing import Optional

from patchgate.deployment.errors import OperationCancelledError


class CancellationToken:
    """Thread-safe cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def raise_if_cancelled(self, step: str = "") -> None:
        if self._event.is_set():
            detail = f" before {step}" if step else ""
            raise OperationCancelledError(f"Operation {self._reason or 'cancelled'}{detail}")


def ensure_token(token: Optional[CancellationToken]) -> CancellationToken:
    return token if token is not None else CancellationToken()
