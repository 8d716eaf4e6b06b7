# FILE: patchgate/deployment/tool_locator.py
"""Locates external build and test tools.

A ToolSpec describes *how* a tool may be found in this environment:
an ordered list of candidate paths, an optional discovery command whose
first output line is the tool path (e.g. vswhere for MSBuild), and an
optional executable name looked up on PATH. The locator tries them in
that order and caches the first hit.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from patchgate.deployment.errors import ToolNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    """How to find one external tool."""
    name: str
    candidate_paths: Tuple[str, ...] = field(default_factory=tuple)
    discovery_command: Tuple[str, ...] = field(default_factory=tuple)
    path_lookup: Optional[str] = None
    discovery_timeout: float = 5.0

    def with_override(self, explicit_path: Optional[str]) -> "ToolSpec":
        """Return a spec that tries `explicit_path` before anything else."""
        if not explicit_path:
            return self
        return ToolSpec(
            name=self.name,
            candidate_paths=(explicit_path,) + tuple(self.candidate_paths),
            discovery_command=self.discovery_command,
            path_lookup=self.path_lookup,
            discovery_timeout=self.discovery_timeout,
        )


class ToolLocator:
    """Resolves a ToolSpec to an executable path."""

    def __init__(
        self,
        spec: ToolSpec,
        *,
        exists: Callable[[str], bool] = os.path.isfile,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.spec = spec
        self._exists = exists
        self._which = which
        self._cached: Optional[str] = None
        self._searched: List[str] = []

    def locate(self) -> Optional[str]:
        if self._cached:
            return self._cached

        self._searched = []
        for candidate in self.spec.candidate_paths:
            self._searched.append(candidate)
            if candidate and self._exists(candidate):
                logger.debug(f"[tools] Found {self.spec.name} at {candidate}")
                self._cached = candidate
                return candidate

        discovered = self._run_discovery()
        if discovered:
            self._cached = discovered
            return discovered

        if self.spec.path_lookup:
            self._searched.append(f"PATH:{self.spec.path_lookup}")
            found = self._which(self.spec.path_lookup)
            if found:
                logger.debug(f"[tools] Found {self.spec.name} on PATH: {found}")
                self._cached = found
                return found

        return None

    def require(self) -> str:
        path = self.locate()
        if not path:
            logger.error(f"[tools] {self.spec.name} not found")
            raise ToolNotFoundError(self.spec.name, self._searched)
        return path

    def _run_discovery(self) -> Optional[str]:
        command = list(self.spec.discovery_command)
        if not command:
            return None
        # The discovery helper itself must exist, e.g. vswhere.exe
        if os.path.isabs(command[0]) and not self._exists(command[0]):
            return None

        self._searched.append(" ".join(command))
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.spec.discovery_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.warning(f"[tools] Discovery command for {self.spec.name} failed: {e}")
            return None

        for line in (result.stdout or "").splitlines():
            line = line.strip()
            if line and self._exists(line):
                logger.debug(f"[tools] Discovered {self.spec.name} at {line}")
                return line
        return None
