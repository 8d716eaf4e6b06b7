# FILE: patchgate/deployment/build_orchestrator.py
"""Dependency-aware build of the modules a deployment touched.

Only the modules that received files are rebuilt, followed by the modules
that reference them (one level by default). Builds run one at a time in
that order through the external build tool; a failure in one module does
not stop the others. A dependent module that fails to build is reported
as a breaking change.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from patchgate.deployment.cancellation import CancellationToken, ensure_token
from patchgate.deployment.config import DeploymentConfig
from patchgate.deployment.errors import BuildSetupError, ToolNotFoundError
from patchgate.deployment.process_runner import ProcessRunner
from patchgate.deployment.schemas import (
    BuildOutcome,
    BuildReport,
    DependentScope,
    ModuleDescriptor,
    ModuleGraph,
    ResolvedMapping,
)
from patchgate.deployment.tool_locator import ToolLocator

logger = logging.getLogger(__name__)

MAX_SUMMARY_LINES = 10


# =============================================================================
# Build set
# =============================================================================

def touched_modules(graph: ModuleGraph, mappings: Iterable[ResolvedMapping]) -> List[ModuleDescriptor]:
    """Distinct owning modules of `mappings`, in discovery order."""
    seen: Set[str] = set()
    modules: List[ModuleDescriptor] = []
    for mapping in mappings:
        module = graph.get(mapping.module_name)
        if module is None or module.name.lower() in seen:
            continue
        seen.add(module.name.lower())
        modules.append(module)
    return modules


def _references(dependency: str, module: ModuleDescriptor) -> bool:
    """True if a dependency entry (name or manifest path) points at `module`."""
    base = dependency.replace("\\", "/").rstrip("/").rsplit("/", 1)[-1].lower()
    stem = os.path.splitext(base)[0]
    name = module.name.lower()
    manifest_base = os.path.basename(module.manifest_path).lower()
    manifest_stem = os.path.splitext(manifest_base)[0]
    return base in (name, manifest_base) or stem in (name, manifest_stem)


def find_dependents(
    graph: ModuleGraph,
    touched: Sequence[ModuleDescriptor],
    scope: DependentScope = DependentScope.DIRECT,
) -> List[ModuleDescriptor]:
    """Modules that reference any touched module.

    DIRECT stops after one level. TRANSITIVE follows references until no
    new modules are found.
    """
    touched_names = {m.name.lower() for m in touched}
    dependents: List[ModuleDescriptor] = []
    found: Set[str] = set()
    frontier = deque(touched)

    while frontier:
        target = frontier.popleft()
        for module in graph.modules:
            key = module.name.lower()
            if key in touched_names or key in found:
                continue
            if any(_references(dep, target) for dep in module.dependencies):
                found.add(key)
                dependents.append(module)
                logger.info(f"[build] Found dependent module: {module.name} (references {target.name})")
                if scope is DependentScope.TRANSITIVE:
                    frontier.append(module)

    return dependents


def compute_build_order(
    graph: ModuleGraph,
    mappings: Iterable[ResolvedMapping],
    scope: DependentScope = DependentScope.DIRECT,
) -> Tuple[List[ModuleDescriptor], Set[str]]:
    """Touched modules then their dependents.

    Returns:
        (modules in build order, lower-cased names of the dependent ones)
    """
    touched = touched_modules(graph, mappings)
    dependents = find_dependents(graph, touched, scope)
    return touched + dependents, {m.name.lower() for m in dependents}


def summarize_errors(
    output: str,
    markers: Sequence[str],
    exit_code: Optional[int],
    limit: int = MAX_SUMMARY_LINES,
) -> str:
    lines: List[str] = []
    for line in output.splitlines():
        line = line.strip()
        if line and any(marker in line for marker in markers) and line not in lines:
            lines.append(line)
            if len(lines) >= limit:
                break
    if lines:
        return "\n".join(lines)
    return f"Build failed with exit code {exit_code}"


# =============================================================================
# Orchestrator
# =============================================================================

class BuildOrchestrator:
    """Builds touched modules and their dependents with the external build tool."""

    def __init__(
        self,
        config: DeploymentConfig,
        runner: Optional[ProcessRunner] = None,
        locator: Optional[ToolLocator] = None,
    ):
        self.config = config
        self.runner = runner or ProcessRunner()
        self.locator = locator or ToolLocator(config.build_tool)

    def _manifest_abs(self, graph: ModuleGraph, module: ModuleDescriptor) -> str:
        return os.path.normpath(os.path.join(graph.codebase_path, module.manifest_path))

    def _command(self, tool_path: str, manifest: str) -> List[str]:
        args = [
            a.replace("{manifest}", manifest).replace("{configuration}", self.config.build_configuration)
            for a in self.config.build_args
        ]
        return [tool_path] + args

    def _check_setup(self, graph: ModuleGraph, order: Sequence[ModuleDescriptor]) -> str:
        try:
            tool_path = self.locator.require()
        except ToolNotFoundError as e:
            raise BuildSetupError(str(e)) from e

        missing = [
            m.name for m in order if not os.path.isfile(self._manifest_abs(graph, m))
        ]
        if missing:
            raise BuildSetupError(f"Manifest not found for module(s): {', '.join(missing)}")
        return tool_path

    async def build(
        self,
        graph: ModuleGraph,
        mappings: Sequence[ResolvedMapping],
        cancel: Optional[CancellationToken] = None,
    ) -> BuildReport:
        """Build every module in the computed order.

        Raises:
            BuildSetupError: build tool or a manifest is missing; nothing built
            OperationCancelledError: token fired before a module build
        """
        cancel = ensure_token(cancel)
        order, dependent_names = compute_build_order(graph, mappings, self.config.dependent_scope)
        report = BuildReport(build_order=[m.name for m in order])

        if not order:
            logger.info("[build] No modules touched - nothing to build")
            report.success = True
            return report

        # Tool discovery may shell out and manifests are checked on disk
        loop = asyncio.get_running_loop()
        tool_path = await loop.run_in_executor(None, self._check_setup, graph, order)
        logger.info(f"[build] Building {len(order)} module(s) (touched + dependents)")

        for module in order:
            cancel.raise_if_cancelled(f"building {module.name}")
            outcome = await self.build_module(
                graph, module, tool_path, is_dependent=module.name.lower() in dependent_names
            )
            report.outcomes.append(outcome)
            if not outcome.success:
                logger.warning(f"[build] Build failed for {module.name}: {outcome.error_summary}")
                if outcome.is_breaking_change:
                    report.breaking_modules.append(module.name)

        report.success = all(o.success for o in report.outcomes)
        return report

    async def build_module(
        self,
        graph: ModuleGraph,
        module: ModuleDescriptor,
        tool_path: str,
        is_dependent: bool = False,
    ) -> BuildOutcome:
        manifest = self._manifest_abs(graph, module)
        outcome = BuildOutcome(
            module_name=module.name,
            manifest_path=manifest,
            is_dependent=is_dependent,
        )

        logger.info(f"[build] Building module: {module.name}")
        result = await self.runner.run(
            self._command(tool_path, manifest),
            cwd=os.path.dirname(manifest) or None,
            timeout=self.config.build_timeout_seconds,
        )

        outcome.output = result.output.strip()
        outcome.exit_code = result.exit_code
        outcome.duration_seconds = result.duration_seconds
        outcome.timed_out = result.timed_out

        if result.timed_out:
            outcome.error_summary = f"Build timed out after {self.config.build_timeout_seconds}s"
        elif result.exit_code != 0 or any(m in outcome.output for m in self.config.error_markers):
            outcome.error_summary = summarize_errors(
                outcome.output, self.config.error_markers, result.exit_code
            )
        else:
            outcome.success = True
            logger.info(f"[build] Build successful: {module.name}")

        outcome.is_breaking_change = is_dependent and not outcome.success
        return outcome
