# FILE: patchgate/deployment/verification.py
"""Parallel verification of a deployment's tests.

For every test module that received test files, the test runner is
started once with a filter limited to the deployed test classes. Modules
run concurrently up to a configured limit; results are collected and
aggregated only after every module has finished.

Key behaviors:
- Runner missing: whole call fails up front, nothing is run
- Module without a compiled binary: logged and listed as skipped
- A timeout or crash in one module never aborts its siblings
- Any failing test outside the deployed classes marks a breaking change
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from datetime import datetime
from typing import Iterable, List, Optional

from patchgate.deployment.cancellation import CancellationToken, ensure_token
from patchgate.deployment.config import DeploymentConfig
from patchgate.deployment.errors import OperationCancelledError, ToolNotFoundError, VerificationSetupError
from patchgate.deployment.process_runner import ProcessRunner
from patchgate.deployment.schemas import (
    FileCopyResult,
    ModuleGraph,
    TestCaseStatus,
    TestExecutionSummary,
    TestOutcome,
    utc_now,
)
from patchgate.deployment.test_discovery import TestModulePlan, build_filter, plan_test_modules
from patchgate.deployment.test_results import classify, parse_console_output, parse_results_xml
from patchgate.deployment.tool_locator import ToolLocator

logger = logging.getLogger(__name__)


class VerificationRunner:
    """Runs affected tests with bounded parallelism."""

    def __init__(
        self,
        config: DeploymentConfig,
        runner: Optional[ProcessRunner] = None,
        locator: Optional[ToolLocator] = None,
    ):
        self.config = config
        self.runner = runner or ProcessRunner()
        self.locator = locator or ToolLocator(config.test_tool)

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def verify(
        self,
        graph: ModuleGraph,
        copy_results: Iterable[FileCopyResult],
        cancel: Optional[CancellationToken] = None,
    ) -> TestExecutionSummary:
        """Run the tests touched by `copy_results`.

        Raises:
            OperationCancelledError: token fired before a module run started
        """
        cancel = ensure_token(cancel)
        summary = TestExecutionSummary(started_at=utc_now())
        logger.info("[verify] Starting test execution for deployment")

        loop = asyncio.get_running_loop()
        try:
            tool_path = await loop.run_in_executor(None, self._require_runner)
        except VerificationSetupError as e:
            logger.error(f"[verify] {e}")
            summary.error = str(e)
            summary.finished_at = utc_now()
            return summary

        plans = await loop.run_in_executor(
            None, plan_test_modules, graph, list(copy_results), self.config.test_configuration
        )
        runnable: List[TestModulePlan] = []
        for plan in plans:
            if plan.binary_path:
                runnable.append(plan)
            else:
                logger.warning(f"[verify] Could not find test binary for module: {plan.module.name}")
                summary.skipped_modules.append(plan.module.name)

        if not runnable:
            summary.skipped = True
            summary.skip_reason = "No test modules affected" if not plans else "No test binaries found"
            summary.success = True
            summary.finished_at = utc_now()
            logger.info(f"[verify] Skipped: {summary.skip_reason}")
            return summary

        logger.info(
            f"[verify] Running {len(runnable)} test module(s), "
            f"max {self.config.max_parallel_test_modules} at a time"
        )
        results = await self._run_all(runnable, tool_path, cancel)
        self._aggregate(summary, results)
        summary.finished_at = utc_now()

        logger.info(
            f"[verify] Test execution completed: {summary.passed_tests}/{summary.total_tests} passed, "
            f"{summary.failed_tests} failed, breaking: {summary.is_breaking_change}"
        )
        return summary

    def _require_runner(self) -> str:
        try:
            return self.locator.require()
        except ToolNotFoundError as e:
            raise VerificationSetupError(str(e)) from e

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------

    async def _run_all(
        self,
        plans: List[TestModulePlan],
        tool_path: str,
        cancel: CancellationToken,
    ) -> List[TestOutcome]:
        semaphore = asyncio.Semaphore(max(1, self.config.max_parallel_test_modules))
        results: List[TestOutcome] = []

        async def _guarded(plan: TestModulePlan) -> None:
            async with semaphore:
                cancel.raise_if_cancelled(f"testing {plan.module.name}")
                try:
                    outcome = await self.run_module(plan, tool_path)
                except OperationCancelledError:
                    raise
                except Exception as e:
                    logger.exception(f"[verify] Failed to run tests for {plan.module.name}: {e}")
                    outcome = TestOutcome(module_name=plan.module.name, error=str(e))
                results.append(outcome)

        gathered = await asyncio.gather(*(_guarded(p) for p in plans), return_exceptions=True)
        for item in gathered:
            if isinstance(item, BaseException):
                raise item
        return results

    async def run_module(self, plan: TestModulePlan, tool_path: str) -> TestOutcome:
        """Run one module's filtered tests and classify the results."""
        start = time.monotonic()
        module_name = plan.module.name
        logger.info(f"[verify] Running tests for {module_name} ({len(plan.units)} classes)")

        try:
            os.makedirs(self.config.results_dir, exist_ok=True)
        except OSError as e:
            return TestOutcome(module_name=module_name, error=f"Cannot create results directory: {e}")

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        results_path = os.path.join(
            self.config.results_dir, f"{module_name}_{stamp}_{uuid.uuid4().hex[:8]}.xml"
        )
        test_filter = build_filter(plan.units)
        command = [tool_path] + [
            a.replace("{binary}", plan.binary_path or "")
            .replace("{filter}", test_filter)
            .replace("{results}", results_path)
            for a in self.config.test_args
        ]

        result = await self.runner.run(
            command,
            cwd=os.path.dirname(plan.binary_path or "") or None,
            timeout=self.config.test_timeout_seconds,
        )

        if result.timed_out:
            outcome = TestOutcome(
                module_name=module_name,
                error=f"Test execution timed out after {self.config.test_timeout_seconds}s",
                raw_output=result.output,
            )
            outcome.duration_seconds = time.monotonic() - start
            logger.warning(f"[verify] {module_name}: {outcome.error}")
            return outcome

        loop = asyncio.get_running_loop()
        parsed = await loop.run_in_executor(None, parse_results_xml, results_path)
        parsed = parsed or parse_console_output(result.output)
        outcome = classify(module_name, parsed, plan.units)
        outcome.raw_output = result.output
        outcome.success = result.exit_code == 0 and outcome.failed_tests == 0
        outcome.duration_seconds = time.monotonic() - start

        logger.info(
            f"[verify] {module_name}: {outcome.passed_tests} passed, {outcome.failed_tests} failed, "
            f"{outcome.skipped_tests} skipped ({parsed.source.value})"
        )
        return outcome

    # -------------------------------------------------------------------------
    # Aggregation
    # -------------------------------------------------------------------------

    @staticmethod
    def _aggregate(summary: TestExecutionSummary, results: List[TestOutcome]) -> None:
        for result in results:
            summary.module_results.append(result)
            summary.total_tests += result.total_tests
            summary.passed_tests += result.passed_tests
            summary.failed_tests += result.failed_tests
            summary.skipped_tests += result.skipped_tests
            summary.new_tests_passed += result.new_tests_passed
            summary.new_tests_failed += result.new_tests_failed
            summary.existing_tests_failed += result.existing_tests_failed
            if result.is_breaking_change:
                summary.is_breaking_change = True
            summary.failed_cases.extend(c for c in result.cases if c.status is TestCaseStatus.FAILED)

        errors = [f"{r.module_name}: {r.error}" for r in results if r.error]
        if errors:
            summary.error = "; ".join(errors)
        summary.success = summary.failed_tests == 0 and all(r.success for r in results)
