# FILE: patchgate/deployment/test_results.py
"""Parsing and classification of test runner output.

The structured NUnit-style XML results file is preferred. When it is
missing or unreadable, the console summary is parsed instead.
"""

from __future__ import annotations

import logging
import os
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from patchgate.deployment.schemas import (
    ResultsSource,
    TestCaseOutcome,
    TestCaseStatus,
    TestOutcome,
    TestUnit,
)

logger = logging.getLogger(__name__)

_CONSOLE_TOTAL = re.compile(r"Test Count:\s*(\d+)", re.IGNORECASE)
_CONSOLE_PASSED = re.compile(r"Passed:\s*(\d+)", re.IGNORECASE)
_CONSOLE_FAILED = re.compile(r"Failed:\s*(\d+)", re.IGNORECASE)
_CONSOLE_SKIPPED = re.compile(r"(?:Skipped|Inconclusive):\s*(\d+)", re.IGNORECASE)
# e.g. "1) Failed : Acme.Tests.OrderTests.Totals"
_CONSOLE_FAILED_CASE = re.compile(r"Failed\s*:\s*(\S+)\.(\w+)\s*$", re.MULTILINE)

_STATUS_MAP = {
    "passed": TestCaseStatus.PASSED,
    "failed": TestCaseStatus.FAILED,
    "skipped": TestCaseStatus.SKIPPED,
    "inconclusive": TestCaseStatus.SKIPPED,
    "ignored": TestCaseStatus.SKIPPED,
}


@dataclass
class ParsedResults:
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    cases: List[TestCaseOutcome] = field(default_factory=list)
    source: ResultsSource = ResultsSource.STRUCTURED


def _int_attr(element: ET.Element, name: str) -> int:
    try:
        return int(element.get(name, "0"))
    except ValueError:
        return 0


def _child_text(element: Optional[ET.Element], path: str) -> Optional[str]:
    if element is None:
        return None
    child = element.find(path)
    return child.text if child is not None and child.text is not None else None


def parse_results_xml(path: str) -> Optional[ParsedResults]:
    """Parse a results file; None when it is absent or not valid XML."""
    if not path or not os.path.isfile(path):
        return None
    try:
        root = ET.parse(path).getroot()
    except (ET.ParseError, OSError) as e:
        logger.warning(f"[verify] Could not parse results file {path}: {e}")
        return None

    run = root if root.tag == "test-run" else root.find(".//test-run")
    if run is None:
        run = root

    parsed = ParsedResults(
        total=_int_attr(run, "total"),
        passed=_int_attr(run, "passed"),
        failed=_int_attr(run, "failed"),
        skipped=_int_attr(run, "skipped"),
    )

    for case in run.iter("test-case"):
        status = _STATUS_MAP.get((case.get("result") or "").lower(), TestCaseStatus.SKIPPED)
        failure = case.find("failure")
        try:
            duration = float(case.get("duration", "0") or 0)
        except ValueError:
            duration = 0.0
        parsed.cases.append(
            TestCaseOutcome(
                full_name=case.get("fullname", ""),
                class_name=case.get("classname", ""),
                method_name=case.get("name", ""),
                status=status,
                duration_seconds=duration,
                message=(_child_text(failure, "message") or "Test failed") if status is TestCaseStatus.FAILED else None,
                stack_trace=_child_text(failure, "stack-trace"),
            )
        )
    return parsed


def parse_console_output(output: str) -> ParsedResults:
    """Fallback parse of the runner's console summary."""
    parsed = ParsedResults(source=ResultsSource.CONSOLE)
    for pattern, attr in (
        (_CONSOLE_TOTAL, "total"),
        (_CONSOLE_PASSED, "passed"),
        (_CONSOLE_FAILED, "failed"),
        (_CONSOLE_SKIPPED, "skipped"),
    ):
        match = pattern.search(output or "")
        if match:
            setattr(parsed, attr, int(match.group(1)))

    for match in _CONSOLE_FAILED_CASE.finditer(output or ""):
        class_name, method_name = match.group(1), match.group(2)
        parsed.cases.append(
            TestCaseOutcome(
                full_name=f"{class_name}.{method_name}",
                class_name=class_name,
                method_name=method_name,
                status=TestCaseStatus.FAILED,
                message="Test failed - see output for details",
            )
        )
    return parsed


def is_new_test_case(case: TestCaseOutcome, units: Sequence[TestUnit]) -> bool:
    """True when the case belongs to one of the deployed test classes."""
    class_full = case.class_name.lower()
    class_simple = class_full.rsplit(".", 1)[-1]
    full_name = case.full_name.lower()
    for unit in units:
        unit_full = unit.full_name.lower()
        if class_full == unit_full or full_name.startswith(unit_full + "."):
            return True
        if class_simple and class_simple == unit.class_name.lower():
            return True
    return False


def classify(
    module_name: str,
    parsed: ParsedResults,
    units: Sequence[TestUnit],
) -> TestOutcome:
    """Build a module's TestOutcome, splitting failures into new vs existing."""
    outcome = TestOutcome(
        module_name=module_name,
        total_tests=parsed.total,
        passed_tests=parsed.passed,
        failed_tests=parsed.failed,
        skipped_tests=parsed.skipped,
        results_source=parsed.source,
    )

    has_passed_cases = False
    for case in parsed.cases:
        case.is_new_test = is_new_test_case(case, units)
        outcome.cases.append(case)
        if case.status is TestCaseStatus.FAILED:
            if case.is_new_test:
                outcome.new_tests_failed += 1
            else:
                outcome.existing_tests_failed += 1
                logger.warning(f"[verify] Existing test failed: {case.full_name}")
        elif case.status is TestCaseStatus.PASSED:
            has_passed_cases = True
            if case.is_new_test:
                outcome.new_tests_passed += 1

    if not has_passed_cases:
        # Console output lists failures only; the run was filtered to new classes
        outcome.new_tests_passed = parsed.passed

    # Counts missing from the summary are derived from the cases
    if not outcome.failed_tests:
        outcome.failed_tests = outcome.new_tests_failed + outcome.existing_tests_failed

    outcome.is_breaking_change = outcome.existing_tests_failed > 0
    return outcome
