# FILE: patchgate/deployment/config.py
"""Deployment engine configuration.

All tunables in one place. Values come from PATCHGATE_* environment
variables (a .env file is loaded by main.py) and are frozen into a
DeploymentConfig that is built once and handed to every component.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass, field
from typing import Tuple

from patchgate.deployment.schemas import DependentScope
from patchgate.deployment.tool_locator import ToolSpec

# =============================================================================
# Defaults
# =============================================================================

DEFAULT_BUILD_TIMEOUT_SECONDS = 300
DEFAULT_TEST_TIMEOUT_SECONDS = 300
DEFAULT_MAX_PARALLEL_TEST_MODULES = 4
DEFAULT_BUILD_CONFIGURATION = "Debug"
DEFAULT_TEST_CONFIGURATION = "LocalTest"

# {manifest} and {configuration} are substituted per module
DEFAULT_BUILD_ARGS: Tuple[str, ...] = (
    "{manifest}",
    "/t:Build",
    "/p:Configuration={configuration}",
    "/nologo",
    "/v:minimal",
    "/m",
)

# {binary}, {filter} and {results} are substituted per test module
DEFAULT_TEST_ARGS: Tuple[str, ...] = (
    "{binary}",
    "--where",
    "{filter}",
    "--result={results}",
    "--labels=All",
    "--noheader",
)

# Some build tools exit 0 on partial failure, so output is scanned too
DEFAULT_ERROR_MARKERS: Tuple[str, ...] = ("error CS", "error MSB", ": error")

# Namespaces used by scaffolding written against a stand-in class
DEFAULT_PLACEHOLDER_NAMESPACES: Tuple[str, ...] = ("TargetedModification", "DummyWrapper")

DEFAULT_TEST_NAMESPACE_PREFIXES: Tuple[str, ...] = ("UnitTests", "IntegrationTests", "Tests", "Test")

MSBUILD_SPEC = ToolSpec(
    name="MSBuild",
    candidate_paths=(
        r"C:\Program Files\Microsoft Visual Studio\2022\Enterprise\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Program Files\Microsoft Visual Studio\2022\Professional\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Program Files\Microsoft Visual Studio\2022\Community\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Program Files\Microsoft Visual Studio\2022\BuildTools\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Program Files (x86)\Microsoft Visual Studio\2019\Enterprise\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Program Files (x86)\Microsoft Visual Studio\2019\Professional\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Program Files (x86)\Microsoft Visual Studio\2019\Community\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Program Files (x86)\Microsoft Visual Studio\2019\BuildTools\MSBuild\Current\Bin\MSBuild.exe",
        r"C:\Windows\Microsoft.NET\Framework64\v4.0.30319\MSBuild.exe",
        r"C:\Windows\Microsoft.NET\Framework\v4.0.30319\MSBuild.exe",
    ),
    discovery_command=(
        r"C:\Program Files (x86)\Microsoft Visual Studio\Installer\vswhere.exe",
        "-latest",
        "-requires",
        "Microsoft.Component.MSBuild",
        "-find",
        r"MSBuild\**\Bin\MSBuild.exe",
    ),
    path_lookup="msbuild",
)

NUNIT_CONSOLE_SPEC = ToolSpec(
    name="NUnit Console Runner",
    candidate_paths=(
        r"C:\ProgramData\patchgate\tools\NUnit.ConsoleRunner\tools\nunit3-console.exe",
    ),
    path_lookup="nunit3-console",
)


# =============================================================================
# Env helpers
# =============================================================================

def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, "").strip() or default)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _env_list(name: str, default: Tuple[str, ...], sep: str = ",") -> Tuple[str, ...]:
    raw = os.environ.get(name, "")
    items = tuple(s.strip() for s in raw.split(sep) if s.strip())
    return items or default


def _default_results_dir() -> str:
    return os.path.join(tempfile.gettempdir(), "patchgate", "TestResults")


# =============================================================================
# Config object
# =============================================================================

@dataclass(frozen=True)
class DeploymentConfig:
    """Immutable engine settings, constructed once at startup."""

    build_timeout_seconds: int = DEFAULT_BUILD_TIMEOUT_SECONDS
    test_timeout_seconds: int = DEFAULT_TEST_TIMEOUT_SECONDS
    max_parallel_test_modules: int = DEFAULT_MAX_PARALLEL_TEST_MODULES
    build_configuration: str = DEFAULT_BUILD_CONFIGURATION
    test_configuration: str = DEFAULT_TEST_CONFIGURATION

    build_tool: ToolSpec = MSBUILD_SPEC
    build_args: Tuple[str, ...] = DEFAULT_BUILD_ARGS
    test_tool: ToolSpec = NUNIT_CONSOLE_SPEC
    test_args: Tuple[str, ...] = DEFAULT_TEST_ARGS

    error_markers: Tuple[str, ...] = DEFAULT_ERROR_MARKERS
    placeholder_namespaces: Tuple[str, ...] = DEFAULT_PLACEHOLDER_NAMESPACES
    test_namespace_prefixes: Tuple[str, ...] = DEFAULT_TEST_NAMESPACE_PREFIXES

    results_dir: str = field(default_factory=_default_results_dir)
    dependent_scope: DependentScope = DependentScope.DIRECT
    capture_preimages: bool = False

    @classmethod
    def from_env(cls) -> "DeploymentConfig":
        """Read PATCHGATE_* overrides from the environment."""
        build_tool_path = os.environ.get("PATCHGATE_BUILD_TOOL", "").strip() or None
        test_tool_path = os.environ.get("PATCHGATE_TEST_TOOL", "").strip() or None

        scope_raw = os.environ.get("PATCHGATE_DEPENDENT_SCOPE", "").strip().lower()
        try:
            scope = DependentScope(scope_raw) if scope_raw else DependentScope.DIRECT
        except ValueError:
            scope = DependentScope.DIRECT

        return cls(
            build_timeout_seconds=_env_int("PATCHGATE_BUILD_TIMEOUT", DEFAULT_BUILD_TIMEOUT_SECONDS),
            test_timeout_seconds=_env_int("PATCHGATE_TEST_TIMEOUT", DEFAULT_TEST_TIMEOUT_SECONDS),
            max_parallel_test_modules=max(
                1, _env_int("PATCHGATE_MAX_PARALLEL_TESTS", DEFAULT_MAX_PARALLEL_TEST_MODULES)
            ),
            build_configuration=os.environ.get(
                "PATCHGATE_BUILD_CONFIGURATION", DEFAULT_BUILD_CONFIGURATION
            ),
            test_configuration=os.environ.get(
                "PATCHGATE_TEST_CONFIGURATION", DEFAULT_TEST_CONFIGURATION
            ),
            build_tool=MSBUILD_SPEC.with_override(build_tool_path),
            test_tool=NUNIT_CONSOLE_SPEC.with_override(test_tool_path),
            error_markers=_env_list("PATCHGATE_ERROR_MARKERS", DEFAULT_ERROR_MARKERS),
            placeholder_namespaces=_env_list(
                "PATCHGATE_PLACEHOLDER_NAMESPACES", DEFAULT_PLACEHOLDER_NAMESPACES
            ),
            results_dir=os.environ.get("PATCHGATE_RESULTS_DIR", "").strip() or _default_results_dir(),
            dependent_scope=scope,
            capture_preimages=_env_bool("PATCHGATE_CAPTURE_PREIMAGES", False),
        )
