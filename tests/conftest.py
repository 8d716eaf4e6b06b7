# FILE: tests/conftest.py
"""
Pytest configuration for the patchgate test suite.

Provides:
- FakeRunner: stands in for ProcessRunner, records commands, returns canned results
- found_locator / missing_locator: ToolLocators that never touch the real filesystem
- codebase: a small on-disk codebase (Core, Api, Core.Tests) plus its ModuleGraph
"""
import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import asyncio

import pytest

from patchgate.deployment.config import DeploymentConfig
from patchgate.deployment.process_runner import ProcessResult
from patchgate.deployment.schemas import ModuleDescriptor, ModuleGraph
from patchgate.deployment.tool_locator import ToolLocator, ToolSpec


# =============================================================================
# Fakes
# =============================================================================

class FakeRunner:
    """Async drop-in for ProcessRunner.

    `handler(command, cwd)` may return a ProcessResult (or a coroutine
    producing one); by default every command succeeds with empty output.
    """

    def __init__(self, handler=None, delay: float = 0.0):
        self.handler = handler
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def run(self, command, *, cwd=None, timeout=300):
        self.calls.append(list(command))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.handler is None:
                return ProcessResult(command=list(command), exit_code=0)
            result = self.handler(list(command), cwd)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        finally:
            self.active -= 1


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def found_locator():
    """Locator that 'finds' /tools/fake-tool."""
    spec = ToolSpec(name="Fake Tool", candidate_paths=("/tools/fake-tool",))
    return ToolLocator(spec, exists=lambda p: True, which=lambda n: None)


@pytest.fixture
def missing_locator():
    """Locator for a tool that is installed nowhere."""
    spec = ToolSpec(name="Fake Tool", candidate_paths=("/nowhere/fake-tool",), path_lookup="fake-tool")
    return ToolLocator(spec, exists=lambda p: False, which=lambda n: None)


@pytest.fixture
def config(tmp_path):
    return DeploymentConfig(results_dir=str(tmp_path / "results"))


# =============================================================================
# Sample codebase
# =============================================================================

CLASSIC_CORE_MANIFEST = """<?xml version="1.0" encoding="utf-8"?>
<Project ToolsVersion="15.0" xmlns="http://schemas.microsoft.com/developer/msbuild/2003">
  <PropertyGroup>
    <RootNamespace>Acme.Core</RootNamespace>
  </PropertyGroup>
  <ItemGroup>
    <Compile Include="Models\\Order.cs" />
  </ItemGroup>
</Project>
"""

SDK_MANIFEST = """<Project Sdk="Microsoft.NET.Sdk">
  <PropertyGroup>
    <TargetFramework>net8.0</TargetFramework>
  </PropertyGroup>
</Project>
"""

ORDER_SOURCE = """using System;

namespace Acme.Core.Models
{
    public class Order
    {
        public decimal Total { get; set; }

        // Applies a flat discount
        public decimal ApplyDiscount(decimal amount)
        {
            return Total - amount;
        }

        public override string ToString()
        {
            return $"Order {Total}";
        }
    }
}
"""


@pytest.fixture
def codebase(tmp_path):
    """Write a three-module codebase under tmp_path/src and return its graph."""
    root = tmp_path / "src"
    (root / "Core" / "Models").mkdir(parents=True)
    (root / "Core" / "Core.csproj").write_text(CLASSIC_CORE_MANIFEST, encoding="utf-8")
    (root / "Core" / "Models" / "Order.cs").write_text(ORDER_SOURCE, encoding="utf-8")

    (root / "Api").mkdir()
    (root / "Api" / "Api.csproj").write_text(SDK_MANIFEST, encoding="utf-8")

    (root / "Core.Tests").mkdir()
    (root / "Core.Tests" / "Core.Tests.csproj").write_text(SDK_MANIFEST, encoding="utf-8")

    graph = ModuleGraph(
        codebase_path=str(root),
        modules=[
            ModuleDescriptor(
                name="Core",
                manifest_path="Core/Core.csproj",
                root_namespace="Acme.Core",
                namespaces=["Acme.Core", "Acme.Core.Models"],
                namespace_folder_map={"": "", "Models": "Models"},
            ),
            ModuleDescriptor(
                name="Api",
                manifest_path="Api/Api.csproj",
                root_namespace="Acme.Api",
                namespaces=["Acme.Api"],
                dependencies=["../Core/Core.csproj"],
            ),
            ModuleDescriptor(
                name="Core.Tests",
                manifest_path="Core.Tests/Core.Tests.csproj",
                root_namespace="Acme.Core.Tests",
                namespaces=["Acme.Core.Tests"],
                dependencies=["Core"],
                is_test_module=True,
            ),
        ],
    )
    return graph
