# FILE: tests/test_deployer.py
"""
Tests for patchgate/deployment/deployer.py
Deployment transaction - resolve, write, merge, register, build.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import dataclasses

import pytest

from patchgate.deployment.build_orchestrator import BuildOrchestrator
from patchgate.deployment.cancellation import CancellationToken
from patchgate.deployment.deployer import Deployer
from patchgate.deployment.schemas import (
    GeneratedArtifact,
    MergeMode,
    ResolutionConfidence,
    ResolvedMapping,
)

from conftest import FakeRunner, ORDER_SOURCE


INVOICE = """namespace Acme.Core.Models
{
    public class Invoice
    {
        public decimal Amount { get; set; }
    }
}
"""

MODIFIED_ORDER = """namespace Acme.Core.Models
{
    public class Order
    {
        public decimal ApplyDiscount(decimal amount)
        {
            if (amount < 0) { throw new ArgumentException("negative } amount"); }
            return Total - amount;
        }
    }
}
"""

ORDER_TESTS = """using NUnit.Framework;
using TargetedModification;

namespace Acme.Core.Tests
{
    [TestFixture]
    public class OrderTests
    {
        [Test]
        public void Discount()
        {
            var order = new TargetedModification.DummyWrapper();
        }
    }
}
"""


def _invoice() -> GeneratedArtifact:
    return GeneratedArtifact(relative_path="Generated/Invoice.cs", content=INVOICE)


def _order_change(method: str = "ApplyDiscount") -> GeneratedArtifact:
    return GeneratedArtifact(
        relative_path="Generated/Order.cs",
        content=MODIFIED_ORDER,
        is_modification=True,
        target_method=method,
        target_type="Order",
    )


def _order_tests() -> GeneratedArtifact:
    return GeneratedArtifact(
        relative_path="Generated/Tests/OrderTests.cs",
        content=ORDER_TESTS,
        is_test_artifact=True,
        real_namespace="Acme.Core.Models",
        real_type_name="Order",
    )


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def deployer(config, runner, found_locator):
    return Deployer(config, BuildOrchestrator(config, runner, found_locator))


class TestDeploy:
    """Test the full deploy pipeline."""

    async def test_new_modified_and_test_files(self, codebase, deployer, runner):
        root = Path(codebase.codebase_path)
        record = await deployer.deploy(codebase, [_invoice(), _order_change(), _order_tests()])

        assert record.success, record.error
        assert record.error is None
        assert record.new_files_created == 2
        assert record.files_modified == 1
        assert record.total_files_copied == 3
        assert [m.confidence for m in record.mappings] == [ResolutionConfidence.EXACT] * 3

        invoice = root / "Core" / "Models" / "Invoice.cs"
        assert invoice.read_text(encoding="utf-8") == INVOICE

        order = (root / "Core" / "Models" / "Order.cs").read_text(encoding="utf-8")
        assert 'throw new ArgumentException("negative } amount");' in order
        assert "public override string ToString()" in order
        assert "namespace Acme.Core.Models" in order
        assert record.copy_results[1].merge_mode is MergeMode.METHOD_MERGE

        tests = (root / "Core.Tests" / "OrderTests.cs").read_text(encoding="utf-8")
        assert "using Acme.Core.Models;" in tests
        assert "new Order();" in tests
        assert "TargetedModification" not in tests

        manifests = {r.module_name: r for r in record.manifest_results}
        assert manifests["Core"].added_entries == ["Models\\Invoice.cs"]
        assert manifests["Core.Tests"].message == "SDK-style project - files auto-included"
        assert '<Compile Include="Models\\Invoice.cs" />' in (root / "Core" / "Core.csproj").read_text(encoding="utf-8")

        assert record.build_report.build_order == ["Core", "Core.Tests", "Api"]
        assert len(runner.calls) == 3

    async def test_deploy_is_idempotent(self, codebase, deployer):
        root = Path(codebase.codebase_path)
        first = await deployer.deploy(codebase, [_invoice()])
        manifest_after_first = (root / "Core" / "Core.csproj").read_text(encoding="utf-8")
        second = await deployer.deploy(codebase, [_invoice()])

        assert first.copy_results[0].target_path == second.copy_results[0].target_path
        assert (root / "Core" / "Models" / "Invoice.cs").read_text(encoding="utf-8") == INVOICE
        assert (root / "Core" / "Core.csproj").read_text(encoding="utf-8") == manifest_after_first
        assert first.copy_results[0].is_new_file
        assert not second.copy_results[0].is_new_file
        assert second.copy_results[0].merge_mode is MergeMode.FULL_REPLACE
        assert second.manifest_results[0].added_entries == []
        assert first.deployment_id != second.deployment_id

    async def test_degraded_merge_replaces_file_with_warning(self, codebase, deployer):
        artifact = _order_change(method="DoesNotExist")
        record = await deployer.deploy(codebase, [artifact])

        result = record.copy_results[0]
        assert result.success
        assert result.merge_mode is MergeMode.DEGRADED_FULL_REPLACE
        assert any("Method merge failed" in w for w in record.warnings)
        target = Path(result.target_path)
        assert target.read_text(encoding="utf-8") == artifact.content

    async def test_unresolved_artifact_uses_fallback(self, codebase, deployer):
        artifact = GeneratedArtifact(
            relative_path="Generated/Misc/Thing.cs",
            content="namespace Somewhere.Else\n{\n}\n",
        )
        record = await deployer.deploy(codebase, [artifact])

        assert record.mappings[0].confidence is ResolutionConfidence.UNRESOLVED
        assert any("No module mapping" in w for w in record.warnings)
        assert Path(codebase.codebase_path, "Misc", "Thing.cs").is_file()
        assert record.manifest_results == []

    async def test_parent_segments_stay_inside_codebase(self, codebase, deployer):
        artifact = GeneratedArtifact(
            relative_path="../../outside/Evil.cs",
            content="namespace Somewhere.Else\n{\n}\n",
        )
        record = await deployer.deploy(codebase, [artifact])

        root = Path(codebase.codebase_path)
        assert record.copy_results[0].success
        assert (root / "outside" / "Evil.cs").is_file()
        assert not (root.parent / "outside").exists()

    async def test_build_setup_failure_is_recorded(self, codebase, config, missing_locator):
        deployer = Deployer(config, BuildOrchestrator(config, FakeRunner(), missing_locator))

        record = await deployer.deploy(codebase, [_invoice()])

        assert not record.success
        assert "Fake Tool not found" in record.error
        assert record.build_report.error == record.error
        assert record.copy_results[0].success

    async def test_failed_build_fails_deployment(self, codebase, config, found_locator):
        from patchgate.deployment.process_runner import ProcessResult

        runner = FakeRunner(lambda c, cwd: ProcessResult(command=c, exit_code=1, stdout="a.cs: error CS1: x"))
        deployer = Deployer(config, BuildOrchestrator(config, runner, found_locator))

        record = await deployer.deploy(codebase, [_invoice()])

        assert not record.success
        assert record.error is None
        assert not record.build_report.success

    async def test_cancelled_before_first_write(self, codebase, deployer):
        token = CancellationToken()
        token.cancel("shutdown")

        record = await deployer.deploy(codebase, [_invoice()], cancel=token)

        assert not record.success
        assert "shutdown" in record.error
        assert record.copy_results == []
        assert not Path(codebase.codebase_path, "Core", "Models", "Invoice.cs").exists()

    async def test_preimage_capture(self, codebase, config, runner, found_locator):
        config = dataclasses.replace(config, capture_preimages=True)
        deployer = Deployer(config, BuildOrchestrator(config, runner, found_locator))

        record = await deployer.deploy(codebase, [_order_change()])

        assert record.copy_results[0].previous_content == ORDER_SOURCE

    async def test_explicit_deployment_id(self, codebase, deployer):
        record = await deployer.deploy(codebase, [_invoice()], deployment_id="dep-42")
        assert record.deployment_id == "dep-42"
        assert record.to_dict()["new_files_created"] == 1


class TestWriteArtifact:
    """Test single-file writes."""

    def test_io_error_is_recorded(self, tmp_path, deployer):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory", encoding="utf-8")
        mapping = ResolvedMapping(artifact=_invoice(), target_path=str(blocker / "Invoice.cs"), module_name="Core")

        result = deployer.write_artifact(mapping)

        assert not result.success
        assert result.error

    def test_empty_target(self, deployer):
        result = deployer.write_artifact(ResolvedMapping(artifact=_invoice(), target_path=""))
        assert result.error == "Could not determine target path"

    def test_target_outside_codebase_is_refused(self, tmp_path, deployer):
        codebase_path = tmp_path / "src"
        codebase_path.mkdir()
        outside = tmp_path / "outside" / "Evil.cs"
        mapping = ResolvedMapping(artifact=_invoice(), target_path=str(outside))

        result = deployer.write_artifact(mapping, str(codebase_path))

        assert not result.success
        assert "outside the codebase" in result.error
        assert not outside.exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
