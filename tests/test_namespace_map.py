# FILE: tests/test_namespace_map.py
"""
Tests for patchgate/deployment/namespace_map.py
Namespace-to-location mapping - root namespace and suffix -> folder tables.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from patchgate.deployment.namespace_map import (
    build_module_descriptor,
    build_namespace_folder_map,
    common_namespace_prefix,
    declared_namespace,
    namespace_suffix,
    observations_from_sources,
)
from patchgate.deployment.schemas import ModuleDescriptor


class TestDeclaredNamespace:
    """Test namespace extraction from source text."""

    def test_block_scoped(self):
        assert declared_namespace("using System;\nnamespace Acme.Core\n{\n}\n") == "Acme.Core"

    def test_file_scoped(self):
        assert declared_namespace("namespace Acme.Core.Models;\n\npublic class A {}\n") == "Acme.Core.Models"

    def test_first_declaration_wins(self):
        text = "namespace First.One\n{\n}\nnamespace Second.Two\n{\n}\n"
        assert declared_namespace(text) == "First.One"

    def test_missing(self):
        assert declared_namespace("public class Orphan {}") is None
        assert declared_namespace("") is None


class TestNamespaceSuffix:
    """Test suffix computation relative to a root namespace."""

    def test_equal_is_empty(self):
        assert namespace_suffix("Acme.Core", "Acme.Core") == ""

    def test_equal_ignores_case(self):
        assert namespace_suffix("acme.core", "Acme.Core") == ""

    def test_child(self):
        assert namespace_suffix("Acme.Core.Models.Dto", "Acme.Core") == "Models.Dto"

    def test_unrelated_returns_full(self):
        assert namespace_suffix("Other.Thing", "Acme.Core") == "Other.Thing"

    def test_sibling_prefix_is_not_child(self):
        assert namespace_suffix("Acme.CoreExtras", "Acme.Core") == "Acme.CoreExtras"


class TestCommonPrefix:
    """Test longest common dot-prefix."""

    def test_shared_root(self):
        assert common_namespace_prefix(["Acme.Core.Models", "Acme.Core.Services"]) == "Acme.Core"

    def test_case_insensitive_keeps_shortest_casing(self):
        assert common_namespace_prefix(["Acme.Core", "ACME.CORE.Models"]) == "Acme.Core"

    def test_nothing_shared(self):
        assert common_namespace_prefix(["Alpha.One", "Beta.Two"]) == ""

    def test_single_and_empty(self):
        assert common_namespace_prefix(["Only.One"]) == "Only.One"
        assert common_namespace_prefix([]) == ""


class TestBuildFolderMap:
    """Test root namespace detection and folder map construction."""

    def test_root_from_root_folder(self):
        root, folder_map = build_namespace_folder_map([
            ("Acme.Core", ""),
            ("Acme.Core.Models", "Models"),
            ("Acme.Core.Services.Billing", "Services/Billing"),
        ])
        assert root == "Acme.Core"
        assert folder_map == {
            "": "",
            "Models": "Models",
            "Services.Billing": "Services/Billing",
        }

    def test_most_common_root_folder_namespace(self):
        root, _ = build_namespace_folder_map([
            ("Acme.Legacy", ""),
            ("Acme.Core", ""),
            ("Acme.Core", ""),
        ])
        assert root == "Acme.Core"

    def test_common_prefix_when_no_root_folder_files(self):
        root, folder_map = build_namespace_folder_map([
            ("Acme.Core.Models", "Models"),
            ("Acme.Core.Services", "Services"),
        ])
        assert root == "Acme.Core"
        assert folder_map["Models"] == "Models"
        assert folder_map["Services"] == "Services"

    def test_known_root_is_kept_without_root_folder_files(self):
        root, folder_map = build_namespace_folder_map(
            [("Acme.Core.Models", "Models")], root_namespace="Acme.Core"
        )
        assert root == "Acme.Core"
        assert folder_map["Models"] == "Models"

    def test_first_folder_for_suffix_wins(self):
        _, folder_map = build_namespace_folder_map([
            ("Acme.Core", ""),
            ("Acme.Core.Models", "Models"),
            ("Acme.Core.Models", "Legacy/Models"),
        ])
        assert folder_map["Models"] == "Models"

    def test_backslash_folders_are_normalized(self):
        _, folder_map = build_namespace_folder_map([
            ("Acme.Core", "."),
            ("Acme.Core.Data", "Data\\Sql\\"),
        ])
        assert folder_map["Data"] == "Data/Sql"

    @pytest.mark.parametrize("observations", [
        [],
        [("Acme.Core.Models", "Models")],
        [("Acme.Core", "Nested"), ("Acme.Core.Models", "Nested/Models")],
        [("Acme.Core", ""), ("Acme.Core", "Elsewhere")],
    ])
    def test_empty_suffix_maps_to_module_root(self, observations):
        _, folder_map = build_namespace_folder_map(observations, root_namespace="Acme.Core")
        assert folder_map[""] == ""


class TestObservations:
    """Test observation gathering from module sources."""

    def test_skips_build_output_and_undeclared(self):
        sources = [
            ("Order.cs", "namespace Acme.Core { }"),
            ("Models\\Item.cs", "namespace Acme.Core.Models { }"),
            ("obj/Debug/AssemblyInfo.cs", "namespace Acme.Core.Generated { }"),
            ("bin/Release/Stale.cs", "namespace Acme.Core.Stale { }"),
            ("Notes.cs", "// nothing here"),
        ]
        assert observations_from_sources(sources) == [
            ("Acme.Core", ""),
            ("Acme.Core.Models", "Models"),
        ]

    def test_build_module_descriptor(self):
        module = ModuleDescriptor(name="Core", manifest_path="Core\\Core.csproj", namespaces=["Acme.Core"])
        built = build_module_descriptor(module, [
            ("Acme.Core", ""),
            ("Acme.Core.Models", "Models"),
            ("acme.core", ""),
        ])

        assert built.root_namespace == "Acme.Core"
        assert built.namespaces == ["Acme.Core", "Acme.Core.Models"]
        assert built.namespace_folder_map == {"": "", "Models": "Models"}
        assert built.manifest_path == "Core/Core.csproj"
        assert built.directory == "Core"
        # input is untouched
        assert module.root_namespace == ""


class TestModuleDescriptor:
    """Test descriptor normalisation."""

    def test_empty_suffix_is_forced_to_root(self):
        module = ModuleDescriptor(name="Core", manifest_path="Core.csproj", namespace_folder_map={"": "Oops"})
        assert module.namespace_folder_map[""] == ""
        assert module.directory == ""


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
