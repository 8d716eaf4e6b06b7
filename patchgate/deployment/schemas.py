# FILE: patchgate/deployment/schemas.py
"""Deployment engine schemas.

Records passed between the engine stages:
- ModuleDescriptor / ModuleGraph: analysed codebase structure (input)
- GeneratedArtifact: one generated code unit (input)
- ResolvedMapping, FileCopyResult, ManifestUpdateResult: deploy steps
- BuildOutcome / BuildReport: dependency-aware build
- TestUnit, TestCaseOutcome, TestOutcome, TestExecutionSummary: verification
- DeploymentRecord / RollbackRecord: transaction and undo
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _enum_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# =============================================================================
# Enums
# =============================================================================

class ResolutionConfidence(str, Enum):
    """Which resolver tier produced a target path."""
    EXACT = "exact"
    PREFIX = "prefix"
    PATH_TOKEN = "path_token"
    UNRESOLVED = "unresolved"


class MergeMode(str, Enum):
    """How a generated file was written to disk."""
    NEW_FILE = "new_file"
    FULL_REPLACE = "full_replace"
    METHOD_MERGE = "method_merge"
    DEGRADED_FULL_REPLACE = "degraded_full_replace"


class DependentScope(str, Enum):
    """How far dependents of touched modules are followed."""
    DIRECT = "direct"
    TRANSITIVE = "transitive"


class TestCaseStatus(str, Enum):
    __test__ = False

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class ResultsSource(str, Enum):
    """Where a module's test counts came from."""
    STRUCTURED = "structured"
    CONSOLE = "console"


# =============================================================================
# Codebase structure
# =============================================================================

@dataclass
class ModuleDescriptor:
    """One build unit of the analysed codebase."""
    name: str
    manifest_path: str  # relative to codebase root
    root_namespace: str = ""
    namespaces: List[str] = field(default_factory=list)
    dependencies: List[str] = field(default_factory=list)  # module names or manifest paths
    namespace_folder_map: Dict[str, str] = field(default_factory=lambda: {"": ""})
    is_test_module: bool = False

    def __post_init__(self) -> None:
        self.manifest_path = self.manifest_path.replace("\\", "/")
        self.namespace_folder_map[""] = ""

    @property
    def directory(self) -> str:
        """Module directory relative to the codebase root ("" for the root)."""
        return posixpath.dirname(self.manifest_path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "manifest_path": self.manifest_path,
            "root_namespace": self.root_namespace,
            "namespaces": list(self.namespaces),
            "dependencies": list(self.dependencies),
            "namespace_folder_map": dict(self.namespace_folder_map),
            "is_test_module": self.is_test_module,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModuleDescriptor":
        return cls(
            name=data.get("name", ""),
            manifest_path=data.get("manifest_path", ""),
            root_namespace=data.get("root_namespace", ""),
            namespaces=list(data.get("namespaces", [])),
            dependencies=list(data.get("dependencies", [])),
            namespace_folder_map=dict(data.get("namespace_folder_map") or {"": ""}),
            is_test_module=bool(data.get("is_test_module", False)),
        )


@dataclass
class ModuleGraph:
    """Codebase root plus its modules, in analysis order."""
    codebase_path: str
    modules: List[ModuleDescriptor] = field(default_factory=list)

    def get(self, name: Optional[str]) -> Optional[ModuleDescriptor]:
        if not name:
            return None
        lowered = name.lower()
        for module in self.modules:
            if module.name.lower() == lowered:
                return module
        return None

    def test_modules(self) -> List[ModuleDescriptor]:
        return [m for m in self.modules if m.is_test_module]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "codebase_path": self.codebase_path,
            "modules": [m.to_dict() for m in self.modules],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModuleGraph":
        return cls(
            codebase_path=data.get("codebase_path", ""),
            modules=[ModuleDescriptor.from_dict(m) for m in data.get("modules", [])],
        )


# =============================================================================
# Generated input
# =============================================================================

@dataclass
class GeneratedArtifact:
    """A generated code unit awaiting deployment."""
    relative_path: str  # generator-supplied; a hint, not authoritative
    content: str
    is_modification: bool = False
    target_method: Optional[str] = None
    target_type: Optional[str] = None
    is_test_artifact: bool = False
    real_namespace: Optional[str] = None
    real_type_name: Optional[str] = None

    @property
    def file_name(self) -> str:
        return self.relative_path.replace("\\", "/").rsplit("/", 1)[-1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relative_path": self.relative_path,
            "content": self.content,
            "is_modification": self.is_modification,
            "target_method": self.target_method,
            "target_type": self.target_type,
            "is_test_artifact": self.is_test_artifact,
            "real_namespace": self.real_namespace,
            "real_type_name": self.real_type_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeneratedArtifact":
        return cls(
            relative_path=data.get("relative_path", ""),
            content=data.get("content", ""),
            is_modification=bool(data.get("is_modification", False)),
            target_method=data.get("target_method"),
            target_type=data.get("target_type"),
            is_test_artifact=bool(data.get("is_test_artifact", False)),
            real_namespace=data.get("real_namespace"),
            real_type_name=data.get("real_type_name"),
        )


# =============================================================================
# Deploy steps
# =============================================================================

@dataclass
class ResolvedMapping:
    """Where one artifact lands on disk."""
    artifact: GeneratedArtifact
    target_path: str
    module_name: Optional[str] = None
    confidence: ResolutionConfidence = ResolutionConfidence.UNRESOLVED
    namespace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "artifact": self.artifact.to_dict(),
            "target_path": self.target_path,
            "module_name": self.module_name,
            "confidence": _enum_value(self.confidence),
            "namespace": self.namespace,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolvedMapping":
        return cls(
            artifact=GeneratedArtifact.from_dict(data.get("artifact", {})),
            target_path=data.get("target_path", ""),
            module_name=data.get("module_name"),
            confidence=ResolutionConfidence(data.get("confidence", "unresolved")),
            namespace=data.get("namespace"),
        )


@dataclass
class FileCopyResult:
    source_path: str
    target_path: str
    module_name: Optional[str] = None
    success: bool = False
    error: Optional[str] = None
    is_new_file: bool = False
    is_test_artifact: bool = False
    merge_mode: MergeMode = MergeMode.NEW_FILE
    previous_content: Optional[str] = None  # only when pre-image capture is on

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_path": self.source_path,
            "target_path": self.target_path,
            "module_name": self.module_name,
            "success": self.success,
            "error": self.error,
            "is_new_file": self.is_new_file,
            "is_test_artifact": self.is_test_artifact,
            "merge_mode": _enum_value(self.merge_mode),
            "previous_content": self.previous_content,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileCopyResult":
        return cls(
            source_path=data.get("source_path", ""),
            target_path=data.get("target_path", ""),
            module_name=data.get("module_name"),
            success=bool(data.get("success", False)),
            error=data.get("error"),
            is_new_file=bool(data.get("is_new_file", False)),
            is_test_artifact=bool(data.get("is_test_artifact", False)),
            merge_mode=MergeMode(data.get("merge_mode", "new_file")),
            previous_content=data.get("previous_content"),
        )


@dataclass
class ManifestUpdateResult:
    module_name: str
    manifest_path: str
    success: bool = False
    error: Optional[str] = None
    message: str = ""
    added_entries: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_name": self.module_name,
            "manifest_path": self.manifest_path,
            "success": self.success,
            "error": self.error,
            "message": self.message,
            "added_entries": list(self.added_entries),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ManifestUpdateResult":
        return cls(
            module_name=data.get("module_name", ""),
            manifest_path=data.get("manifest_path", ""),
            success=bool(data.get("success", False)),
            error=data.get("error"),
            message=data.get("message", ""),
            added_entries=list(data.get("added_entries", [])),
        )


# =============================================================================
# Build
# =============================================================================

@dataclass
class BuildOutcome:
    """Result of building one module."""
    module_name: str
    manifest_path: str
    success: bool = False
    output: str = ""
    error_summary: Optional[str] = None
    exit_code: Optional[int] = None
    timed_out: bool = False
    is_dependent: bool = False
    is_breaking_change: bool = False
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_name": self.module_name,
            "manifest_path": self.manifest_path,
            "success": self.success,
            "output": self.output,
            "error_summary": self.error_summary,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "is_dependent": self.is_dependent,
            "is_breaking_change": self.is_breaking_change,
            "duration_seconds": self.duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildOutcome":
        return cls(
            module_name=data.get("module_name", ""),
            manifest_path=data.get("manifest_path", ""),
            success=bool(data.get("success", False)),
            output=data.get("output", ""),
            error_summary=data.get("error_summary"),
            exit_code=data.get("exit_code"),
            timed_out=bool(data.get("timed_out", False)),
            is_dependent=bool(data.get("is_dependent", False)),
            is_breaking_change=bool(data.get("is_breaking_change", False)),
            duration_seconds=float(data.get("duration_seconds", 0.0)),
        )


@dataclass
class BuildReport:
    outcomes: List[BuildOutcome] = field(default_factory=list)
    build_order: List[str] = field(default_factory=list)
    breaking_modules: List[str] = field(default_factory=list)
    error: Optional[str] = None
    success: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "build_order": list(self.build_order),
            "breaking_modules": list(self.breaking_modules),
            "error": self.error,
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildReport":
        return cls(
            outcomes=[BuildOutcome.from_dict(o) for o in data.get("outcomes", [])],
            build_order=list(data.get("build_order", [])),
            breaking_modules=list(data.get("breaking_modules", [])),
            error=data.get("error"),
            success=bool(data.get("success", False)),
        )


# =============================================================================
# Deployment transaction
# =============================================================================

@dataclass
class DeploymentRecord:
    """Everything one deploy() call did, in enough detail to undo it."""
    deployment_id: str
    codebase_path: str
    started_at: str = ""
    finished_at: str = ""
    mappings: List[ResolvedMapping] = field(default_factory=list)
    copy_results: List[FileCopyResult] = field(default_factory=list)
    manifest_results: List[ManifestUpdateResult] = field(default_factory=list)
    build_report: Optional[BuildReport] = None
    success: bool = False
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def total_files_copied(self) -> int:
        return sum(1 for r in self.copy_results if r.success)

    @property
    def new_files_created(self) -> int:
        return sum(1 for r in self.copy_results if r.success and r.is_new_file)

    @property
    def files_modified(self) -> int:
        return sum(1 for r in self.copy_results if r.success and not r.is_new_file)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "codebase_path": self.codebase_path,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "mappings": [m.to_dict() for m in self.mappings],
            "copy_results": [r.to_dict() for r in self.copy_results],
            "manifest_results": [r.to_dict() for r in self.manifest_results],
            "build_report": self.build_report.to_dict() if self.build_report else None,
            "success": self.success,
            "error": self.error,
            "warnings": list(self.warnings),
            "total_files_copied": self.total_files_copied,
            "new_files_created": self.new_files_created,
            "files_modified": self.files_modified,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        report = data.get("build_report")
        return cls(
            deployment_id=data.get("deployment_id", ""),
            codebase_path=data.get("codebase_path", ""),
            started_at=data.get("started_at", ""),
            finished_at=data.get("finished_at", ""),
            mappings=[ResolvedMapping.from_dict(m) for m in data.get("mappings", [])],
            copy_results=[FileCopyResult.from_dict(r) for r in data.get("copy_results", [])],
            manifest_results=[
                ManifestUpdateResult.from_dict(r) for r in data.get("manifest_results", [])
            ],
            build_report=BuildReport.from_dict(report) if report else None,
            success=bool(data.get("success", False)),
            error=data.get("error"),
            warnings=list(data.get("warnings", [])),
        )


@dataclass
class RollbackRecord:
    deployment_id: str
    deleted_files: List[str] = field(default_factory=list)
    deleted_directories: List[str] = field(default_factory=list)
    restored_files: List[str] = field(default_factory=list)
    reverted_manifests: Dict[str, List[str]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    success: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "deleted_files": list(self.deleted_files),
            "deleted_directories": list(self.deleted_directories),
            "restored_files": list(self.restored_files),
            "reverted_manifests": {k: list(v) for k, v in self.reverted_manifests.items()},
            "errors": list(self.errors),
            "success": self.success,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RollbackRecord":
        return cls(
            deployment_id=data.get("deployment_id", ""),
            deleted_files=list(data.get("deleted_files", [])),
            deleted_directories=list(data.get("deleted_directories", [])),
            restored_files=list(data.get("restored_files", [])),
            reverted_manifests={
                k: list(v) for k, v in (data.get("reverted_manifests") or {}).items()
            },
            errors=list(data.get("errors", [])),
            success=bool(data.get("success", False)),
        )


# =============================================================================
# Verification
# =============================================================================

@dataclass
class TestUnit:
    """A test class found in a deployed test file."""
    __test__ = False

    class_name: str
    namespace: str
    full_name: str
    file_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class_name": self.class_name,
            "namespace": self.namespace,
            "full_name": self.full_name,
            "file_path": self.file_path,
        }


@dataclass
class TestCaseOutcome:
    __test__ = False

    full_name: str
    class_name: str = ""
    method_name: str = ""
    status: TestCaseStatus = TestCaseStatus.PASSED
    duration_seconds: float = 0.0
    message: Optional[str] = None
    stack_trace: Optional[str] = None
    is_new_test: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "full_name": self.full_name,
            "class_name": self.class_name,
            "method_name": self.method_name,
            "status": _enum_value(self.status),
            "duration_seconds": self.duration_seconds,
            "message": self.message,
            "stack_trace": self.stack_trace,
            "is_new_test": self.is_new_test,
        }


@dataclass
class TestOutcome:
    """Test results for one module."""
    __test__ = False

    module_name: str
    success: bool = False
    error: Optional[str] = None
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    skipped_tests: int = 0
    new_tests_passed: int = 0
    new_tests_failed: int = 0
    existing_tests_failed: int = 0
    is_breaking_change: bool = False
    cases: List[TestCaseOutcome] = field(default_factory=list)
    raw_output: str = ""
    results_source: ResultsSource = ResultsSource.STRUCTURED
    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "module_name": self.module_name,
            "success": self.success,
            "error": self.error,
            "total_tests": self.total_tests,
            "passed_tests": self.passed_tests,
            "failed_tests": self.failed_tests,
            "skipped_tests": self.skipped_tests,
            "new_tests_passed": self.new_tests_passed,
            "new_tests_failed": self.new_tests_failed,
            "existing_tests_failed": self.existing_tests_failed,
            "is_breaking_change": self.is_breaking_change,
            "cases": [c.to_dict() for c in self.cases],
            "raw_output": self.raw_output,
            "results_source": _enum_value(self.results_source),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class TestExecutionSummary:
    __test__ = False

    success: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    total_tests: int = 0
    passed_tests: int = 0
    failed_tests: int = 0
    skipped_tests: int = 0
    new_tests_passed: int = 0
    new_tests_failed: int = 0
    existing_tests_failed: int = 0
    is_breaking_change: bool = False
    module_results: List[TestOutcome] = field(default_factory=list)
    failed_cases: List[TestCaseOutcome] = field(default_factory=list)
    skipped_modules: List[str] = field(default_factory=list)
    started_at: str = ""
    finished_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "skipped": self.skipped,
            "skip_reason": self.skip_reason,
            "error": self.error,
            "total_tests": self.total_tests,
            "passed_tests": self.passed_tests,
            "failed_tests": self.failed_tests,
            "skipped_tests": self.skipped_tests,
            "new_tests_passed": self.new_tests_passed,
            "new_tests_failed": self.new_tests_failed,
            "existing_tests_failed": self.existing_tests_failed,
            "is_breaking_change": self.is_breaking_change,
            "module_results": [r.to_dict() for r in self.module_results],
            "failed_cases": [c.to_dict() for c in self.failed_cases],
            "skipped_modules": list(self.skipped_modules),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
