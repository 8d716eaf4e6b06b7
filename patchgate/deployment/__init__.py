# FILE: patchgate/deployment/__init__.py
"""Deployment engine: place, merge, build, verify and undo generated code.

Pipeline:
- namespace_map / path_resolver: where each artifact belongs on disk
- method_merge: method-level splice into existing files
- build_orchestrator: rebuild touched modules and their dependents
- verification: run affected tests in parallel, flag breaking changes
- deployer / rollback: the transaction and its undo
"""

from patchgate.deployment.build_orchestrator import BuildOrchestrator, compute_build_order
from patchgate.deployment.cancellation import CancellationToken
from patchgate.deployment.config import DeploymentConfig
from patchgate.deployment.deployer import Deployer
from patchgate.deployment.errors import (
    BuildSetupError,
    OperationCancelledError,
    PatchgateError,
    RecordNotFoundError,
    RollbackConflictError,
    ToolNotFoundError,
    VerificationSetupError,
)
from patchgate.deployment.path_resolver import NamespaceIndex, PathResolver, resolve_all
from patchgate.deployment.rollback import rollback_deployment
from patchgate.deployment.schemas import (
    DependentScope,
    DeploymentRecord,
    GeneratedArtifact,
    ModuleDescriptor,
    ModuleGraph,
    RollbackRecord,
    TestExecutionSummary,
)
from patchgate.deployment.verification import VerificationRunner

__all__ = [
    "BuildOrchestrator",
    "BuildSetupError",
    "CancellationToken",
    "DependentScope",
    "Deployer",
    "DeploymentConfig",
    "DeploymentRecord",
    "GeneratedArtifact",
    "ModuleDescriptor",
    "ModuleGraph",
    "NamespaceIndex",
    "OperationCancelledError",
    "PatchgateError",
    "PathResolver",
    "RecordNotFoundError",
    "RollbackConflictError",
    "RollbackRecord",
    "TestExecutionSummary",
    "ToolNotFoundError",
    "VerificationRunner",
    "VerificationSetupError",
    "compute_build_order",
    "resolve_all",
    "rollback_deployment",
]
