# FILE: patchgate/deployment/deployer.py
"""Deployment transaction.

deploy() runs the full pipeline for one batch of generated artifacts:

    resolve -> write files -> update manifests -> build

Files and manifests are handled one at a time. Per-file and per-module
I/O failures are recorded and the remaining units continue; setup
failures (build tool or manifest missing) are recorded as the record's
top-level error. The returned DeploymentRecord holds everything needed
to roll the deployment back; rolling back is always the caller's call.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from patchgate.deployment.build_orchestrator import BuildOrchestrator
from patchgate.deployment.cancellation import CancellationToken, ensure_token
from patchgate.deployment.config import DeploymentConfig
from patchgate.deployment.errors import OperationCancelledError, PatchgateError
from patchgate.deployment.manifest import update_manifest
from patchgate.deployment.method_merge import bind_test_to_real_type, merge_method
from patchgate.deployment.path_resolver import PathResolver, is_within
from patchgate.deployment.schemas import (
    BuildReport,
    DeploymentRecord,
    FileCopyResult,
    GeneratedArtifact,
    MergeMode,
    ModuleGraph,
    ResolutionConfidence,
    ResolvedMapping,
    utc_now,
)

logger = logging.getLogger(__name__)


def _read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def _write_text(path: str, text: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(text)


class Deployer:
    """Writes generated artifacts into a codebase and verifies the build."""

    def __init__(
        self,
        config: DeploymentConfig,
        build_orchestrator: Optional[BuildOrchestrator] = None,
    ):
        self.config = config
        self.build_orchestrator = build_orchestrator or BuildOrchestrator(config)

    async def deploy(
        self,
        graph: ModuleGraph,
        artifacts: Sequence[GeneratedArtifact],
        cancel: Optional[CancellationToken] = None,
        deployment_id: Optional[str] = None,
    ) -> DeploymentRecord:
        """Deploy `artifacts` into the codebase described by `graph`.

        Cancellation stops before the next file, manifest or module
        build; work already done stays on disk and in the record.
        """
        cancel = ensure_token(cancel)
        record = DeploymentRecord(
            deployment_id=deployment_id or uuid.uuid4().hex,
            codebase_path=graph.codebase_path,
            started_at=utc_now(),
        )
        logger.info(
            f"[deploy] Starting deployment {record.deployment_id}: "
            f"{len(artifacts)} artifact(s) -> {graph.codebase_path}"
        )

        try:
            resolver = PathResolver(graph, test_namespace_prefixes=self.config.test_namespace_prefixes)
            record.mappings = resolver.resolve_all(artifacts)
            for mapping in record.mappings:
                if mapping.confidence is ResolutionConfidence.UNRESOLVED:
                    record.warnings.append(
                        f"No module mapping for {mapping.artifact.relative_path} "
                        f"(namespace: {mapping.namespace}); used {mapping.target_path}"
                    )

            for mapping in record.mappings:
                cancel.raise_if_cancelled(f"writing {mapping.target_path}")
                result = self.write_artifact(mapping, graph.codebase_path)
                record.copy_results.append(result)
                if result.merge_mode is MergeMode.DEGRADED_FULL_REPLACE:
                    record.warnings.append(
                        f"Method merge failed for {mapping.target_path}; replaced whole file"
                    )

            self._update_manifests(graph, record, cancel)

            written = [
                m for m, r in zip(record.mappings, record.copy_results) if r.success
            ]
            record.build_report = await self._build(graph, written, cancel)
            if record.build_report.error:
                record.error = record.build_report.error

        except OperationCancelledError as e:
            logger.warning(f"[deploy] {record.deployment_id} cancelled: {e}")
            record.error = str(e)

        record.success = (
            record.error is None
            and all(r.success for r in record.copy_results)
            and all(r.success for r in record.manifest_results)
            and record.build_report is not None
            and record.build_report.success
        )
        record.finished_at = utc_now()

        logger.info(
            f"[deploy] Deployment {record.deployment_id} finished: success={record.success}, "
            f"{record.new_files_created} new, {record.files_modified} modified"
        )
        return record

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def write_artifact(
        self,
        mapping: ResolvedMapping,
        codebase_path: Optional[str] = None,
    ) -> FileCopyResult:
        """Write one resolved artifact, merging at method level when possible."""
        artifact = mapping.artifact
        target = mapping.target_path
        result = FileCopyResult(
            source_path=artifact.relative_path,
            target_path=target,
            module_name=mapping.module_name,
            is_test_artifact=artifact.is_test_artifact,
        )

        if not target:
            result.error = "Could not determine target path"
            return result

        if codebase_path and not is_within(codebase_path, target):
            result.error = f"Target path is outside the codebase: {target}"
            logger.error(f"[deploy] Refusing to write outside {codebase_path}: {target}")
            return result

        content = artifact.content
        if artifact.is_test_artifact and artifact.real_namespace:
            content = bind_test_to_real_type(
                content,
                artifact.real_namespace,
                artifact.real_type_name,
                self.config.placeholder_namespaces,
            )

        try:
            target_dir = os.path.dirname(target)
            if target_dir and not os.path.isdir(target_dir):
                os.makedirs(target_dir, exist_ok=True)
                logger.info(f"[deploy] Created directory: {target_dir}")

            result.is_new_file = not os.path.isfile(target)
            if result.is_new_file:
                result.merge_mode = MergeMode.NEW_FILE
                new_text = content
            else:
                existing = _read_text(target)
                if self.config.capture_preimages:
                    result.previous_content = existing
                new_text, result.merge_mode = self._merge(artifact, existing, content, target)

            _write_text(target, new_text)
            result.success = True
            logger.info(
                f"[deploy] {'Created' if result.is_new_file else 'Updated'} file "
                f"({result.merge_mode.value}): {target}"
            )
        except (OSError, UnicodeDecodeError) as e:
            result.success = False
            result.error = str(e)
            logger.error(f"[deploy] Failed to write file {target}: {e}")

        return result

    def _merge(
        self,
        artifact: GeneratedArtifact,
        existing: str,
        content: str,
        target: str,
    ) -> Tuple[str, MergeMode]:
        if not (artifact.is_modification and artifact.target_method):
            return content, MergeMode.FULL_REPLACE

        merged = merge_method(existing, content, artifact.target_method, artifact.target_type)
        if merged is None:
            logger.warning(
                f"[merge] Could not merge {artifact.target_method} into {target}; "
                f"falling back to full-file replacement"
            )
            return content, MergeMode.DEGRADED_FULL_REPLACE

        logger.info(f"[merge] Merged method {artifact.target_method} into {target}")
        return merged, MergeMode.METHOD_MERGE

    # -------------------------------------------------------------------------
    # Manifests
    # -------------------------------------------------------------------------

    def _update_manifests(
        self,
        graph: ModuleGraph,
        record: DeploymentRecord,
        cancel: CancellationToken,
    ) -> None:
        by_module: Dict[str, List[str]] = {}
        for result in record.copy_results:
            if result.success and result.module_name:
                by_module.setdefault(result.module_name, []).append(result.target_path)

        for module_name, targets in by_module.items():
            module = graph.get(module_name)
            if module is None:
                continue
            cancel.raise_if_cancelled(f"updating manifest of {module_name}")
            manifest = os.path.normpath(os.path.join(graph.codebase_path, module.manifest_path))
            record.manifest_results.append(update_manifest(module.name, manifest, targets))

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    async def _build(
        self,
        graph: ModuleGraph,
        mappings: List[ResolvedMapping],
        cancel: CancellationToken,
    ) -> BuildReport:
        try:
            return await self.build_orchestrator.build(graph, mappings, cancel)
        except OperationCancelledError:
            raise
        except PatchgateError as e:
            logger.error(f"[deploy] Build setup failed: {e}")
            return BuildReport(error=str(e), success=False)
