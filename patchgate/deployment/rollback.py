# FILE: patchgate/deployment/rollback.py
"""Best-effort undo of a deployment.

Works purely from a DeploymentRecord:
1. delete every file the deployment created
2. remove directories those deletions left empty, up to the owning
   module directory (or the codebase root)
3. write pre-images back over modified files, when they were captured
4. remove exactly the manifest entries the deployment added

Each failure is recorded and the remaining steps still run.
"""

from __future__ import annotations

import logging
import os
from typing import Dict, List, Optional, Tuple

from patchgate.deployment.manifest import revert_manifest
from patchgate.deployment.schemas import DeploymentRecord, ModuleGraph, RollbackRecord

logger = logging.getLogger(__name__)


def _norm(path: str) -> str:
    return os.path.normcase(os.path.normpath(os.path.abspath(path)))


def _module_dirs(record: DeploymentRecord, graph: Optional[ModuleGraph]) -> Dict[str, str]:
    dirs: Dict[str, str] = {}
    for result in record.manifest_results:
        dirs[result.module_name.lower()] = os.path.dirname(result.manifest_path)
    if graph is not None:
        for module in graph.modules:
            dirs.setdefault(
                module.name.lower(), os.path.join(graph.codebase_path, module.directory)
            )
    return dirs


def _remove_empty_parents(path: str, stop_dir: str, rollback: RollbackRecord) -> None:
    stop = _norm(stop_dir)
    current = os.path.dirname(path)
    while current:
        norm = _norm(current)
        if norm == stop or not norm.startswith(stop.rstrip(os.sep) + os.sep):
            break
        if not os.path.isdir(current) or os.listdir(current):
            break
        try:
            os.rmdir(current)
        except OSError as e:
            rollback.errors.append(f"Failed to remove directory {current}: {e}")
            break
        rollback.deleted_directories.append(current)
        logger.info(f"[rollback] Removed empty directory: {current}")
        current = os.path.dirname(current)


def rollback_deployment(
    record: DeploymentRecord,
    graph: Optional[ModuleGraph] = None,
) -> RollbackRecord:
    """Undo `record` as far as possible.

    Files that existed before the deployment are left as they are unless
    their pre-image was captured.
    """
    rollback = RollbackRecord(deployment_id=record.deployment_id)
    module_dirs = _module_dirs(record, graph)
    logger.info(f"[rollback] Rolling back deployment {record.deployment_id}")

    created: List[Tuple[str, Optional[str]]] = []
    for result in record.copy_results:
        if not (result.success and result.is_new_file):
            continue
        path = result.target_path
        try:
            if os.path.isfile(path):
                os.remove(path)
                rollback.deleted_files.append(path)
                logger.info(f"[rollback] Deleted file: {path}")
            created.append((path, result.module_name))
        except OSError as e:
            rollback.errors.append(f"Failed to delete {path}: {e}")
            logger.error(f"[rollback] Failed to delete {path}: {e}")

    for path, module_name in created:
        stop_dir = module_dirs.get((module_name or "").lower(), record.codebase_path)
        _remove_empty_parents(path, stop_dir, rollback)

    for result in record.copy_results:
        if not result.success or result.is_new_file or result.previous_content is None:
            continue
        try:
            with open(result.target_path, "w", encoding="utf-8", newline="") as f:
                f.write(result.previous_content)
            rollback.restored_files.append(result.target_path)
            logger.info(f"[rollback] Restored pre-image: {result.target_path}")
        except OSError as e:
            rollback.errors.append(f"Failed to restore {result.target_path}: {e}")
            logger.error(f"[rollback] Failed to restore {result.target_path}: {e}")

    for result in record.manifest_results:
        if not result.added_entries:
            continue
        try:
            removed = revert_manifest(result.manifest_path, result.added_entries)
        except OSError as e:
            rollback.errors.append(f"Failed to revert manifest {result.manifest_path}: {e}")
            logger.error(f"[rollback] Failed to revert manifest {result.manifest_path}: {e}")
            continue
        rollback.reverted_manifests[result.manifest_path] = removed
        missing = [e for e in result.added_entries if e not in removed]
        if missing:
            rollback.errors.append(
                f"Entries not found in {result.manifest_path}: {', '.join(missing)}"
            )
        logger.info(f"[rollback] Removed {len(removed)} entr(ies) from {result.manifest_path}")

    rollback.success = not rollback.errors
    logger.info(
        f"[rollback] Deployment {record.deployment_id}: {len(rollback.deleted_files)} file(s) deleted, "
        f"{len(rollback.errors)} error(s)"
    )
    return rollback
