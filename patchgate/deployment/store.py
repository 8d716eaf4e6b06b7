# FILE: patchgate/deployment/store.py
"""
Persistence for deployment records.
"""
from typing import List, Optional

from sqlalchemy.orm import Session

from patchgate.deployment import models
from patchgate.deployment.errors import RecordNotFoundError, RollbackConflictError
from patchgate.deployment.schemas import (
    DeploymentRecord,
    ModuleGraph,
    RollbackRecord,
    TestExecutionSummary,
)


def save_deployment(
    db: Session,
    record: DeploymentRecord,
    graph: Optional[ModuleGraph] = None,
) -> models.DeploymentRecordRow:
    row = models.DeploymentRecordRow(
        id=record.deployment_id,
        codebase_path=record.codebase_path,
        success=record.success,
        graph_json=graph.to_dict() if graph is not None else None,
        record_json=record.to_dict(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_deployment(db: Session, deployment_id: str) -> Optional[models.DeploymentRecordRow]:
    return (
        db.query(models.DeploymentRecordRow)
        .filter(models.DeploymentRecordRow.id == deployment_id)
        .first()
    )


def require_deployment(db: Session, deployment_id: str) -> models.DeploymentRecordRow:
    row = get_deployment(db, deployment_id)
    if row is None:
        raise RecordNotFoundError(f"Deployment {deployment_id} not found")
    return row


def list_deployments(db: Session, limit: int = 50) -> List[models.DeploymentRecordRow]:
    return (
        db.query(models.DeploymentRecordRow)
        .order_by(models.DeploymentRecordRow.created_at.desc())
        .limit(limit)
        .all()
    )


def load_record(row: models.DeploymentRecordRow) -> DeploymentRecord:
    return DeploymentRecord.from_dict(row.record_json or {})


def load_graph(row: models.DeploymentRecordRow) -> Optional[ModuleGraph]:
    return ModuleGraph.from_dict(row.graph_json) if row.graph_json else None


def save_verification(
    db: Session,
    deployment_id: str,
    summary: TestExecutionSummary,
) -> models.DeploymentRecordRow:
    row = require_deployment(db, deployment_id)
    row.verification_json = summary.to_dict()
    db.commit()
    db.refresh(row)
    return row


def claim_rollback(db: Session, deployment_id: str) -> None:
    """Flag a deployment as rolled back before the rollback runs.

    The flag is set with a single conditional UPDATE, so of two concurrent
    callers exactly one gets the claim.

    Raises:
        RecordNotFoundError: no such deployment
        RollbackConflictError: the deployment was already claimed
    """
    row_type = models.DeploymentRecordRow
    claimed = (
        db.query(row_type)
        .filter(row_type.id == deployment_id, row_type.rolled_back == False)  # noqa: E712
        .update({row_type.rolled_back: True}, synchronize_session=False)
    )
    db.commit()
    if not claimed:
        require_deployment(db, deployment_id)
        raise RollbackConflictError(f"Deployment {deployment_id} was already rolled back")


def save_rollback(
    db: Session,
    deployment_id: str,
    rollback: RollbackRecord,
) -> models.DeploymentRecordRow:
    row = require_deployment(db, deployment_id)
    row.rollback_json = rollback.to_dict()
    db.commit()
    db.refresh(row)
    return row


def mark_rolled_back(
    db: Session,
    deployment_id: str,
    rollback: RollbackRecord,
) -> models.DeploymentRecordRow:
    """Record a completed rollback. A deployment can only be rolled back once."""
    claim_rollback(db, deployment_id)
    return save_rollback(db, deployment_id, rollback)
