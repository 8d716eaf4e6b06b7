# FILE: patchgate/deployment/router.py
"""Deployment Router: API endpoints for deploying, verifying and undoing changes.

Endpoints:
- POST /deployments - Deploy generated artifacts into a codebase
- GET /deployments - List stored deployments
- GET /deployments/{deployment_id} - Fetch one deployment record
- POST /deployments/{deployment_id}/verify - Run affected tests
- POST /deployments/{deployment_id}/rollback - Undo a deployment (once)
"""

import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from patchgate.db import get_db
from patchgate.deployment import store
from patchgate.deployment.config import DeploymentConfig
from patchgate.deployment.deployer import Deployer
from patchgate.deployment.errors import RecordNotFoundError, RollbackConflictError
from patchgate.deployment.rollback import rollback_deployment
from patchgate.deployment.schemas import GeneratedArtifact, ModuleDescriptor, ModuleGraph
from patchgate.deployment.verification import VerificationRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/deployments", tags=["deployments"])


# =============================================================================
# Dependencies
# =============================================================================

@lru_cache(maxsize=1)
def get_config() -> DeploymentConfig:
    return DeploymentConfig.from_env()


def get_deployer(config: DeploymentConfig = Depends(get_config)) -> Deployer:
    return Deployer(config)


def get_verification_runner(config: DeploymentConfig = Depends(get_config)) -> VerificationRunner:
    return VerificationRunner(config)


# =============================================================================
# Request/Response Models
# =============================================================================

class ModuleIn(BaseModel):
    """One module of the analysed codebase."""
    name: str
    manifest_path: str
    root_namespace: str = ""
    namespaces: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    namespace_folder_map: Dict[str, str] = Field(default_factory=dict)
    is_test_module: bool = False


class ModuleGraphIn(BaseModel):
    codebase_path: str
    modules: List[ModuleIn] = Field(default_factory=list)

    def to_graph(self) -> ModuleGraph:
        return ModuleGraph(
            codebase_path=self.codebase_path,
            modules=[ModuleDescriptor.from_dict(m.model_dump()) for m in self.modules],
        )


class ArtifactIn(BaseModel):
    """A generated code unit."""
    relative_path: str
    content: str
    is_modification: bool = False
    target_method: Optional[str] = None
    target_type: Optional[str] = None
    is_test_artifact: bool = False
    real_namespace: Optional[str] = None
    real_type_name: Optional[str] = None


class DeployRequest(BaseModel):
    graph: ModuleGraphIn
    artifacts: List[ArtifactIn]


class DeploymentOut(BaseModel):
    deployment_id: str
    created_at: Optional[datetime] = None
    codebase_path: str
    success: bool
    rolled_back: bool
    record: Dict[str, Any]
    verification: Optional[Dict[str, Any]] = None
    rollback: Optional[Dict[str, Any]] = None


class DeploymentSummaryOut(BaseModel):
    deployment_id: str
    created_at: Optional[datetime] = None
    codebase_path: str
    success: bool
    rolled_back: bool


def _deployment_out(row) -> DeploymentOut:
    return DeploymentOut(
        deployment_id=row.id,
        created_at=row.created_at,
        codebase_path=row.codebase_path,
        success=row.success,
        rolled_back=row.rolled_back,
        record=row.record_json or {},
        verification=row.verification_json,
        rollback=row.rollback_json,
    )


def _require(db: Session, deployment_id: str):
    try:
        return store.require_deployment(db, deployment_id)
    except RecordNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


# =============================================================================
# Endpoints
# =============================================================================

@router.post("", response_model=DeploymentOut, status_code=201)
async def create_deployment(
    request: DeployRequest,
    db: Session = Depends(get_db),
    deployer: Deployer = Depends(get_deployer),
):
    """Deploy artifacts, build affected modules, and store the record."""
    graph = request.graph.to_graph()
    artifacts = [GeneratedArtifact.from_dict(a.model_dump()) for a in request.artifacts]

    record = await deployer.deploy(graph, artifacts)
    row = store.save_deployment(db, record, graph)
    logger.info(f"[deploy] Stored deployment {row.id} (success={row.success})")
    return _deployment_out(row)


@router.get("", response_model=List[DeploymentSummaryOut])
def list_deployments(limit: int = 50, db: Session = Depends(get_db)):
    return [
        DeploymentSummaryOut(
            deployment_id=row.id,
            created_at=row.created_at,
            codebase_path=row.codebase_path,
            success=row.success,
            rolled_back=row.rolled_back,
        )
        for row in store.list_deployments(db, limit=limit)
    ]


@router.get("/{deployment_id}", response_model=DeploymentOut)
def get_deployment(deployment_id: str, db: Session = Depends(get_db)):
    return _deployment_out(_require(db, deployment_id))


@router.post("/{deployment_id}/verify")
async def verify_deployment(
    deployment_id: str,
    db: Session = Depends(get_db),
    runner: VerificationRunner = Depends(get_verification_runner),
) -> Dict[str, Any]:
    """Run the tests a stored deployment added or touched."""
    row = _require(db, deployment_id)
    graph = store.load_graph(row)
    if graph is None:
        raise HTTPException(status_code=400, detail="Deployment has no stored module graph")

    record = store.load_record(row)
    summary = await runner.verify(graph, record.copy_results)
    store.save_verification(db, deployment_id, summary)
    return summary.to_dict()


@router.post("/{deployment_id}/rollback")
def rollback(deployment_id: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    """Undo a stored deployment. A second call returns 409."""
    row = _require(db, deployment_id)
    try:
        store.claim_rollback(db, deployment_id)
    except RollbackConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))

    result = rollback_deployment(store.load_record(row), store.load_graph(row))
    store.save_rollback(db, deployment_id, result)
    return result.to_dict()
