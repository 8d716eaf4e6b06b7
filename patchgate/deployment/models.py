# FILE: patchgate/deployment/models.py
"""SQLAlchemy ORM model for stored deployment records.

Records are kept as JSON so a deployment can be verified or rolled back
after the process that made it has exited.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text

from patchgate.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentRecordRow(Base):
    __tablename__ = "deployments"

    id = Column(String(64), primary_key=True, index=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    codebase_path = Column(Text, nullable=False)
    success = Column(Boolean, default=False, nullable=False)
    rolled_back = Column(Boolean, default=False, nullable=False)

    graph_json = Column(JSON, nullable=True)         # ModuleGraph.to_dict()
    record_json = Column(JSON, nullable=False)       # DeploymentRecord.to_dict()
    verification_json = Column(JSON, nullable=True)  # latest TestExecutionSummary
    rollback_json = Column(JSON, nullable=True)      # RollbackRecord.to_dict()
