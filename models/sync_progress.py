from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, Boolean, Index
from datetime import datetime
import uuid
from models.base import Base, JSONType, SyncType, SyncMode


class SyncProgress(Base):
    """
    Durable progress of one sync job per sync type.

    Purpose:
    - Resume a sync from the last persisted offset after a crash or timeout
    - Audit trail of succeeded and failed items
    - Source of change notifications for observers

    Design:
    - One row per sync type (primary key = type); a new full sync re-initializes it
    - job_id identifies the logical job so a resume can be told apart from a fresh start
    - version is the ORM version counter: every UPDATE is conditioned on it and bumps it
    - error_items holds structured {id, message, timestamp} entries
    """
    __tablename__ = "sync_progress"

    type = Column(Enum(SyncType, values_callable=lambda e: [m.value for m in e]), primary_key=True)
    job_id = Column(String(36), nullable=False, default=lambda: str(uuid.uuid4()))
    version = Column(Integer, nullable=False, default=1)

    # Counters and cursor
    total = Column(Integer, nullable=True)
    processed = Column(Integer, nullable=False, default=0)
    items_skipped = Column(Integer, nullable=False, default=0)
    last_processed = Column(String(255), nullable=True)
    resume_token = Column(Text, nullable=True)

    # Audit trail
    processed_items = Column(JSONType, nullable=False, default=list)
    error_items = Column(JSONType, nullable=False, default=list)

    # Job options, persisted so a resume reuses them
    mode = Column(Enum(SyncMode, values_callable=lambda e: [m.value for m in e]), nullable=False, default=SyncMode.CLEAR)
    batch_size = Column(Integer, nullable=False, default=10)
    provider_options = Column(JSONType, nullable=False, default=dict)

    # State
    start_time = Column(DateTime, nullable=True)
    is_complete = Column(Boolean, nullable=False, default=False)
    needs_continuation = Column(Boolean, nullable=False, default=False)
    last_error = Column(Text, nullable=True)
    batch_metrics = Column(JSONType, nullable=False, default=dict)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_sync_progress_pending", "needs_continuation", "is_complete"),
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<SyncProgress {self.type} {self.processed}/{self.total} complete={self.is_complete}>"
