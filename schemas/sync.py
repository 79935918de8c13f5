"""
Pydantic schemas for sync progress, chunk outcomes and sync requests
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from models.base import SyncType, SyncMode


class ErrorEntry(BaseModel):
    """One failed item in the error_items audit trail"""
    id: str
    message: str
    timestamp: Optional[datetime] = None


class SyncProgressRead(BaseModel):
    """
    Full snapshot of a sync_progress row.

    This is the payload of every change notification and of the status
    endpoints.
    """
    model_config = ConfigDict(from_attributes=True)

    type: SyncType
    job_id: str
    version: int
    total: Optional[int] = None
    processed: int = 0
    items_skipped: int = 0
    last_processed: Optional[str] = None
    resume_token: Optional[str] = None
    processed_items: List[str] = Field(default_factory=list)
    error_items: List[ErrorEntry] = Field(default_factory=list)
    mode: SyncMode = SyncMode.CLEAR
    batch_size: int = 10
    provider_options: Dict[str, Any] = Field(default_factory=dict)
    start_time: Optional[datetime] = None
    is_complete: bool = False
    needs_continuation: bool = False
    last_error: Optional[str] = None
    batch_metrics: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("error_items", mode="before")
    @classmethod
    def coerce_error_items(cls, v):
        """Accept legacy plain-string entries alongside structured ones"""
        if v is None:
            return []
        entries = []
        for entry in v:
            if isinstance(entry, str):
                entries.append({"id": entry, "message": entry})
            else:
                entries.append(entry)
        return entries

    @field_validator("processed_items", mode="before")
    @classmethod
    def coerce_processed_items(cls, v):
        return list(v or [])

    @field_validator("provider_options", "batch_metrics", mode="before")
    @classmethod
    def coerce_dicts(cls, v):
        return dict(v or {})

    @property
    def is_resumable(self) -> bool:
        return not self.is_complete and (self.needs_continuation or self.processed > 0)


class ItemOutcome(BaseModel):
    """Result of applying one candidate item"""
    id: str
    success: bool
    skipped_no_change: bool = False
    error_message: Optional[str] = None


class ChunkResult(BaseModel):
    """Result of processing one bounded slice of work"""
    offset: int
    items_attempted: List[ItemOutcome] = Field(default_factory=list)
    next_offset: Optional[int] = None
    has_more: bool = False
    next_resume_token: Optional[str] = None
    total: Optional[int] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> List[ItemOutcome]:
        return [item for item in self.items_attempted if item.success]

    @property
    def failed(self) -> List[ItemOutcome]:
        return [item for item in self.items_attempted if not item.success]

    @property
    def skipped(self) -> List[ItemOutcome]:
        return [item for item in self.items_attempted if item.skipped_no_change]


class SyncStartRequest(BaseModel):
    """Options accepted when starting a sync"""
    clear_existing: bool = False
    batch_size: Optional[int] = Field(None, ge=1, le=500, description="Items per chunk")
    mode: Optional[SyncMode] = Field(None, description="clear rewrites everything, update skips unchanged content")
    provider_options: Dict[str, Any] = Field(default_factory=dict, description="Opaque per-provider options")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "clear_existing": False,
                "batch_size": 10,
                "mode": "update",
                "provider_options": {"airline_ids": ["5f0c..."]}
            }
        }
    )
