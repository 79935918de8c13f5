"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime
from schemas.sync import SyncProgressRead


# ============================================================================
# Health Check Schemas
# ============================================================================

class SyncTypeHealth(BaseModel):
    """Condensed progress information for the health check"""
    type: str
    processed: int
    total: Optional[int]
    is_complete: bool
    needs_continuation: bool
    running: bool
    error_count: int
    last_error: Optional[str] = None
    updated_at: Optional[datetime] = None


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    syncs: List[SyncTypeHealth] = Field(default_factory=list)
    running_syncs: int = 0
    failed_syncs: int = 0

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.failed_syncs > 0:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "running_syncs": 1,
                "failed_syncs": 0,
                "syncs": [
                    {
                        "type": "petPolicies",
                        "processed": 20,
                        "total": 25,
                        "is_complete": False,
                        "needs_continuation": True,
                        "running": True,
                        "error_count": 1
                    }
                ]
            }
        }
    }


# ============================================================================
# Sync Action Schemas
# ============================================================================

class SyncActionResponse(BaseModel):
    """Response for start/resume requests"""
    action: str
    message: str
    progress: Optional[SyncProgressRead] = None


class SyncStatusListResponse(BaseModel):
    """All sync progress rows plus the set of types with a running driver"""
    items: List[SyncProgressRead] = Field(default_factory=list)
    running: List[str] = Field(default_factory=list)
