"""Pydantic models for API request/response validation"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from achievement_sync.models import AchievementProgress, CounterKey


class IncrementRequest(BaseModel):
    """Request to add to one activity counter"""
    counter_key: CounterKey = Field(..., description="Counter to increment")
    delta: int = Field(..., gt=0, description="Amount to add (positive)")


class ProgressCorrectionRequest(BaseModel):
    """Manual correction of one achievement's progress"""
    value: int = Field(..., ge=0, description="New progress value")


class AchievementListResponse(BaseModel):
    """All achievement progress records for a user"""
    user_id: str
    achievements: List[AchievementProgress]


class NotificationListResponse(BaseModel):
    """Completed achievements awaiting a notification"""
    user_id: str
    pending: List[AchievementProgress]


class NotificationShownResponse(BaseModel):
    """Result of marking a notification as shown"""
    user_id: str
    achievement_id: str
    marked: bool


class DiagnosticsResponse(BaseModel):
    """Read-only consistency report"""
    user_id: str
    report: Dict[str, Any]


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    database: str = Field(..., description="Database connection status")
    cache: str = Field(..., description="Summary cache status")
    timestamp: datetime = Field(..., description="Check timestamp")


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    user_message: Optional[str] = Field(None, description="Message safe to show to end users")
    request_id: Optional[str] = None
    retryable: bool = False
