from datetime import datetime, timezone
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator


def as_utc(value: datetime) -> datetime:
    """Normalizes to aware UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ConversionCreateModel(BaseModel):
    """Schema for recording an experiment outcome (API Input)."""

    experiment_key: str
    subject_key: str
    variant: Optional[str] = None
    outcome: str = Field(..., description="e.g., 'reservation_success', 'reservation_failure'")
    # The server sets the timestamp when it is missing.
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    properties: Dict = Field(default_factory=dict, description="Flexible JSON object.")

    # SQLite drops tzinfo, so every stored timestamp must share one offset.
    @field_validator("timestamp")
    @classmethod
    def _timestamp_in_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class ConversionResponseModel(BaseModel):
    event_id: str
    experiment_key: str
