import enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ExperimentStatus(str, enum.Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class ExperimentConfig(BaseModel):
    """
    A published experiment definition.

    Instances are frozen: a changed variant set or semantics requires a
    new key so that existing subjects keep their buckets.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str = Field(..., min_length=1, description="e.g., 'inventory.reservation_strategy'")
    name: str
    variants: tuple[str, ...] = Field(
        ..., min_length=1, description="Ordered variant names, e.g., ('optimistic', 'pessimistic')."
    )
    sampling: float = Field(
        ...,
        ge=0.0,
        le=1.0,
        description="Fraction of subjects who participate at all.",
    )
    status: ExperimentStatus = ExperimentStatus.ACTIVE

    @field_validator("variants")
    @classmethod
    def _check_variant_names(cls, variants: tuple[str, ...]) -> tuple[str, ...]:
        if any(not name for name in variants):
            raise ValueError("Variant names must be non-empty")
        if len(set(variants)) != len(variants):
            raise ValueError("Variant names must be unique")
        return variants

    @property
    def is_active(self) -> bool:
        return self.status is ExperimentStatus.ACTIVE


class SnapshotResponseModel(BaseModel):
    version: int
    keys: list[str]


class ExperimentResponseModel(BaseModel):
    key: str
    name: str
    variants: list[str]
    sampling: float
    status: ExperimentStatus
    snapshot_version: Optional[int] = None
