import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# Sentinel variant for subjects outside the experiment
NOT_IN_EXPERIMENT = None


class SubjectType(str, enum.Enum):
    USER = "user"
    SESSION = "session"
    DEVICE = "device"
    ANONYMOUS = "anonymous"


class ExperimentAssignment(BaseModel):
    """The variant a subject resolves to for one experiment."""

    model_config = ConfigDict(frozen=True)

    experiment_key: str
    variant: Optional[str] = Field(
        NOT_IN_EXPERIMENT, description="Assigned variant name, null when not in the experiment."
    )
    in_experiment: bool = False

    @classmethod
    def not_in_experiment(cls, experiment_key: str) -> "ExperimentAssignment":
        return cls(experiment_key=experiment_key, variant=NOT_IN_EXPERIMENT, in_experiment=False)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssignmentRecord(BaseModel):
    """Data model for a persisted first-exposure assignment."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    subject_key: str
    subject_type: SubjectType = SubjectType.USER
    experiment_key: str
    variant: Optional[str] = NOT_IN_EXPERIMENT
    in_experiment: bool = False
    assigned_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_assignment(
        cls,
        subject_key: str,
        assignment: ExperimentAssignment,
        subject_type: SubjectType = SubjectType.USER,
    ) -> "AssignmentRecord":
        return cls(
            subject_key=subject_key,
            subject_type=subject_type,
            experiment_key=assignment.experiment_key,
            variant=assignment.variant,
            in_experiment=assignment.in_experiment,
        )

    def to_assignment(self) -> ExperimentAssignment:
        return ExperimentAssignment(
            experiment_key=self.experiment_key,
            variant=self.variant,
            in_experiment=self.in_experiment,
        )


class ExposureCreateModel(BaseModel):
    subject_key: str = Field(..., min_length=1)
    subject_type: SubjectType = SubjectType.USER


class ExposureResponseModel(BaseModel):
    experiment_key: str
    subject_key: str
    variant: Optional[str] = None
    in_experiment: bool
    recorded: bool = Field(..., description="False when persisting the exposure failed.")
