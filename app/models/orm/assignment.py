from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, PrimaryKeyConstraint, String

from app.models.schemas.assignment import SubjectType

from .base import Base


class AssignmentORM(Base):
    """First recorded assignment per (subject, experiment); never updated."""

    __tablename__ = "assignments"

    subject_key = Column(String, nullable=False)
    experiment_key = Column(String, nullable=False, index=True)
    subject_type = Column(
        Enum(SubjectType, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=SubjectType.USER,
    )
    variant = Column(String, nullable=True)
    in_experiment = Column(Boolean, nullable=False, default=False)

    assigned_at = Column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False
    )

    # The primary key is what makes insert-if-absent atomic.
    __table_args__ = (
        PrimaryKeyConstraint("subject_key", "experiment_key", name="assignment_pk"),
    )
