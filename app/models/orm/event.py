from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String

from .base import Base, JSON_TYPE


class EventORM(Base):
    """An outcome observed for a subject while in an experiment."""

    __tablename__ = "conversion_events"

    event_id = Column(String, primary_key=True)

    experiment_key = Column(String, nullable=False, index=True)
    subject_key = Column(String, nullable=False, index=True)
    variant = Column(String, nullable=True, index=True)
    outcome = Column(String, nullable=False, index=True)

    timestamp = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    properties = Column(JSON_TYPE, default=dict, nullable=False)
