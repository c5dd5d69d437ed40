import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import RecordingError
from app.models.orm.event import EventORM
from app.models.schemas.event import ConversionCreateModel, as_utc


class EventRepository:
    def __init__(self, db: Session):
        """Initializes the repository with a database session."""
        self.db = db

    def get_events_for_experiment(self, experiment_key: str, **kwargs) -> list[EventORM]:
        """
        Retrieves conversion events for an experiment, applying optional
        filters for outcome, variant and time range.
        """
        stmt = select(EventORM).where(EventORM.experiment_key == experiment_key)

        if outcome := kwargs.get("outcome"):
            stmt = stmt.where(EventORM.outcome == outcome)

        if variant := kwargs.get("variant"):
            stmt = stmt.where(EventORM.variant == variant)

        if start_date := kwargs.get("start_date"):
            stmt = stmt.where(EventORM.timestamp >= as_utc(start_date))

        if end_date := kwargs.get("end_date"):
            stmt = stmt.where(EventORM.timestamp <= as_utc(end_date))

        return list(self.db.scalars(stmt.order_by(EventORM.timestamp)).all())

    def create_event(self, event_data: ConversionCreateModel) -> EventORM:
        """
        Creates a new conversion event record.

        Raises:
            RecordingError: the insert failed; the session is rolled back.
        """
        event_dict = event_data.model_dump()
        event_dict["event_id"] = str(uuid.uuid4())

        db_event = EventORM(**event_dict)
        try:
            self.db.add(db_event)
            self.db.commit()
            self.db.refresh(db_event)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise RecordingError(f"A database error occurred while recording the event: {e}") from e

        return db_event
