# services/event_service.py
import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.errors import RecordingError
from app.models.schemas.event import ConversionCreateModel, ConversionResponseModel
from app.repositories.event_repo import EventRepository

logger = logging.getLogger(__name__)


class EventService:
    def __init__(self, db: Session):
        self.event_repo = EventRepository(db)

    def record_event(self, event_data: ConversionCreateModel) -> ConversionResponseModel:
        try:
            recorded_event = self.event_repo.create_event(event_data=event_data)
        except RecordingError:
            logger.error(
                "Failed to record %s for %s in %s",
                event_data.outcome,
                event_data.subject_key,
                event_data.experiment_key,
            )
            raise

        return ConversionResponseModel(
            event_id=recorded_event.event_id, experiment_key=recorded_event.experiment_key
        )

    def record_conversion(
        self,
        experiment_key: str,
        subject_key: str,
        variant: Optional[str],
        outcome: str,
        properties: Optional[dict] = None,
    ) -> ConversionResponseModel:
        """
        Records an outcome for a subject in an experiment, e.g. a
        'reservation_success' for the variant that handled the checkout.
        """
        return self.record_event(
            ConversionCreateModel(
                experiment_key=experiment_key,
                subject_key=subject_key,
                variant=variant,
                outcome=outcome,
                properties=properties or {},
            )
        )

    def list_events(self, experiment_key: str, **filters) -> list[dict]:
        events = self.event_repo.get_events_for_experiment(experiment_key, **filters)
        return [
            {
                "event_id": event.event_id,
                "subject_key": event.subject_key,
                "variant": event.variant,
                "outcome": event.outcome,
                "timestamp": event.timestamp,
                "properties": event.properties,
            }
            for event in events
        ]
