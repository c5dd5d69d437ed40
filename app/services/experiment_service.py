# services/experiment_service.py
import logging
from pathlib import Path
from typing import Iterable, Optional, Tuple, Union

from app.core.errors import ConfigurationError, ExperimentNotFoundError, RecordingError
from app.engine.recorder import AssignmentRecorder
from app.engine.resolver import AssignmentResolver
from app.engine.store import ConfigPayload, ConfigurationStore, validate_config
from app.models.schemas.assignment import (
    AssignmentRecord,
    ExperimentAssignment,
    SubjectType,
)
from app.models.schemas.experiment import ExperimentConfig

logger = logging.getLogger(__name__)

ANONYMOUS_SUBJECT = "anonymous"


class ExperimentService:
    """Entry point feature code uses to pick and record experiment variants."""

    def __init__(self, store: ConfigurationStore, recorder: AssignmentRecorder):
        self.store = store
        self.resolver = AssignmentResolver(store)
        self.recorder = recorder

    @staticmethod
    def resolve_subject(
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> Tuple[str, SubjectType]:
        """
        Picks the most stable identifier available for bucketing.

        A signed-in user wins over a session, a session over a device.
        Without any of them every caller shares the anonymous bucket.
        """
        if user_id:
            return user_id, SubjectType.USER
        if session_id:
            return session_id, SubjectType.SESSION
        if device_id:
            return device_id, SubjectType.DEVICE
        return ANONYMOUS_SUBJECT, SubjectType.ANONYMOUS

    def get_experiment(self, experiment_key: str) -> ExperimentConfig:
        config = self.store.get(experiment_key)
        if config is None:
            raise ExperimentNotFoundError(experiment_key)
        return config

    def resolve(self, subject_key: str, experiment_key: str) -> ExperimentAssignment:
        return self.resolver.resolve(subject_key, experiment_key)

    def resolve_or_default(
        self, subject_key: str, experiment_key: str, default: Optional[str] = None
    ) -> Optional[str]:
        return self.resolver.resolve_or_default(subject_key, experiment_key, default)

    def expose(
        self,
        subject_key: str,
        experiment_key: str,
        subject_type: SubjectType = SubjectType.USER,
    ) -> Tuple[ExperimentAssignment, bool]:
        """
        Resolves the subject and records the exposure.

        Returns the stored assignment (the first one ever recorded for the
        pair) and True, or the freshly computed assignment and False when
        recording failed.
        """
        assignment = self.resolve(subject_key, experiment_key)
        try:
            stored = self.recorder.record_if_absent(subject_key, assignment, subject_type)
        except RecordingError:
            logger.warning(
                "Exposure of %s to %s not recorded; serving computed assignment",
                subject_key,
                experiment_key,
            )
            return assignment, False
        return stored, True

    def list_exposures(self, experiment_key: str) -> list[AssignmentRecord]:
        return self.recorder.repository.list_for_experiment(experiment_key)

    def publish(self, payloads: Iterable[ConfigPayload]) -> int:
        """Publishes a complete snapshot given as a list of configs."""
        configs: dict[str, ExperimentConfig] = {}
        for payload in payloads:
            config = validate_config(payload)
            if config.key in configs:
                raise ConfigurationError(f"Duplicate experiment key {config.key!r} in snapshot")
            configs[config.key] = config
        return self.store.publish(configs)

    def reload_from_file(self, path: Union[str, Path]) -> int:
        logger.info("Reloading experiments from %s", path)
        return self.store.publish_file(path)
