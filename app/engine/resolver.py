"""Resolves a subject to a variant against the current configuration snapshot.

Resolution is a two-stage gate. A subject participates only if its bucket
value falls under the sampling rate; participants are then split evenly
across the variants by rescaling the bucket into [0, 1) relative to the
sampling gate. Lowering the sampling rate drops subjects from the top of
the range, but participants near the margin can move to a different
variant because the rescale stretches the remaining interval.
"""

import logging
from typing import Optional

from app.core.errors import ExperimentNotFoundError
from app.engine.bucketing import bucket, choose_variant
from app.engine.store import ConfigurationStore
from app.models.schemas.assignment import ExperimentAssignment
from app.models.schemas.experiment import ExperimentConfig

logger = logging.getLogger(__name__)


def assign(subject_key: str, config: ExperimentConfig) -> ExperimentAssignment:
    """Computes the assignment for one subject against one config."""
    if not config.is_active:
        return ExperimentAssignment.not_in_experiment(config.key)

    value = bucket(subject_key, config.key)
    if value >= config.sampling:
        return ExperimentAssignment.not_in_experiment(config.key)

    index = choose_variant(value / config.sampling, len(config.variants))
    return ExperimentAssignment(
        experiment_key=config.key,
        variant=config.variants[index],
        in_experiment=True,
    )


class AssignmentResolver:
    def __init__(self, store: ConfigurationStore):
        self.store = store

    def resolve(self, subject_key: str, experiment_key: str) -> ExperimentAssignment:
        """
        Returns the subject's assignment for an experiment.

        Paused and completed experiments, and subjects outside the sampling
        gate, resolve to "not in experiment" rather than raising.

        Raises:
            ExperimentNotFoundError: the key is not in the current snapshot.
        """
        config = self.store.get(experiment_key)
        if config is None:
            raise ExperimentNotFoundError(experiment_key)

        assignment = assign(subject_key, config)
        logger.debug(
            "Resolved %s for %s to %s (in_experiment=%s)",
            experiment_key,
            subject_key,
            assignment.variant,
            assignment.in_experiment,
        )
        return assignment

    def resolve_or_default(
        self, subject_key: str, experiment_key: str, default: Optional[str] = None
    ) -> Optional[str]:
        """Assigned variant when participating, otherwise ``default``."""
        try:
            assignment = self.resolve(subject_key, experiment_key)
        except ExperimentNotFoundError:
            logger.debug("Experiment %s not found, using default %s", experiment_key, default)
            return default
        return assignment.variant if assignment.in_experiment else default
