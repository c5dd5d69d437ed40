"""Error taxonomy for the experiment assignment engine."""


class ExperimentError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(ExperimentError):
    """A malformed experiment configuration was rejected."""


class ExperimentNotFoundError(ExperimentError):
    """No experiment with the requested key exists in the current snapshot."""

    def __init__(self, experiment_key: str):
        super().__init__(f"Experiment {experiment_key!r} not found.")
        self.experiment_key = experiment_key


class RecordingError(ExperimentError):
    """Persisting an assignment or conversion failed or timed out."""
