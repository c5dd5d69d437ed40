"""Copy-on-write store of published experiment configurations."""

import json
import logging
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from app.core.errors import ConfigurationError
from app.models.schemas.experiment import ExperimentConfig

logger = logging.getLogger(__name__)

ConfigPayload = Union[ExperimentConfig, Mapping[str, Any]]


def validate_config(payload: ConfigPayload) -> ExperimentConfig:
    """Turns a raw payload or config into a validated ExperimentConfig."""
    if isinstance(payload, ExperimentConfig):
        # model_construct() can bypass validation, so check instances again
        payload = payload.model_dump()
    try:
        return ExperimentConfig.model_validate(payload)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid experiment configuration: {e}") from e


def build_snapshot(configs: Mapping[str, ConfigPayload]) -> dict[str, ExperimentConfig]:
    snapshot: dict[str, ExperimentConfig] = {}
    for key, payload in configs.items():
        config = validate_config(payload)
        if config.key != key:
            raise ConfigurationError(
                f"Snapshot key {key!r} does not match experiment key {config.key!r}"
            )
        snapshot[key] = config
    return snapshot


def load_snapshot_file(path: Union[str, Path]) -> dict[str, ExperimentConfig]:
    """
    Reads a snapshot from a JSON file.

    The file holds either a list of config objects or an object keyed by
    experiment key.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Could not read experiments file {path}: {e}") from e

    if isinstance(raw, list):
        configs: dict[str, ConfigPayload] = {}
        for payload in raw:
            config = validate_config(payload)
            if config.key in configs:
                raise ConfigurationError(f"Duplicate experiment key {config.key!r} in {path}")
            configs[config.key] = config
        return build_snapshot(configs)
    if isinstance(raw, dict):
        return build_snapshot(raw)
    raise ConfigurationError(f"Experiments file {path} must hold a JSON list or object")


class ConfigurationStore:
    """
    Holds the current snapshot of experiment configurations.

    Readers dereference ``self._snapshot`` once and work against that
    immutable mapping; ``publish`` builds a complete new mapping and swaps
    the reference. Only publishers take the lock.
    """

    def __init__(self, configs: Optional[Mapping[str, ConfigPayload]] = None):
        self._publish_lock = threading.Lock()
        self._snapshot: Mapping[str, ExperimentConfig] = MappingProxyType({})
        self._version = 0
        if configs:
            self.publish(configs)

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> Mapping[str, ExperimentConfig]:
        return self._snapshot

    def get(self, key: str) -> Optional[ExperimentConfig]:
        return self._snapshot.get(key)

    def keys(self) -> list[str]:
        return list(self._snapshot)

    def __contains__(self, key: object) -> bool:
        return key in self._snapshot

    def __len__(self) -> int:
        return len(self._snapshot)

    def publish(self, configs: Mapping[str, ConfigPayload]) -> int:
        """
        Atomically replaces the whole visible configuration set.

        Raises ConfigurationError and leaves the current snapshot in place
        if any entry is invalid. Returns the new snapshot version.
        """
        try:
            snapshot = build_snapshot(configs)
        except ConfigurationError as e:
            logger.warning("Rejected experiment snapshot, keeping version %s: %s", self._version, e)
            raise

        with self._publish_lock:
            self._snapshot = MappingProxyType(snapshot)
            self._version += 1
            version = self._version

        logger.info("Published experiment snapshot version %s with %d experiments", version, len(snapshot))
        return version

    def publish_file(self, path: Union[str, Path]) -> int:
        return self.publish(load_snapshot_file(path))
