"""First-exposure recording of assignments for audit and analytics."""

import logging
from concurrent import futures
from typing import Optional

from app.core.errors import RecordingError
from app.models.schemas.assignment import (
    AssignmentRecord,
    ExperimentAssignment,
    SubjectType,
)
from app.repositories.assignment_repo import AssignmentRepository

logger = logging.getLogger(__name__)


class AssignmentRecorder:
    """
    Persists the first assignment seen for each (subject, experiment) pair.

    Writes run on a small thread pool so callers can bound how long they
    wait. The repository guarantees insert-if-absent; whatever it reports as
    stored is what every caller gets back.
    """

    def __init__(
        self,
        repository: AssignmentRepository,
        timeout: float = 2.0,
        max_workers: int = 4,
    ):
        self.repository = repository
        self.timeout = timeout
        self._executor = futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="assignment-recorder"
        )

    def _write(self, record: AssignmentRecord) -> AssignmentRecord:
        return self.repository.insert_if_absent(record)

    def record_if_absent(
        self,
        subject_key: str,
        assignment: ExperimentAssignment,
        subject_type: SubjectType = SubjectType.USER,
        timeout: Optional[float] = None,
    ) -> ExperimentAssignment:
        """
        Records ``assignment`` unless the pair already has a record.

        Returns the stored assignment, which is the earlier one when a
        record existed. Raises RecordingError when the write fails or does
        not finish within the timeout.
        """
        record = AssignmentRecord.from_assignment(subject_key, assignment, subject_type)
        future = self._executor.submit(self._write, record)
        wait = self.timeout if timeout is None else timeout

        try:
            stored = future.result(timeout=wait)
        except futures.TimeoutError as e:
            future.cancel()
            logger.error(
                "Recording %s/%s timed out after %.2fs", subject_key, assignment.experiment_key, wait
            )
            raise RecordingError(f"Recording timed out after {wait}s") from e
        except RecordingError as e:
            logger.error("Recording %s/%s failed: %s", subject_key, assignment.experiment_key, e)
            raise
        except Exception as e:
            logger.exception("Unexpected error recording %s/%s", subject_key, assignment.experiment_key)
            raise RecordingError(f"Recording failed: {e}") from e

        return stored.to_assignment()

    def submit(
        self,
        subject_key: str,
        assignment: ExperimentAssignment,
        subject_type: SubjectType = SubjectType.USER,
    ) -> futures.Future:
        """Records in the background; failures are logged, never raised."""
        record = AssignmentRecord.from_assignment(subject_key, assignment, subject_type)
        future = self._executor.submit(self._write, record)

        def _log_failure(done: futures.Future) -> None:
            if done.cancelled():
                return
            error = done.exception()
            if error is not None:
                logger.error(
                    "Background recording of %s/%s failed: %s",
                    subject_key,
                    assignment.experiment_key,
                    error,
                )

        future.add_done_callback(_log_failure)
        return future

    def close(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
