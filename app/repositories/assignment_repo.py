# repositories/assignment_repo.py
import threading
from typing import Callable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import RecordingError
from app.models.orm.assignment import AssignmentORM
from app.models.schemas.assignment import AssignmentRecord


class AssignmentRepository(Protocol):
    def insert_if_absent(self, record: AssignmentRecord) -> AssignmentRecord:
        """Stores ``record`` unless one exists for its pair; returns the stored record."""

    def get(self, subject_key: str, experiment_key: str) -> Optional[AssignmentRecord]:
        ...

    def list_for_experiment(self, experiment_key: str) -> list[AssignmentRecord]:
        ...


class InMemoryAssignmentRepository:
    """
    Process-local assignment store.

    Writes lock one of ``stripes`` locks chosen by the (subject, experiment)
    pair, so unrelated pairs rarely contend.
    """

    def __init__(self, stripes: int = 64):
        self._records: dict[tuple[str, str], AssignmentRecord] = {}
        self._locks = [threading.Lock() for _ in range(stripes)]

    def _lock_for(self, pair: tuple[str, str]) -> threading.Lock:
        return self._locks[hash(pair) % len(self._locks)]

    def insert_if_absent(self, record: AssignmentRecord) -> AssignmentRecord:
        pair = (record.subject_key, record.experiment_key)
        with self._lock_for(pair):
            return self._records.setdefault(pair, record)

    def get(self, subject_key: str, experiment_key: str) -> Optional[AssignmentRecord]:
        return self._records.get((subject_key, experiment_key))

    def list_for_experiment(self, experiment_key: str) -> list[AssignmentRecord]:
        return [r for r in list(self._records.values()) if r.experiment_key == experiment_key]


class SqlAssignmentRepository:
    """
    Assignment store backed by the ``assignments`` table.

    Opens one session per call so it can be used from worker threads. The
    (subject_key, experiment_key) primary key turns a racing second insert
    into an IntegrityError, after which the winner's row is read back.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @staticmethod
    def _find(db: Session, subject_key: str, experiment_key: str) -> Optional[AssignmentORM]:
        stmt = select(AssignmentORM).where(
            AssignmentORM.subject_key == subject_key,
            AssignmentORM.experiment_key == experiment_key,
        )
        return db.scalars(stmt).one_or_none()

    def insert_if_absent(self, record: AssignmentRecord) -> AssignmentRecord:
        with self.session_factory() as db:
            try:
                existing = self._find(db, record.subject_key, record.experiment_key)
                if existing is not None:
                    return AssignmentRecord.model_validate(existing)

                db_assignment = AssignmentORM(**record.model_dump())
                db.add(db_assignment)
                db.commit()
                db.refresh(db_assignment)
                return AssignmentRecord.model_validate(db_assignment)

            except IntegrityError:
                # Another writer inserted the pair first
                db.rollback()
                existing = self._find(db, record.subject_key, record.experiment_key)
                if existing is None:
                    raise RecordingError(
                        f"Assignment for {record.subject_key}/{record.experiment_key} "
                        "conflicted but could not be read back"
                    )
                return AssignmentRecord.model_validate(existing)

            except SQLAlchemyError as e:
                db.rollback()
                raise RecordingError(f"A database error occurred while recording an assignment: {e}") from e

    def get(self, subject_key: str, experiment_key: str) -> Optional[AssignmentRecord]:
        with self.session_factory() as db:
            existing = self._find(db, subject_key, experiment_key)
            return AssignmentRecord.model_validate(existing) if existing is not None else None

    def list_for_experiment(self, experiment_key: str) -> list[AssignmentRecord]:
        with self.session_factory() as db:
            stmt = (
                select(AssignmentORM)
                .where(AssignmentORM.experiment_key == experiment_key)
                .order_by(AssignmentORM.assigned_at)
            )
            return [AssignmentRecord.model_validate(row) for row in db.scalars(stmt).all()]
