"""Tests for first-exposure recording and its backing repositories."""

import logging
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import init_db
from app.core.errors import RecordingError
from app.engine.recorder import AssignmentRecorder
from app.models.schemas.assignment import (
    AssignmentRecord,
    ExperimentAssignment,
    SubjectType,
)
from app.repositories.assignment_repo import SqlAssignmentRepository
from conftest import BlockingRepository, FailingRepository

OPTIMISTIC = ExperimentAssignment(experiment_key="inv.strategy", variant="optimistic", in_experiment=True)
PESSIMISTIC = ExperimentAssignment(experiment_key="inv.strategy", variant="pessimistic", in_experiment=True)


class TestRecordIfAbsent:
    def test_first_record_is_stored(self, recorder, memory_repo):
        assert recorder.record_if_absent("user-42", OPTIMISTIC) == OPTIMISTIC
        stored = memory_repo.get("user-42", "inv.strategy")
        assert stored.variant == "optimistic"
        assert stored.subject_type is SubjectType.USER

    def test_existing_record_wins(self, recorder):
        recorder.record_if_absent("user-42", OPTIMISTIC)
        assert recorder.record_if_absent("user-42", PESSIMISTIC) == OPTIMISTIC

    def test_pairs_are_independent(self, recorder, memory_repo):
        recorder.record_if_absent("user-1", OPTIMISTIC)
        recorder.record_if_absent("user-2", PESSIMISTIC)
        other = ExperimentAssignment(experiment_key="other", variant="b", in_experiment=True)
        recorder.record_if_absent("user-1", other)
        assert memory_repo.get("user-2", "inv.strategy").variant == "pessimistic"
        assert memory_repo.get("user-1", "other").variant == "b"
        assert len(memory_repo.list_for_experiment("inv.strategy")) == 2

    def test_not_in_experiment_is_recorded_too(self, recorder, memory_repo):
        outside = ExperimentAssignment.not_in_experiment("inv.strategy")
        recorder.record_if_absent("session-9", outside, SubjectType.SESSION)
        stored = memory_repo.get("session-9", "inv.strategy")
        assert stored.variant is None
        assert not stored.in_experiment
        assert stored.subject_type is SubjectType.SESSION

    def test_concurrent_first_exposures_store_one_record(self, recorder, memory_repo):
        callers = 50
        barrier = threading.Barrier(callers)
        results = [None] * callers

        def expose(i):
            assignment = ExperimentAssignment(
                experiment_key="inv.strategy", variant=f"variant-{i}", in_experiment=True
            )
            barrier.wait()
            results[i] = recorder.record_if_absent("user-42", assignment)

        threads = [threading.Thread(target=expose, args=(i,)) for i in range(callers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(memory_repo.list_for_experiment("inv.strategy")) == 1
        stored = memory_repo.get("user-42", "inv.strategy").to_assignment()
        assert all(result == stored for result in results)


class TestRecordingFailures:
    def test_backend_error_becomes_recording_error(self, caplog):
        recorder = AssignmentRecorder(FailingRepository(RuntimeError("disk full")))
        try:
            with caplog.at_level(logging.ERROR), pytest.raises(RecordingError, match="disk full"):
                recorder.record_if_absent("user-42", OPTIMISTIC)
        finally:
            recorder.close()
        assert "Unexpected error recording user-42/inv.strategy" in caplog.text

    def test_recording_error_passes_through(self):
        recorder = AssignmentRecorder(FailingRepository(RecordingError("db down")))
        try:
            with pytest.raises(RecordingError, match="db down"):
                recorder.record_if_absent("user-42", OPTIMISTIC)
        finally:
            recorder.close()

    def test_timeout(self, caplog):
        repo = BlockingRepository()
        recorder = AssignmentRecorder(repo, timeout=0.05)
        try:
            with caplog.at_level(logging.ERROR), pytest.raises(RecordingError, match="timed out"):
                recorder.record_if_absent("user-42", OPTIMISTIC)
        finally:
            repo.release.set()
            recorder.close()
        assert "timed out" in caplog.text

    def test_submit_logs_failures(self, caplog):
        recorder = AssignmentRecorder(FailingRepository(RecordingError("db down")))
        with caplog.at_level(logging.ERROR):
            future = recorder.submit("user-42", OPTIMISTIC)
            recorder.close()
        assert isinstance(future.exception(), RecordingError)
        assert "Background recording of user-42/inv.strategy failed" in caplog.text

    def test_submit_records(self, recorder, memory_repo):
        stored = recorder.submit("user-42", OPTIMISTIC).result(timeout=5)
        assert stored.variant == "optimistic"
        assert memory_repo.get("user-42", "inv.strategy") is not None


class TestSqlAssignmentRepository:
    def record(self, variant="optimistic", subject="user-42"):
        return AssignmentRecord(
            subject_key=subject,
            experiment_key="inv.strategy",
            variant=variant,
            in_experiment=True,
        )

    def test_insert_and_get(self, session_factory):
        repo = SqlAssignmentRepository(session_factory)
        stored = repo.insert_if_absent(self.record())
        assert stored.variant == "optimistic"
        assert repo.get("user-42", "inv.strategy").variant == "optimistic"
        assert repo.get("user-7", "inv.strategy") is None

    def test_existing_row_returned(self, session_factory):
        repo = SqlAssignmentRepository(session_factory)
        repo.insert_if_absent(self.record("optimistic"))
        assert repo.insert_if_absent(self.record("pessimistic")).variant == "optimistic"
        assert len(repo.list_for_experiment("inv.strategy")) == 1

    def test_lost_race_reads_back_winner(self, session_factory, monkeypatch):
        repo = SqlAssignmentRepository(session_factory)
        repo.insert_if_absent(self.record("optimistic"))

        calls = []

        def stale_find(db, subject_key, experiment_key):
            calls.append(subject_key)
            if len(calls) == 1:
                return None
            return SqlAssignmentRepository._find(db, subject_key, experiment_key)

        monkeypatch.setattr(repo, "_find", stale_find)
        assert repo.insert_if_absent(self.record("pessimistic")).variant == "optimistic"
        assert len(calls) == 2

    def test_list_for_experiment(self, session_factory):
        repo = SqlAssignmentRepository(session_factory)
        repo.insert_if_absent(self.record(subject="user-1"))
        repo.insert_if_absent(self.record(subject="user-2"))
        subjects = {r.subject_key for r in repo.list_for_experiment("inv.strategy")}
        assert subjects == {"user-1", "user-2"}
        assert repo.list_for_experiment("other") == []

    def test_recorder_over_sql(self, session_factory):
        recorder = AssignmentRecorder(SqlAssignmentRepository(session_factory), timeout=5)
        try:
            assert recorder.record_if_absent("user-42", OPTIMISTIC, SubjectType.DEVICE) == OPTIMISTIC
            assert recorder.record_if_absent("user-42", PESSIMISTIC) == OPTIMISTIC
        finally:
            recorder.close()

    def test_concurrent_first_exposures_over_sqlite_file(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'assignments.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        init_db(engine)
        repo = SqlAssignmentRepository(sessionmaker(autocommit=False, autoflush=False, bind=engine))
        recorder = AssignmentRecorder(repo, timeout=30, max_workers=8)
        barrier = threading.Barrier(50)
        results = [None] * 50

        def expose(i):
            assignment = ExperimentAssignment(
                experiment_key="inv.strategy", variant=f"variant-{i}", in_experiment=True
            )
            barrier.wait()
            results[i] = recorder.record_if_absent("user-42", assignment)

        threads = [threading.Thread(target=expose, args=(i,)) for i in range(50)]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            stored = repo.list_for_experiment("inv.strategy")
        finally:
            recorder.close()
            engine.dispose()

        assert len(stored) == 1
        assert all(result is not None for result in results)
        assert {result.variant for result in results} == {stored[0].variant}
