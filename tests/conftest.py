import os
import threading

# Settings are read at import time, so configure them before importing app.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("TOKENS", '["test-token"]')

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.db import init_db
from app.engine.recorder import AssignmentRecorder
from app.engine.store import ConfigurationStore
from app.models.schemas.experiment import ExperimentConfig, ExperimentStatus
from app.repositories.assignment_repo import InMemoryAssignmentRepository
from app.services.experiment_service import ExperimentService

INVENTORY_EXPERIMENT = ExperimentConfig(
    key="inv.strategy",
    name="Inventory reservation strategy",
    variants=("optimistic", "pessimistic"),
    sampling=1.0,
    status=ExperimentStatus.ACTIVE,
)


def make_config(key="exp", variants=("control", "treatment"), sampling=1.0, status="active", name=None):
    return ExperimentConfig(
        key=key,
        name=name or key,
        variants=tuple(variants),
        sampling=sampling,
        status=status,
    )


@pytest.fixture
def store():
    return ConfigurationStore({INVENTORY_EXPERIMENT.key: INVENTORY_EXPERIMENT})


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def memory_repo():
    return InMemoryAssignmentRepository()


@pytest.fixture
def recorder(memory_repo):
    recorder = AssignmentRecorder(memory_repo, timeout=10.0, max_workers=8)
    yield recorder
    recorder.close()


@pytest.fixture
def service(store, recorder):
    return ExperimentService(store, recorder)


class FailingRepository(InMemoryAssignmentRepository):
    def __init__(self, error):
        super().__init__()
        self.error = error

    def insert_if_absent(self, record):
        raise self.error


class BlockingRepository(InMemoryAssignmentRepository):
    def __init__(self):
        super().__init__()
        self.release = threading.Event()

    def insert_if_absent(self, record):
        self.release.wait(5)
        return super().insert_if_absent(record)
