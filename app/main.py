import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

import uvicorn
from fastapi import Body, Depends, FastAPI, HTTPException, Path, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette import status

from app.core.auth import require_auth_token
from app.core.db import SessionLocal, get_db, init_db
from app.core.errors import ConfigurationError, ExperimentNotFoundError, RecordingError
from app.core.logging import configure_logging
from app.core.settings import config_settings
from app.engine.recorder import AssignmentRecorder
from app.engine.store import ConfigurationStore
from app.models.schemas.assignment import (
    AssignmentRecord,
    ExperimentAssignment,
    ExposureCreateModel,
    ExposureResponseModel,
)
from app.models.schemas.event import ConversionCreateModel, ConversionResponseModel
from app.models.schemas.experiment import ExperimentResponseModel, SnapshotResponseModel
from app.repositories.assignment_repo import SqlAssignmentRepository
from app.services.event_service import EventService
from app.services.experiment_service import ExperimentService

logger = logging.getLogger(__name__)


def build_experiment_service() -> ExperimentService:
    store = ConfigurationStore()
    if config_settings.EXPERIMENTS_FILE:
        try:
            store.publish_file(config_settings.EXPERIMENTS_FILE)
        except ConfigurationError as e:
            # Start with an empty snapshot; PUT /experiments or a reload recovers.
            logger.error("Could not load %s: %s", config_settings.EXPERIMENTS_FILE, e)
    recorder = AssignmentRecorder(
        SqlAssignmentRepository(SessionLocal),
        timeout=config_settings.RECORD_TIMEOUT_SECONDS,
        max_workers=config_settings.RECORDER_MAX_WORKERS,
    )
    return ExperimentService(store, recorder)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(config_settings.LOG_LEVEL)
    init_db()
    app.state.experiment_service = build_experiment_service()
    logger.info("Experiment service started")
    try:
        yield
    finally:
        app.state.experiment_service.recorder.close()


app = FastAPI(
    title="Experiment assignment service",
    description="Deterministic A/B variant assignment with exposure recording.",
    version="0.1.0",
    dependencies=[Depends(require_auth_token)],
    lifespan=lifespan,
)


def get_experiment_service(request: Request) -> ExperimentService:
    return request.app.state.experiment_service


@app.exception_handler(ExperimentNotFoundError)
async def experiment_not_found_handler(request: Request, exc: ExperimentNotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(RecordingError)
async def recording_error_handler(request: Request, exc: RecordingError):
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Recording is temporarily unavailable. Please try again shortly."},
    )


@app.put(
    "/experiments",
    response_model=SnapshotResponseModel,
    summary="Publish a complete experiment snapshot",
)
def put_experiments(
    payloads: list[dict[str, Any]] = Body(...),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    """
    Replaces every published experiment at once. Experiments missing from
    the payload stop resolving.
    """
    version = experiment_service.publish(payloads)
    return SnapshotResponseModel(version=version, keys=experiment_service.store.keys())


@app.get("/experiments", response_model=SnapshotResponseModel)
def get_snapshot(experiment_service: ExperimentService = Depends(get_experiment_service)):
    store = experiment_service.store
    return SnapshotResponseModel(version=store.version, keys=store.keys())


@app.post(
    "/experiments/reload",
    response_model=SnapshotResponseModel,
    summary="Republish the configured experiments file",
)
def reload_experiments(experiment_service: ExperimentService = Depends(get_experiment_service)):
    if not config_settings.EXPERIMENTS_FILE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="EXPERIMENTS_FILE is not configured.",
        )
    version = experiment_service.reload_from_file(config_settings.EXPERIMENTS_FILE)
    return SnapshotResponseModel(version=version, keys=experiment_service.store.keys())


@app.get("/experiments/{experiment_key}", response_model=ExperimentResponseModel)
def get_experiment(
    experiment_key: str = Path(..., description="The key of the experiment."),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    config = experiment_service.get_experiment(experiment_key)
    return ExperimentResponseModel(
        key=config.key,
        name=config.name,
        variants=list(config.variants),
        sampling=config.sampling,
        status=config.status,
        snapshot_version=experiment_service.store.version,
    )


@app.get(
    "/experiments/{experiment_key}/assignment/{subject_key}",
    response_model=ExperimentAssignment,
    summary="Resolve a subject's variant",
)
def get_assignment(
    experiment_key: str = Path(..., description="The key of the experiment."),
    subject_key: str = Path(..., description="The user, session or device key."),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    """Computes the assignment without recording an exposure."""
    return experiment_service.resolve(subject_key, experiment_key)


@app.post(
    "/experiments/{experiment_key}/exposures",
    response_model=ExposureResponseModel,
    summary="Resolve and record a subject's first exposure",
)
def post_exposure(
    exposure: ExposureCreateModel,
    experiment_key: str = Path(..., description="The key of the experiment."),
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    assignment, recorded = experiment_service.expose(
        exposure.subject_key, experiment_key, exposure.subject_type
    )
    return ExposureResponseModel(
        experiment_key=assignment.experiment_key,
        subject_key=exposure.subject_key,
        variant=assignment.variant,
        in_experiment=assignment.in_experiment,
        recorded=recorded,
    )


@app.get("/experiments/{experiment_key}/exposures", response_model=list[AssignmentRecord])
def get_exposures(
    experiment_key: str,
    experiment_service: ExperimentService = Depends(get_experiment_service),
):
    return experiment_service.list_exposures(experiment_key)


@app.post(
    "/events",
    response_model=ConversionResponseModel,
    status_code=status.HTTP_201_CREATED,
    summary="Record an experiment outcome.",
)
def post_events(event_data: ConversionCreateModel, db: Session = Depends(get_db)):
    return EventService(db).record_event(event_data)


@app.get("/experiments/{experiment_key}/events")
def get_events(
    experiment_key: str,
    outcome: Optional[str] = Query(None),
    variant: Optional[str] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    return EventService(db).list_events(
        experiment_key,
        outcome=outcome,
        variant=variant,
        start_date=start_date,
        end_date=end_date,
    )


if __name__ == "__main__":
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
