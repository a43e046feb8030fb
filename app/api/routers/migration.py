"""
Catalog migration endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from app.migration.failures import MigrationSetupError
from app.migration.products import ProductValidationError, normalize_products
from app.schemas.migration import (
    MigrationJobAcceptedResponse,
    MigrationJobStatusResponse,
    MigrationRequest,
    ProgressEventResponse,
    UnitResultResponse,
)
from app.services.migration_service import MigrationJob, MigrationService, get_migration_service

router = APIRouter(tags=["migrations"])


@router.post(
    "/migrations",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=MigrationJobAcceptedResponse,
)
def trigger_migration(
    payload: MigrationRequest,
    background_tasks: BackgroundTasks,
    service: MigrationService = Depends(get_migration_service),
) -> MigrationJobAcceptedResponse:
    try:
        products = normalize_products(payload.products)
        service.credentials(account_key=payload.account_key)
        job = service.create_job(products, mode=payload.mode)
    except ProductValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc), "errors": exc.errors, "index": exc.index},
        ) from exc
    except MigrationSetupError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    background_tasks.add_task(service.run_job, job.job_id, products, payload.account_key)
    return MigrationJobAcceptedResponse(
        job_id=job.job_id,
        mode=job.mode,
        status=job.status,
        total=job.total,
        created_at=job.created_at,
    )


@router.get("/migrations/{job_id}", response_model=MigrationJobStatusResponse)
def get_migration_status(
    job_id: str,
    service: MigrationService = Depends(get_migration_service),
) -> MigrationJobStatusResponse:
    job = service.tracker.get(job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Migration job not found: {job_id}")
    return _to_status_response(job)


def _to_status_response(job: MigrationJob) -> MigrationJobStatusResponse:
    summary = job.summary
    return MigrationJobStatusResponse(
        job_id=job.job_id,
        mode=job.mode,
        status=job.status,
        total=job.total,
        created_at=job.created_at,
        finished_at=job.finished_at,
        succeeded=summary.succeeded if summary else None,
        failed=summary.failed if summary else None,
        results=[
            UnitResultResponse(
                unit_id=result.unit_id,
                title=result.title,
                status=result.status,
                attempts=result.attempts,
                reason=result.reason,
                message=result.message,
                destination_url=result.destination_url,
            )
            for result in (summary.results if summary else [])
        ],
        events=[
            ProgressEventResponse(
                unit_id=event.unit_id,
                status=event.status,
                attempt=event.attempt,
                message=event.message,
            )
            for event in list(job.events)
        ],
        error_message=job.error_message,
    )
