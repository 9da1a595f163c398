import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, get_current_worker
from app.models.enums import UserRole
from app.models.user import User
from app.models.worker import Worker
from app.schemas.common import Envelope, ok
from app.schemas.profile import WorkerResponse, WorkerUpdateRequest
from app.schemas.reliability import ReliabilityHistoryResponse, ReliabilityScoreResponse
from app.services import reliability
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter

logger = structlog.get_logger()
router = APIRouter()


async def _get_worker_or_404(db: AsyncSession, worker_id: uuid.UUID) -> Worker:
    worker = await db.get(Worker, worker_id)
    if worker is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found")
    return worker


@router.get("/me", response_model=Envelope[WorkerResponse])
@limiter.limit("30/minute")
async def get_my_profile(
    request: Request,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
):
    _, worker = worker_ctx
    return ok(worker)


@router.put("/me", response_model=Envelope[WorkerResponse])
@limiter.limit("30/minute")
async def update_my_profile(
    request: Request,
    body: WorkerUpdateRequest,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Update the current worker's profile."""
    _, worker = worker_ctx

    UPDATABLE_FIELDS = {"full_name", "phone", "bio", "avatar_url", "skills"}
    update_data = body.model_dump(exclude_unset=True)
    for field, value in update_data.items():
        if field not in UPDATABLE_FIELDS:
            continue
        if field == "avatar_url" and value is not None:
            value = str(value)
        setattr(worker, field, value)

    await db.flush()
    logger.info("worker_profile_updated", worker_id=str(worker.id), fields=sorted(update_data))
    return ok(worker)


@router.get("/{worker_id}", response_model=Envelope[WorkerResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_worker_profile(
    request: Request,
    worker_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Public worker profile."""
    return ok(await _get_worker_or_404(db, worker_id))


@router.get("/{worker_id}/reliability", response_model=Envelope[ReliabilityScoreResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_reliability(
    request: Request,
    worker_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Compute the worker's current reliability score without persisting it."""
    await _get_worker_or_404(db, worker_id)
    breakdown = await reliability.calculate_score(db, worker_id)
    if breakdown is None:
        return ok({"worker_id": worker_id, "completed_jobs_count": 0})
    return ok({"worker_id": worker_id, **breakdown.model_dump()})


@router.post("/{worker_id}/reliability/refresh", response_model=Envelope[ReliabilityScoreResponse])
@limiter.limit("10/minute")
async def refresh_reliability(
    request: Request,
    worker_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Recompute and persist the score. Allowed for the worker themself or an admin."""
    worker = await _get_worker_or_404(db, worker_id)
    if user.role != UserRole.ADMIN and worker.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to refresh this score")

    breakdown = await reliability.update_score(db, worker_id)
    if breakdown is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot calculate score - no completed jobs yet",
        )
    return ok({"worker_id": worker_id, **breakdown.model_dump()})


@router.get("/{worker_id}/reliability/history", response_model=Envelope[list[ReliabilityHistoryResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def get_reliability_history(
    request: Request,
    worker_id: uuid.UUID,
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    await _get_worker_or_404(db, worker_id)
    return ok(await reliability.get_history(db, worker_id, limit=limit))
