import uuid
from datetime import date, datetime, time, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies import get_current_user, get_current_worker, get_party_profiles
from app.models.enums import UserRole
from app.models.job import Job
from app.models.user import User
from app.models.worker import Worker
from app.schemas.attendance import AttendancePage, AttendanceStatsResponse
from app.schemas.common import Envelope, ok
from app.services import attendance
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter

router = APIRouter()


def _day_start(day: date | None) -> datetime | None:
    if day is None:
        return None
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _page(records: list, total: int, page: int, limit: int) -> dict:
    return {
        "items": records,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": attendance.total_pages(total, limit),
    }


@router.get("", response_model=Envelope[AttendancePage])
@limiter.limit(LIST_RATE_LIMIT)
async def list_attendance(
    request: Request,
    worker_id: uuid.UUID | None = None,
    job_id: uuid.UUID | None = None,
    business_id: uuid.UUID | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Attendance records with filters. Workers and businesses only ever see their own bookings.

    ``end_date`` is inclusive.
    """
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end_date must not be before start_date")

    if user.role != UserRole.ADMIN:
        worker, business = await get_party_profiles(user, db)
        if worker is not None:
            worker_id = worker.id
        elif business is not None:
            business_id = business.id
        else:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only workers and businesses have attendance")

    records, total = await attendance.list_attendance(
        db,
        worker_id=worker_id,
        job_id=job_id,
        business_id=business_id,
        start=_day_start(start_date),
        end=_day_start(end_date + timedelta(days=1)) if end_date else None,
        page=page,
        limit=limit,
    )
    return ok(_page(records, total, page, limit))


@router.get("/me", response_model=Envelope[AttendancePage])
@limiter.limit(LIST_RATE_LIMIT)
async def my_attendance(
    request: Request,
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(20, ge=1, le=100),
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """The current worker's check-in history, latest shift first."""
    _, worker = worker_ctx
    records, total = await attendance.list_attendance(db, worker_id=worker.id, page=page, limit=limit)
    return ok(_page(records, total, page, limit))


@router.get("/jobs/{job_id}", response_model=Envelope[AttendancePage])
@limiter.limit(LIST_RATE_LIMIT)
async def job_attendance(
    request: Request,
    job_id: uuid.UUID,
    page: int = Query(1, ge=1, le=1000),
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Who checked in and out for one job. Job owner or admin."""
    job = await db.get(Job, job_id)
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    if user.role != UserRole.ADMIN:
        _, business = await get_party_profiles(user, db)
        if business is None or job.business_id != business.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your job")

    records, total = await attendance.list_attendance(db, job_id=job.id, page=page, limit=limit)
    return ok(_page(records, total, page, limit))


@router.get("/workers/{worker_id}/stats", response_model=Envelope[AttendanceStatsResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def worker_attendance_stats(
    request: Request,
    worker_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Attendance rate and on-time arrivals over the worker's past hired shifts."""
    if await db.get(Worker, worker_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Worker not found")
    return ok(await attendance.worker_stats(db, worker_id))
