import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.dependencies import get_current_business, get_current_worker
from app.metrics import BOOKINGS_CREATED
from app.models.booking import Booking
from app.models.business import Business
from app.models.enums import BookingStatus, JobStatus, NotificationType
from app.models.job import Job
from app.models.message import Message
from app.models.social import JobPost
from app.models.user import User
from app.models.worker import Worker
from app.schemas.booking import ApplicantResponse, ApplicationResponse, BookingResponse, DuplicateApplicationResponse
from app.schemas.common import Envelope, StatusResponse, ok
from app.schemas.job import (
    JobCreatedResponse,
    JobCreateRequest,
    JobResponse,
    JobStatusUpdateRequest,
    JobUpdateRequest,
)
from app.services.notifications import notify_safely
from app.services.social import queue_job_posts
from app.utils.rate_limit import LIST_RATE_LIMIT, limiter
from app.utils.timeutil import as_utc, utcnow

logger = structlog.get_logger()
router = APIRouter()

# A job with any of these bookings has a hire on record and cannot be deleted
_HIRED_STATUSES = (BookingStatus.ACCEPTED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED)


async def _get_job_or_404(db: AsyncSession, job_id: uuid.UUID, lock: bool = False) -> Job:
    stmt = select(Job).where(Job.id == job_id)
    if lock:
        stmt = stmt.with_for_update()
    job = (await db.execute(stmt)).scalar_one_or_none()
    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    return job


@router.post("", response_model=Envelope[JobCreatedResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def create_job(
    request: Request,
    body: JobCreateRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Post a job and queue cross-posts to the business's auto-posting connections."""
    _, business = business_ctx

    job = Job(
        business_id=business.id,
        title=body.title,
        description=body.description,
        requirements=body.requirements,
        position_type=body.position_type,
        budget_min=body.budget_min,
        budget_max=body.budget_max,
        workers_needed=body.workers_needed,
        deadline=body.deadline,
        start_date=body.start_date,
        end_date=body.end_date,
        address=body.address,
        lat=body.lat,
        lng=body.lng,
        status=JobStatus.OPEN,
        platform_settings=body.platform_settings,
    )
    db.add(job)
    await db.flush()

    posts = await queue_job_posts(db, job, business)

    logger.info("job_created", job_id=str(job.id), business_id=str(business.id), queued_posts=len(posts))
    return ok({"job": job, "queued_posts": len(posts)})


@router.get("", response_model=Envelope[list[JobResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_jobs(
    request: Request,
    job_status: JobStatus = Query(JobStatus.OPEN, alias="status"),
    position_type: str | None = Query(None, max_length=50),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0, le=10000),
    db: AsyncSession = Depends(get_db),
):
    """Browse jobs, newest first."""
    query = select(Job).where(Job.status == job_status)
    if position_type:
        query = query.where(Job.position_type == position_type)
    query = query.order_by(Job.created_at.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return ok(result.scalars().all())


@router.get("/applications/me", response_model=Envelope[list[ApplicationResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_my_applications(
    request: Request,
    booking_status: BookingStatus | None = Query(None, alias="status"),
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """The current worker's applications with their jobs, newest first."""
    _, worker = worker_ctx
    query = select(Booking).where(Booking.worker_id == worker.id).options(selectinload(Booking.job))
    if booking_status:
        query = query.where(Booking.status == booking_status)
    result = await db.execute(query.order_by(Booking.created_at.desc()))
    return ok(result.scalars().all())


@router.get("/search", response_model=Envelope[list[JobResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def search_jobs(
    request: Request,
    q: str = Query(min_length=2, max_length=100),
    limit: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    """Open jobs whose title, description or address contains the term, newest first."""
    term = q.strip()
    result = await db.execute(
        select(Job)
        .where(
            Job.status == JobStatus.OPEN,
            or_(
                Job.title.icontains(term, autoescape=True),
                Job.description.icontains(term, autoescape=True),
                Job.address.icontains(term, autoescape=True),
            ),
        )
        .order_by(Job.created_at.desc())
        .limit(limit)
    )
    return ok(result.scalars().all())


@router.get("/{job_id}", response_model=Envelope[JobResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def get_job(
    request: Request,
    job_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    return ok(await _get_job_or_404(db, job_id))


@router.patch("/{job_id}", response_model=Envelope[JobResponse])
@limiter.limit("20/minute")
async def update_job(
    request: Request,
    job_id: uuid.UUID,
    body: JobUpdateRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Edit a job's details. Owner only; the merged budget and dates must stay consistent."""
    _, business = business_ctx
    job = await _get_job_or_404(db, job_id, lock=True)
    if job.business_id != business.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your job")

    changes = body.model_dump(exclude_unset=True)
    budget_min = changes.get("budget_min", job.budget_min)
    budget_max = changes.get("budget_max", job.budget_max)
    if budget_min > budget_max:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="budget_min must be less than or equal to budget_max",
        )
    start_date = changes.get("start_date", job.start_date)
    end_date = changes.get("end_date", job.end_date)
    if start_date and end_date and as_utc(end_date) < as_utc(start_date):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="end_date must be after start_date",
        )

    for field, value in changes.items():
        setattr(job, field, value)
    await db.flush()
    logger.info("job_updated", job_id=str(job.id), fields=sorted(changes))
    return ok(job)


@router.delete("/{job_id}", response_model=Envelope[StatusResponse])
@limiter.limit("20/minute")
async def delete_job(
    request: Request,
    job_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Delete a job that nobody has been hired for. Pending applicants are told it is gone."""
    _, business = business_ctx
    job = await _get_job_or_404(db, job_id, lock=True)
    if job.business_id != business.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your job")

    result = await db.execute(
        select(Booking).where(Booking.job_id == job.id).options(selectinload(Booking.worker))
    )
    bookings = list(result.scalars().all())
    if any(b.status in _HIRED_STATUSES for b in bookings):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Cannot delete a job with active or completed bookings",
        )

    for booking in bookings:
        if booking.status == BookingStatus.PENDING:
            await notify_safely(
                db,
                user_id=booking.worker.user_id,
                notification_type=NotificationType.BOOKING_CANCELLED,
                title="Job removed",
                body=f"{job.title} was removed by {business.name}.",
                link="/worker/jobs",
                data={"job_id": str(job.id)},
            )

    booking_ids = [b.id for b in bookings]
    if booking_ids:
        await db.execute(
            update(Message).where(Message.booking_id.in_(booking_ids)).values(booking_id=None)
        )
        await db.execute(delete(Booking).where(Booking.id.in_(booking_ids)))
    await db.execute(delete(JobPost).where(JobPost.job_id == job.id))
    await db.delete(job)
    await db.flush()

    logger.info("job_deleted", job_id=str(job.id), business_id=str(business.id), applications=len(bookings))
    return ok({"status": "deleted"})


@router.patch("/{job_id}/status", response_model=Envelope[JobResponse])
@limiter.limit("20/minute")
async def update_job_status(
    request: Request,
    job_id: uuid.UUID,
    body: JobStatusUpdateRequest,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Open, close or mark a job as filled. Owner only."""
    _, business = business_ctx
    job = await _get_job_or_404(db, job_id, lock=True)
    if job.business_id != business.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your job")

    previous = job.status
    job.status = body.status
    await db.flush()
    logger.info("job_status_updated", job_id=str(job.id), old_status=previous, new_status=body.status.value)
    return ok(job)


@router.post("/{job_id}/apply", response_model=Envelope[BookingResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
async def apply_for_job(
    request: Request,
    job_id: uuid.UUID,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Apply to an open job. Creates a pending booking and notifies the business."""
    _, worker = worker_ctx
    job = await _get_job_or_404(db, job_id)
    if job.status != JobStatus.OPEN:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job is not open for applications")

    existing = await db.execute(
        select(Booking.id).where(Booking.job_id == job.id, Booking.worker_id == worker.id)
    )
    if existing.scalar_one_or_none() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You have already applied for this job")

    now = utcnow()
    booking = Booking(
        job_id=job.id,
        worker_id=worker.id,
        business_id=job.business_id,
        status=BookingStatus.PENDING,
        start_date=job.start_date or now,
        end_date=job.end_date or job.start_date or now,
        final_price=0,
    )
    db.add(booking)
    try:
        await db.flush()
    except IntegrityError:
        # Concurrent duplicate application hit uq_booking_job_worker
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="You have already applied for this job")

    business = await db.get(Business, job.business_id)
    await notify_safely(
        db,
        user_id=business.user_id,
        notification_type=NotificationType.NEW_APPLICATION,
        title="New application",
        body=f"{worker.full_name} applied for {job.title}",
        link=f"/business/jobs/{job.id}/applicants",
        data={"booking_id": str(booking.id), "job_id": str(job.id)},
    )

    BOOKINGS_CREATED.inc()
    logger.info("job_application_created", booking_id=str(booking.id), job_id=str(job.id), worker_id=str(worker.id))
    return ok(booking)


@router.get("/{job_id}/application", response_model=Envelope[DuplicateApplicationResponse])
@limiter.limit(LIST_RATE_LIMIT)
async def check_duplicate_application(
    request: Request,
    job_id: uuid.UUID,
    worker_ctx: tuple[User, Worker] = Depends(get_current_worker),
    db: AsyncSession = Depends(get_db),
):
    """Whether the current worker already applied for this job."""
    _, worker = worker_ctx
    result = await db.execute(
        select(Booking).where(Booking.job_id == job_id, Booking.worker_id == worker.id)
    )
    application = result.scalar_one_or_none()
    return ok({"has_applied": application is not None, "application": application})


@router.get("/{job_id}/applicants", response_model=Envelope[list[ApplicantResponse]])
@limiter.limit(LIST_RATE_LIMIT)
async def list_applicants(
    request: Request,
    job_id: uuid.UUID,
    business_ctx: tuple[User, Business] = Depends(get_current_business),
    db: AsyncSession = Depends(get_db),
):
    """Applications for one of the business's jobs, newest first."""
    _, business = business_ctx
    job = await _get_job_or_404(db, job_id)
    if job.business_id != business.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your job")

    result = await db.execute(
        select(Booking)
        .where(Booking.job_id == job.id)
        .options(selectinload(Booking.worker))
        .order_by(Booking.created_at.desc())
    )
    return ok(result.scalars().all())
