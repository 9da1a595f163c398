import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.models.booking import Booking
from app.models.business import Business
from app.models.compliance import ComplianceTracking
from app.models.enums import BookingStatus, JobStatus, NotificationType
from app.models.job import Job
from app.models.notification import Notification
from app.models.reliability import ReliabilityScoreHistory
from app.models.user import User
from app.models.wallet import WalletTransaction
from tests.conftest import auth_header, make_booking, make_business, make_job, make_worker, token_for


def _job_body(**overrides):
    body = {
        "title": "Housekeeping Staff",
        "description": "Room turnover for a 20 room villa.",
        "requirements": ["Experience in villas"],
        "position_type": "housekeeping",
        "budget_min": "150000.00",
        "budget_max": "200000.00",
        "workers_needed": 3,
        "start_date": (datetime.now(timezone.utc) + timedelta(days=2)).isoformat(),
        "end_date": (datetime.now(timezone.utc) + timedelta(days=2, hours=8)).isoformat(),
        "address": "Jl. Kayu Aya, Seminyak",
    }
    body.update(overrides)
    return body


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_business_creates_job(client, business_user):
    response = await client.post("/jobs", json=_job_body(), headers=auth_header(token_for(business_user)))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["job"]["title"] == "Housekeeping Staff"
    assert data["job"]["status"] == "open"
    assert data["job"]["budget_max"] == "200000.00"
    assert data["queued_posts"] == 0


@pytest.mark.asyncio
async def test_worker_cannot_create_job(client, worker_user):
    response = await client.post("/jobs", json=_job_body(), headers=auth_header(token_for(worker_user)))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_create_job_rejects_inverted_budget(client, business_user):
    response = await client.post(
        "/jobs",
        json=_job_body(budget_min="300000.00", budget_max="100000.00"),
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_list_jobs_filters_by_status(client, db, business, job):
    await make_job(db, business, title="Closed Shift", status=JobStatus.CLOSED)

    response = await client.get("/jobs")
    titles = [j["title"] for j in response.json()["data"]]
    assert titles == ["Banquet Waiter"]

    response = await client.get("/jobs", params={"status": "closed"})
    assert [j["title"] for j in response.json()["data"]] == ["Closed Shift"]


@pytest.mark.asyncio
async def test_get_job_not_found(client):
    response = await client.get("/jobs/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 404
    assert response.json()["error"] == "Job not found"


@pytest.mark.asyncio
async def test_update_job_status_owner_only(client, db, job):
    other = await make_business(db, email="other@example.com", name="Other Cafe")
    other_user = await db.get(User, other.user_id)

    response = await client.patch(
        f"/jobs/{job.id}/status", json={"status": "closed"}, headers=auth_header(token_for(other_user))
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_update_job_status(client, job, business_user):
    response = await client.patch(
        f"/jobs/{job.id}/status", json={"status": "filled"}, headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "filled"


@pytest.mark.asyncio
async def test_update_job_partial(client, job, business_user):
    response = await client.patch(
        f"/jobs/{job.id}",
        json={"title": "Senior Banquet Waiter", "workers_needed": 4, "lat": -8.7184, "lng": 115.1686},
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["title"] == "Senior Banquet Waiter"
    assert data["workers_needed"] == 4
    assert data["lat"] == -8.7184
    # Untouched fields keep their value
    assert data["address"] == "Jl. Pantai Kuta, Bali"
    assert data["budget_max"] == "250000.00"


@pytest.mark.asyncio
async def test_update_job_checks_merged_budget(client, job, business_user):
    response = await client.patch(
        f"/jobs/{job.id}", json={"budget_min": "300000.00"}, headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 422
    assert job.budget_min == Decimal("150000.00")


@pytest.mark.asyncio
async def test_update_job_rejects_null_required_field(client, job, business_user):
    response = await client.patch(
        f"/jobs/{job.id}", json={"title": None}, headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_job_owner_only(client, db, job):
    other = await make_business(db, email="other@example.com", name="Other Cafe")
    response = await client.patch(
        f"/jobs/{job.id}",
        json={"title": "Hijacked"},
        headers=auth_header(token_for(await db.get(User, other.user_id))),
    )
    assert response.status_code == 403
    assert job.title == "Banquet Waiter"


@pytest.mark.asyncio
async def test_delete_job_notifies_pending_applicants(client, db, job, pending_booking, worker_user, business_user):
    response = await client.delete(f"/jobs/{job.id}", headers=auth_header(token_for(business_user)))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "deleted"

    assert (await db.execute(select(Job).where(Job.id == job.id))).scalar_one_or_none() is None
    assert (await db.execute(select(Booking).where(Booking.job_id == job.id))).scalars().all() == []
    rows = (await db.execute(select(Notification).where(Notification.user_id == worker_user.id))).scalars().all()
    assert [n.type for n in rows] == [NotificationType.BOOKING_CANCELLED]


@pytest.mark.asyncio
async def test_delete_job_with_hire_conflicts(client, db, job, worker, business_user):
    await make_booking(db, job, worker, status=BookingStatus.ACCEPTED)
    response = await client.delete(f"/jobs/{job.id}", headers=auth_header(token_for(business_user)))
    assert response.status_code == 409
    assert response.json()["error"] == "Cannot delete a job with active or completed bookings"
    assert (await db.execute(select(Job).where(Job.id == job.id))).scalar_one_or_none() is not None


@pytest.mark.asyncio
async def test_delete_job_owner_only(client, db, job, worker_user):
    response = await client.delete(f"/jobs/{job.id}", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_search_jobs(client, db, business):
    await make_job(db, business, title="Pool Bartender")
    await make_job(db, business, title="Kitchen Porter")
    await make_job(db, business, title="Closed Bartender", status=JobStatus.CLOSED)

    response = await client.get("/jobs/search", params={"q": "bartend"})
    assert response.status_code == 200
    assert [j["title"] for j in response.json()["data"]] == ["Pool Bartender"]

    # Address matches too; every fixture job is in Kuta
    by_address = await client.get("/jobs/search", params={"q": "kuta"})
    assert len(by_address.json()["data"]) == 2


@pytest.mark.asyncio
async def test_search_jobs_escapes_wildcards(client, job):
    response = await client.get("/jobs/search", params={"q": "%_"})
    assert response.status_code == 200
    assert response.json()["data"] == []


@pytest.mark.asyncio
async def test_search_jobs_requires_term(client):
    response = await client.get("/jobs/search", params={"q": "a"})
    assert response.status_code == 422


# ---------------------------------------------------------------------------
# Applications
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_apply_creates_pending_booking_and_notifies(client, db, job, worker_user, business_user):
    response = await client.post(f"/jobs/{job.id}/apply", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 201
    data = response.json()["data"]
    assert data["status"] == "pending"
    assert data["job_id"] == str(job.id)

    notifications = (
        await db.execute(select(Notification).where(Notification.user_id == business_user.id))
    ).scalars().all()
    assert len(notifications) == 1
    assert notifications[0].type == NotificationType.NEW_APPLICATION


@pytest.mark.asyncio
async def test_apply_twice_conflicts(client, job, worker_user):
    headers = auth_header(token_for(worker_user))
    assert (await client.post(f"/jobs/{job.id}/apply", headers=headers)).status_code == 201
    response = await client.post(f"/jobs/{job.id}/apply", headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "You have already applied for this job"


@pytest.mark.asyncio
async def test_apply_to_closed_job(client, db, business, worker_user):
    closed = await make_job(db, business, status=JobStatus.CLOSED)
    response = await client.post(f"/jobs/{closed.id}/apply", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_duplicate_application_check(client, job, worker_user):
    headers = auth_header(token_for(worker_user))
    response = await client.get(f"/jobs/{job.id}/application", headers=headers)
    assert response.json()["data"] == {"has_applied": False, "application": None}

    await client.post(f"/jobs/{job.id}/apply", headers=headers)
    response = await client.get(f"/jobs/{job.id}/application", headers=headers)
    assert response.json()["data"]["has_applied"] is True


@pytest.mark.asyncio
async def test_list_applicants_and_my_applications(client, pending_booking, worker_user, business_user, job):
    response = await client.get(f"/jobs/{job.id}/applicants", headers=auth_header(token_for(business_user)))
    assert response.status_code == 200
    applicants = response.json()["data"]
    assert len(applicants) == 1
    assert applicants[0]["worker"]["full_name"] == "Komang Adi"

    response = await client.get("/jobs/applications/me", headers=auth_header(token_for(worker_user)))
    assert response.json()["data"][0]["job"]["title"] == "Banquet Waiter"


# ---------------------------------------------------------------------------
# Booking lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_accept_application_records_compliance(client, db, pending_booking, business_user, worker_user):
    response = await client.post(
        f"/bookings/{pending_booking.id}/accept", headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["booking"]["status"] == "accepted"
    assert data["booking"]["accepted_at"] is not None
    assert data["compliance"]["status"] == "ok"
    assert data["compliance"]["can_accept"] is True

    tracking = (await db.execute(select(ComplianceTracking))).scalar_one()
    assert tracking.days_worked == 1

    notifications = (
        await db.execute(select(Notification).where(Notification.user_id == worker_user.id))
    ).scalars().all()
    assert [n.type for n in notifications] == [NotificationType.APPLICATION_ACCEPTED]


@pytest.mark.asyncio
async def test_accept_blocked_at_monthly_limit(client, db, business, worker, business_user):
    # 21 accepted days in the same month for the same business
    base = datetime.now(timezone.utc).replace(day=1, hour=8, minute=0, second=0, microsecond=0)
    for day in range(21):
        shift = await make_job(db, business, title=f"Shift {day}", start_date=base + timedelta(days=day % 28))
        await make_booking(db, shift, worker, status=BookingStatus.ACCEPTED)

    target_job = await make_job(db, business, title="One more", start_date=base + timedelta(days=5))
    booking = await make_booking(db, target_job, worker)

    response = await client.post(f"/bookings/{booking.id}/accept", headers=auth_header(token_for(business_user)))
    assert response.status_code == 409
    assert "PP 35/2021" in response.json()["error"]


@pytest.mark.asyncio
async def test_accept_other_business_booking_forbidden(client, db, pending_booking):

    other = await make_business(db, email="rival@example.com", name="Rival")
    other_user = await db.get(User, other.user_id)
    response = await client.post(f"/bookings/{pending_booking.id}/accept", headers=auth_header(token_for(other_user)))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_reject_application(client, pending_booking, business_user):
    response = await client.post(
        f"/bookings/{pending_booking.id}/reject", headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "rejected"


@pytest.mark.asyncio
async def test_reject_twice_is_illegal_transition(client, pending_booking, business_user):
    headers = auth_header(token_for(business_user))
    await client.post(f"/bookings/{pending_booking.id}/reject", headers=headers)
    response = await client.post(f"/bookings/{pending_booking.id}/reject", headers=headers)
    assert response.status_code == 409
    assert response.json()["error"] == "Cannot reject a booking in status 'rejected'"


@pytest.mark.asyncio
async def test_worker_withdraws_pending_application(client, pending_booking, worker_user):
    response = await client.post(
        f"/bookings/{pending_booking.id}/cancel-application", headers=auth_header(token_for(worker_user))
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "cancelled"
    assert data["cancelled_by"] == "worker"


@pytest.mark.asyncio
async def test_start_requires_accepted(client, pending_booking, worker_user):
    response = await client.post(f"/bookings/{pending_booking.id}/start", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_start_accepted_booking(client, db, job, worker, worker_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.ACCEPTED)
    response = await client.post(f"/bookings/{booking.id}/start", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "in_progress"
    assert data["actual_start_time"] is not None


@pytest.mark.asyncio
async def test_start_and_checkout_record_positions(client, db, job, worker, worker_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.ACCEPTED)
    headers = auth_header(token_for(worker_user))

    started = await client.post(
        f"/bookings/{booking.id}/start", json={"lat": -8.7184, "lng": 115.1686}, headers=headers
    )
    assert started.status_code == 200
    assert started.json()["data"]["check_in_lat"] == -8.7184
    assert started.json()["data"]["check_in_lng"] == 115.1686

    finished = await client.post(
        f"/bookings/{booking.id}/checkout", json={"lat": -8.7185, "lng": 115.1687}, headers=headers
    )
    assert finished.status_code == 200
    assert finished.json()["data"]["check_out_lat"] == -8.7185
    assert booking.check_out_lng == 115.1687


@pytest.mark.asyncio
async def test_start_rejects_invalid_position(client, db, job, worker, worker_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.ACCEPTED)
    response = await client.post(
        f"/bookings/{booking.id}/start", json={"lat": 95, "lng": 115.1686}, headers=auth_header(token_for(worker_user))
    )
    assert response.status_code == 422
    assert booking.status == BookingStatus.ACCEPTED


@pytest.mark.asyncio
async def test_booking_notes_visible_to_business_only(client, pending_booking, job, worker_user, business_user):
    response = await client.put(
        f"/bookings/{pending_booking.id}/notes",
        json={"notes": "  Great with guests, arrived early.  "},
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 200
    assert response.json()["data"]["booking_notes"] == "Great with guests, arrived early."

    applicants = await client.get(f"/jobs/{job.id}/applicants", headers=auth_header(token_for(business_user)))
    assert applicants.json()["data"][0]["booking_notes"] == "Great with guests, arrived early."

    detail = await client.get(f"/bookings/{pending_booking.id}", headers=auth_header(token_for(worker_user)))
    assert "booking_notes" not in detail.json()["data"]


@pytest.mark.asyncio
async def test_booking_notes_cleared_by_blank(client, pending_booking, business_user):
    pending_booking.booking_notes = "Needs a uniform"
    response = await client.put(
        f"/bookings/{pending_booking.id}/notes", json={"notes": "   "}, headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 200
    assert response.json()["data"]["booking_notes"] is None


@pytest.mark.asyncio
async def test_booking_notes_owner_only(client, db, pending_booking, worker_user):
    other = await make_business(db, email="other@example.com", name="Other Villa")
    response = await client.put(
        f"/bookings/{pending_booking.id}/notes",
        json={"notes": "Not mine"},
        headers=auth_header(token_for(await db.get(User, other.user_id))),
    )
    assert response.status_code == 403

    as_worker = await client.put(
        f"/bookings/{pending_booking.id}/notes", json={"notes": "Self review"}, headers=auth_header(token_for(worker_user))
    )
    assert as_worker.status_code == 403
    assert pending_booking.booking_notes is None


@pytest.mark.asyncio
async def test_bulk_accept_reports_each_booking(client, db, job, pending_booking, business_user):
    second = await make_booking(db, job, await make_worker(db, email="second@example.com", full_name="Made Putra"))
    other = await make_business(db, email="other@example.com", name="Other Villa")
    foreign = await make_booking(
        db,
        await make_job(db, other),
        await make_worker(db, email="third@example.com", full_name="Nyoman Arta"),
    )
    missing = uuid.uuid4()

    response = await client.post(
        "/bookings/bulk-status",
        json={
            "booking_ids": [str(pending_booking.id), str(second.id), str(foreign.id), str(missing)],
            "status": "accepted",
        },
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert {b["id"] for b in data["updated"]} == {str(pending_booking.id), str(second.id)}
    assert all(b["status"] == "accepted" for b in data["updated"])
    assert {f["booking_id"]: f["error"] for f in data["failed"]} == {
        str(foreign.id): "Not your booking",
        str(missing): "Booking not found",
    }

    assert foreign.status == BookingStatus.PENDING
    rows = (await db.execute(select(Notification))).scalars().all()
    assert sum(1 for n in rows if n.type == NotificationType.APPLICATION_ACCEPTED) == 2


@pytest.mark.asyncio
async def test_bulk_reject_skips_illegal_transition(client, db, job, worker, business_user):
    pending = await make_booking(db, job, worker)
    other_job = await make_job(db, await db.get(Business, job.business_id), title="Room Attendant")
    done = await make_booking(db, other_job, worker, status=BookingStatus.COMPLETED)

    response = await client.post(
        "/bookings/bulk-status",
        json={"booking_ids": [str(pending.id), str(done.id)], "status": "rejected"},
        headers=auth_header(token_for(business_user)),
    )
    data = response.json()["data"]
    assert [b["id"] for b in data["updated"]] == [str(pending.id)]
    assert [f["booking_id"] for f in data["failed"]] == [str(done.id)]
    assert done.status == BookingStatus.COMPLETED


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"booking_ids": [], "status": "accepted"},
        {"booking_ids": ["00000000-0000-0000-0000-000000000001"], "status": "completed"},
    ],
)
async def test_bulk_status_validation(client, business_user, body):
    response = await client.post("/bookings/bulk-status", json=body, headers=auth_header(token_for(business_user)))
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cancel_with_reason_notifies_other_party(
    client, db, job, worker, worker_user, business_user, cancellation_reason
):
    booking = await make_booking(db, job, worker, status=BookingStatus.ACCEPTED)
    response = await client.post(
        f"/bookings/{booking.id}/cancel",
        json={"reason_id": str(cancellation_reason.id), "note": "My mother is in hospital"},
        headers=auth_header(token_for(worker_user)),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "cancelled"
    assert data["cancelled_by"] == "worker"
    assert data["cancellation_reason_id"] == str(cancellation_reason.id)

    notification = (
        await db.execute(select(Notification).where(Notification.user_id == business_user.id))
    ).scalar_one()
    assert notification.type == NotificationType.BOOKING_CANCELLED
    assert notification.body == "Reason: Family Emergency. My mother is in hospital"

    history = await client.get("/bookings/cancellation-history", headers=auth_header(token_for(business_user)))
    items = history.json()["data"]
    assert len(items) == 1
    assert items[0]["cancellation_reason"]["name"] == "Family Emergency"


@pytest.mark.asyncio
async def test_cancel_pending_booking_conflicts(client, pending_booking, business_user, cancellation_reason):
    response = await client.post(
        f"/bookings/{pending_booking.id}/cancel",
        json={"reason_id": str(cancellation_reason.id)},
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 409
    assert response.json()["error"] == "Cannot cancel a booking in status 'pending'"


@pytest.mark.asyncio
async def test_cancel_with_inactive_reason(client, db, job, worker, business_user, cancellation_reason):
    cancellation_reason.is_active = False
    booking = await make_booking(db, job, worker, status=BookingStatus.ACCEPTED)
    response = await client.post(
        f"/bookings/{booking.id}/cancel",
        json={"reason_id": str(cancellation_reason.id)},
        headers=auth_header(token_for(business_user)),
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_booking_detail_visibility(client, db, pending_booking, worker_user, admin_user):
    response = await client.get(f"/bookings/{pending_booking.id}", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["job"]["title"] == "Banquet Waiter"
    assert data["business"]["name"] == "Warung Pantai"

    response = await client.get(f"/bookings/{pending_booking.id}", headers=auth_header(token_for(admin_user)))
    assert response.status_code == 200

    stranger = await make_worker(db, email="stranger@example.com", full_name="Stranger")
    stranger_user = await db.get(User, stranger.user_id)
    response = await client.get(f"/bookings/{pending_booking.id}", headers=auth_header(token_for(stranger_user)))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_bookings_by_party(client, db, pending_booking, worker_user, business_user, admin_user):
    response = await client.get("/bookings", headers=auth_header(token_for(worker_user)))
    assert [b["id"] for b in response.json()["data"]] == [str(pending_booking.id)]

    response = await client.get("/bookings", params={"status": "accepted"}, headers=auth_header(token_for(business_user)))
    assert response.json()["data"] == []

    response = await client.get("/bookings", headers=auth_header(token_for(admin_user)))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_checkout_via_route_holds_payment(client, db, job, worker, worker_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    response = await client.post(f"/bookings/{booking.id}/checkout", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["status"] == "completed"
    assert data["payment_status"] == "pending_review"
    assert Decimal(data["final_price"]) == Decimal("250000.00")

    refreshed = (await db.execute(select(Booking).where(Booking.id == booking.id))).scalar_one()
    assert refreshed.review_deadline is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("start_status", [BookingStatus.PENDING, BookingStatus.ACCEPTED])
async def test_checkout_before_start_holds_nothing(client, db, job, worker, worker_user, start_status):
    booking = await make_booking(db, job, worker, status=start_status)
    response = await client.post(f"/bookings/{booking.id}/checkout", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 409

    assert booking.status == start_status
    assert booking.payment_status is None
    assert booking.checkout_time is None
    held = await db.execute(select(WalletTransaction).where(WalletTransaction.booking_id == booking.id))
    assert held.scalars().all() == []


@pytest.mark.asyncio
async def test_checkout_other_workers_booking_forbidden(client, db, job, worker):
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    other = await make_worker(db, email="other-worker@example.com", full_name="Wayan Sari")

    response = await client.post(
        f"/bookings/{booking.id}/checkout",
        headers=auth_header(token_for(await db.get(User, other.user_id))),
    )
    assert response.status_code == 403
    assert booking.status == BookingStatus.IN_PROGRESS
    held = await db.execute(select(WalletTransaction).where(WalletTransaction.booking_id == booking.id))
    assert held.scalars().all() == []


@pytest.mark.asyncio
async def test_checkout_notifies_both_parties_and_scores_worker(
    client, db, job, worker, worker_user, business_user
):
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    response = await client.post(f"/bookings/{booking.id}/checkout", headers=auth_header(token_for(worker_user)))
    assert response.status_code == 200

    rows = (await db.execute(select(Notification))).scalars().all()
    assert any(n.user_id == worker_user.id and n.type == NotificationType.PAYMENT_HELD for n in rows)
    assert any(n.user_id == business_user.id and n.type == NotificationType.BOOKING_COMPLETED for n in rows)

    # One completed booking, no timing data, no ratings yet
    assert float(worker.reliability_score) == 3.5
    history = await db.execute(
        select(ReliabilityScoreHistory).where(ReliabilityScoreHistory.worker_id == worker.id)
    )
    assert len(history.scalars().all()) == 1


@pytest.mark.asyncio
async def test_business_releases_payment_early(client, db, job, worker, worker_user, business_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    await client.post(f"/bookings/{booking.id}/checkout", headers=auth_header(token_for(worker_user)))

    response = await client.post(
        f"/bookings/{booking.id}/release-payment", headers=auth_header(token_for(business_user))
    )
    assert response.status_code == 200
    assert response.json()["data"]["payment_status"] == "released"

    balance = await client.get("/wallets/me/balance", headers=auth_header(token_for(worker_user)))
    assert balance.json()["data"]["available_balance"] == "250000.00"
    assert balance.json()["data"]["pending_balance"] == "0.00"

    again = await client.post(
        f"/bookings/{booking.id}/release-payment", headers=auth_header(token_for(business_user))
    )
    assert again.status_code == 409
    assert again.json()["error"] == "Payment can only be released for completed bookings pending review"


@pytest.mark.asyncio
async def test_release_payment_requires_owner(client, db, job, worker, worker_user):
    booking = await make_booking(db, job, worker, status=BookingStatus.IN_PROGRESS)
    await client.post(f"/bookings/{booking.id}/checkout", headers=auth_header(token_for(worker_user)))
    other = await make_business(db, email="other@example.com", name="Other Villa")

    response = await client.post(
        f"/bookings/{booking.id}/release-payment",
        headers=auth_header(token_for(await db.get(User, other.user_id))),
    )
    assert response.status_code == 403
