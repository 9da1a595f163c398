"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

UUID = postgresql.UUID(as_uuid=True)


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()))
    return columns


def _fk(column: str, target: str, nullable: bool = False, ondelete: str = "CASCADE", **kw) -> sa.Column:
    return sa.Column(column, UUID, sa.ForeignKey(target, ondelete=ondelete), nullable=nullable, **kw)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        sa.Column("password_changed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "workers",
        sa.Column("id", UUID, primary_key=True),
        _fk("user_id", "users.id", unique=True),
        sa.Column("full_name", sa.String(150), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("avatar_url", sa.String(500), nullable=True),
        sa.Column("skills", sa.JSON(), nullable=False),
        sa.Column("reliability_score", sa.Numeric(2, 1), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "reliability_score IS NULL OR (reliability_score >= 1 AND reliability_score <= 5)",
            name="ck_worker_reliability_score_range",
        ),
    )

    op.create_table(
        "businesses",
        sa.Column("id", UUID, primary_key=True),
        _fk("user_id", "users.id", unique=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("website", sa.String(500), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )

    op.create_table(
        "jobs",
        sa.Column("id", UUID, primary_key=True),
        _fk("business_id", "businesses.id"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("requirements", sa.JSON(), nullable=False),
        sa.Column("position_type", sa.String(50), nullable=True),
        sa.Column("budget_min", sa.Numeric(14, 2), nullable=False),
        sa.Column("budget_max", sa.Numeric(14, 2), nullable=False),
        sa.Column("workers_needed", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("address", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("platform_settings", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("budget_min >= 0", name="ck_job_budget_min_positive"),
        sa.CheckConstraint("budget_max >= budget_min", name="ck_job_budget_range"),
        sa.CheckConstraint("workers_needed >= 1", name="ck_job_workers_needed_positive"),
    )
    op.create_index("ix_jobs_business_id", "jobs", ["business_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])
    op.create_index("ix_job_status_created", "jobs", ["status", "created_at"])

    op.create_table(
        "cancellation_reasons",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("requires_verification", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("penalty_percentage", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint(
            "penalty_percentage >= 0 AND penalty_percentage <= 100",
            name="ck_cancellation_reason_penalty_range",
        ),
    )
    op.create_index("ix_cancellation_reasons_is_active", "cancellation_reasons", ["is_active"])

    op.create_table(
        "bookings",
        sa.Column("id", UUID, primary_key=True),
        _fk("job_id", "jobs.id"),
        _fk("worker_id", "workers.id"),
        _fk("business_id", "businesses.id"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checkout_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(20), nullable=True),
        sa.Column("review_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(10), nullable=True),
        _fk("cancellation_reason_id", "cancellation_reasons.id", nullable=True, ondelete="SET NULL"),
        sa.Column("cancellation_note", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("job_id", "worker_id", name="uq_booking_job_worker"),
        sa.CheckConstraint("final_price >= 0", name="ck_booking_final_price_positive"),
    )
    op.create_index("ix_bookings_job_id", "bookings", ["job_id"])
    op.create_index("ix_bookings_worker_id", "bookings", ["worker_id"])
    op.create_index("ix_bookings_business_id", "bookings", ["business_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_payment_status", "bookings", ["payment_status"])
    op.create_index("ix_booking_worker_created", "bookings", ["worker_id", "created_at"])
    op.create_index("ix_booking_business_created", "bookings", ["business_id", "created_at"])
    op.create_index("ix_booking_compliance", "bookings", ["worker_id", "business_id", "status", "start_date"])

    op.create_table(
        "wallets",
        sa.Column("id", UUID, primary_key=True),
        _fk("user_id", "users.id", unique=True),
        sa.Column("pending_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("available_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), nullable=False, server_default="IDR"),
        *_timestamps(),
        sa.CheckConstraint("pending_balance >= 0", name="ck_wallet_pending_non_negative"),
        sa.CheckConstraint("available_balance >= 0", name="ck_wallet_available_non_negative"),
    )

    op.create_table(
        "wallet_transactions",
        sa.Column("id", UUID, primary_key=True),
        _fk("wallet_id", "wallets.id"),
        _fk("booking_id", "bookings.id", nullable=True, ondelete="SET NULL"),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_wallet_transaction_amount_positive"),
    )
    op.create_index("ix_wallet_transaction_wallet_created", "wallet_transactions", ["wallet_id", "created_at"])
    op.create_index("ix_wallet_transaction_booking_status", "wallet_transactions", ["booking_id", "status"])

    op.create_table(
        "disputes",
        sa.Column("id", UUID, primary_key=True),
        _fk("booking_id", "bookings.id"),
        _fk("raised_by", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("raised_by_role", sa.String(10), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("evidence_urls", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("resolution", sa.String(20), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        _fk("resolved_by", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'investigating', 'resolved', 'rejected')",
            name="ck_disputes_status_valid",
        ),
    )
    op.create_index("ix_disputes_booking_id", "disputes", ["booking_id"])
    op.create_index("ix_disputes_status", "disputes", ["status"])

    op.create_table(
        "compliance_tracking",
        sa.Column("id", UUID, primary_key=True),
        _fk("worker_id", "workers.id"),
        _fk("business_id", "businesses.id"),
        sa.Column("month", sa.Date(), nullable=False),
        sa.Column("days_worked", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("worker_id", "business_id", "month", name="uq_compliance_worker_business_month"),
    )
    op.create_index("ix_compliance_tracking_worker_id", "compliance_tracking", ["worker_id"])
    op.create_index("ix_compliance_tracking_business_id", "compliance_tracking", ["business_id"])

    op.create_table(
        "reliability_score_history",
        sa.Column("id", UUID, primary_key=True),
        _fk("worker_id", "workers.id"),
        sa.Column("score", sa.Numeric(2, 1), nullable=False),
        sa.Column("attendance_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("punctuality_rate", sa.Numeric(5, 4), nullable=False),
        sa.Column("avg_rating", sa.Numeric(3, 2), nullable=False),
        sa.Column("completed_jobs_count", sa.Integer(), nullable=False),
        sa.Column("calculated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_reliability_history_worker_calculated", "reliability_score_history", ["worker_id", "calculated_at"]
    )

    op.create_table(
        "reviews",
        sa.Column("id", UUID, primary_key=True),
        _fk("booking_id", "bookings.id"),
        _fk("worker_id", "workers.id"),
        _fk("business_id", "businesses.id"),
        _fk("reviewer_id", "users.id"),
        sa.Column("reviewer_role", sa.String(10), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("would_rehire", sa.Boolean(), nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint("booking_id", "reviewer_id", name="uq_review_booking_reviewer"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
    )
    op.create_index("ix_reviews_booking_id", "reviews", ["booking_id"])
    op.create_index("ix_reviews_worker_id", "reviews", ["worker_id"])
    op.create_index("ix_reviews_business_id", "reviews", ["business_id"])

    op.create_table(
        "messages",
        sa.Column("id", UUID, primary_key=True),
        _fk("sender_id", "users.id"),
        _fk("receiver_id", "users.id"),
        _fk("booking_id", "bookings.id", nullable=True, ondelete="SET NULL"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_messages_sender_id", "messages", ["sender_id"])
    op.create_index("ix_messages_receiver_id", "messages", ["receiver_id"])
    op.create_index("ix_messages_booking_id", "messages", ["booking_id"])
    op.create_index("ix_message_sender_receiver_created", "messages", ["sender_id", "receiver_id", "created_at"])
    op.create_index("ix_message_receiver_is_read", "messages", ["receiver_id", "is_read"])

    op.create_table(
        "notifications",
        sa.Column("id", UUID, primary_key=True),
        _fk("user_id", "users.id"),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("link", sa.String(500), nullable=True),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(updated=False),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notification_user_created", "notifications", ["user_id", "created_at"])
    op.create_index("ix_notification_user_is_read", "notifications", ["user_id", "is_read"])

    op.create_table(
        "push_subscriptions",
        sa.Column("id", UUID, primary_key=True),
        _fk("user_id", "users.id"),
        sa.Column("endpoint", sa.Text(), nullable=False),
        sa.Column("keys_p256dh", sa.String(255), nullable=False),
        sa.Column("keys_auth", sa.String(255), nullable=False),
        sa.Column("user_agent", sa.String(500), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "endpoint", name="uq_push_subscription_user_endpoint"),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    op.create_table(
        "notification_preferences",
        sa.Column("id", UUID, primary_key=True),
        _fk("user_id", "users.id", unique=True),
        sa.Column("push_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("new_applications", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("booking_status", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("payment_confirmation", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("new_job_matches", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("shift_reminders", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )

    op.create_table(
        "badges",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("slug", sa.String(120), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("icon", sa.String(100), nullable=True),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("industry", sa.String(100), nullable=True),
        _fk("provider_id", "businesses.id", nullable=True, ondelete="SET NULL"),
        sa.Column("is_certified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
    )
    op.create_index("ix_badges_name", "badges", ["name"])
    op.create_index("ix_badges_category", "badges", ["category"])
    op.create_index("ix_badges_provider_id", "badges", ["provider_id"])

    op.create_table(
        "worker_badges",
        sa.Column("id", UUID, primary_key=True),
        _fk("worker_id", "workers.id"),
        _fk("badge_id", "badges.id"),
        sa.Column("verification_status", sa.String(20), nullable=False, server_default="pending"),
        _fk("verified_by", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("worker_id", "badge_id", name="uq_worker_badge"),
    )
    op.create_index("ix_worker_badges_worker_id", "worker_badges", ["worker_id"])
    op.create_index("ix_worker_badge_badge_status", "worker_badges", ["badge_id", "verification_status"])

    op.create_table(
        "social_platforms",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("platform_name", sa.String(100), nullable=False, unique=True),
        sa.Column("platform_type", sa.String(50), nullable=False),
        sa.Column("webhook_url", sa.String(500), nullable=True),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(updated=False),
    )

    op.create_table(
        "social_connections",
        sa.Column("id", UUID, primary_key=True),
        _fk("business_id", "businesses.id"),
        _fk("platform_id", "social_platforms.id"),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("platform_account_id", sa.String(200), nullable=True),
        sa.Column("platform_account_name", sa.String(200), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("last_error_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_verified_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("business_id", "platform_id", name="uq_social_connection_business_platform"),
    )
    op.create_index("ix_social_connections_business_id", "social_connections", ["business_id"])

    op.create_table(
        "job_posts",
        sa.Column("id", UUID, primary_key=True),
        _fk("job_id", "jobs.id"),
        _fk("connection_id", "social_connections.id"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("external_post_id", sa.String(200), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_job_posts_job_id", "job_posts", ["job_id"])
    op.create_index("ix_job_post_status_created", "job_posts", ["status", "created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        _fk("actor_user_id", "users.id", nullable=True, ondelete="SET NULL"),
        _fk("target_user_id", "users.id", nullable=True, ondelete="SET NULL"),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        *_timestamps(updated=False),
    )
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "blacklisted_tokens",
        sa.Column("id", UUID, primary_key=True),
        sa.Column("jti", sa.String(36), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(updated=False),
    )
    op.create_index("ix_blacklisted_tokens_jti", "blacklisted_tokens", ["jti"], unique=True)


def downgrade() -> None:
    for table in (
        "blacklisted_tokens",
        "audit_logs",
        "job_posts",
        "social_connections",
        "social_platforms",
        "worker_badges",
        "badges",
        "notification_preferences",
        "push_subscriptions",
        "notifications",
        "messages",
        "reviews",
        "reliability_score_history",
        "compliance_tracking",
        "disputes",
        "wallet_transactions",
        "wallets",
        "bookings",
        "cancellation_reasons",
        "jobs",
        "businesses",
        "workers",
        "users",
    ):
        op.drop_table(table)
