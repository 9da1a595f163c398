import enum

# Enums are stored as VARCHAR columns rather than native PG ENUM types so new
# values only need a code change, not an ALTER TYPE migration.


class UserRole(str, enum.Enum):
    WORKER = "worker"
    BUSINESS = "business"
    ADMIN = "admin"


class JobStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"
    FILLED = "filled"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AttendanceStatus(str, enum.Enum):
    NOT_CHECKED_IN = "not_checked_in"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"


class LocationVerification(str, enum.Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    OUT_OF_RANGE = "out_of_range"


class PaymentStatus(str, enum.Enum):
    PENDING_REVIEW = "pending_review"
    DISPUTED = "disputed"
    AVAILABLE = "available"
    RELEASED = "released"
    CANCELLED = "cancelled"


class PartyRole(str, enum.Enum):
    """Which side of a booking performed an action (cancel, dispute, review)."""

    WORKER = "worker"
    BUSINESS = "business"


class TransactionType(str, enum.Enum):
    HOLD = "hold"
    RELEASE = "release"
    PAYOUT = "payout"


class TransactionStatus(str, enum.Enum):
    PENDING_REVIEW = "pending_review"
    DISPUTED = "disputed"
    AVAILABLE = "available"
    RELEASED = "released"
    CANCELLED = "cancelled"


class DisputeStatus(str, enum.Enum):
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    REJECTED = "rejected"


ACTIVE_DISPUTE_STATUSES = (DisputeStatus.PENDING, DisputeStatus.INVESTIGATING)


class DisputeResolution(str, enum.Enum):
    RESOLVED_WORKER = "resolved_worker"
    RESOLVED_BUSINESS = "resolved_business"
    REJECTED = "rejected"


class CancellationReasonCategory(str, enum.Enum):
    WORKER = "worker"
    BUSINESS = "business"
    EMERGENCY = "emergency"
    OTHER = "other"


class ComplianceStatus(str, enum.Enum):
    OK = "ok"
    WARNING = "warning"
    BLOCKED = "blocked"


class WarningLevel(str, enum.Enum):
    NONE = "none"
    APPROACHING = "approaching"
    LIMIT = "limit"


class BadgeCategory(str, enum.Enum):
    SKILL = "skill"
    TRAINING = "training"
    CERTIFICATION = "certification"
    SPECIALIZATION = "specialization"


class BadgeVerificationStatus(str, enum.Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class ConnectionStatus(str, enum.Enum):
    ACTIVE = "active"
    REVOKED = "revoked"
    EXPIRED = "expired"
    ERROR = "error"


class JobPostStatus(str, enum.Enum):
    PENDING = "pending"
    POSTED = "posted"
    FAILED = "failed"


class NotificationType(str, enum.Enum):
    NEW_APPLICATION = "new_application"
    APPLICATION_ACCEPTED = "application_accepted"
    APPLICATION_REJECTED = "application_rejected"
    BOOKING_STARTED = "booking_started"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    PAYMENT_HELD = "payment_held"
    PAYMENT_RELEASED = "payment_released"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    NEW_MESSAGE = "new_message"
    BADGE_REQUESTED = "badge_requested"
    BADGE_VERIFIED = "badge_verified"
    BADGE_REJECTED = "badge_rejected"


# Which preference toggle gates push delivery for each notification type.
# Types missing here are always pushed when push is enabled.
NOTIFICATION_PREFERENCE_FIELD: dict[NotificationType, str] = {
    NotificationType.NEW_APPLICATION: "new_applications",
    NotificationType.APPLICATION_ACCEPTED: "booking_status",
    NotificationType.APPLICATION_REJECTED: "booking_status",
    NotificationType.BOOKING_STARTED: "booking_status",
    NotificationType.BOOKING_COMPLETED: "booking_status",
    NotificationType.BOOKING_CANCELLED: "booking_status",
    NotificationType.PAYMENT_HELD: "payment_confirmation",
    NotificationType.PAYMENT_RELEASED: "payment_confirmation",
    NotificationType.DISPUTE_RESOLVED: "payment_confirmation",
}
