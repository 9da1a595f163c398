from app.models.audit_log import AuditLog
from app.models.badge import Badge, WorkerBadge
from app.models.blacklisted_token import BlacklistedToken
from app.models.booking import Booking
from app.models.business import Business
from app.models.cancellation import CancellationReason
from app.models.compliance import ComplianceTracking
from app.models.dispute import Dispute
from app.models.job import Job
from app.models.message import Message
from app.models.notification import Notification
from app.models.push import NotificationPreferences, PushSubscription
from app.models.reliability import ReliabilityScoreHistory
from app.models.review import Review
from app.models.social import JobPost, SocialConnection, SocialPlatform
from app.models.user import User
from app.models.wallet import Wallet, WalletTransaction
from app.models.worker import Worker

__all__ = [
    "AuditLog",
    "Badge",
    "BlacklistedToken",
    "Booking",
    "Business",
    "CancellationReason",
    "ComplianceTracking",
    "Dispute",
    "Job",
    "JobPost",
    "Message",
    "Notification",
    "NotificationPreferences",
    "PushSubscription",
    "ReliabilityScoreHistory",
    "Review",
    "SocialConnection",
    "SocialPlatform",
    "User",
    "Wallet",
    "WalletTransaction",
    "Worker",
    "WorkerBadge",
]
