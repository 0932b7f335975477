"""
Kernel services: claim stores, audit logging, notification dispatch and the
in-memory user directory.
"""

from claims_kernel.services.audit_logger import AuditLogger
from claims_kernel.services.claim_store import InMemoryClaimStore
from claims_kernel.services.notification_dispatcher import (
    InMemoryNotificationOutbox,
    NotificationDispatcher,
)
from claims_kernel.services.sql_claim_store import SqlAlchemyClaimStore
from claims_kernel.services.user_directory import DirectoryUser, InMemoryUserDirectory

__all__ = [
    "AuditLogger",
    "DirectoryUser",
    "InMemoryClaimStore",
    "InMemoryNotificationOutbox",
    "InMemoryUserDirectory",
    "NotificationDispatcher",
    "SqlAlchemyClaimStore",
]
