"""EatLocal database package.

Re-exports the SQLModel table classes, the async engine factory, and the
session layer for convenient top-level imports::

    from eatlocal.db import NotificationJob, async_session_factory
"""

from eatlocal.db.engine import (
    create_async_engine_from_url,
    normalize_database_url,
)
from eatlocal.db.models import (
    InAppNotification,
    NotificationJob,
    NotificationTemplate,
    Profile,
    RateLimitEntry,
    SystemLog,
    UserRole,
    utcnow,
)
from eatlocal.db.retry import db_retry, is_transient_error
from eatlocal.db.session import (
    SessionFactory,
    async_session_factory,
    create_tables,
    get_session,
)

__all__ = [
    # Engine
    "create_async_engine_from_url",
    "normalize_database_url",
    # Retry
    "db_retry",
    "is_transient_error",
    # Session
    "SessionFactory",
    "async_session_factory",
    "create_tables",
    "get_session",
    # Models
    "InAppNotification",
    "NotificationJob",
    "NotificationTemplate",
    "Profile",
    "RateLimitEntry",
    "SystemLog",
    "UserRole",
    "utcnow",
]
