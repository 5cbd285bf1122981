"""SQLAlchemy ORM models for Warden."""

from warden.models.base import Base
from warden.models.access_session import AccessSession
from warden.models.account_lockout import AccountLockout
from warden.models.auth_attempt import AuthAttempt
from warden.models.password_history import PasswordHistoryEntry
from warden.models.principal_presence import PrincipalPresence
from warden.models.resource_secret import ResourceSecret
from warden.models.security_audit_event import SecurityAuditEvent
from warden.models.two_factor import TwoFactorEnrollment

__all__ = [
    "Base",
    "AccessSession",
    "AccountLockout",
    "AuthAttempt",
    "PasswordHistoryEntry",
    "PrincipalPresence",
    "ResourceSecret",
    "SecurityAuditEvent",
    "TwoFactorEnrollment",
]
