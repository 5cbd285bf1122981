"""Closed value sets stored as text columns."""

from __future__ import annotations

from enum import Enum


class SubjectKind(str, Enum):
    """What an attempt was made against."""

    ACCOUNT = "account"
    RESOURCE = "resource"


class AttemptOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class LockoutReason(str, Enum):
    FAILED_LOGIN = "failed_login"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    ADMIN_ACTION = "admin_action"
    SECURITY_VIOLATION = "security_violation"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityEventType(str, Enum):
    """Every event the security audit trail accepts. No other values are allowed."""

    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILURE = "login_failure"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    PASSWORD_CHANGED = "password_changed"
    TWO_FACTOR_ENABLED = "2fa_enabled"
    TWO_FACTOR_DISABLED = "2fa_disabled"
    DEVICE_TRUSTED = "device_trusted"
    DEVICE_UNTRUSTED = "device_untrusted"
    BIOMETRIC_ENROLLED = "biometric_enrolled"
    BIOMETRIC_REMOVED = "biometric_removed"
    CONVERSATION_PASSWORD_SET = "conversation_password_set"
    CONVERSATION_UNLOCKED = "conversation_unlocked"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class PresenceStatus(str, Enum):
    ONLINE = "online"
    AWAY = "away"
    OFFLINE = "offline"
