# accvault - Security Audit Log
#
# Append-only structured audit trail for vault and authentication events.
# Every unlock, lock, login, reset and import is recorded with a timestamp
# and the acting user id.
#
# Never pass passphrases, keys, password hashes, bearer tokens, ciphertext
# or plaintext in ``details``. Ids, field names and counts only.

import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """Types of security events that can be logged."""

    # Vault Events
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_LOCKED = "vault.locked"
    VAULT_EXPIRED = "vault.expired"
    VAULT_RESTORED = "vault.restored"

    # Authentication Events
    ADMIN_SETUP = "auth.admin.setup"
    USER_REGISTERED = "auth.user.registered"
    USER_DELETED = "auth.user.deleted"
    USER_LOGIN = "auth.login"
    USER_LOGIN_FAILED = "auth.login.failed"
    USER_LOGOUT = "auth.logout"
    SESSION_EXPIRED = "auth.session.expired"
    PASSWORD_RESET_ISSUED = "auth.reset.issued"
    PASSWORD_RESET_COMPLETED = "auth.reset.completed"
    PASSWORD_RESET_REJECTED = "auth.reset.rejected"
    PASSWORD_FORCE_RESET = "auth.reset.forced"

    # Data Transfer Events
    DATA_EXPORTED = "data.exported"
    DATA_IMPORTED = "data.imported"


class EventSeverity(str, Enum):
    """
    Severity levels for security events.

    - INFO: Normal activity
    - ALERT: Rejected credential or token, possible probing
    - CRITICAL: Destructive or privileged operation
    """
    INFO = "info"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for security events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - Daily log files under ``log_dir``
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()
        self.logger = structlog.get_logger("accvault.audit")

    def _setup_file_handler(self):
        """Attach a file handler for today's audit log."""
        today = datetime.now().strftime("%Y-%m-%d")
        self.log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(self.log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog handles formatting

        audit_logger = logging.getLogger("accvault.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        self._file_handler = file_handler

    def close(self):
        """Detach and close the file handler."""
        logging.getLogger("accvault.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log a security event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (no secrets!)
            user_context: Acting user (user_id, username)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())
        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        self.logger.info("security_event", **event_data)
        return event_id

    def _get_default_user_context(self) -> Dict[str, Any]:
        """Get default user context (OS user, hostname, etc.)."""
        import socket
        import os

        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        from ..config import get_settings
        _audit_logger = AuditLogger(get_settings().audit_log_dir)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging security events.

    Usage:
        log_security_event(
            EventType.USER_LOGIN,
            EventSeverity.INFO,
            "User logged in",
            user_context={"user_id": 42},
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
