# accvault Auth - Accounts, Sessions and Password Resets
#
# Server side of the login / logout / reset contract:
#   - Passwords are stored as self-describing PBKDF2 hashes (PasswordHasher)
#   - Session and reset tokens are handed out once and stored only as
#     SHA-256 digests
#   - Every authenticate() call goes back to the database
#   - Reset redemption is one BEGIN IMMEDIATE transaction: check hash,
#     used flag and expiry, replace the password, drop all sessions, mark
#     the token used. Concurrent redemptions of one token: exactly one wins.

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..config import VaultSettings, get_settings
from ..core import EventSeverity, EventType, get_audit_logger
from ..exceptions import (
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    RecordNotFoundError,
    ValidationError,
    VaultError,
)
from ..storage.database import VaultDatabase
from .passwords import PasswordHasher
from .tokens import generate_token, hash_token

logger = logging.getLogger(__name__)

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# Request Models
class AccountRequest(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: str = Field(..., max_length=254, pattern=_EMAIL_PATTERN)
    password: str = Field(..., min_length=8)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=10)
    new_password: str = Field(..., min_length=12)


class ForceResetRequest(BaseModel):
    new_password: str = Field(..., min_length=12)


def parse_request(model: type, **data: Any) -> BaseModel:
    """Validate input with a pydantic model, raising our ValidationError.

    Error details name the field and the problem, never the rejected value.
    """
    try:
        return model(**data)
    except PydanticValidationError as exc:
        details = [
            {"field": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError(details=details) from None


@dataclass(frozen=True)
class UserSummary:
    id: int
    username: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def salt(self) -> str:
        """Vault KDF salt for this user."""
        return str(self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "email": self.email, "role": self.role}


@dataclass(frozen=True)
class LoginResult:
    token: str
    user: UserSummary


def require_admin(user: UserSummary) -> None:
    if not user.is_admin:
        raise PermissionDeniedError("Admin access required")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuthService:
    """
    Account, session and password-reset operations.

    Usage::

        auth = AuthService(VaultDatabase(settings.db_path))
        auth.setup_admin("admin", "admin@example.com", "a-long-password")
        result = auth.login("admin", "a-long-password")
        user = auth.authenticate(result.token)
    """

    def __init__(
        self,
        db: VaultDatabase,
        hasher: Optional[PasswordHasher] = None,
        settings: Optional[VaultSettings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.settings = settings or get_settings()
        self.hasher = hasher or PasswordHasher(self.settings.server_hash_iterations)
        self._clock = clock
        self._dummy_hash: Optional[str] = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        user_id: Optional[int] = None,
        **details,
    ) -> None:
        get_audit_logger().log_event(
            event_type=event_type,
            severity=severity,
            message=message,
            details=details,
            user_context={"user_id": user_id},
        )

    def _expired(self, expires_at: str) -> bool:
        try:
            expires = datetime.fromisoformat(expires_at)
        except (TypeError, ValueError):
            return True
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires < self._clock()

    def _burn_verification(self, password: str) -> None:
        """Spend one verification on an unknown user so timing matches."""
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(generate_token())
        self.hasher.verify(password, self._dummy_hash)

    @staticmethod
    def _summary(row: sqlite3.Row) -> UserSummary:
        return UserSummary(
            id=row["id"], username=row["username"], email=row["email"], role=row["role"],
        )

    # ------------------------------------------------------------------
    # Setup and registration
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT value FROM _config WHERE key = 'admin_initialized'"
            ).fetchone()
        return row is not None and row["value"] == "true"

    def setup_admin(self, username: str, email: str, password: str) -> UserSummary:
        """Create the first administrator. Runs once per installation.

        Raises:
            ValidationError: Bad username, email or password
            ConflictError: Admin already initialized
        """
        request = parse_request(AccountRequest, username=username, email=email, password=password)
        password_hash = self.hasher.hash(request.password)

        with self.db.transaction(immediate=True) as conn:
            latch = conn.execute(
                "SELECT value FROM _config WHERE key = 'admin_initialized'"
            ).fetchone()
            if latch is not None and latch["value"] == "true":
                raise ConflictError("Admin already initialized")
            try:
                cursor = conn.execute(
                    "INSERT INTO users (username, email, password_hash, role, created_at) "
                    "VALUES (?, ?, ?, 'admin', ?)",
                    (request.username, request.email, password_hash, self._clock().isoformat()),
                )
            except sqlite3.IntegrityError:
                raise ConflictError("Username or email already exists") from None
            user_id = cursor.lastrowid
            conn.execute("INSERT INTO admins (user_id) VALUES (?)", (user_id,))
            conn.execute("UPDATE _config SET value = 'true' WHERE key = 'admin_initialized'")

        self._audit(EventType.ADMIN_SETUP, EventSeverity.CRITICAL, "Administrator created", user_id)
        return UserSummary(user_id, request.username, request.email, "admin")

    def register(self, username: str, email: str, password: str) -> UserSummary:
        """Register a regular user.

        Raises:
            ValidationError: Bad input, or the system is not initialized yet
            ConflictError: Username or email already taken
        """
        request = parse_request(AccountRequest, username=username, email=email, password=password)
        if not self.is_initialized():
            raise ValidationError("System not initialized")
        password_hash = self.hasher.hash(request.password)

        with self.db.transaction() as conn:
            try:
                cursor = conn.execute(
                    "INSERT INTO users (username, email, password_hash, role, created_at) "
                    "VALUES (?, ?, ?, 'user', ?)",
                    (request.username, request.email, password_hash, self._clock().isoformat()),
                )
            except sqlite3.IntegrityError:
                raise ConflictError("Username or email already exists") from None
            user_id = cursor.lastrowid

        self._audit(EventType.USER_REGISTERED, EventSeverity.INFO, "User registered", user_id)
        return UserSummary(user_id, request.username, request.email, "user")

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> LoginResult:
        """Check credentials and open a session.

        Raises:
            AuthenticationError: Unknown user or wrong password (same error)
        """
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT id, username, email, password_hash, role FROM users WHERE username = ?",
                (username,),
            ).fetchone()

        if row is None:
            self._burn_verification(password)
            self._audit(EventType.USER_LOGIN_FAILED, EventSeverity.ALERT, "Login failed")
            raise AuthenticationError("Invalid credentials")

        if not self.hasher.verify(password, row["password_hash"]):
            self._audit(EventType.USER_LOGIN_FAILED, EventSeverity.ALERT, "Login failed", row["id"])
            raise AuthenticationError("Invalid credentials")

        user = self._summary(row)
        token = generate_token(self.settings.session_token_bytes)
        expires_at = self._clock() + timedelta(days=self.settings.session_ttl_days)

        with self.db.transaction() as conn:
            conn.execute(
                "INSERT INTO sessions (token_hash, user_id, expires_at) VALUES (?, ?, ?)",
                (hash_token(token), user.id, expires_at.isoformat()),
            )
            if self.hasher.needs_rehash(row["password_hash"]):
                conn.execute(
                    "UPDATE users SET password_hash = ? WHERE id = ?",
                    (self.hasher.hash(password), user.id),
                )
                logger.info("Upgraded password hash cost for user=%s", user.id)

        self._audit(EventType.USER_LOGIN, EventSeverity.INFO, "User logged in", user.id)
        return LoginResult(token=token, user=user)

    def authenticate(self, token: Optional[str]) -> UserSummary:
        """Resolve a bearer token to its user.

        Raises:
            AuthenticationError: Missing, unknown or expired token
        """
        if not token:
            raise AuthenticationError("Unauthorized")
        token_hash = hash_token(token)

        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT s.user_id, s.expires_at, u.id, u.username, u.email, u.role "
                "FROM sessions s JOIN users u ON s.user_id = u.id WHERE s.token_hash = ?",
                (token_hash,),
            ).fetchone()
            if row is None:
                raise AuthenticationError("Invalid or expired session")
            expired = self._expired(row["expires_at"])
            if expired:
                conn.execute("DELETE FROM sessions WHERE token_hash = ?", (token_hash,))

        if expired:
            self._audit(EventType.SESSION_EXPIRED, EventSeverity.INFO, "Session expired", row["user_id"])
            raise AuthenticationError("Invalid or expired session")
        return self._summary(row)

    def logout(self, token: Optional[str]) -> None:
        """End the session for ``token``.

        Raises:
            AuthenticationError: No token supplied
        """
        if not token:
            raise AuthenticationError("No session to logout")
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT user_id FROM sessions WHERE token_hash = ?", (hash_token(token),)
            ).fetchone()
            conn.execute("DELETE FROM sessions WHERE token_hash = ?", (hash_token(token),))
        if row is not None:
            self._audit(EventType.USER_LOGOUT, EventSeverity.INFO, "User logged out", row["user_id"])

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def issue_reset_token(self, user_id: int) -> str:
        """Create a reset token for ``user_id``, replacing any outstanding one.

        Returns:
            The raw token. Only its digest is stored.

        Raises:
            RecordNotFoundError: Unknown user
        """
        token = generate_token(self.settings.reset_token_bytes)
        expires_at = self._clock() + timedelta(minutes=self.settings.reset_token_ttl_minutes)

        with self.db.transaction(immediate=True) as conn:
            if conn.execute("SELECT 1 FROM users WHERE id = ?", (user_id,)).fetchone() is None:
                raise RecordNotFoundError("User not found")
            conn.execute("DELETE FROM password_reset_tokens WHERE user_id = ?", (user_id,))
            conn.execute(
                "INSERT INTO password_reset_tokens (token_hash, user_id, expires_at, used) "
                "VALUES (?, ?, ?, 0)",
                (hash_token(token), user_id, expires_at.isoformat()),
            )

        self._audit(
            EventType.PASSWORD_RESET_ISSUED, EventSeverity.INFO, "Password reset token issued",
            user_id, ttl_minutes=self.settings.reset_token_ttl_minutes,
        )
        return token

    def build_reset_link(self, token: str, base_url: Optional[str] = None) -> str:
        """Compose the out-of-band reset link for ``token``."""
        base = (base_url or self.settings.app_base_url or "").rstrip("/")
        if not base:
            raise VaultError("Unable to resolve application base URL for reset link")
        return f"{base}/reset-password?{urlencode({'token': token})}"

    def reset_password(self, token: str, new_password: str) -> None:
        """Redeem a reset token.

        On success the password is replaced, every session of the user is
        deleted and the token is marked used, all in one transaction.

        Raises:
            ValidationError: Token or password malformed
            AuthenticationError: Unknown or expired token
            ConflictError: Token already used
        """
        request = parse_request(ResetPasswordRequest, token=token, new_password=new_password)
        # Hash before taking the write lock
        password_hash = self.hasher.hash(request.new_password)
        token_hash = hash_token(request.token)

        with self.db.transaction(immediate=True) as conn:
            row = conn.execute(
                "SELECT user_id, expires_at, used FROM password_reset_tokens WHERE token_hash = ?",
                (token_hash,),
            ).fetchone()
            if row is None:
                self._audit(EventType.PASSWORD_RESET_REJECTED, EventSeverity.ALERT, "Unknown reset token")
                raise AuthenticationError("Invalid or expired token")
            user_id = row["user_id"]
            if row["used"]:
                self._audit(
                    EventType.PASSWORD_RESET_REJECTED, EventSeverity.ALERT,
                    "Reset token reuse", user_id,
                )
                raise ConflictError("Token already used")

            expired = self._expired(row["expires_at"])
            if expired:
                conn.execute("DELETE FROM password_reset_tokens WHERE token_hash = ?", (token_hash,))
            else:
                conn.execute("UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id))
                conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
                conn.execute(
                    "UPDATE password_reset_tokens SET used = 1 WHERE token_hash = ?", (token_hash,)
                )

        if expired:
            self._audit(
                EventType.PASSWORD_RESET_REJECTED, EventSeverity.ALERT, "Expired reset token", user_id,
            )
            raise AuthenticationError("Token has expired")

        self._audit(EventType.PASSWORD_RESET_COMPLETED, EventSeverity.INFO, "Password reset", user_id)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_users(self, actor: UserSummary) -> List[Dict[str, Any]]:
        require_admin(actor)
        with self.db.transaction() as conn:
            rows = conn.execute(
                "SELECT id, username, email, role, created_at FROM users ORDER BY created_at DESC, id DESC"
            ).fetchall()
        return [dict(row) for row in rows]

    def stats(self, actor: UserSummary) -> Dict[str, int]:
        """Row counts for the admin dashboard."""
        require_admin(actor)
        with self.db.transaction() as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("users", "accounts", "secrets")
            }

    def delete_user(self, actor: UserSummary, user_id: int) -> None:
        """Delete a user and (by cascade) their sessions, tokens and records."""
        require_admin(actor)
        if user_id == actor.id:
            raise ValidationError("Cannot delete your own account")
        with self.db.transaction() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            if cursor.rowcount == 0:
                raise RecordNotFoundError("User not found")
        self._audit(
            EventType.USER_DELETED, EventSeverity.CRITICAL, "User deleted", actor.id,
            deleted_user_id=user_id,
        )

    def force_reset_password(self, actor: UserSummary, user_id: int, new_password: str) -> None:
        """Set a user's password directly and drop their sessions and reset tokens."""
        require_admin(actor)
        request = parse_request(ForceResetRequest, new_password=new_password)
        password_hash = self.hasher.hash(request.new_password)
        with self.db.transaction(immediate=True) as conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id)
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError("User not found")
            conn.execute("DELETE FROM sessions WHERE user_id = ?", (user_id,))
            conn.execute("DELETE FROM password_reset_tokens WHERE user_id = ?", (user_id,))
        self._audit(
            EventType.PASSWORD_FORCE_RESET, EventSeverity.CRITICAL, "Password force-reset", actor.id,
            target_user_id=user_id,
        )
