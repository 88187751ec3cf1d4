"""
Accounts and sessions.

Passwords are stored as salted PBKDF2 digests. A successful login creates a
session record keyed by a random token; every request resolves its bearer
token against that record, so nothing about a login lives in process memory.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError as SchemaError

from config import Settings
from database import DocumentStore
from errors import AuthError, ForbiddenError, ValidationError
from schemas import Session, User

logger = logging.getLogger(__name__)

USERS = "user"
SESSIONS = "session"
PBKDF2_ROUNDS = 200_000
MIN_PASSWORD_LENGTH = 6


def hash_password(password: str, salt_hex: Optional[str] = None) -> Tuple[str, str]:
    salt = bytes.fromhex(salt_hex) if salt_hex else secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt, PBKDF2_ROUNDS).hex()
    return digest, salt.hex()


def verify_password(password: str, user: Dict[str, Any]) -> bool:
    if not user.get("salt") or not user.get("password_hash"):
        return False
    digest, _ = hash_password(password, user["salt"])
    return hmac.compare_digest(digest, user["password_hash"])


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user.get("id"),
        "name": user.get("name"),
        "email": user.get("email"),
        "role": user.get("role", "customer"),
    }


def _as_aware(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


class Accounts:
    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.settings = settings

    def register(self, name: str, email: str, password: str, phone: Optional[str] = None) -> Dict[str, Any]:
        email = email.strip().lower()
        if len(password or "") < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        if self.store.find_one(USERS, {"email": email}):
            raise ValidationError("Email already registered")
        digest, salt = hash_password(password)
        try:
            user = User(name=name.strip(), email=email, password_hash=digest, salt=salt, phone=phone)
        except SchemaError as exc:
            error = exc.errors()[0]
            raise ValidationError(f"Invalid {error['loc'][0]}: {error['msg']}")
        created = self.store.insert(USERS, user.model_dump(mode="json"))
        logger.info("Registered customer %s", email)
        return self._start_session(created)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        email = (email or "").strip().lower()
        user = self.store.find_one(USERS, {"email": email})
        if user and user.get("is_active", True) and verify_password(password or "", user):
            self.store.update(USERS, user["id"], {"last_login": datetime.now(timezone.utc)})
            return self._start_session(user)

        if not self.settings.is_production and self._is_demo(email, password):
            logger.warning("Demo admin login used for %s (non-production only)", email)
            return self._start_session({"id": "demo-admin", "name": "Demo Admin", "email": email, "role": "admin"})

        logger.info("Failed login for %s", email)
        raise AuthError("Invalid credentials")

    def _is_demo(self, email: str, password: str) -> bool:
        return (
            hmac.compare_digest(email.encode(), self.settings.demo_admin_email.lower().encode())
            and hmac.compare_digest((password or "").encode(), self.settings.demo_admin_password.encode())
        )

    def _start_session(self, user: Dict[str, Any]) -> Dict[str, Any]:
        session = Session(
            token=secrets.token_hex(24),
            user_id=str(user["id"]),
            email=user["email"],
            role=user.get("role", "customer"),
            expires_at=datetime.now(timezone.utc) + timedelta(hours=self.settings.session_ttl_hours),
        )
        self.store.insert(SESSIONS, session.model_dump())
        return {"success": True, "token": session.token, "user": public_user(user), "message": "Login successful"}

    def session_for(self, token: Optional[str]) -> Dict[str, Any]:
        if not token:
            raise AuthError("Access token required")
        session = self.store.find_one(SESSIONS, {"token": token})
        if session is None:
            raise AuthError("Invalid token")
        expires = _as_aware(session.get("expires_at"))
        if expires is not None and expires < datetime.now(timezone.utc):
            self.store.delete(SESSIONS, session["id"])
            raise AuthError("Session expired")
        return session

    def require_admin(self, token: Optional[str]) -> Dict[str, Any]:
        session = self.session_for(token)
        if session.get("role") != "admin":
            raise ForbiddenError("Admin access required")
        return session

    def logout(self, token: Optional[str]) -> None:
        session = self.session_for(token)
        self.store.delete(SESSIONS, session["id"])
