import hashlib
import re
import secrets
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from chatbridge.services.result import ErrorKind, Result
from chatbridge.services.security_service import sanitize_text

SESSION_PREFIX = "chat_"
DEFAULT_SLUG = "default"
FALLBACK_SLUG = "visitor"
DISPLAY_NAME_PLACEHOLDER = "visitor"
MAX_NAME_LENGTH = 80

# chat_<slug>_<6 hex>; "chat-<slug>_<6 hex>" is accepted as well
SESSION_ID_RE = re.compile(r"^chat[_-]([a-z0-9-]+)_([a-f0-9]{6})$")
SESSION_ID_TOKEN = r"chat[_-][a-z0-9-]+_[a-f0-9]{6}"

_NON_SLUG_RE = re.compile(r"[^a-z0-9]+")


class SessionState(str, Enum):
    ANONYMOUS = "anonymous"
    NAMED = "named"


@dataclass(frozen=True)
class VisitorContext:
    """Request-scoped visitor identity, passed explicitly into every operation."""

    session_id: str
    declared_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    page: Optional[str] = None

    @property
    def state(self) -> SessionState:
        return SessionState.NAMED if self.declared_name else SessionState.ANONYMOUS

    @property
    def display_name(self) -> str:
        return self.declared_name or extract_display_name(self.session_id)

    def sender_meta(self) -> dict:
        return {
            "ip": self.ip_address,
            "user_agent": self.user_agent or "",
            "page": self.page or "",
            "name": self.declared_name or "",
        }


def slugify(name: Optional[str]) -> str:
    if not name:
        return ""
    return _NON_SLUG_RE.sub("-", name.lower()).strip("-")


def generate_session_id(display_name: Optional[str] = None) -> str:
    """Build chat_<slug>_<6 hex> from an optional visitor name."""
    if display_name:
        slug = slugify(display_name) or FALLBACK_SLUG
    else:
        slug = DEFAULT_SLUG

    seed = f"{display_name or ''}|{time.time_ns()}|{secrets.randbits(64)}"
    suffix = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:6]
    return f"{SESSION_PREFIX}{slug}_{suffix}"


def is_valid_session_id(session_id: Optional[str]) -> bool:
    if not session_id:
        return False
    return SESSION_ID_RE.match(session_id) is not None


def validate_session_id(session_id: Optional[str]) -> Result[str]:
    candidate = (session_id or "").strip()
    if not is_valid_session_id(candidate):
        return Result.failure("Invalid session id", ErrorKind.VALIDATION)
    return Result.success(candidate)


def extract_display_name(session_id: Optional[str]) -> str:
    """Readable name from a session id, or the placeholder if it is malformed."""
    match = SESSION_ID_RE.match(session_id or "")
    if not match:
        return DISPLAY_NAME_PLACEHOLDER
    parts = [part for part in re.split(r"-+", match.group(1)) if part]
    if not parts:
        return DISPLAY_NAME_PLACEHOLDER
    return " ".join(part.title() for part in parts)


def new_anonymous_context(
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    page: Optional[str] = None,
) -> VisitorContext:
    return VisitorContext(
        session_id=generate_session_id(),
        ip_address=ip_address,
        user_agent=user_agent,
        page=page,
    )


def set_name(context: VisitorContext, raw_name: Optional[str]) -> Result[VisitorContext]:
    """Declare a visitor name. Always issues a fresh session id."""
    name = sanitize_text(raw_name)[:MAX_NAME_LENGTH].strip()
    if not name:
        return Result.failure("Name is required", ErrorKind.VALIDATION)

    named = replace(context, session_id=generate_session_id(name), declared_name=name)
    return Result.success(named)
