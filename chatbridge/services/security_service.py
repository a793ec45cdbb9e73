"""Input validation, sanitization, address hashing and anti-forgery tokens."""

import hashlib
import hmac
import re
import time
from ipaddress import ip_address
from typing import Mapping, Optional

from chatbridge.logging_config import get_logger
from chatbridge.services.result import ErrorKind, Result

logger = get_logger("security_service")

MAX_MESSAGE_LENGTH = 1000

INJECTION_PATTERNS = (
    re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<script[^>]*>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"\bon\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe[^>]*>", re.IGNORECASE),
)

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_PERCENT_OCTET_RE = re.compile(r"%[a-fA-F0-9]{2}")
_WHITESPACE_RE = re.compile(r"\s+")

FORWARDED_HEADERS = ("x-client-ip", "x-forwarded-for")


def sanitize_text(text: Optional[str]) -> str:
    """Strip tags, control chars, percent-encoded octets and collapse whitespace."""
    if not text:
        return ""
    cleaned = _TAG_RE.sub("", text)
    cleaned = _CONTROL_RE.sub("", cleaned)
    cleaned = _PERCENT_OCTET_RE.sub("", cleaned)
    cleaned = _WHITESPACE_RE.sub(" ", cleaned)
    return cleaned.strip()


def has_injection_payload(text: str) -> bool:
    return any(pattern.search(text) for pattern in INJECTION_PATTERNS)


def validate_message(text: Optional[str], max_length: int = MAX_MESSAGE_LENGTH) -> Result[str]:
    """Validate visitor text. Returns the sanitized text or a validation failure."""
    raw = (text or "").strip()
    if not raw:
        return Result.failure("Message is empty", ErrorKind.VALIDATION)

    if has_injection_payload(raw):
        return Result.failure("Message contains forbidden content", ErrorKind.VALIDATION)

    clean = sanitize_text(raw)
    if not clean:
        return Result.failure("Message is empty", ErrorKind.VALIDATION)
    if len(clean) > max_length:
        return Result.failure(f"Message too long (max {max_length} characters)", ErrorKind.VALIDATION)

    return Result.success(clean)


def clip_text(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Shorten text to max_length, marking the cut with an ellipsis."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 1].rstrip() + "…"


def _is_public_ip(value: str) -> bool:
    try:
        parsed = ip_address(value)
    except ValueError:
        return False
    return not (parsed.is_private or parsed.is_reserved or parsed.is_loopback or parsed.is_link_local)


def get_client_ip(headers: Mapping[str, str], remote_addr: Optional[str]) -> str:
    """Pick the first public address from proxy headers, else the peer address."""
    lowered = {key.lower(): value for key, value in headers.items()}
    for header in FORWARDED_HEADERS:
        raw = lowered.get(header)
        if not raw:
            continue
        for candidate in raw.split(","):
            candidate = candidate.strip()
            if _is_public_ip(candidate):
                return candidate
    return remote_addr or "unknown"


def hash_ip(ip: str, salt: str) -> str:
    return hashlib.sha256(f"{ip}{salt}".encode("utf-8")).hexdigest()


def _sign_token(expires: int, secret: str) -> str:
    payload = f"chat-nonce:{expires}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def create_chat_token(secret: str, ttl_seconds: int) -> str:
    """Issue an anti-forgery token for the visitor widget."""
    expires = int(time.time()) + max(int(ttl_seconds), 60)
    return f"{expires}.{_sign_token(expires, secret)}"


def verify_chat_token(token: Optional[str], secret: str) -> bool:
    if not token or "." not in token:
        return False
    expires_raw, signature = token.split(".", 1)
    try:
        expires = int(expires_raw)
    except ValueError:
        return False
    if expires < int(time.time()):
        logger.info("Expired chat token", extra={"context": {"event": "chat_token_expired"}})
        return False
    return hmac.compare_digest(_sign_token(expires, secret), signature)
