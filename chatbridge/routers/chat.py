from typing import Optional
from urllib.parse import quote, unquote

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from chatbridge.config import RoutingConfig, Settings, get_settings
from chatbridge.database import get_db
from chatbridge.dependencies import get_routing_config, get_routing_dependencies
from chatbridge.logging_config import get_logger
from chatbridge.schemas.message import (
    MessageOut,
    PollRequest,
    PollResponse,
    SendMessageRequest,
    SendMessageResponse,
    SessionBootstrapResponse,
    SetNameRequest,
    SetNameResponse,
)
from chatbridge.services import conversation_log
from chatbridge.services.result import ErrorKind, StorageError
from chatbridge.services.routing_service import RoutingDependencies, route_visitor_message
from chatbridge.services.security_service import create_chat_token, get_client_ip, sanitize_text, verify_chat_token
from chatbridge.services.session_service import (
    MAX_NAME_LENGTH,
    VisitorContext,
    is_valid_session_id,
    new_anonymous_context,
    set_name,
)

logger = get_logger("chat")

router = APIRouter(prefix="/chat")

NAME_COOKIE = "chatbridge_name"
NAME_COOKIE_MAX_AGE = 30 * 24 * 3600

USER_MESSAGES = {
    "en": {
        "invalid_token": "Your session has expired. Please reload the page.",
        "invalid_session": "Invalid session.",
        "validation_error": "Your message could not be sent. Please check it and try again.",
        "rate_limited": "Too many messages. Please try again later.",
        "channel_error": "Support is not available right now. Please try again later.",
        "storage_error": "Something went wrong. Please try again.",
        "name_required": "Please tell us your name.",
        "sent_human": "Message sent to our support team",
        "sent_automated": "Message answered automatically",
    },
    "es": {
        "invalid_token": "Tu sesión ha caducado. Recarga la página.",
        "invalid_session": "Sesión inválida.",
        "validation_error": "No se pudo enviar tu mensaje. Revísalo e inténtalo de nuevo.",
        "rate_limited": "Demasiados mensajes. Intenta más tarde.",
        "channel_error": "El soporte no está disponible ahora. Intenta más tarde.",
        "storage_error": "Algo salió mal. Inténtalo de nuevo.",
        "name_required": "Por favor, dinos tu nombre.",
        "sent_human": "Mensaje enviado a soporte humano",
        "sent_automated": "Mensaje procesado automáticamente",
    },
}

ERROR_STATUS = {
    ErrorKind.VALIDATION.value: status.HTTP_400_BAD_REQUEST,
    ErrorKind.RATE_LIMITED.value: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.CHANNEL.value: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.STORAGE.value: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def user_message(locale: str, key: str) -> str:
    messages = USER_MESSAGES.get(locale, USER_MESSAGES["en"])
    return messages.get(key, USER_MESSAGES["en"][key])


def _build_context(request: Request, session_id: str) -> VisitorContext:
    declared_name = sanitize_text(unquote(request.cookies.get(NAME_COOKIE, "")))[:MAX_NAME_LENGTH] or None
    remote_addr = request.client.host if request.client else None
    return VisitorContext(
        session_id=session_id,
        declared_name=declared_name,
        ip_address=get_client_ip(request.headers, remote_addr),
        user_agent=request.headers.get("user-agent"),
        page=request.headers.get("referer"),
    )


def _require_chat_token(nonce: Optional[str], settings: Settings) -> None:
    if not verify_chat_token(nonce, settings.chat_token_secret):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=user_message(settings.chat_locale, "invalid_token"),
        )


@router.get("/session", response_model=SessionBootstrapResponse)
def bootstrap_session(
    request: Request,
    session_id: Optional[str] = None,
    settings: Settings = Depends(get_settings),
):
    """Issue the widget's session id and anti-forgery token.

    A returning visitor may pass back a previously issued session id.
    """
    if session_id and is_valid_session_id(session_id):
        context = _build_context(request, session_id)
    else:
        anonymous = new_anonymous_context()
        context = _build_context(request, anonymous.session_id)

    return SessionBootstrapResponse(
        success=True,
        session_id=context.session_id,
        name=context.declared_name,
        nonce=create_chat_token(settings.chat_token_secret, settings.chat_token_ttl_seconds),
    )


@router.post("/message", response_model=SendMessageResponse)
def send_message(
    payload: SendMessageRequest,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    deps: RoutingDependencies = Depends(get_routing_dependencies),
):
    """Accept a visitor message and route it to automation or the operator."""
    _require_chat_token(payload.nonce, settings)

    context = _build_context(request, payload.session_id.strip())
    result = route_visitor_message(db, context, payload.message, deps)

    if not result.ok:
        code = result.error_code or ErrorKind.STORAGE.value
        logger.info(
            "Visitor message not delivered",
            extra={"context": {"event": "send_failed", "session_id": context.session_id, "error_code": code}},
        )
        raise HTTPException(
            status_code=ERROR_STATUS.get(code, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=user_message(settings.chat_locale, code if code in ERROR_STATUS else "storage_error"),
        )

    outcome = result.value
    return SendMessageResponse(
        success=True,
        automated=outcome.automated,
        session_id=context.session_id,
        message=user_message(settings.chat_locale, "sent_automated" if outcome.automated else "sent_human"),
    )


@router.post("/messages", response_model=PollResponse)
def poll_messages(
    payload: PollRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    config: RoutingConfig = Depends(get_routing_config),
):
    """Return messages newer than after_message_id."""
    _require_chat_token(payload.nonce, settings)

    if not is_valid_session_id(payload.session_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=user_message(settings.chat_locale, "invalid_session"),
        )

    try:
        rows = conversation_log.read_since(db, payload.session_id, payload.after_message_id, config.poll_limit)
    except StorageError as e:
        logger.error(
            "Poll failed",
            extra={"context": {"event": "poll_failed", "session_id": payload.session_id, "error": e.message}},
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=user_message(settings.chat_locale, "storage_error"),
        )

    return PollResponse(
        success=True,
        messages=[MessageOut(**conversation_log.serialize_for_poll(row)) for row in rows],
    )


@router.post("/name", response_model=SetNameResponse)
def declare_name(
    payload: SetNameRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
):
    """Store the visitor's name and issue a session id derived from it."""
    _require_chat_token(payload.nonce, settings)

    anonymous = new_anonymous_context()
    result = set_name(_build_context(request, anonymous.session_id), payload.name)
    if not result.ok:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=user_message(settings.chat_locale, "name_required"),
        )

    named = result.value
    response.set_cookie(
        NAME_COOKIE,
        quote(named.declared_name),
        max_age=NAME_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
    )
    logger.info("Visitor named", extra={"context": {"event": "visitor_named", "session_id": named.session_id}})
    return SetNameResponse(success=True, session_id=named.session_id, name=named.declared_name)
