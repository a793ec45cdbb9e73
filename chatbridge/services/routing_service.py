"""Routing decision engine for inbound visitor messages.

One call handles one message: validate, rate check, log, classify, then
deliver through exactly one channel. An eligible message goes to the
automation webhook first and falls back to the operator chat when automation
fails or has nothing to say. Fallback is never visible to the visitor.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.orm import Session

from chatbridge.config import RoutingConfig
from chatbridge.logging_config import LoggerAdapter, session_logger
from chatbridge.models import MessageKind
from chatbridge.services import conversation_log
from chatbridge.services.alert_service import alert_error, alert_warning
from chatbridge.services.automation_service import AutomationClient, match_automation_keyword
from chatbridge.services.rate_limiter import RateLimiter
from chatbridge.services.result import ErrorKind, Result
from chatbridge.services.security_service import clip_text, validate_message
from chatbridge.services.session_service import VisitorContext, validate_session_id
from chatbridge.services.state_machine import RoutingState, transition
from chatbridge.services.telegram_service import HumanNotifier


class DeliveryChannel(str, Enum):
    AUTOMATION = "automation"
    HUMAN = "human"


@dataclass(frozen=True)
class RoutingOutcome:
    delivered_via: DeliveryChannel
    automated: bool
    message_id: int
    correlation_id: Optional[int] = None
    error: Optional[str] = None


@dataclass
class RoutingDependencies:
    config: RoutingConfig
    limiter: RateLimiter
    automation: Optional[AutomationClient] = None
    notifier: Optional[HumanNotifier] = None


def _advance(log: LoggerAdapter, state: RoutingState, to_state: RoutingState) -> RoutingState:
    new_state = transition(state, to_state)
    log.debug("Routing state changed", context={"event": "routing_state", "from": state.value, "to": new_state.value})
    return new_state


def _reject(log: LoggerAdapter, state: RoutingState, error: str, kind: ErrorKind) -> Result[RoutingOutcome]:
    _advance(log, state, RoutingState.REJECTED)
    log.info("Message rejected", context={"event": "message_rejected", "error_code": kind.value, "state": state.value})
    return Result.failure(error, kind)


def _try_automation(
    db: Session,
    context: VisitorContext,
    text: str,
    deps: RoutingDependencies,
    log: LoggerAdapter,
) -> Result[int]:
    """Ask automation and store its answer. Returns the stored reply id."""
    config = deps.config
    answer = deps.automation.request_answer(text, context.session_id, config)
    if not answer.ok:
        return answer

    stored = conversation_log.append_message(
        db,
        context.session_id,
        clip_text(answer.value, config.message_max_length),
        MessageKind.CHANNEL_REPLY,
        automated=True,
        max_length=config.message_max_length,
    )
    if not stored.ok:
        log.warning("Automation answer not stored", context={"event": "automation_store_failed", "error": stored.error})
    return stored


def route_visitor_message(
    db: Session,
    context: VisitorContext,
    raw_text: Optional[str],
    deps: RoutingDependencies,
) -> Result[RoutingOutcome]:
    """Route one visitor message to automation or to the human operator."""
    config = deps.config
    log = session_logger("routing_service", context.session_id)
    state = RoutingState.RECEIVED

    validated = validate_message(raw_text, config.message_max_length)
    if not validated.ok:
        return _reject(log, state, validated.error, ErrorKind.VALIDATION)
    text = validated.value

    session_check = validate_session_id(context.session_id)
    if not session_check.ok:
        return _reject(log, state, session_check.error, ErrorKind.VALIDATION)

    decision = deps.limiter.check(context.session_id)
    state = _advance(log, state, RoutingState.RATE_CHECKED)
    if not decision.allowed:
        return _reject(log, state, "Too many messages, please wait", ErrorKind.RATE_LIMITED)

    appended = conversation_log.append_message(
        db,
        context.session_id,
        text,
        MessageKind.VISITOR,
        sender_meta=context.sender_meta(),
        max_length=config.message_max_length,
        ip_salt=config.site_url,
    )
    if not appended.ok:
        kind = ErrorKind(appended.error_code)
        return _reject(log, state, appended.error, kind)
    message_id = appended.value

    keyword = match_automation_keyword(config, text)
    state = _advance(log, state, RoutingState.CLASSIFIED)
    log.info(
        "Message classified",
        context={"event": "message_classified", "message_id": message_id, "automation": bool(keyword), "keyword": keyword},
    )

    automation_error = None
    if keyword and deps.automation is not None:
        state = _advance(log, state, RoutingState.AUTOMATION_ATTEMPTED)
        automated = _try_automation(db, context, text, deps, log)
        if automated.ok:
            state = _advance(log, state, RoutingState.AUTOMATION_SUCCEEDED)
            _advance(log, state, RoutingState.DONE)
            log.info("Automation answered", context={"event": "automation_delivered", "message_id": message_id})
            return Result.success(
                RoutingOutcome(
                    delivered_via=DeliveryChannel.AUTOMATION,
                    automated=True,
                    message_id=message_id,
                )
            )
        automation_error = automated.error
        state = _advance(log, state, RoutingState.AUTOMATION_FAILED)
        log.info("Falling back to operator", context={"event": "automation_fallback", "error": automation_error})
        alert_warning(
            "Automation unavailable, message routed to operator",
            {"session_id": context.session_id, "message_id": message_id, "error": automation_error},
        )

    if deps.notifier is None:
        if state is RoutingState.AUTOMATION_FAILED:
            state = _advance(log, state, RoutingState.HUMAN_NOTIFIED)
        return _reject(log, state, "Operator channel not configured", ErrorKind.CHANNEL)

    state = _advance(log, state, RoutingState.HUMAN_NOTIFIED)
    notified = deps.notifier.notify(context, text, config, automation_unavailable=automation_error is not None)
    if not notified.ok:
        alert_error(
            "Operator notification failed",
            {"session_id": context.session_id, "message_id": message_id, "error": notified.error},
        )
        return _reject(log, state, notified.error, ErrorKind.CHANNEL)

    correlation_id = notified.value
    conversation_log.set_correlation_id(db, message_id, correlation_id)
    _advance(log, state, RoutingState.DONE)
    log.info(
        "Operator notified",
        context={"event": "human_delivered", "message_id": message_id, "correlation_id": correlation_id},
    )
    return Result.success(
        RoutingOutcome(
            delivered_via=DeliveryChannel.HUMAN,
            automated=False,
            message_id=message_id,
            correlation_id=correlation_id,
            error=automation_error,
        )
    )
