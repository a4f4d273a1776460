"""Declarative audit rules for governed operations.

A governed operation is wrapped explicitly::

    @router.get("/{id}")
    @audited("PATIENT_VIEWED", "PATIENT", detail="Viewed patient record")
    def get_patient(id: UUID, request: Request, current_user: User = ...):
        ...

After the operation returns normally the wrapper resolves the audit fields
from the call and hands them to the AuditWriter. Operations that raise are
not audited here; failure sites record their own events.

Resolution rules:

* actor: ``current_user.username``, else ``"anonymous"``
* client origin: first ``X-Forwarded-For`` entry of ``request``, else the
  peer address, else ``"unknown"``
* subject id: an argument named ``id`` holding a UUID, else the ``id`` of the
  returned payload when it is a UUID
* detail: ``detail_rule(inputs, result)`` if given, else the static ``detail``

``inputs`` is a read-only view of the operation's named arguments without
the transport request and the database session. Rules must only place field
names and identifiers in the detail, never protected values.
"""

import functools
import inspect
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional
from uuid import UUID

from ..core.logging import get_logger
from .service import ANONYMOUS, AuditWriter

logger = get_logger(__name__)

DetailRule = Callable[[Mapping[str, Any], Any], Optional[str]]

UNKNOWN_ORIGIN = "unknown"
FORWARDED_FOR = "x-forwarded-for"

# Arguments never exposed to detail rules
_HIDDEN_ARGUMENTS = frozenset({"request", "session"})


@dataclass(frozen=True)
class AuditRule:
    action: str
    entity_type: str
    detail: Optional[str] = None
    detail_rule: Optional[DetailRule] = None


@dataclass(frozen=True)
class AuditFields:
    performed_by: str
    ip_address: Optional[str]
    entity_id: Optional[UUID]
    detail: Optional[str]


def client_ip(request) -> str:
    """Client origin: first X-Forwarded-For entry, else the transport peer."""
    if request is None:
        return UNKNOWN_ORIGIN
    forwarded = request.headers.get(FORWARDED_FOR)
    if forwarded and forwarded.strip():
        return forwarded.split(",")[0].strip()
    if request.client is not None and request.client.host:
        return request.client.host
    return UNKNOWN_ORIGIN


def current_username(user) -> str:
    username = getattr(user, "username", None)
    return username or ANONYMOUS


def _entity_id_from_result(result) -> Optional[UUID]:
    if result is None:
        return None
    if isinstance(result, Mapping):
        candidate = result.get("id")
    else:
        candidate = getattr(result, "id", None)
    return candidate if isinstance(candidate, UUID) else None


def _safe(step: str, rule: AuditRule, resolve: Callable[[], Any]) -> Any:
    try:
        return resolve()
    except Exception:
        logger.warning("audit_field_unresolved", step=step, action=rule.action, exc_info=True)
        return None


def resolve_fields(rule: AuditRule, arguments: Mapping[str, Any], result: Any) -> AuditFields:
    """Resolve each audit field independently; a failing step yields None."""
    performed_by = _safe("actor", rule, lambda: current_username(arguments.get("current_user")))
    ip_address = _safe("origin", rule, lambda: client_ip(arguments.get("request")))

    def entity_id():
        candidate = arguments.get("id")
        if isinstance(candidate, UUID):
            return candidate
        return _entity_id_from_result(result)

    def detail():
        if rule.detail_rule is not None:
            inputs = MappingProxyType(
                {k: v for k, v in arguments.items() if k not in _HIDDEN_ARGUMENTS}
            )
            value = rule.detail_rule(inputs, result)
            return None if value is None else str(value)
        return rule.detail

    return AuditFields(
        performed_by=performed_by or ANONYMOUS,
        ip_address=ip_address,
        entity_id=_safe("entity_id", rule, entity_id),
        detail=_safe("detail", rule, detail),
    )


def _resolve_writer(explicit: Optional[AuditWriter], arguments: Mapping[str, Any]) -> Optional[AuditWriter]:
    if explicit is not None:
        return explicit
    request = arguments.get("request")
    if request is None:
        return None
    return getattr(request.app.state, "audit_writer", None)


def dispatch(rule: AuditRule, arguments: Mapping[str, Any], result: Any,
             writer: Optional[AuditWriter] = None) -> None:
    """Write the audit record for a successful call. Never raises."""
    try:
        target = _resolve_writer(writer, arguments)
        if target is None:
            logger.error("audit_writer_unavailable", action=rule.action)
            return
        fields = resolve_fields(rule, arguments, result)
        target.record(
            rule.action,
            rule.entity_type,
            entity_id=fields.entity_id,
            performed_by=fields.performed_by,
            ip_address=fields.ip_address,
            detail=fields.detail,
        )
    except Exception:
        logger.exception("audit_dispatch_failed", action=rule.action)


def audited(action: str, entity_type: str, detail: Optional[str] = None,
            detail_rule: Optional[DetailRule] = None,
            writer: Optional[AuditWriter] = None):
    """Decorator attaching an audit rule to a sync or async operation."""
    rule = AuditRule(action=action, entity_type=entity_type, detail=detail, detail_rule=detail_rule)

    def decorator(func):
        signature = inspect.signature(func)

        def bind(args, kwargs) -> Mapping[str, Any]:
            try:
                bound = signature.bind_partial(*args, **kwargs)
            except TypeError:
                logger.warning("audit_arguments_unbound", action=rule.action)
                return {}
            return dict(bound.arguments)

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                result = await func(*args, **kwargs)
                dispatch(rule, bind(args, kwargs), result, writer)
                return result

            async_wrapper.audit_rule = rule
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            result = func(*args, **kwargs)
            dispatch(rule, bind(args, kwargs), result, writer)
            return result

        wrapper.audit_rule = rule
        return wrapper

    return decorator
