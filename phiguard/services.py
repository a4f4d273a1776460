from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.engine import Engine

from .audit.service import AuditWriter
from .auth.lockout import LockoutGuard
from .auth.rate_limit import RateLimiter
from .auth.refresh import RefreshTokenStore
from .auth.tokens import TokenIssuer
from .core.clock import Clock, utcnow
from .core.crypto import FieldCipher
from .core.database import SessionFactory, make_session_factory
from .core.settings import Settings


@dataclass
class Services:
    """Process-wide protection services, constructed once at startup."""

    settings: Settings
    engine: Engine
    session_factory: SessionFactory
    cipher: FieldCipher
    audit_writer: AuditWriter
    token_issuer: TokenIssuer
    refresh_tokens: RefreshTokenStore
    lockout: LockoutGuard
    rate_limiter: RateLimiter


def build_services(settings: Settings, engine: Engine, clock: Clock = utcnow) -> Services:
    """
    Builds every service from settings. Missing or malformed secrets raise
    ConfigurationFailure here, before the application accepts any request.
    """
    session_factory = make_session_factory(engine)
    cipher = FieldCipher.from_settings(settings)
    audit_writer = AuditWriter(session_factory, clock=clock)
    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        cipher=cipher,
        audit_writer=audit_writer,
        token_issuer=TokenIssuer.from_settings(settings, clock=clock),
        refresh_tokens=RefreshTokenStore.from_settings(settings, clock=clock),
        lockout=LockoutGuard.from_settings(settings, audit_writer, clock=clock),
        rate_limiter=RateLimiter.from_settings(settings),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
