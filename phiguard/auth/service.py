from typing import Annotated, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from passlib.context import CryptContext
from sqlmodel import Session, select

from ..audit.policy import client_ip
from ..core.database import get_session
from ..core.errors import AccessDenied, AccountLocked, Conflict, InvalidCredential, RecordNotFound
from ..core.logging import get_logger
from ..models.User import User, UserRegistrationRequest
from ..services import Services, get_services

logger = get_logger(__name__)

# Password hashing
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__time_cost=2,
    argon2__memory_cost=102400,
    argon2__parallelism=8
)

# OAuth2 scheme (for extracting token from header)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def get_user_by_username(session: Session, username: str) -> Optional[User]:
    return session.exec(select(User).where(User.username == username)).first()


def get_user_by_id(session: Session, user_id: UUID) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise RecordNotFound("User not found")
    return user


def register_user(session: Session, request: UserRegistrationRequest) -> User:
    if get_user_by_username(session, request.username) is not None:
        raise Conflict("Username already exists")
    user = User(
        username=request.username,
        hashed_password=get_password_hash(request.password),
        role=request.role.value,
        enabled=True,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def authenticate_user(session: Session, services: Services, username: str, password: str,
                      ip_address: Optional[str] = None) -> User:
    """
    Verifies a username/password pair.

    Locked accounts are rejected before the password is compared. Every
    failure is audited here; callers only see InvalidCredential or
    AccountLocked.
    """
    audit = services.audit_writer
    user = get_user_by_username(session, username)

    if user is None:
        # Burn comparable time so unknown usernames are not distinguishable
        pwd_context.dummy_verify()
        audit.record("LOGIN_FAILURE", "USER", performed_by=username, ip_address=ip_address)
        raise InvalidCredential()

    if services.lockout.is_locked(user):
        audit.record("LOGIN_FAILURE", "USER", entity_id=user.id, performed_by=username,
                     ip_address=ip_address, detail="Account locked")
        raise AccountLocked(retry_after=services.lockout.retry_after(user))

    if not user.enabled or not verify_password(password, user.hashed_password):
        services.lockout.on_failure(session, user, ip_address=ip_address)
        audit.record("LOGIN_FAILURE", "USER", entity_id=user.id, performed_by=username,
                     ip_address=ip_address)
        raise InvalidCredential()

    services.lockout.on_success(session, user)
    audit.record("LOGIN_SUCCESS", "USER", entity_id=user.id, performed_by=username,
                 ip_address=ip_address)
    return user


def change_password(session: Session, user: User, current_password: str, new_password: str) -> User:
    if not verify_password(current_password, user.hashed_password):
        raise InvalidCredential("Current password is incorrect")
    if verify_password(new_password, user.hashed_password):
        raise Conflict("New password must be different from current password")
    user.hashed_password = get_password_hash(new_password)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def disable_user(session: Session, user_id: UUID) -> User:
    user = get_user_by_id(session, user_id)
    user.enabled = False
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
) -> User:
    if not token:
        raise InvalidCredential("Authentication required")
    claims = services.token_issuer.validate(token)
    user = get_user_by_username(session, claims["sub"])
    if user is None or not user.enabled:
        raise InvalidCredential("Invalid token")
    return user


def require_roles(*roles: str):
    """Dependency factory: plain set-membership check on the caller's role."""
    allowed = frozenset(roles)

    def checker(
        request: Request,
        current_user: Annotated[User, Depends(get_current_user)],
        services: Services = Depends(get_services),
    ) -> User:
        if current_user.role not in allowed:
            logger.warning("access_denied", username=current_user.username, path=request.url.path)
            services.audit_writer.record(
                "ACCESS_DENIED",
                "ENDPOINT",
                performed_by=current_user.username,
                ip_address=client_ip(request),
                detail=f"URI: {request.url.path}",
            )
            raise AccessDenied()
        return current_user

    return checker
