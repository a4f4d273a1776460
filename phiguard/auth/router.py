from typing import Annotated

from fastapi import APIRouter, Depends, Request, status
from sqlmodel import Session

from ..audit.policy import client_ip
from ..core.database import get_session
from ..models.User import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    User,
    UserRegistrationRequest,
)
from ..services import Services, get_services
from .service import authenticate_user, change_password, get_current_user, get_user_by_id, register_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(
    registration: UserRegistrationRequest,
    request: Request,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """
    Register a new account.
    """
    user = register_user(session, registration)
    services.audit_writer.record("USER_REGISTERED", "USER", entity_id=user.id,
                                 performed_by=user.username, ip_address=client_ip(request))
    return {"message": "User registered successfully"}


@router.post("/login", response_model=AuthResponse)
def login(
    login_data: LoginRequest,
    request: Request,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """
    Login with username and password to get an access token and a refresh token.
    """
    user = authenticate_user(session, services, login_data.username, login_data.password,
                             ip_address=client_ip(request))
    access_token = services.token_issuer.issue(user.username, user.role)
    refresh_token = services.refresh_tokens.issue(session, user.id)
    return AuthResponse(
        access_token=access_token,
        refresh_token=refresh_token,
        username=user.username,
        role=user.role,
    )


@router.post("/refresh", response_model=AuthResponse)
def refresh(
    refresh_data: RefreshTokenRequest,
    request: Request,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """
    Exchange a refresh token for a new access token. The presented refresh
    token is revoked; presenting it again fails.
    """
    existing = services.refresh_tokens.verify(session, refresh_data.refresh_token)
    user = get_user_by_id(session, existing.account_id)
    new_refresh_token = services.refresh_tokens.rotate(session, refresh_data.refresh_token, user.id)
    access_token = services.token_issuer.issue(user.username, user.role)

    services.audit_writer.record("TOKEN_REFRESH", "USER", entity_id=user.id,
                                 performed_by=user.username, ip_address=client_ip(request))
    return AuthResponse(
        access_token=access_token,
        refresh_token=new_refresh_token,
        username=user.username,
        role=user.role,
    )


@router.post("/logout")
def logout(
    refresh_data: RefreshTokenRequest,
    request: Request,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """
    Revoke every refresh token of the account owning the presented token.
    """
    token = services.refresh_tokens.verify(session, refresh_data.refresh_token)
    services.refresh_tokens.revoke_all(session, token.account_id)
    user = get_user_by_id(session, token.account_id)

    services.audit_writer.record("LOGOUT", "USER", entity_id=user.id,
                                 performed_by=user.username, ip_address=client_ip(request))
    return {"message": "Logged out successfully"}


@router.put("/change-password")
def change_password_endpoint(
    password_data: ChangePasswordRequest,
    request: Request,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """
    Change the current user's password and revoke all their refresh tokens.
    """
    user = change_password(session, current_user, password_data.current_password,
                           password_data.new_password)
    services.refresh_tokens.revoke_all(session, user.id)

    services.audit_writer.record("PASSWORD_CHANGED", "USER", entity_id=user.id,
                                 performed_by=user.username, ip_address=client_ip(request))
    return {"message": "Password changed successfully. Please login again."}
