from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlmodel import Session

from ..audit.policy import audited
from ..auth.service import disable_user, require_roles
from ..core.database import get_session
from ..models.User import Role, User, UserResponse
from ..services import Services, get_services

router = APIRouter(prefix="/users", tags=["users"])


@router.put("/{id}/disable", response_model=UserResponse)
@audited(
    "USER_DISABLED",
    "USER",
    detail_rule=lambda inputs, result: f"Disabled user: {result.username}",
)
def disable_user_endpoint(
    id: UUID,
    request: Request,
    current_user: User = Depends(require_roles(Role.ADMIN.value)),
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    """
    Disable an account and revoke its refresh tokens (Admin only).
    """
    user = disable_user(session, id)
    services.refresh_tokens.revoke_all(session, user.id)
    return UserResponse.model_validate(user, from_attributes=True)
