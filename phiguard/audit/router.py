from typing import List

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from ..auth.service import require_roles
from ..core.database import get_session
from ..models.Audit import AuditLogResponse
from ..models.User import Role, User
from .service import list_records

router = APIRouter(
    prefix="/audit",
    tags=["audit"],
    responses={404: {"description": "Not found"}},
)


@router.get("/log", response_model=List[AuditLogResponse])
def get_audit_logs(
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(get_session),
    current_admin: User = Depends(require_roles(Role.ADMIN.value)),
):
    return list_records(session, limit=limit, offset=offset)
