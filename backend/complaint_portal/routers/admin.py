"""
Complaint Portal - Admin Router
Role management and triage statistics.
Role writes are gated by the user_roles policies, not by the route.
"""
from typing import Dict, List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_actor, require_admin
from ..models.db_models import AppRole, ComplaintDB, ComplaintPriority, ComplaintStatus, UserRoleDB
from ..services.access import Actor
from ..services.complaint_store import ComplaintStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RoleResponse(BaseModel):
    id: str
    user_id: str
    role: str
    created_at: str


class GrantRoleRequest(BaseModel):
    user_id: str
    role: AppRole


class DashboardStats(BaseModel):
    """Dashboard statistics response."""
    total_complaints: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    anonymous: int
    unassigned_open: int  # new or in_progress with nobody assigned


def _role_response(assignment: UserRoleDB) -> RoleResponse:
    return RoleResponse(
        id=assignment.id,
        user_id=assignment.user_id,
        role=assignment.role.value,
        created_at=assignment.created_at.isoformat(),
    )


# =============================================================================
# API ENDPOINTS
# =============================================================================

@router.get("/roles", response_model=List[RoleResponse])
async def list_roles(
    user_id: Optional[str] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Role assignments are readable by every signed-in account."""
    return [_role_response(r) for r in ComplaintStore(db).list_roles(actor, user_id=user_id)]


@router.post("/roles", response_model=RoleResponse, status_code=status.HTTP_201_CREATED)
async def grant_role(
    request: GrantRoleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """Grant a role. Granting a role already held returns the existing assignment."""
    return _role_response(ComplaintStore(db).grant_role(actor, request.user_id, request.role))


@router.delete("/roles/{user_id}/{role}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_role(
    user_id: str,
    role: AppRole,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    ComplaintStore(db).revoke_role(actor, user_id, role)


@router.get("/dashboard/stats", response_model=DashboardStats)
async def get_dashboard_stats(
    db: Session = Depends(get_db),
    admin: Actor = Depends(require_admin)
):
    """
    Complaint counts for the triage dashboard.
    """
    complaints = ComplaintStore(db).rls.query(admin, ComplaintDB)

    by_status = {s.value: 0 for s in ComplaintStatus}
    for value, count in complaints.with_entities(ComplaintDB.status, func.count(ComplaintDB.id)).group_by(ComplaintDB.status).all():
        by_status[value.value] = count

    by_priority = {p.value: 0 for p in ComplaintPriority}
    for value, count in complaints.with_entities(ComplaintDB.priority, func.count(ComplaintDB.id)).group_by(ComplaintDB.priority).all():
        by_priority[value.value] = count

    anonymous = complaints.filter(ComplaintDB.is_anonymous.is_(True)).count()
    unassigned_open = complaints.filter(
        ComplaintDB.status.in_([ComplaintStatus.NEW, ComplaintStatus.IN_PROGRESS]),
        ComplaintDB.assigned_to.is_(None),
    ).count()

    return DashboardStats(
        total_complaints=sum(by_status.values()),
        by_status=by_status,
        by_priority=by_priority,
        anonymous=anonymous,
        unassigned_open=unassigned_open,
    )
