from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.projects import (
    MemberAdd,
    PlotCreate,
    PlotResponse,
    PlotUpdate,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
)
from ..schemas.users import DeleteRequest, UserResponse
from ..services import projects as project_service
from ..services.permissions import is_management
from ..services.users import get_user, user_to_dict


router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("", response_model=List[ProjectResponse])
def list_projects(
    status: Optional[str] = None,
    q: Optional[str] = None,
    mine: bool = False,
    include_deleted: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """Management sees every project; everyone else only the projects they are on."""
    if not is_management(user):
        mine, include_deleted = True, False
    return project_service.list_projects(
        db, status=status, search=q, member_id=user.id if mine else None, include_deleted=include_deleted,
    )


@router.post("", response_model=ProjectResponse, status_code=201)
def create_project(
    req: ProjectCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    return project_service.create_project(db, actor, req.model_dump())


@router.get("/{project_id}", response_model=ProjectResponse)
def get_project(project_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    return project_service.get_project(db, project_id)


@router.patch("/{project_id}", response_model=ProjectResponse)
def update_project(
    project_id: uuid.UUID,
    req: ProjectUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    project = project_service.get_project(db, project_id)
    return project_service.update_project(db, actor, project, req.model_dump(exclude_unset=True))


@router.delete("/{project_id}", response_model=ProjectResponse)
def delete_project(
    project_id: uuid.UUID,
    req: Optional[DeleteRequest] = None,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    project = project_service.get_project(db, project_id)
    return project_service.delete_project(db, actor, project, req.reason if req else None)


@router.post("/{project_id}/restore", response_model=ProjectResponse)
def restore_project(
    project_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    project = project_service.get_project(db, project_id, include_deleted=True)
    return project_service.restore_project(db, actor, project)


# =====================
# Members
# =====================

@router.get("/{project_id}/members", response_model=List[UserResponse])
def list_members(project_id: uuid.UUID, db: Session = Depends(get_db), _=Depends(get_current_user)):
    project = project_service.get_project(db, project_id)
    return [user_to_dict(u) for u in sorted(project.members, key=lambda u: (u.last_name, u.first_name))]


@router.post("/{project_id}/members", response_model=List[UserResponse])
def add_member(
    project_id: uuid.UUID,
    req: MemberAdd,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    project = project_service.get_project(db, project_id)
    project = project_service.add_member(db, actor, project, get_user(db, req.user_id, include_deleted=False))
    return [user_to_dict(u) for u in project.members]


@router.delete("/{project_id}/members/{user_id}", response_model=List[UserResponse])
def remove_member(
    project_id: uuid.UUID,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    project = project_service.get_project(db, project_id)
    project = project_service.remove_member(db, actor, project, get_user(db, user_id))
    return [user_to_dict(u) for u in project.members]


# =====================
# Plots
# =====================

@router.get("/{project_id}/plots", response_model=List[PlotResponse])
def list_plots(
    project_id: uuid.UUID,
    include_deleted: bool = False,
    db: Session = Depends(get_db),
    _=Depends(get_current_user),
):
    project_service.get_project(db, project_id)
    return project_service.list_plots(db, project_id, include_deleted=include_deleted)


@router.post("/{project_id}/plots", response_model=PlotResponse, status_code=201)
def create_plot(
    project_id: uuid.UUID,
    req: PlotCreate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    project = project_service.get_project(db, project_id)
    return project_service.create_plot(db, actor, project, req.model_dump())


@router.patch("/plots/{plot_id}", response_model=PlotResponse)
def update_plot(
    plot_id: uuid.UUID,
    req: PlotUpdate,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    plot = project_service.get_plot(db, plot_id)
    return project_service.update_plot(db, actor, plot, req.model_dump(exclude_unset=True))


@router.delete("/plots/{plot_id}", response_model=PlotResponse)
def delete_plot(
    plot_id: uuid.UUID,
    req: Optional[DeleteRequest] = None,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    plot = project_service.get_plot(db, plot_id)
    return project_service.delete_plot(db, actor, plot, req.reason if req else None)


@router.post("/plots/{plot_id}/restore", response_model=PlotResponse)
def restore_plot(
    plot_id: uuid.UUID,
    db: Session = Depends(get_db),
    actor: User = Depends(require_permissions("projects:write")),
):
    plot = project_service.get_plot(db, plot_id, include_deleted=True)
    return project_service.restore_plot(db, actor, plot)
