"""
Projects, plots and site team membership.
"""
import uuid
from typing import List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models.models import Plot, Project, User
from .audit import compute_diff, record_action
from .soft_delete import restore, soft_delete
from .validation import sanitize_input

log = structlog.get_logger(__name__)

PROJECT_STATUSES = ("planning", "active", "on_hold", "completed")
PLOT_STATUSES = ("not_started", "in_progress", "completed")

_PROJECT_FIELDS = ("name", "code", "client_name", "address", "status", "start_date", "end_date")
_PLOT_FIELDS = ("level", "plot_number", "name", "status")


def project_to_dict(p: Project) -> dict:
    return {
        "id": str(p.id),
        "name": p.name,
        "code": p.code,
        "client_name": p.client_name,
        "address": p.address,
        "status": p.status,
        "start_date": p.start_date.isoformat() if p.start_date else None,
        "end_date": p.end_date.isoformat() if p.end_date else None,
        "deleted_at": p.deleted_at.isoformat() if p.deleted_at else None,
    }


def plot_to_dict(p: Plot) -> dict:
    return {
        "id": str(p.id),
        "project_id": str(p.project_id),
        "level": p.level,
        "plot_number": p.plot_number,
        "name": p.name,
        "display_name": p.display_name,
        "status": p.status,
        "deleted_at": p.deleted_at.isoformat() if p.deleted_at else None,
    }


def _validate_project(project: Project) -> None:
    if not project.name:
        raise ValidationError("Project name is required")
    if project.status not in PROJECT_STATUSES:
        raise ValidationError(f"Status must be one of {', '.join(PROJECT_STATUSES)}")
    if project.start_date and project.end_date and project.end_date < project.start_date:
        raise ValidationError("End date cannot be before the start date")


def create_project(db: Session, actor: User, data: dict) -> Project:
    project = Project(status="active")
    for key in _PROJECT_FIELDS:
        if data.get(key) is not None:
            setattr(project, key, data[key])
    project.name = sanitize_input(project.name)
    _validate_project(project)
    if project.code and db.query(Project.id).filter(func.lower(Project.code) == project.code.lower()).first():
        raise ConflictError(f"Project code '{project.code}' is already used")
    db.add(project)
    db.flush()
    record_action(db, actor, "project", project.id, "CREATE", context={"name": project.name})
    db.commit()
    db.refresh(project)
    log.info("project_created", project_id=str(project.id))
    return project


def update_project(db: Session, actor: User, project: Project, data: dict) -> Project:
    before = project_to_dict(project)
    for key in _PROJECT_FIELDS:
        if data.get(key) is not None:
            setattr(project, key, data[key])
    _validate_project(project)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Project code '{data.get('code')}' is already used")
    record_action(db, actor, "project", project.id, "UPDATE", changes=compute_diff(before, project_to_dict(project)))
    db.commit()
    db.refresh(project)
    return project


def get_project(db: Session, project_id: uuid.UUID, include_deleted: bool = False) -> Project:
    project = db.get(Project, project_id)
    if not project or (not include_deleted and project.deleted_at is not None):
        raise NotFoundError("Project", project_id)
    return project


def list_projects(
    db: Session,
    status: Optional[str] = None,
    search: Optional[str] = None,
    member_id: Optional[uuid.UUID] = None,
    include_deleted: bool = False,
) -> List[Project]:
    query = db.query(Project)
    if not include_deleted:
        query = query.filter(Project.deleted_at.is_(None))
    if status:
        query = query.filter(Project.status == status)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(Project.name.ilike(like) | Project.code.ilike(like) | Project.client_name.ilike(like))
    if member_id:
        query = query.filter(Project.members.any(User.id == member_id))
    return query.order_by(Project.name).all()


def delete_project(db: Session, actor: User, project: Project, reason: Optional[str] = None) -> Project:
    soft_delete(db, project, "project", actor, reason)
    db.commit()
    db.refresh(project)
    return project


def restore_project(db: Session, actor: User, project: Project) -> Project:
    restore(db, project, "project", actor)
    db.commit()
    db.refresh(project)
    return project


# =====================
# Members
# =====================

def add_member(db: Session, actor: User, project: Project, user: User) -> Project:
    if any(m.id == user.id for m in project.members):
        raise ConflictError(f"{user.full_name} is already on this project")
    project.members.append(user)
    if user.current_project_id is None:
        user.current_project_id = project.id
    record_action(db, actor, "project", project.id, "ADD_MEMBER", context={"user_id": str(user.id)})
    db.commit()
    db.refresh(project)
    return project


def remove_member(db: Session, actor: User, project: Project, user: User) -> Project:
    if not any(m.id == user.id for m in project.members):
        raise NotFoundError("Project member", user.id)
    project.members.remove(user)
    if user.current_project_id == project.id:
        user.current_project_id = None
    record_action(db, actor, "project", project.id, "REMOVE_MEMBER", context={"user_id": str(user.id)})
    db.commit()
    db.refresh(project)
    return project


# =====================
# Plots
# =====================

def _validate_plot(plot: Plot) -> None:
    if not (plot.plot_number or "").strip():
        raise ValidationError("Plot number is required")
    if plot.status not in PLOT_STATUSES:
        raise ValidationError(f"Plot status must be one of {', '.join(PLOT_STATUSES)}")


def create_plot(db: Session, actor: User, project: Project, data: dict) -> Plot:
    plot = Plot(project_id=project.id, status="not_started")
    for key in _PLOT_FIELDS:
        if data.get(key) is not None:
            setattr(plot, key, data[key])
    _validate_plot(plot)
    exists = db.query(Plot.id).filter(Plot.project_id == project.id, Plot.plot_number == plot.plot_number).first()
    if exists:
        raise ConflictError(f"Plot {plot.plot_number} already exists on this project")
    db.add(plot)
    db.flush()
    record_action(db, actor, "plot", plot.id, "CREATE", context={"project_id": str(project.id), "plot_number": plot.plot_number})
    db.commit()
    db.refresh(plot)
    return plot


def update_plot(db: Session, actor: User, plot: Plot, data: dict) -> Plot:
    before = plot_to_dict(plot)
    for key in _PLOT_FIELDS:
        if data.get(key) is not None:
            setattr(plot, key, data[key])
    _validate_plot(plot)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ConflictError(f"Plot {data.get('plot_number')} already exists on this project")
    record_action(db, actor, "plot", plot.id, "UPDATE", changes=compute_diff(before, plot_to_dict(plot)))
    db.commit()
    db.refresh(plot)
    return plot


def get_plot(db: Session, plot_id: uuid.UUID, include_deleted: bool = False) -> Plot:
    plot = db.get(Plot, plot_id)
    if not plot or (not include_deleted and plot.deleted_at is not None):
        raise NotFoundError("Plot", plot_id)
    return plot


def list_plots(db: Session, project_id: uuid.UUID, include_deleted: bool = False) -> List[Plot]:
    query = db.query(Plot).filter(Plot.project_id == project_id)
    if not include_deleted:
        query = query.filter(Plot.deleted_at.is_(None))
    return query.order_by(Plot.level, Plot.plot_number).all()


def delete_plot(db: Session, actor: User, plot: Plot, reason: Optional[str] = None) -> Plot:
    soft_delete(db, plot, "plot", actor, reason)
    db.commit()
    db.refresh(plot)
    return plot


def restore_plot(db: Session, actor: User, plot: Plot) -> Plot:
    restore(db, plot, "plot", actor)
    db.commit()
    db.refresh(plot)
    return plot
