"""
Idempotent seeding of built-in roles, qualification types and retention rules.
"""
import structlog
from sqlalchemy.orm import Session

from .compliance import ensure_default_qualification_types
from .permissions import ensure_default_roles
from .retention import ensure_default_rules

log = structlog.get_logger(__name__)


def seed_reference_data(db: Session) -> None:
    ensure_default_roles(db)
    ensure_default_qualification_types(db)
    ensure_default_rules(db)  # commits
    log.info("reference_data_seeded")
