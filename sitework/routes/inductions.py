from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permissions
from ..db import get_db
from ..models.models import User
from ..schemas.inductions import (
    InductionResponse,
    InductionStart,
    Language,
    QuizAttemptResponse,
    QuizSubmission,
    StepComplete,
)
from ..services import inductions
from ..services.quiz_bank import public_questions


router = APIRouter(prefix="/inductions", tags=["inductions"])


@router.post("", response_model=InductionResponse, status_code=201)
def start_induction(req: InductionStart, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Start an induction, or resume the one already in progress for the project."""
    return inductions.start_induction(db, user, req.project_id, req.language, req.supervisor_id)


@router.get("", response_model=List[InductionResponse])
def list_inductions(
    user_id: Optional[uuid.UUID] = None,
    project_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("compliance:read")),
):
    return inductions.list_inductions(db, user_id=user_id, project_id=project_id, status=status)


@router.get("/mine", response_model=List[InductionResponse])
def my_inductions(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return inductions.list_inductions(db, user_id=user.id)


@router.get("/quiz/{language}")
def quiz_questions(language: Language, _=Depends(get_current_user)):
    return {"language": language, "questions": public_questions(language)}


@router.get("/{induction_id}", response_model=InductionResponse)
def get_induction(induction_id: uuid.UUID, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return inductions.get_induction(db, induction_id, user)


@router.post("/{induction_id}/complete-step", response_model=InductionResponse)
def complete_induction_step(
    induction_id: uuid.UUID,
    req: StepComplete,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    induction = inductions.get_induction(db, induction_id, user)
    return inductions.complete_induction_step(db, induction, req.step_name, req.data)


@router.post("/{induction_id}/quiz", response_model=QuizAttemptResponse)
def submit_quiz(
    induction_id: uuid.UUID,
    req: QuizSubmission,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    induction = inductions.get_induction(db, induction_id, user)
    return inductions.submit_quiz(db, user, induction, req.answers)
