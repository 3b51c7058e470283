"""
Site inductions: step progress and the post-demo quiz.
"""
import random
import uuid
from typing import Dict, List, Optional

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import AuthorizationError, InvalidTransition, NotFoundError, ValidationError
from ..models.models import Induction, InductionStep, Project, QuizAttempt, User, utcnow
from .audit import record_action
from .quiz_bank import FEEDBACK_TEMPLATES, questions_for

log = structlog.get_logger(__name__)

SUPPORTED_LANGUAGES = ("en", "es", "pl", "ro")
INDUCTION_STEPS = ["welcome", "site_rules", "video_demo", "documents_signed", "quiz_completed"]
QUIZ_STEP = INDUCTION_STEPS.index("quiz_completed") + 1


def understanding_level(score: int) -> str:
    if score >= 90:
        return "excellent"
    if score >= 75:
        return "good"
    if score >= 60:
        return "needs_improvement"
    return "requires_retry"


def score_answers(questions: List[dict], answers: Dict[str, int]) -> dict:
    """
    Mark answers against the key.

    Returns:
        correct count, total, rounded percentage score and the missed questions
    """
    missed = [q for q in questions if answers.get(q["id"]) != q["correct_answer"]]
    total = len(questions)
    correct = total - len(missed)
    score = round(correct * 100 / total) if total else 0
    return {"correct": correct, "total": total, "score": score, "missed": missed}


def quiz_feedback(score: int, missed: List[dict], rng: Optional[random.Random] = None) -> str:
    chooser = rng or random
    text = chooser.choice(FEEDBACK_TEMPLATES[understanding_level(score)])
    if missed:
        review = "\n".join(f"• {q['question'].split('?')[0]}" for q in missed)
        text += f"\n\nAreas to review:\n{review}"
    return text


def start_induction(
    db: Session,
    user: User,
    project_id: Optional[uuid.UUID] = None,
    language: str = "en",
    supervisor_id: Optional[uuid.UUID] = None,
) -> Induction:
    if language not in SUPPORTED_LANGUAGES:
        raise ValidationError(f"Unsupported language '{language}'")
    project_id = project_id or user.current_project_id
    if project_id and not db.get(Project, project_id):
        raise NotFoundError("Project", project_id)
    existing = (
        db.query(Induction)
        .filter(Induction.user_id == user.id, Induction.project_id == project_id, Induction.status == "in_progress")
        .first()
    )
    if existing:
        return existing
    induction = Induction(
        user_id=user.id,
        project_id=project_id,
        supervisor_id=supervisor_id,
        language=language,
        status="in_progress",
        current_step=1,
        total_steps=len(INDUCTION_STEPS),
        completion_percentage=0,
    )
    db.add(induction)
    db.flush()
    record_action(db, user, "induction", induction.id, "START", context={"language": language})
    db.commit()
    db.refresh(induction)
    return induction


def get_induction(db: Session, induction_id: uuid.UUID, user: Optional[User] = None) -> Induction:
    induction = db.get(Induction, induction_id)
    if not induction:
        raise NotFoundError("Induction", induction_id)
    if user is not None and induction.user_id != user.id:
        raise AuthorizationError("This induction belongs to someone else")
    return induction


def complete_induction_step(db: Session, induction: Induction, step_name: str, data: Optional[dict] = None) -> Induction:
    """
    Mark a step done. Repeating a completed step is a no-op; skipping ahead is refused.
    """
    if step_name not in INDUCTION_STEPS:
        raise ValidationError(f"Unknown induction step '{step_name}'")
    step_number = INDUCTION_STEPS.index(step_name) + 1
    if any(s.step_number == step_number for s in induction.steps):
        return induction
    if induction.status == "completed":
        raise InvalidTransition("induction", induction.status, step_name)
    if step_number > induction.current_step:
        raise ValidationError(f"Complete step {induction.current_step} first")

    induction.steps.append(InductionStep(step_number=step_number, step_name=step_name, data=data or {}))
    done = len(induction.steps)
    induction.completion_percentage = round(done * 100 / induction.total_steps)
    induction.current_step = min(step_number + 1, induction.total_steps)
    if done >= induction.total_steps:
        induction.status = "completed"
        induction.completed_at = utcnow()
        log.info("induction_completed", induction_id=str(induction.id), user_id=str(induction.user_id))
    db.commit()
    db.refresh(induction)
    return induction


def submit_quiz(
    db: Session,
    user: User,
    induction: Induction,
    answers: Dict[str, int],
    rng: Optional[random.Random] = None,
) -> QuizAttempt:
    """Score a quiz attempt; a pass completes the quiz step."""
    if induction.user_id != user.id:
        raise AuthorizationError("This induction belongs to someone else")
    if induction.status == "completed":
        raise InvalidTransition("induction", induction.status, "quiz")
    if induction.current_step < QUIZ_STEP:
        raise ValidationError("Finish the earlier induction steps before the quiz")

    questions = questions_for(induction.language)
    result = score_answers(questions, answers)
    level = understanding_level(result["score"])
    passed = result["score"] >= settings.induction_pass_mark
    attempt = QuizAttempt(
        induction_id=induction.id,
        user_id=user.id,
        language=induction.language,
        answers=answers,
        correct_count=result["correct"],
        total_questions=result["total"],
        score=result["score"],
        understanding_level=level,
        passed=passed,
        feedback=quiz_feedback(result["score"], result["missed"], rng),
    )
    db.add(attempt)
    db.flush()
    record_action(db, user, "induction", induction.id, "QUIZ_SUBMITTED", context={"score": result["score"], "passed": passed})
    db.commit()
    if passed:
        complete_induction_step(db, induction, "quiz_completed", {"score": result["score"], "understanding_level": level})
    db.refresh(attempt)
    log.info("induction_quiz_scored", induction_id=str(induction.id), score=result["score"], passed=passed)
    return attempt


def list_inductions(db: Session, user_id: Optional[uuid.UUID] = None, project_id: Optional[uuid.UUID] = None, status: Optional[str] = None) -> List[Induction]:
    query = db.query(Induction)
    if user_id:
        query = query.filter(Induction.user_id == user_id)
    if project_id:
        query = query.filter(Induction.project_id == project_id)
    if status:
        query = query.filter(Induction.status == status)
    return query.order_by(Induction.started_at.desc()).all()
