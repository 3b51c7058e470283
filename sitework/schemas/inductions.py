import uuid
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel

Language = Literal["en", "es", "pl", "ro"]


class InductionStart(BaseModel):
    project_id: Optional[uuid.UUID] = None
    language: Language = "en"
    supervisor_id: Optional[uuid.UUID] = None


class StepComplete(BaseModel):
    # quiz_completed is only reached by passing the quiz
    step_name: Literal["welcome", "site_rules", "video_demo", "documents_signed"]
    data: Optional[dict] = None


class InductionStepResponse(BaseModel):
    step_number: int
    step_name: str
    data: Optional[dict] = None
    completed_at: datetime

    class Config:
        from_attributes = True


class InductionResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    project_id: Optional[uuid.UUID] = None
    language: str
    status: str
    current_step: int
    total_steps: int
    completion_percentage: int
    started_at: datetime
    completed_at: Optional[datetime] = None
    steps: List[InductionStepResponse] = []

    class Config:
        from_attributes = True


class QuizSubmission(BaseModel):
    answers: Dict[str, int]


class QuizAttemptResponse(BaseModel):
    id: uuid.UUID
    induction_id: uuid.UUID
    language: str
    correct_count: int
    total_questions: int
    score: int
    understanding_level: str
    passed: bool
    feedback: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
