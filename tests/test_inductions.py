"""
Tests for induction progress and the quiz.
"""
import random

import pytest

from sitework.errors import AuthorizationError, InvalidTransition, ValidationError
from sitework.services import inductions
from sitework.services.quiz_bank import public_questions, questions_for


def _walk_to_quiz(db, induction):
    for step in ("welcome", "site_rules", "video_demo", "documents_signed"):
        induction = inductions.complete_induction_step(db, induction, step)
    return induction


def _answers(language="en", wrong=0):
    answers = {}
    for i, q in enumerate(questions_for(language)):
        answer = q["correct_answer"]
        if i < wrong:
            answer = (answer + 1) % len(q["options"])
        answers[q["id"]] = answer
    return answers


class TestScoring:
    @pytest.mark.parametrize("score,level", [
        (100, "excellent"), (90, "excellent"), (75, "good"), (60, "needs_improvement"), (59, "requires_retry"),
    ])
    def test_understanding_levels(self, score, level):
        assert inductions.understanding_level(score) == level

    def test_score_rounds(self):
        questions = questions_for("en")
        result = inductions.score_answers(questions, _answers(wrong=1))
        assert result["correct"] == len(questions) - 1
        assert result["score"] == round((len(questions) - 1) * 100 / len(questions))
        assert len(result["missed"]) == 1

    def test_feedback_lists_missed_topics(self):
        missed = questions_for("en")[:1]
        text = inductions.quiz_feedback(50, missed, rng=random.Random(1))
        assert "Areas to review:" in text

    def test_public_questions_hide_answers(self):
        assert all("correct_answer" not in q for q in public_questions("pl"))

    def test_unknown_language_falls_back(self):
        assert questions_for("de") == questions_for("en")


class TestProgress:
    def test_steps_in_order(self, db, make_user, project):
        op = make_user("operative", current_project_id=project.id)
        induction = inductions.start_induction(db, op, language="pl")
        assert induction.project_id == project.id
        assert induction.total_steps == 5
        with pytest.raises(ValidationError):
            inductions.complete_induction_step(db, induction, "video_demo")
        induction = inductions.complete_induction_step(db, induction, "welcome")
        assert induction.completion_percentage == 20
        assert induction.current_step == 2
        # repeating a step is a no-op
        induction = inductions.complete_induction_step(db, induction, "welcome")
        assert induction.completion_percentage == 20

    def test_start_resumes_open_induction(self, db, make_user, project):
        op = make_user("operative", current_project_id=project.id)
        first = inductions.start_induction(db, op)
        assert inductions.start_induction(db, op).id == first.id

    def test_unsupported_language(self, db, make_user):
        with pytest.raises(ValidationError):
            inductions.start_induction(db, make_user("operative"), language="fr")


class TestQuiz:
    def test_quiz_locked_until_steps_done(self, db, make_user):
        op = make_user("operative")
        induction = inductions.start_induction(db, op)
        with pytest.raises(ValidationError):
            inductions.submit_quiz(db, op, induction, _answers())

    def test_pass_completes_induction(self, db, make_user):
        op = make_user("operative")
        induction = _walk_to_quiz(db, inductions.start_induction(db, op))
        attempt = inductions.submit_quiz(db, op, induction, _answers())
        assert attempt.passed
        assert attempt.understanding_level == "excellent"
        db.refresh(induction)
        assert induction.status == "completed"
        assert induction.completion_percentage == 100
        with pytest.raises(InvalidTransition):
            inductions.submit_quiz(db, op, induction, _answers())

    def test_fail_allows_retry(self, db, make_user):
        op = make_user("operative")
        induction = _walk_to_quiz(db, inductions.start_induction(db, op))
        attempt = inductions.submit_quiz(db, op, induction, _answers(wrong=5))
        assert not attempt.passed
        db.refresh(induction)
        assert induction.status == "in_progress"
        assert inductions.submit_quiz(db, op, induction, _answers()).passed

    def test_someone_elses_induction(self, db, make_user):
        op = make_user("operative")
        other = make_user("operative")
        induction = _walk_to_quiz(db, inductions.start_induction(db, op))
        with pytest.raises(AuthorizationError):
            inductions.submit_quiz(db, other, induction, _answers())
