"""
Exam attempt lifecycle and scoring.

    not-started --start--> in-progress --submit*--> in-progress --complete--> completed

An attempt is "in-progress" while completed_at is NULL. Completion writes
completed_at and score once; completed attempts are never modified again.
Retakes are new rows.

Storage enforces the uniqueness rules (one open attempt per user/exam, one
answer per attempt/question). The read-then-write paths below only decide
between "return what exists" and "insert"; a lost insert race is resolved by
re-reading the row that won.
"""
import logging
from typing import Iterable, Mapping

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .crud import commit_or_raise, get_exam, get_question, list_exam_questions
from .errors import ForbiddenError, NotFoundError, StorageError, ValidationError
from .models import ExamAnswer, ExamAttempt, utcnow

logger = logging.getLogger(__name__)


def _open_attempt(db: Session, user_id: str, exam_id: int) -> ExamAttempt | None:
    return (
        db.query(ExamAttempt)
        .filter(
            ExamAttempt.user_id == user_id,
            ExamAttempt.exam_id == exam_id,
            ExamAttempt.completed_at.is_(None),
        )
        .order_by(ExamAttempt.started_at.asc(), ExamAttempt.id.asc())
        .first()
    )


def _find_answer(db: Session, attempt_id: int, question_id: int) -> ExamAnswer | None:
    return (
        db.query(ExamAnswer)
        .filter(ExamAnswer.attempt_id == attempt_id, ExamAnswer.question_id == question_id)
        .first()
    )


def start_exam_attempt(db: Session, exam_id: int, user_id: str) -> ExamAttempt:
    """
    Return the caller's in-progress attempt for this exam, creating it if needed.
    Calling this twice without completing in between yields the same attempt.
    """
    get_exam(db, exam_id)

    existing = _open_attempt(db, user_id, exam_id)
    if existing:
        logger.info("Resuming attempt %s (user=%s exam=%s)", existing.id, user_id, exam_id)
        return existing

    attempt = ExamAttempt(user_id=user_id, exam_id=exam_id, started_at=utcnow())
    db.add(attempt)
    try:
        commit_or_raise(db, "start exam attempt")
    except IntegrityError:
        # another request opened the attempt first
        existing = _open_attempt(db, user_id, exam_id)
        if existing is None:
            raise StorageError("Could not start exam attempt")
        logger.info("Resuming attempt %s after concurrent start (user=%s exam=%s)", existing.id, user_id, exam_id)
        return existing

    db.refresh(attempt)
    logger.info("Started attempt %s (user=%s exam=%s)", attempt.id, user_id, exam_id)
    return attempt


def submit_exam_answer(
    db: Session,
    attempt_id: int,
    question_id: int,
    selected_answer: str,
    user_id: str,
) -> ExamAnswer:
    """
    Record the caller's answer to one question. A later submission for the
    same question replaces the earlier one; only the last value counts.
    """
    attempt = (
        db.query(ExamAttempt)
        .filter(
            ExamAttempt.id == attempt_id,
            ExamAttempt.user_id == user_id,
            ExamAttempt.completed_at.is_(None),
        )
        .first()
    )
    # unknown, someone else's and completed attempts all look the same to the caller
    if not attempt:
        raise ForbiddenError("Invalid or completed attempt")

    if not selected_answer:
        raise ValidationError("selected_answer cannot be empty")

    question = get_question(db, question_id)
    is_correct = selected_answer == question.correct_answer

    answer = _find_answer(db, attempt_id, question_id)
    if answer is None:
        answer = ExamAnswer(
            attempt_id=attempt_id,
            question_id=question_id,
            selected_answer=selected_answer,
            is_correct=is_correct,
            answered_at=utcnow(),
        )
        db.add(answer)
        try:
            commit_or_raise(db, "submit exam answer")
            db.refresh(answer)
            return answer
        except IntegrityError:
            answer = _find_answer(db, attempt_id, question_id)
            if answer is None:
                raise StorageError("Could not submit exam answer")

    answer.selected_answer = selected_answer
    answer.is_correct = is_correct
    answer.answered_at = utcnow()
    commit_or_raise(db, "submit exam answer")
    db.refresh(answer)
    return answer


def tally_score(answers: Iterable[ExamAnswer], marks_by_question: Mapping[int, int]) -> int:
    # additive: each correct answer earns its question's marks, everything else earns 0
    return sum(marks_by_question.get(a.question_id, 0) for a in answers if a.is_correct)


def compute_attempt_score(db: Session, attempt: ExamAttempt) -> int:
    answers = list_attempt_answers(db, attempt.id)
    marks = {eq.question_id: eq.marks for eq in list_exam_questions(db, attempt.exam_id)}
    return tally_score(answers, marks)


def complete_exam_attempt(db: Session, attempt_id: int, user_id: str) -> ExamAttempt:
    attempt = (
        db.query(ExamAttempt)
        .filter(ExamAttempt.id == attempt_id, ExamAttempt.user_id == user_id)
        .first()
    )
    if not attempt:
        raise NotFoundError("Exam attempt")
    if attempt.completed_at is not None:
        raise ForbiddenError("Attempt already completed")

    score = compute_attempt_score(db, attempt)

    result = db.execute(
        update(ExamAttempt)
        .where(ExamAttempt.id == attempt_id, ExamAttempt.completed_at.is_(None))
        .values(completed_at=utcnow(), score=score)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise ForbiddenError("Attempt already completed")

    commit_or_raise(db, "complete exam attempt")
    db.refresh(attempt)
    logger.info("Completed attempt %s (user=%s exam=%s score=%s)", attempt.id, user_id, attempt.exam_id, score)
    return attempt


# -------------------------
# Reads
# -------------------------

def get_attempt_for_user(db: Session, attempt_id: int, user: dict) -> ExamAttempt:
    attempt = db.get(ExamAttempt, attempt_id)
    if not attempt:
        raise NotFoundError("Exam attempt")
    if attempt.user_id != user["sub"] and user.get("role") != "admin":
        raise ForbiddenError()
    return attempt


def list_user_attempts(db: Session, user_id: str, exam_id: int | None = None) -> list[ExamAttempt]:
    q = db.query(ExamAttempt).filter(ExamAttempt.user_id == user_id)
    if exam_id is not None:
        q = q.filter(ExamAttempt.exam_id == exam_id)
    return q.order_by(ExamAttempt.started_at.desc(), ExamAttempt.id.desc()).all()


def list_attempt_answers(db: Session, attempt_id: int) -> list[ExamAnswer]:
    return (
        db.query(ExamAnswer)
        .filter(ExamAnswer.attempt_id == attempt_id)
        .order_by(ExamAnswer.id.asc())
        .all()
    )
