import logging

from sqlalchemy import Integer, func, insert, literal, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFoundError, StorageError, ValidationError
from .models import Exam, ExamAnswer, ExamAttempt, ExamQuestion, Question, QuestionOption

logger = logging.getLogger(__name__)


def commit_or_raise(db: Session, action: str) -> None:
    """
    Commit the session; any failure rolls back and surfaces as StorageError.
    IntegrityError is re-raised untouched so callers can react to constraint hits.
    """
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Storage failure while trying to %s: %s", action, e)
        raise StorageError(f"Could not {action}") from e


# -------------------------
# Question store
# -------------------------

def derive_correct_answer(options: list[dict]) -> str:
    for opt in options:
        if opt.get("is_correct"):
            return opt["text"]
    return ""


def _build_options(options: list[dict]) -> list[QuestionOption]:
    return [
        QuestionOption(text=o["text"], is_correct=bool(o.get("is_correct")), position=i)
        for i, o in enumerate(options, start=1)
    ]


def create_question(db: Session, payload: dict) -> Question:
    options = payload.pop("options", [])
    q = Question(**payload, correct_answer=derive_correct_answer(options))
    q.options = _build_options(options)
    db.add(q)
    commit_or_raise(db, "create question")
    db.refresh(q)
    return q


def get_question(db: Session, question_id: int) -> Question:
    q = db.get(Question, question_id)
    if not q:
        raise NotFoundError("Question")
    return q


def list_questions(
    db: Session,
    subject_id: int | None = None,
    topic_id: int | None = None,
    difficulty: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> list[Question]:
    q = db.query(Question)
    if subject_id is not None:
        q = q.filter(Question.subject_id == subject_id)
    if topic_id is not None:
        q = q.filter(Question.topic_id == topic_id)
    if difficulty:
        q = q.filter(Question.difficulty == difficulty)
    return (
        q.order_by(Question.created_at.desc(), Question.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def update_question(db: Session, question_id: int, payload: dict) -> Question:
    q = get_question(db, question_id)
    options = payload.pop("options", [])
    for field, value in payload.items():
        setattr(q, field, value)
    # answers already recorded keep the correctness computed when they were written
    q.correct_answer = derive_correct_answer(options)
    q.options = _build_options(options)
    commit_or_raise(db, "update question")
    db.refresh(q)
    return q


def delete_question(db: Session, question_id: int) -> None:
    q = get_question(db, question_id)
    in_use = db.query(ExamQuestion.id).filter(ExamQuestion.question_id == question_id).first()
    if in_use:
        raise ValidationError("Question is used by an exam; remove it from the exam first")
    answered = db.query(ExamAnswer.id).filter(ExamAnswer.question_id == question_id).first()
    if answered:
        raise ValidationError("Question has recorded answers and cannot be deleted")
    db.delete(q)
    commit_or_raise(db, "delete question")


# -------------------------
# Exams
# -------------------------

def create_exam(db: Session, payload: dict) -> Exam:
    e = Exam(**payload, is_published=False)
    db.add(e)
    commit_or_raise(db, "create exam")
    db.refresh(e)
    return e


def get_exam(db: Session, exam_id: int) -> Exam:
    e = db.get(Exam, exam_id)
    if not e:
        raise NotFoundError("Exam")
    return e


def list_exams(
    db: Session,
    is_published: bool | None = None,
    exam_type: str | None = None,
    limit: int = 10,
    offset: int = 0,
) -> list[Exam]:
    q = db.query(Exam)
    if is_published is not None:
        q = q.filter(Exam.is_published == is_published)
    if exam_type:
        q = q.filter(Exam.exam_type == exam_type)
    return (
        q.order_by(Exam.created_at.desc(), Exam.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def update_exam(db: Session, exam_id: int, payload: dict) -> Exam:
    """
    Partial update: only fields present in payload change.
    """
    e = get_exam(db, exam_id)
    total = payload.get("total_marks", e.total_marks)
    passing = payload.get("passing_marks", e.passing_marks)
    if passing > total:
        raise ValidationError("passing_marks cannot exceed total_marks")

    for field, value in payload.items():
        if hasattr(e, field):
            setattr(e, field, value)

    commit_or_raise(db, "update exam")
    db.refresh(e)
    return e


def delete_exam(db: Session, exam_id: int) -> None:
    e = get_exam(db, exam_id)
    has_attempts = db.query(ExamAttempt.id).filter(ExamAttempt.exam_id == exam_id).first()
    if has_attempts:
        raise ValidationError("Exam has attempts and cannot be deleted")
    db.query(ExamQuestion).filter(ExamQuestion.exam_id == exam_id).delete()
    db.delete(e)
    commit_or_raise(db, "delete exam")


def list_exam_questions(db: Session, exam_id: int) -> list[ExamQuestion]:
    return (
        db.query(ExamQuestion)
        .filter(ExamQuestion.exam_id == exam_id)
        .order_by(ExamQuestion.position.asc(), ExamQuestion.id.asc())
        .all()
    )


def count_exam_questions(db: Session, exam_id: int) -> int:
    return db.query(func.count(ExamQuestion.id)).filter(ExamQuestion.exam_id == exam_id).scalar() or 0


def exam_question_marks_total(db: Session, exam_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(ExamQuestion.marks), 0))
        .filter(ExamQuestion.exam_id == exam_id)
        .scalar()
    )
    return int(total or 0)


def add_question_to_exam(db: Session, exam_id: int, question_id: int, marks: int) -> ExamQuestion:
    get_exam(db, exam_id)
    get_question(db, question_id)

    # next position is computed inside the INSERT so there is no read-then-write gap
    next_position = func.coalesce(func.max(ExamQuestion.position), 0) + 1
    stmt = insert(ExamQuestion).from_select(
        ["exam_id", "question_id", "marks", "position"],
        select(
            literal(exam_id, Integer),
            literal(question_id, Integer),
            literal(marks, Integer),
            next_position,
        ).where(ExamQuestion.exam_id == exam_id),
    )
    try:
        db.execute(stmt)
        commit_or_raise(db, "add question to exam")
    except IntegrityError:
        db.rollback()
        raise ValidationError("Question is already part of this exam")

    return (
        db.query(ExamQuestion)
        .filter(ExamQuestion.exam_id == exam_id, ExamQuestion.question_id == question_id)
        .one()
    )


def remove_question_from_exam(db: Session, exam_id: int, question_id: int) -> None:
    deleted = (
        db.query(ExamQuestion)
        .filter(ExamQuestion.exam_id == exam_id, ExamQuestion.question_id == question_id)
        .delete()
    )
    if not deleted:
        db.rollback()
        raise NotFoundError("Exam question")
    commit_or_raise(db, "remove question from exam")
