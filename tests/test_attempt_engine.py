from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError

from exam_service import attempt_engine
from exam_service.attempt_engine import (
    complete_exam_attempt,
    list_attempt_answers,
    list_user_attempts,
    start_exam_attempt,
    submit_exam_answer,
    tally_score,
)
from exam_service.crud import add_question_to_exam, create_question, remove_question_from_exam
from exam_service.errors import ForbiddenError, NotFoundError, ValidationError
from exam_service.models import ExamAnswer, ExamAttempt


def test_start_is_idempotent_while_in_progress(db, weighted_exam):
    exam, _ = weighted_exam

    first = start_exam_attempt(db, exam.id, "student-1")
    second = start_exam_attempt(db, exam.id, "student-1")

    assert first.id == second.id
    assert first.completed_at is None and first.score is None
    assert db.query(ExamAttempt).count() == 1


def test_start_after_completion_opens_a_retake(db, weighted_exam):
    exam, _ = weighted_exam
    first = start_exam_attempt(db, exam.id, "student-1")
    complete_exam_attempt(db, first.id, "student-1")

    retake = start_exam_attempt(db, exam.id, "student-1")

    assert retake.id != first.id
    assert [a.id for a in list_user_attempts(db, "student-1", exam.id)] == [retake.id, first.id]


def test_start_attempts_are_per_user(db, weighted_exam):
    exam, _ = weighted_exam
    mine = start_exam_attempt(db, exam.id, "student-1")
    theirs = start_exam_attempt(db, exam.id, "student-2")
    assert mine.id != theirs.id


def test_start_unknown_exam_is_not_found(db):
    with pytest.raises(NotFoundError):
        start_exam_attempt(db, 999, "student-1")


def test_second_open_attempt_is_rejected_by_storage(db, weighted_exam):
    exam, _ = weighted_exam
    start_exam_attempt(db, exam.id, "student-1")

    db.add(ExamAttempt(user_id="student-1", exam_id=exam.id))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


def test_start_race_returns_the_winning_attempt(db, weighted_exam, monkeypatch):
    exam, _ = weighted_exam
    winner = start_exam_attempt(db, exam.id, "student-1")

    real_lookup = attempt_engine._open_attempt
    calls = []

    def stale_then_real(session, user_id, exam_id):
        calls.append(exam_id)
        # first lookup misses the row, as a concurrent request would
        if len(calls) == 1:
            return None
        return real_lookup(session, user_id, exam_id)

    monkeypatch.setattr(attempt_engine, "_open_attempt", stale_then_real)

    resumed = start_exam_attempt(db, exam.id, "student-1")

    assert resumed.id == winner.id
    assert len(calls) == 2
    assert db.query(ExamAttempt).count() == 1


def test_resubmitting_an_answer_overwrites_it(db, weighted_exam):
    exam, (q1, _, _) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")

    first = submit_exam_answer(db, attempt.id, q1.id, "X", "student-1")
    assert first.is_correct is False

    second = submit_exam_answer(db, attempt.id, q1.id, "A", "student-1")

    rows = db.query(ExamAnswer).filter(ExamAnswer.attempt_id == attempt.id).all()
    assert len(rows) == 1
    assert second.id == first.id
    assert rows[0].selected_answer == "A"
    assert rows[0].is_correct is True


def test_answer_race_updates_the_winning_row(db, weighted_exam, monkeypatch):
    exam, (q1, _, _) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")
    winner = submit_exam_answer(db, attempt.id, q1.id, "X", "student-1")

    real_lookup = attempt_engine._find_answer
    calls = []

    def stale_then_real(session, attempt_id, question_id):
        calls.append(question_id)
        # first lookup misses the row, as a concurrent request would
        if len(calls) == 1:
            return None
        return real_lookup(session, attempt_id, question_id)

    monkeypatch.setattr(attempt_engine, "_find_answer", stale_then_real)

    answer = submit_exam_answer(db, attempt.id, q1.id, "A", "student-1")

    rows = db.query(ExamAnswer).filter(ExamAnswer.attempt_id == attempt.id).all()
    assert len(calls) == 2
    assert len(rows) == 1
    assert answer.id == winner.id
    assert rows[0].selected_answer == "A"
    assert rows[0].is_correct is True
    assert complete_exam_attempt(db, attempt.id, "student-1").score == 2


def test_empty_answer_never_matches_unkeyed_question(db, weighted_exam):
    exam, _ = weighted_exam
    essay = create_question(db, {"question_text": "Explain inertia", "question_type": "short_answer", "options": []})
    add_question_to_exam(db, exam.id, essay.id, 4)
    attempt = start_exam_attempt(db, exam.id, "student-1")

    with pytest.raises(ValidationError, match="cannot be empty"):
        submit_exam_answer(db, attempt.id, essay.id, "", "student-1")

    assert list_attempt_answers(db, attempt.id) == []
    assert complete_exam_attempt(db, attempt.id, "student-1").score == 0


def test_answer_comparison_is_exact(db, weighted_exam):
    exam, (q1, _, _) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")

    assert submit_exam_answer(db, attempt.id, q1.id, "a", "student-1").is_correct is False
    assert submit_exam_answer(db, attempt.id, q1.id, " A", "student-1").is_correct is False
    assert submit_exam_answer(db, attempt.id, q1.id, "A", "student-1").is_correct is True


def test_score_sums_marks_of_correct_answers(db, weighted_exam):
    exam, (q1, q2, q3) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")

    submit_exam_answer(db, attempt.id, q1.id, "A", "student-1")  # 2, correct
    submit_exam_answer(db, attempt.id, q2.id, "X", "student-1")  # 3, wrong
    submit_exam_answer(db, attempt.id, q3.id, "C", "student-1")  # 5, correct

    done = complete_exam_attempt(db, attempt.id, "student-1")

    assert done.score == 7
    assert done.completed_at is not None


def test_completing_twice_is_rejected_and_keeps_result(db, weighted_exam):
    exam, (q1, _, _) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")
    submit_exam_answer(db, attempt.id, q1.id, "A", "student-1")
    done = complete_exam_attempt(db, attempt.id, "student-1")
    completed_at, score = done.completed_at, done.score

    with pytest.raises(ForbiddenError, match="already completed"):
        complete_exam_attempt(db, attempt.id, "student-1")

    stored = db.get(ExamAttempt, attempt.id)
    db.refresh(stored)
    assert stored.score == score == 2
    assert stored.completed_at == completed_at


def test_submit_to_someone_elses_attempt_changes_nothing(db, weighted_exam):
    exam, (q1, _, _) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")

    with pytest.raises(ForbiddenError, match="Invalid or completed attempt"):
        submit_exam_answer(db, attempt.id, q1.id, "A", "student-2")

    assert db.query(ExamAnswer).count() == 0


def test_submit_to_completed_or_missing_attempt_is_forbidden(db, weighted_exam):
    exam, (q1, _, _) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")
    complete_exam_attempt(db, attempt.id, "student-1")

    with pytest.raises(ForbiddenError, match="Invalid or completed attempt"):
        submit_exam_answer(db, attempt.id, q1.id, "A", "student-1")
    with pytest.raises(ForbiddenError, match="Invalid or completed attempt"):
        submit_exam_answer(db, 12345, q1.id, "A", "student-1")


def test_submit_unknown_question_is_not_found(db, weighted_exam):
    exam, _ = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")
    with pytest.raises(NotFoundError, match="Question not found"):
        submit_exam_answer(db, attempt.id, 999, "A", "student-1")


def test_zero_answers_score_zero(db, weighted_exam):
    exam, _ = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")

    done = complete_exam_attempt(db, attempt.id, "student-1")

    assert done.score == 0
    assert list_attempt_answers(db, attempt.id) == []


def test_unanswered_questions_contribute_nothing(db, weighted_exam):
    exam, (_, q2, _) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")
    submit_exam_answer(db, attempt.id, q2.id, "B", "student-1")

    assert complete_exam_attempt(db, attempt.id, "student-1").score == 3


def test_answer_to_question_removed_from_exam_scores_zero(db, weighted_exam):
    exam, (q1, _, q3) = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")
    submit_exam_answer(db, attempt.id, q1.id, "A", "student-1")
    submit_exam_answer(db, attempt.id, q3.id, "C", "student-1")

    remove_question_from_exam(db, exam.id, q3.id)

    assert complete_exam_attempt(db, attempt.id, "student-1").score == 2


def test_complete_someone_elses_attempt_is_not_found(db, weighted_exam):
    exam, _ = weighted_exam
    attempt = start_exam_attempt(db, exam.id, "student-1")

    with pytest.raises(NotFoundError, match="Exam attempt not found"):
        complete_exam_attempt(db, attempt.id, "student-2")

    assert db.get(ExamAttempt, attempt.id).completed_at is None


def test_score_is_not_rescaled_to_total_marks(db, weighted_exam):
    exam, (q1, q2, q3) = weighted_exam
    exam.total_marks = 100
    db.commit()
    attempt = start_exam_attempt(db, exam.id, "student-1")
    for q, ans in ((q1, "A"), (q2, "B"), (q3, "C")):
        submit_exam_answer(db, attempt.id, q.id, ans, "student-1")

    assert complete_exam_attempt(db, attempt.id, "student-1").score == 10


def test_tally_score_only_counts_correct_answers():
    answers = [
        SimpleNamespace(question_id=1, is_correct=True),
        SimpleNamespace(question_id=2, is_correct=False),
        SimpleNamespace(question_id=3, is_correct=True),
        SimpleNamespace(question_id=4, is_correct=True),  # not part of the exam
    ]
    assert tally_score(answers, {1: 2, 2: 3, 3: 5}) == 7
    assert tally_score([], {1: 2}) == 0
