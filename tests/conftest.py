import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from shared.database import init_db, make_engine, make_session_factory
from exam_service.main import create_app
from exam_service.crud import add_question_to_exam, create_exam, create_question


TOKENS = {
    "student-token": {"sub": "student-1", "email": "s1@example.com", "role": "student"},
    "other-token": {"sub": "student-2", "email": "s2@example.com", "role": "student"},
    "mentor-token": {"sub": "mentor-1", "email": "m1@example.com", "role": "mentor"},
    "admin-token": {"sub": "admin-1", "email": "a1@example.com", "role": "admin"},
}


async def fake_verify_token(token: str) -> dict:
    user = TOKENS.get(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return dict(user)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    session = make_session_factory(engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(engine):
    app = create_app(engine, verify_token=fake_verify_token)
    with TestClient(app) as c:
        yield c


def make_question(db, text="2 + 2 = ?", correct="4", wrong=("3", "5")):
    options = [{"text": correct, "is_correct": True}] + [{"text": w, "is_correct": False} for w in wrong]
    return create_question(db, {
        "question_text": text,
        "question_type": "multiple_choice",
        "options": options,
        "difficulty": "easy",
    })


@pytest.fixture
def weighted_exam(db):
    """An exam with three questions worth 2, 3 and 5 marks (correct answers A, B, C)."""
    exam = create_exam(db, {
        "title": "Physics mock 1",
        "duration_minutes": 60,
        "total_marks": 10,
        "passing_marks": 4,
        "exam_type": "full_model",
    })
    questions = []
    for text, correct, marks in (("Q1", "A", 2), ("Q2", "B", 3), ("Q3", "C", 5)):
        q = make_question(db, text=text, correct=correct, wrong=("X", "Y"))
        add_question_to_exam(db, exam.id, q.id, marks)
        questions.append(q)
    return exam, questions
