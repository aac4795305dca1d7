from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session
from shared.database import db_dependency

from .auth import check_owner_or_admin, current_user, require_roles
from .schemas import (
    QuestionIn, QuestionOut,
    ExamIn, ExamUpdateIn, ExamOut, ExamDetailOut,
    ExamQuestionIn, ExamQuestionOut, ExamQuestionDetailOut, QuestionPublic,
    AttemptOut, AttemptDetailOut, AnswerIn, AnswerOut,
)
from .crud import (
    create_question, get_question, list_questions, update_question, delete_question,
    create_exam, get_exam, list_exams, update_exam, delete_exam,
    list_exam_questions, count_exam_questions, exam_question_marks_total,
    add_question_to_exam, remove_question_from_exam,
)
from .attempt_engine import (
    start_exam_attempt, submit_exam_answer, complete_exam_attempt,
    get_attempt_for_user, list_user_attempts, list_attempt_answers,
)

authors = require_roles("mentor", "admin")
admins = require_roles("admin")


def build_router(SessionLocal):
    router = APIRouter()
    get_db = db_dependency(SessionLocal)

    def exam_detail(db: Session, exam) -> ExamDetailOut:
        return ExamDetailOut(
            **ExamOut.model_validate(exam).model_dump(),
            questions_count=count_exam_questions(db, exam.id),
            question_marks_total=exam_question_marks_total(db, exam.id),
        )

    # -------------------------
    # Question store (authoring)
    # -------------------------

    @router.post("/questions", response_model=QuestionOut, status_code=201, tags=["Questions"])
    def create_q(payload: QuestionIn, db: Session = Depends(get_db), user: dict = Depends(authors)):
        return QuestionOut.model_validate(create_question(db, payload.model_dump()))

    @router.get("/questions", response_model=list[QuestionOut], tags=["Questions"])
    def get_qs(
        subject_id: int | None = Query(default=None),
        topic_id: int | None = Query(default=None),
        difficulty: str | None = Query(default=None, pattern="^(easy|medium|hard)$"),
        limit: int = Query(default=20, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
        db: Session = Depends(get_db),
        user: dict = Depends(authors),
    ):
        return [QuestionOut.model_validate(q) for q in list_questions(db, subject_id, topic_id, difficulty, limit, offset)]

    @router.get("/questions/{question_id}", response_model=QuestionOut, tags=["Questions"])
    def get_q(question_id: int, db: Session = Depends(get_db), user: dict = Depends(authors)):
        return QuestionOut.model_validate(get_question(db, question_id))

    @router.put("/questions/{question_id}", response_model=QuestionOut, tags=["Questions"])
    def update_q(question_id: int, payload: QuestionIn, db: Session = Depends(get_db), user: dict = Depends(authors)):
        return QuestionOut.model_validate(update_question(db, question_id, payload.model_dump()))

    @router.delete("/questions/{question_id}", status_code=204, tags=["Questions"])
    def delete_q(question_id: int, db: Session = Depends(get_db), user: dict = Depends(authors)):
        delete_question(db, question_id)
        return Response(status_code=204)

    # -------------------------
    # Exams
    # -------------------------

    @router.get("/exams", response_model=list[ExamOut], tags=["Exams"])
    def get_exams(
        is_published: bool | None = Query(default=None),
        exam_type: str | None = Query(default=None),
        limit: int = Query(default=10, ge=1, le=100),
        offset: int = Query(default=0, ge=0),
        db: Session = Depends(get_db),
    ):
        return list_exams(db, is_published, exam_type, limit, offset)

    @router.get("/exams/{exam_id}", response_model=ExamDetailOut, tags=["Exams"])
    def get_one_exam(exam_id: int, db: Session = Depends(get_db)):
        return exam_detail(db, get_exam(db, exam_id))

    @router.post("/exams", response_model=ExamDetailOut, status_code=201, tags=["Exams"])
    def create_one_exam(payload: ExamIn, db: Session = Depends(get_db), user: dict = Depends(authors)):
        return exam_detail(db, create_exam(db, payload.model_dump()))

    @router.patch("/exams/{exam_id}", response_model=ExamDetailOut, tags=["Exams"])
    def update_one_exam(exam_id: int, payload: ExamUpdateIn, db: Session = Depends(get_db), user: dict = Depends(authors)):
        return exam_detail(db, update_exam(db, exam_id, payload.model_dump(exclude_unset=True)))

    @router.delete("/exams/{exam_id}", status_code=204, tags=["Exams"])
    def delete_one_exam(exam_id: int, db: Session = Depends(get_db), user: dict = Depends(admins)):
        delete_exam(db, exam_id)
        return Response(status_code=204)

    @router.get("/exams/{exam_id}/questions", response_model=list[ExamQuestionDetailOut], tags=["Exams"])
    def get_exam_questions(exam_id: int, db: Session = Depends(get_db)):
        get_exam(db, exam_id)
        return [
            ExamQuestionDetailOut(
                **ExamQuestionOut.model_validate(eq).model_dump(),
                question=QuestionPublic.model_validate(get_question(db, eq.question_id)),
            )
            for eq in list_exam_questions(db, exam_id)
        ]

    @router.post("/exams/{exam_id}/questions", response_model=ExamQuestionOut, status_code=201, tags=["Exams"])
    def add_exam_question(exam_id: int, payload: ExamQuestionIn, db: Session = Depends(get_db), user: dict = Depends(authors)):
        return add_question_to_exam(db, exam_id, payload.question_id, payload.marks)

    @router.delete("/exams/{exam_id}/questions/{question_id}", status_code=204, tags=["Exams"])
    def remove_exam_question(exam_id: int, question_id: int, db: Session = Depends(get_db), user: dict = Depends(authors)):
        remove_question_from_exam(db, exam_id, question_id)
        return Response(status_code=204)

    # -------------------------
    # Attempts
    # -------------------------

    @router.post("/exams/{exam_id}/attempts", response_model=AttemptOut, tags=["Attempts"])
    def start(exam_id: int, db: Session = Depends(get_db), user: dict = Depends(current_user)):
        return start_exam_attempt(db, exam_id, user["sub"])

    @router.post("/attempts/{attempt_id}/answers", response_model=AnswerOut, tags=["Attempts"])
    def answer(attempt_id: int, payload: AnswerIn, db: Session = Depends(get_db), user: dict = Depends(current_user)):
        return submit_exam_answer(db, attempt_id, payload.question_id, payload.selected_answer, user["sub"])

    @router.post("/attempts/{attempt_id}/complete", response_model=AttemptOut, tags=["Attempts"])
    def complete(attempt_id: int, db: Session = Depends(get_db), user: dict = Depends(current_user)):
        return complete_exam_attempt(db, attempt_id, user["sub"])

    @router.get("/attempts/{attempt_id}", response_model=AttemptDetailOut, tags=["Attempts"])
    def get_attempt(attempt_id: int, db: Session = Depends(get_db), user: dict = Depends(current_user)):
        attempt = get_attempt_for_user(db, attempt_id, user)
        return AttemptDetailOut(
            **AttemptOut.model_validate(attempt).model_dump(),
            answers=[AnswerOut.model_validate(a) for a in list_attempt_answers(db, attempt.id)],
        )

    @router.get("/users/{user_id}/attempts", response_model=list[AttemptOut], tags=["Attempts"])
    def get_user_attempts(
        user_id: str,
        exam_id: int | None = Query(default=None),
        db: Session = Depends(get_db),
        user: dict = Depends(current_user),
    ):
        check_owner_or_admin(user, user_id)
        return list_user_attempts(db, user_id, exam_id)

    return router
