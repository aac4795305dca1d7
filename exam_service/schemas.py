from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

QUESTION_TYPES = r"^(multiple_choice|true_false|short_answer)$"
DIFFICULTIES = r"^(easy|medium|hard)$"
EXAM_TYPES = r"^(full_model|subject|chapter|practice|previous_year)$"


# Question store

class QuestionOptionIn(BaseModel):
    text: str = Field(min_length=1)
    is_correct: bool = False

class QuestionIn(BaseModel):
    question_text: str = Field(min_length=1)
    question_type: str = Field(pattern=QUESTION_TYPES)
    options: list[QuestionOptionIn] = Field(default_factory=list)
    explanation: Optional[str] = None
    difficulty: str = Field(default="medium", pattern=DIFFICULTIES)
    subject_id: Optional[int] = None
    topic_id: Optional[int] = None

    @model_validator(mode="after")
    def choice_questions_need_options(self):
        if self.question_type in ("multiple_choice", "true_false") and len(self.options) < 2:
            raise ValueError(f"{self.question_type} questions need at least two options")
        return self

class QuestionOptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: str
    is_correct: bool

class QuestionOptionPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    text: str

class QuestionPublic(BaseModel):
    """What a candidate sees: no correct answer, no correctness flags."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_text: str
    question_type: str
    difficulty: str
    options: list[QuestionOptionPublic]

class QuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    question_text: str
    question_type: str
    options: list[QuestionOptionOut]
    correct_answer: str
    explanation: Optional[str] = None
    difficulty: str
    subject_id: Optional[int] = None
    topic_id: Optional[int] = None
    created_at: datetime


# Exams

class ExamIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: int = Field(ge=1)
    total_marks: int = Field(ge=0)
    passing_marks: int = Field(ge=0)
    exam_type: Optional[str] = Field(default=None, pattern=EXAM_TYPES)
    set_number: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def passing_within_total(self):
        if self.passing_marks > self.total_marks:
            raise ValueError("passing_marks cannot exceed total_marks")
        return self

class ExamUpdateIn(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: Optional[int] = Field(default=None, ge=1)
    total_marks: Optional[int] = Field(default=None, ge=0)
    passing_marks: Optional[int] = Field(default=None, ge=0)
    exam_type: Optional[str] = Field(default=None, pattern=EXAM_TYPES)
    set_number: Optional[int] = Field(default=None, ge=1)
    is_published: Optional[bool] = None

    @model_validator(mode="after")
    def required_fields_not_null(self):
        for field in ("title", "duration_minutes", "total_marks", "passing_marks", "is_published"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self

class ExamOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    description: Optional[str] = None
    duration_minutes: int
    total_marks: int
    passing_marks: int
    exam_type: Optional[str] = None
    set_number: Optional[int] = None
    is_published: bool
    created_at: datetime

class ExamDetailOut(ExamOut):
    questions_count: int
    # sum of per-question marks; may differ from total_marks
    question_marks_total: int

class ExamQuestionIn(BaseModel):
    question_id: int
    marks: int = Field(ge=1)

class ExamQuestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    exam_id: int
    question_id: int
    marks: int
    position: int

class ExamQuestionDetailOut(ExamQuestionOut):
    question: QuestionPublic


# Attempts

class AttemptOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    exam_id: int
    user_id: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    score: Optional[int] = None

class AnswerIn(BaseModel):
    question_id: int
    selected_answer: str = Field(min_length=1)

class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    attempt_id: int
    question_id: int
    selected_answer: str
    is_correct: bool
    answered_at: datetime

class AttemptDetailOut(AttemptOut):
    answers: list[AnswerOut]
