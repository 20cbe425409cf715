"""
Validation and import of already-parsed question sets.

The CSV reader lives with content management; what reaches this module is
an ordered list of row dicts. Anything that would break grading later (no
correct option, two correct options, a single option) is rejected here.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from sqlalchemy.orm import Session

from db.models.assessments import Assessment, Option, Question
from .errors import ValidationFailed

logger = logging.getLogger(__name__)


class OptionIn(BaseModel):
    label: str
    image_url: Optional[str] = None
    is_correct: bool = False

    @field_validator("label")
    @classmethod
    def label_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("option label must not be empty")
        return value


class QuestionIn(BaseModel):
    prompt: str
    image_url: Optional[str] = None
    explanation: str
    explanation_image_url: Optional[str] = None
    order: Optional[int] = None
    options: List[OptionIn]

    @field_validator("explanation")
    @classmethod
    def explanation_required(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("explanation is required")
        return value

    @model_validator(mode="after")
    def one_correct_option(self):
        if len(self.options) < 2:
            raise ValueError("at least two options are required")
        correct = sum(1 for option in self.options if option.is_correct)
        if correct != 1:
            raise ValueError(f"exactly one correct option is required, found {correct}")
        return self


class AssessmentIn(BaseModel):
    kind: str = Field(pattern="^(TRYOUT|PRACTICE)$")
    title: str
    slug: str
    duration_minutes: int = Field(default=60, gt=0)
    open_at: Optional[datetime] = None
    close_at: Optional[datetime] = None
    is_free: bool = False
    is_published: bool = True
    questions: List[Dict[str, Any]]


def validate_question_set(rows: List[Dict[str, Any]]) -> List[QuestionIn]:
    if not rows:
        raise ValidationFailed("Question set is empty.")

    questions = []
    for index, row in enumerate(rows, start=1):
        try:
            question = QuestionIn.model_validate(row)
        except ValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise ValidationFailed(f"Question {index} is invalid: {messages}", row=index)
        if question.order is None:
            question.order = index
        questions.append(question)
    return questions


def import_assessment(db: Session, payload: Dict[str, Any]) -> Assessment:
    try:
        data = AssessmentIn.model_validate(payload)
    except ValidationError as e:
        messages = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
        raise ValidationFailed(f"Assessment is invalid: {messages}")

    if data.open_at and data.close_at and data.close_at <= data.open_at:
        raise ValidationFailed("Assessment closes before it opens.")

    if db.query(Assessment).filter(Assessment.slug == data.slug).first():
        raise ValidationFailed(f"Slug '{data.slug}' is already used.")

    questions = validate_question_set(data.questions)

    assessment = Assessment(
        kind=data.kind,
        title=data.title,
        slug=data.slug,
        duration_minutes=data.duration_minutes,
        open_at=data.open_at,
        close_at=data.close_at,
        is_free=data.is_free,
        is_published=data.is_published,
    )
    for q in questions:
        assessment.questions.append(
            Question(
                order=q.order,
                prompt=q.prompt,
                image_url=q.image_url,
                explanation=q.explanation,
                explanation_image_url=q.explanation_image_url,
                options=[
                    Option(order=i, label=o.label, image_url=o.image_url, is_correct=o.is_correct)
                    for i, o in enumerate(q.options, start=1)
                ],
            )
        )

    try:
        db.add(assessment)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(assessment)
    logger.info("Imported %s '%s' with %d questions", assessment.kind, assessment.slug, len(questions))
    return assessment
