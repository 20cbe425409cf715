"""
Start / submit / review lifecycle for tryout and practice attempts.

An attempt is created by ``start_attempt`` (InProgress), scored once by
``submit_attempt`` (Completed) and only read afterwards. Tryouts accept a
resubmission that replaces the stored answers so a client retry after a
dropped response converges on one consistent result.
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from db.models.assessments import Assessment, Question
from db.models.attempts import Attempt, AnswerRecord
from db.models.users import User
from .config import EngineConfig
from .entitlement import Feature, consume_quota, resolve_access
from .errors import Forbidden, NotFound
from .exam_blocks import BlockContext, BlockType, ensure_exam_access
from .randomizer import shuffle_paper
from .schedule import check_window, ensure_window, utcnow

logger = logging.getLogger(__name__)


class AssessmentKind(str, Enum):
    TRYOUT = "TRYOUT"
    PRACTICE = "PRACTICE"

    @property
    def feature(self) -> Feature:
        return Feature(self.value)

    @property
    def block_type(self) -> BlockType:
        return BlockType(self.value)


def _load_assessment(db: Session, slug: str, kind: AssessmentKind, with_questions: bool = False) -> Assessment:
    query = db.query(Assessment).filter(Assessment.slug == slug, Assessment.kind == kind.value)
    if with_questions:
        query = query.options(selectinload(Assessment.questions).selectinload(Question.options))
    assessment = query.first()
    if not assessment or not assessment.is_published:
        raise NotFound(f"{kind.value.title()} not found.")
    return assessment


def _load_owned_attempt(db: Session, user_id: int, attempt_id: int) -> Attempt:
    attempt = db.query(Attempt).filter(Attempt.id == attempt_id).first()
    if not attempt:
        raise NotFound("Attempt not found.")
    if attempt.user_id != user_id:
        raise Forbidden("This attempt belongs to another learner.")
    return attempt


def list_assessments(db: Session, kind: AssessmentKind) -> List[Dict[str, Any]]:
    rows = (
        db.query(Assessment)
        .filter(Assessment.kind == kind.value, Assessment.is_published.is_(True))
        .order_by(Assessment.created_at.desc())
        .all()
    )
    now = utcnow()
    return [_assessment_info(a, now) for a in rows]


def _assessment_info(assessment: Assessment, now: datetime) -> Dict[str, Any]:
    return {
        "id": assessment.id,
        "kind": assessment.kind,
        "title": assessment.title,
        "slug": assessment.slug,
        "durationMinutes": assessment.duration_minutes,
        "isFree": assessment.is_free,
        "openAt": assessment.open_at.isoformat() if assessment.open_at else None,
        "closeAt": assessment.close_at.isoformat() if assessment.close_at else None,
        "scheduleStatus": check_window(now, assessment.open_at, assessment.close_at).value,
    }


def get_assessment_info(db: Session, slug: str, kind: AssessmentKind, now: Optional[datetime] = None) -> Dict[str, Any]:
    assessment = _load_assessment(db, slug, kind)
    info = _assessment_info(assessment, now or utcnow())
    info["totalQuestions"] = len(assessment.questions)
    return info


def _find_reusable_attempt(
    db: Session, user_id: int, assessment_id: int, now: datetime, window_seconds: int
) -> Optional[Attempt]:
    threshold = now - timedelta(seconds=window_seconds)
    return (
        db.query(Attempt)
        .filter(
            Attempt.user_id == user_id,
            Attempt.assessment_id == assessment_id,
            Attempt.completed_at.is_(None),
            Attempt.started_at >= threshold,
        )
        .order_by(Attempt.started_at.desc())
        .first()
    )


def start_attempt(
    db: Session,
    user_id: int,
    slug: str,
    kind: AssessmentKind,
    config: EngineConfig,
    context: BlockContext = BlockContext.STANDARD,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    assessment = _load_assessment(db, slug, kind, with_questions=True)

    ensure_exam_access(db, user_id, kind.block_type, config, context)
    resolve_access(db, user_id, kind.feature, is_free=assessment.is_free)
    ensure_window(now, assessment.open_at, assessment.close_at)

    try:
        # serialize concurrent starts of the same learner (SQLite: BEGIN IMMEDIATE in build_engine)
        db.query(User).filter(User.id == user_id).with_for_update().first()

        recent = _find_reusable_attempt(db, user_id, assessment.id, now, config.attempt_reuse_window_seconds)
        if recent:
            reused = {"attemptId": recent.id, "durationMinutes": assessment.duration_minutes, "reused": True}
            db.rollback()
            logger.info("Reusing attempt id=%s user_id=%s slug=%s", reused["attemptId"], user_id, slug)
            return reused

        if not assessment.is_free:
            consume_quota(db, user_id, kind.feature)

        attempt = Attempt(
            user_id=user_id,
            assessment_id=assessment.id,
            kind=kind.value,
            started_at=now,
            paper_order=shuffle_paper(assessment.questions),
        )
        db.add(attempt)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(attempt)
    logger.info("Attempt started id=%s user_id=%s slug=%s kind=%s", attempt.id, user_id, slug, kind.value)
    return {"attemptId": attempt.id, "durationMinutes": assessment.duration_minutes, "reused": False}


def _grading_key(questions: Iterable[Question]) -> Dict[int, Optional[int]]:
    key = {}
    for question in questions:
        correct = next((o.id for o in question.options if o.is_correct), None)
        key[question.id] = correct
    return key


def grade_answers(
    questions: List[Question], answers: Iterable[Tuple[int, Optional[int]]]
) -> Tuple[List[Dict[str, Any]], int, int]:
    """
    Grade ``(question_id, option_id)`` pairs against the assessment's own key.

    Pairs for questions outside the assessment are dropped and a repeated
    question keeps its last answer. Every question gets a row; unanswered
    ones carry ``option_id=None``. Returns the rows, correct count and total
    question count.
    """
    key = _grading_key(questions)
    chosen: Dict[int, Optional[int]] = {}
    for question_id, option_id in answers:
        if question_id in key:
            chosen[question_id] = option_id

    rows = []
    correct = 0
    for question_id, correct_option in key.items():
        option_id = chosen.get(question_id)
        is_correct = correct_option is not None and option_id == correct_option
        if is_correct:
            correct += 1
        rows.append({"question_id": question_id, "option_id": option_id, "is_correct": is_correct})

    return rows, correct, len(key)


def compute_score(correct: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return correct * 100 / total


def submit_attempt(
    db: Session,
    user_id: int,
    attempt_id: int,
    answers: Iterable[Tuple[int, Optional[int]]],
    slug: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    attempt = _load_owned_attempt(db, user_id, attempt_id)
    assessment = (
        db.query(Assessment)
        .options(selectinload(Assessment.questions).selectinload(Question.options))
        .filter(Assessment.id == attempt.assessment_id)
        .first()
    )
    if slug is not None and assessment.slug != slug:
        raise NotFound("Attempt not found for this assessment.")

    kind = AssessmentKind(attempt.kind)

    if attempt.completed_at is not None and kind is AssessmentKind.PRACTICE:
        correct = sum(1 for a in attempt.answers if a.is_correct)
        return {
            "attemptId": attempt.id,
            "score": attempt.score,
            "correct": correct,
            "total": len(assessment.questions),
        }

    rows, correct, total = grade_answers(assessment.questions, answers)
    score = compute_score(correct, total)

    try:
        if attempt.completed_at is not None:
            logger.info("Resubmission replaces answers attempt_id=%s user_id=%s", attempt.id, user_id)
        db.query(AnswerRecord).filter(AnswerRecord.attempt_id == attempt.id).delete(synchronize_session=False)
        db.add_all(
            AnswerRecord(attempt_id=attempt.id, user_id=user_id, **row)
            for row in rows
        )
        attempt.score = score
        attempt.completed_at = attempt.completed_at or now or utcnow()
        attempt.duration_seconds = assessment.duration_minutes * 60
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Attempt submitted id=%s user_id=%s score=%.2f correct=%s total=%s",
        attempt.id, user_id, score, correct, total,
    )
    return {"attemptId": attempt.id, "score": score, "correct": correct, "total": total}


def _option_view(option, reveal: bool) -> Dict[str, Any]:
    data = {"id": option.id, "label": option.label, "imageUrl": option.image_url}
    if reveal:
        data["isCorrect"] = option.is_correct
    return data


def get_attempt_paper(db: Session, user_id: int, attempt_id: int) -> Dict[str, Any]:
    """The attempt's questions in the order pinned when it started."""
    attempt = _load_owned_attempt(db, user_id, attempt_id)
    assessment = attempt.assessment
    questions = {q.id: q for q in assessment.questions}
    paper = attempt.paper_order or {"questions": list(questions), "options": {}}

    items = []
    for position, question_id in enumerate(paper["questions"], start=1):
        question = questions.get(question_id)
        if question is None:
            continue
        options = {o.id: o for o in question.options}
        option_ids = paper["options"].get(str(question_id), list(options))
        items.append({
            "id": question.id,
            "position": position,
            "prompt": question.prompt,
            "imageUrl": question.image_url,
            "options": [_option_view(options[oid], reveal=False) for oid in option_ids if oid in options],
        })

    return {
        "attemptId": attempt.id,
        "title": assessment.title,
        "slug": assessment.slug,
        "durationMinutes": assessment.duration_minutes,
        "startedAt": attempt.started_at.isoformat(),
        "completed": attempt.completed_at is not None,
        "questions": items,
    }


def review_attempt(db: Session, user_id: int, attempt_id: int) -> Dict[str, Any]:
    attempt = _load_owned_attempt(db, user_id, attempt_id)
    assessment = attempt.assessment
    completed = attempt.completed_at is not None
    answer_map = {a.question_id: a for a in attempt.answers}

    questions = []
    for index, question in enumerate(assessment.questions):
        answer = answer_map.get(question.id)
        questions.append({
            "id": question.id,
            "order": question.order or index + 1,
            "prompt": question.prompt,
            "imageUrl": question.image_url,
            "explanation": question.explanation if completed else None,
            "explanationImageUrl": question.explanation_image_url if completed else None,
            "options": [_option_view(o, reveal=completed) for o in question.options],
            "userOptionId": answer.option_id if answer else None,
            "isCorrect": answer.is_correct if (answer and completed) else False,
        })

    return {
        "assessment": {
            "id": assessment.id,
            "kind": assessment.kind,
            "title": assessment.title,
            "slug": assessment.slug,
            "isFree": assessment.is_free,
            "totalQuestions": len(assessment.questions),
            "durationMinutes": assessment.duration_minutes,
        },
        "attemptId": attempt.id,
        "completed": completed,
        "score": attempt.score if completed else None,
        "completedAt": attempt.completed_at.isoformat() if completed else None,
        "questions": questions,
    }
