"""
Cermat (kecermatan) accuracy drill.

Every round shows five reference tokens; each question is a shuffled run of
tokens in which exactly one reference token is missing, and the learner
picks the missing one. Rounds are graded one at a time and the drill ends
with the mean of the round percentages.
"""

import logging
import random
import string
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from db.models.cermat import CermatAttempt
from .cermat_store import CermatSession, CermatSessionStore
from .config import CermatConfig, EngineConfig
from .entitlement import Feature, resolve_access
from .errors import Forbidden, NotFound
from .randomizer import shuffle
from .schedule import utcnow

logger = logging.getLogger(__name__)

REFERENCE_SIZE = 5


class CermatMode(str, Enum):
    NUMBER = "NUMBER"
    LETTER = "LETTER"


ALPHABETS = {
    CermatMode.NUMBER: list(string.digits),
    CermatMode.LETTER: list(string.ascii_uppercase),
}


def generate_round(
    mode: CermatMode, question_count: int, sequence_length: int, rng: Optional[random.Random] = None
) -> Tuple[List[str], Dict[int, Dict[str, Any]]]:
    rng = rng or random.Random()
    alphabet = ALPHABETS[mode]
    base_set = rng.sample(alphabet, REFERENCE_SIZE)
    length = max(sequence_length, REFERENCE_SIZE - 1)

    questions = {}
    for order in range(1, question_count + 1):
        missing = rng.choice(base_set)
        tokens = [token for token in base_set if token != missing]
        pool = [token for token in alphabet if token != missing]
        while len(tokens) < length:
            tokens.append(rng.choice(pool))
        questions[order] = {"sequence": shuffle(tokens, rng), "answer": missing}

    return base_set, questions


def grade_round(questions: Dict[int, Dict[str, Any]], answers: Iterable[Tuple[int, Optional[str]]]) -> Tuple[int, int]:
    chosen = {order: value.strip().upper() for order, value in answers if value is not None}
    correct = sum(
        1 for order, question in questions.items()
        if chosen.get(order) == question["answer"]
    )
    return correct, len(questions)


def _round_view(session_id: str, session: CermatSession, cermat: CermatConfig) -> Dict[str, Any]:
    return {
        "attemptId": session.attempt_id,
        "sessionId": session_id,
        "mode": session.mode,
        "baseSet": session.base_set,
        "questions": [
            {"order": order, "sequence": q["sequence"]}
            for order, q in sorted(session.questions.items())
        ],
        "sessionIndex": session.session_index,
        "totalSessions": cermat.total_sessions,
        "questionCount": len(session.questions),
        "breakSeconds": cermat.break_seconds,
        "timerSeconds": cermat.session_seconds,
    }


def _new_session(user_id: int, attempt_id: int, mode: CermatMode, index: int,
                 cermat: CermatConfig, results: List[Dict[str, Any]]) -> CermatSession:
    base_set, questions = generate_round(mode, cermat.questions_per_session, cermat.sequence_length)
    return CermatSession(
        user_id=user_id,
        attempt_id=attempt_id,
        mode=mode.value,
        session_index=index,
        base_set=base_set,
        questions=questions,
        results=results,
    )


def start_drill(
    db: Session,
    store: CermatSessionStore,
    user_id: int,
    mode: CermatMode,
    config: EngineConfig,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    resolve_access(db, user_id, Feature.CERMAT)
    cermat = config.cermat

    attempt = CermatAttempt(
        user_id=user_id,
        mode=mode.value,
        total_sessions=cermat.total_sessions,
        question_count=cermat.questions_per_session,
        started_at=now or utcnow(),
        sessions=[],
    )
    try:
        db.add(attempt)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(attempt)

    session = _new_session(user_id, attempt.id, mode, 1, cermat, [])
    session_id = store.put(session)
    logger.info("Cermat drill started attempt_id=%s user_id=%s mode=%s", attempt.id, user_id, mode.value)
    return _round_view(session_id, session, cermat)


def _summary(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    total_correct = sum(r["correct"] for r in results)
    total_questions = sum(r["total"] for r in results)
    average = sum(r["score"] for r in results) / len(results) if results else 0.0
    return {
        "averageScore": round(average, 2),
        "totalCorrect": total_correct,
        "totalQuestions": total_questions,
        "sessions": results,
    }


def submit_round(
    db: Session,
    store: CermatSessionStore,
    user_id: int,
    session_id: str,
    answers: Iterable[Tuple[int, Optional[str]]],
    config: EngineConfig,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    session = store.get(session_id)
    if not session:
        raise NotFound("Cermat session not found or expired.")
    if session.user_id != user_id:
        raise Forbidden("This cermat session belongs to another learner.")

    resolve_access(db, user_id, Feature.CERMAT)

    # a retried submit for the same round finds nothing to grade
    session = store.pop(session_id)
    if not session:
        raise NotFound("Cermat session not found or expired.")

    cermat = config.cermat
    correct, total = grade_round(session.questions, answers)
    round_result = {
        "sessionIndex": session.session_index,
        "score": round(correct * 100 / total, 2) if total else 0.0,
        "correct": correct,
        "total": total,
    }
    results = session.results + [round_result]
    finished = session.session_index >= cermat.total_sessions
    summary = _summary(results)

    try:
        attempt = db.query(CermatAttempt).filter(CermatAttempt.id == session.attempt_id).first()
        if not attempt:
            raise NotFound("Cermat attempt not found.")
        attempt.sessions = list(results)
        attempt.total_correct = summary["totalCorrect"]
        attempt.total_questions = summary["totalQuestions"]
        if finished:
            attempt.average_score = summary["averageScore"]
            attempt.completed_at = now or utcnow()
        db.commit()
    except Exception:
        db.rollback()
        # the round stays open so the learner can submit it again
        store.restore(session_id, session)
        raise

    logger.info(
        "Cermat round graded attempt_id=%s round=%s/%s correct=%s/%s",
        session.attempt_id, session.session_index, cermat.total_sessions, correct, total,
    )

    if finished:
        return {"completed": True, "sessionSummary": round_result, "summary": summary}

    next_session = _new_session(
        user_id, session.attempt_id, CermatMode(session.mode), session.session_index + 1, cermat, results
    )
    next_id = store.put(next_session)
    return {
        "completed": False,
        "sessionSummary": round_result,
        "nextSession": _round_view(next_id, next_session, cermat),
    }


def cermat_history(db: Session, user_id: int) -> List[Dict[str, Any]]:
    rows = (
        db.query(CermatAttempt)
        .filter(CermatAttempt.user_id == user_id)
        .order_by(CermatAttempt.started_at.desc())
        .all()
    )
    return [
        {
            "id": row.id,
            "mode": row.mode,
            "startedAt": row.started_at.isoformat(),
            "completedAt": row.completed_at.isoformat() if row.completed_at else None,
            "averageScore": row.average_score,
            "totalCorrect": row.total_correct,
            "totalQuestions": row.total_questions,
            "sessions": row.sessions or [],
        }
        for row in rows
    ]
