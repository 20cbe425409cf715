from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from db.models.attempts import Attempt
from db.models.cermat import CermatAttempt
from db.models.users import User
from .attempts import AssessmentKind


def attempt_history(db: Session, user_id: int, kind: Optional[AssessmentKind] = None) -> List[Dict[str, Any]]:
    query = db.query(Attempt).filter(Attempt.user_id == user_id)
    if kind:
        query = query.filter(Attempt.kind == kind.value)

    return [
        {
            "attemptId": attempt.id,
            "kind": attempt.kind,
            "title": attempt.assessment.title,
            "slug": attempt.assessment.slug,
            "startedAt": attempt.started_at.isoformat(),
            "completedAt": attempt.completed_at.isoformat() if attempt.completed_at else None,
            "score": attempt.score,
        }
        for attempt in query.order_by(Attempt.started_at.desc(), Attempt.id.desc()).all()
    ]


def attempt_stats(db: Session, user_id: int, kind: Optional[AssessmentKind] = None) -> Dict[str, Any]:
    history = attempt_history(db, user_id, kind)
    scores = [item["score"] for item in history if item["completedAt"] is not None]

    if not scores:
        return {
            "attempts": len(history),
            "completed": 0,
            "averageScore": 0,
        }

    return {
        "attempts": len(history),
        "completed": len(scores),
        "averageScore": round(sum(scores) / len(scores), 2),
        # history is newest first
        "lastScore": scores[0],
    }


def _in_range(column, start: Optional[datetime], end: Optional[datetime]):
    conditions = []
    if start:
        conditions.append(column >= start)
    if end:
        conditions.append(column <= end)
    return conditions


def ranking(db: Session, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """
    Per-learner averages over scored tryouts, practices and cermat drills.

    ``overallAvg`` weighs every scored result equally. Sorted by overall
    average, then by number of results, then by username.
    """
    totals: Dict[int, Dict[str, Any]] = {}

    def entry(user_id: int) -> Dict[str, Any]:
        return totals.setdefault(user_id, {
            "TRYOUT": [0, 0.0],
            "PRACTICE": [0, 0.0],
            "CERMAT": [0, 0.0],
        })

    attempt_rows = (
        db.query(Attempt.user_id, Attempt.kind, func.count(Attempt.id), func.sum(Attempt.score))
        .filter(Attempt.completed_at.isnot(None), Attempt.score.isnot(None), *_in_range(Attempt.started_at, start, end))
        .group_by(Attempt.user_id, Attempt.kind)
        .all()
    )
    for user_id, kind, count, total in attempt_rows:
        entry(user_id)[kind] = [count, total or 0.0]

    cermat_rows = (
        db.query(CermatAttempt.user_id, func.count(CermatAttempt.id), func.sum(CermatAttempt.average_score))
        .filter(CermatAttempt.average_score.isnot(None), *_in_range(CermatAttempt.started_at, start, end))
        .group_by(CermatAttempt.user_id)
        .all()
    )
    for user_id, count, total in cermat_rows:
        entry(user_id)["CERMAT"] = [count, total or 0.0]

    users = {u.id: u for u in db.query(User).filter(User.id.in_(list(totals))).all()} if totals else {}

    ranked = []
    for user_id, kinds in totals.items():
        user = users.get(user_id)
        count = sum(c for c, _ in kinds.values())
        score = sum(t for _, t in kinds.values())
        row = {"user": {"id": user_id, "username": user.username if user else None, "email": user.email if user else None}}
        for kind, key in (("TRYOUT", "tryout"), ("PRACTICE", "practice"), ("CERMAT", "cermat")):
            kind_count, kind_total = kinds[kind]
            row[f"{key}Count"] = kind_count
            row[f"{key}Avg"] = round(kind_total / kind_count, 2) if kind_count else 0
        row["overallAvg"] = round(score / count, 2) if count else 0
        ranked.append((-row["overallAvg"], -count, row["user"]["username"] or "", row))

    ranked.sort(key=lambda item: item[:3])
    return [item[3] for item in ranked]
