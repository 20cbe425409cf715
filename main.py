import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user, get_current_admin
from db.database import get_db
from db.init_db import init_db
from db.models.attempts import Attempt
from db.models.users import User
from exams.config import (
    LOG_LEVEL,
    CERMAT_SESSION_IDLE_SECONDS,
    BlockConfig,
    EngineConfig,
    load_engine_config,
    update_block_config,
)
from exams.errors import ExamError, NotFound
from exams.attempts import (
    AssessmentKind,
    get_assessment_info,
    get_attempt_paper,
    list_assessments,
    review_attempt,
    start_attempt,
    submit_attempt,
)
from exams.cermat import cermat_history, start_drill, submit_round
from exams.cermat_store import CermatSessionStore
from exams.entitlement import membership_status
from exams.exam_blocks import (
    BlockContext,
    BlockType,
    ensure_exam_access,
    list_active_blocks,
    list_user_blocks,
    record_violation,
    regenerate_code,
    resolve_block,
    serialize_block,
    unlock,
)
from exams.history import attempt_history, attempt_stats, ranking
from exams.question_bank import import_assessment
from exams.schemas import (
    BlockConfigRequest,
    CermatStartRequest,
    CermatSubmitRequest,
    SubmitAttemptRequest,
    UnlockRequest,
    ViolationRequest,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(
    title="Exam Session Engine",
    version="1.0.0",
    description=(
        "Timed tryout and practice attempts, cermat accuracy drills, "
        "membership gating and anti-cheat exam blocks."
    ),
)

cermat_store = CermatSessionStore(CERMAT_SESSION_IDLE_SECONDS)


@app.on_event("startup")
def create_tables():
    init_db()


@app.exception_handler(ExamError)
def exam_error_handler(request: Request, exc: ExamError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def ok(data: Any) -> dict:
    return {"status": "success", "data": data}


def get_engine_config(db: Session = Depends(get_db)) -> EngineConfig:
    return load_engine_config(db)


def _attempt_kind(db: Session, attempt_id: int) -> AssessmentKind:
    attempt = db.query(Attempt).filter(Attempt.id == attempt_id).first()
    if not attempt:
        raise NotFound("Attempt not found.")
    return AssessmentKind(attempt.kind)


# ============ Learner routes (STANDARD and UJIAN contexts) ============

def build_exam_router(context: BlockContext) -> APIRouter:
    router = APIRouter()

    for kind, segment in ((AssessmentKind.TRYOUT, "tryouts"), (AssessmentKind.PRACTICE, "practice")):
        _add_assessment_routes(router, context, kind, segment)

    @router.get("/attempts/{attempt_id}/paper")
    def attempt_paper(
        attempt_id: int,
        db: Session = Depends(get_db),
        config: EngineConfig = Depends(get_engine_config),
        current_user: User = Depends(get_current_user),
    ):
        kind = _attempt_kind(db, attempt_id)
        ensure_exam_access(db, current_user.id, kind.block_type, config, context)
        return ok(get_attempt_paper(db, current_user.id, attempt_id))

    @router.get("/attempts/{attempt_id}/review")
    def attempt_review(
        attempt_id: int,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        return ok(review_attempt(db, current_user.id, attempt_id))

    @router.get("/tryouts-history")
    def tryout_history(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
        return ok(attempt_history(db, current_user.id, AssessmentKind.TRYOUT))

    @router.get("/practice-history")
    def practice_history(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
        return ok(attempt_history(db, current_user.id, AssessmentKind.PRACTICE))

    @router.get("/stats")
    def my_stats(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
        return ok({
            "tryout": attempt_stats(db, current_user.id, AssessmentKind.TRYOUT),
            "practice": attempt_stats(db, current_user.id, AssessmentKind.PRACTICE),
        })

    @router.get("/blocks")
    def my_blocks(
        db: Session = Depends(get_db),
        config: EngineConfig = Depends(get_engine_config),
        current_user: User = Depends(get_current_user),
    ):
        blocks = list_user_blocks(db, current_user.id, config, context)
        return ok([serialize_block(b) for b in blocks])

    @router.get("/block-config")
    def block_config(config: EngineConfig = Depends(get_engine_config)):
        return ok(_block_config_view(config))

    @router.post("/blocks")
    def report_violation(
        req: ViolationRequest,
        db: Session = Depends(get_db),
        config: EngineConfig = Depends(get_engine_config),
        current_user: User = Depends(get_current_user),
    ):
        block = record_violation(db, current_user.id, req.type, config, reason=req.reason, context=context)
        if not block:
            return ok({"skipped": True, "type": req.type.value})
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content=ok({"id": block.id, "type": block.type, "blockedAt": block.blocked_at.isoformat()}),
        )

    @router.post("/blocks/unlock")
    def unlock_block(
        req: UnlockRequest,
        db: Session = Depends(get_db),
        current_user: User = Depends(get_current_user),
    ):
        unlock(db, current_user.id, req.type, req.code)
        return ok({"type": req.type.value})

    return router


def _add_assessment_routes(router: APIRouter, context: BlockContext, kind: AssessmentKind, segment: str):
    @router.get(f"/{segment}", name=f"list_{segment}")
    def list_route(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
        return ok(list_assessments(db, kind))

    @router.get(f"/{segment}/{{slug}}/info", name=f"{segment}_info")
    def info_route(slug: str, db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
        return ok(get_assessment_info(db, slug, kind))

    @router.post(f"/{segment}/{{slug}}/start", name=f"{segment}_start")
    def start_route(
        slug: str,
        db: Session = Depends(get_db),
        config: EngineConfig = Depends(get_engine_config),
        current_user: User = Depends(get_current_user),
    ):
        return ok(start_attempt(db, current_user.id, slug, kind, config, context))

    @router.post(f"/{segment}/{{slug}}/submit", name=f"{segment}_submit")
    def submit_route(
        slug: str,
        req: SubmitAttemptRequest,
        db: Session = Depends(get_db),
        config: EngineConfig = Depends(get_engine_config),
        current_user: User = Depends(get_current_user),
    ):
        # a block raised mid-attempt ends the session
        ensure_exam_access(db, current_user.id, kind.block_type, config, context)
        answers = [(a.question_id, a.option_id) for a in req.answers]
        return ok(submit_attempt(db, current_user.id, req.attempt_id, answers, slug=slug))


def _block_config_view(config: EngineConfig) -> dict:
    return {
        "practiceEnabled": config.blocks.practice_enabled,
        "tryoutEnabled": config.blocks.tryout_enabled,
        "examEnabled": config.blocks.exam_enabled,
        "version": config.version,
    }


# ============ Cermat ============

cermat_router = APIRouter()


@cermat_router.post("/cermat/session")
def cermat_start(
    req: CermatStartRequest,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    current_user: User = Depends(get_current_user),
):
    return ok(start_drill(db, cermat_store, current_user.id, req.mode, config))


@cermat_router.post("/cermat/session/{session_id}/submit")
def cermat_submit(
    session_id: str,
    req: CermatSubmitRequest,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(get_engine_config),
    current_user: User = Depends(get_current_user),
):
    answers = [(a.order, a.value) for a in req.answers]
    return ok(submit_round(db, cermat_store, current_user.id, session_id, answers, config))


@cermat_router.get("/cermat/history")
def cermat_history_route(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return ok(cermat_history(db, current_user.id))


# ============ Admin ============

admin_router = APIRouter(dependencies=[Depends(get_current_admin)])


@admin_router.get("/exams/blocks")
def admin_list_blocks(db: Session = Depends(get_db)):
    return ok([serialize_block(b, include_code=True) for b in list_active_blocks(db)])


@admin_router.post("/exams/blocks/{block_id}/regenerate")
def admin_regenerate_block(block_id: int, db: Session = Depends(get_db)):
    return ok(serialize_block(regenerate_code(db, block_id), include_code=True))


@admin_router.post("/exams/blocks/{block_id}/resolve")
def admin_resolve_block(block_id: int, db: Session = Depends(get_db)):
    return ok(serialize_block(resolve_block(db, block_id), include_code=True))


@admin_router.get("/exams/ranking")
def admin_ranking(
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    db: Session = Depends(get_db),
):
    return ok({"summary": ranking(db, start_date, end_date)})


@admin_router.get("/exams/block-config")
def admin_get_block_config(config: EngineConfig = Depends(get_engine_config)):
    return ok(_block_config_view(config))


@admin_router.put("/exams/block-config")
def admin_update_block_config(req: BlockConfigRequest, db: Session = Depends(get_db)):
    config = update_block_config(
        db,
        BlockConfig(
            practice_enabled=req.practice_enabled,
            tryout_enabled=req.tryout_enabled,
            exam_enabled=req.exam_enabled,
        ),
    )
    logger.info("Exam block config updated to version %s", config.version)
    return ok(_block_config_view(config))


@admin_router.post("/assessments", status_code=status.HTTP_201_CREATED)
def admin_import_assessment(payload: dict, db: Session = Depends(get_db)):
    assessment = import_assessment(db, payload)
    return ok({
        "id": assessment.id,
        "slug": assessment.slug,
        "kind": assessment.kind,
        "totalQuestions": len(assessment.questions),
    })


# ============ Membership ============

@app.get("/me/membership")
def my_membership(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    return ok(membership_status(db, current_user.id))


app.include_router(build_exam_router(BlockContext.STANDARD), prefix="/exams", tags=["exams"])
app.include_router(cermat_router, prefix="/exams", tags=["cermat"])
app.include_router(build_exam_router(BlockContext.UJIAN), prefix="/ujian", tags=["ujian"])
app.include_router(admin_router, prefix="/admin", tags=["admin"])
