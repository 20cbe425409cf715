"""
Anti-cheat blocking.

The presentation layer reports violations (tab switch, leaving fullscreen,
...). Each report either opens a block for the learner and exam type or
bumps the one already open; the learner gets back in with the 6-digit code
an admin reads out to them.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from db.models.exam_blocks import ExamBlock
from .config import EngineConfig
from .errors import Blocked, InvalidCode, NoActiveBlock, NotFound
from .schedule import utcnow

logger = logging.getLogger(__name__)

MAX_CREATE_RETRIES = 3


class BlockType(str, Enum):
    PRACTICE = "PRACTICE"
    TRYOUT = "TRYOUT"


class BlockContext(str, Enum):
    STANDARD = "STANDARD"
    UJIAN = "UJIAN"


@dataclass(frozen=True)
class BlockPolicy:
    enabled_types: FrozenSet[BlockType]

    def is_enabled(self, block_type: BlockType) -> bool:
        return block_type in self.enabled_types


def block_policy(config: EngineConfig, context: BlockContext) -> BlockPolicy:
    blocks = config.blocks
    if context is BlockContext.UJIAN:
        # the exam context has one switch covering both types
        types = {BlockType.PRACTICE, BlockType.TRYOUT} if blocks.exam_enabled else set()
    else:
        types = set()
        if blocks.practice_enabled:
            types.add(BlockType.PRACTICE)
        if blocks.tryout_enabled:
            types.add(BlockType.TRYOUT)
    return BlockPolicy(enabled_types=frozenset(types))


def generate_code() -> str:
    return str(100000 + secrets.randbelow(900000))


def _active_query(db: Session, user_id: int, block_type: BlockType):
    return db.query(ExamBlock).filter(
        ExamBlock.user_id == user_id,
        ExamBlock.type == block_type.value,
        ExamBlock.resolved_at.is_(None),
    )


def get_active_block(db: Session, user_id: int, block_type: BlockType) -> Optional[ExamBlock]:
    return _active_query(db, user_id, block_type).first()


def ensure_exam_access(
    db: Session,
    user_id: int,
    block_type: BlockType,
    config: EngineConfig,
    context: BlockContext = BlockContext.STANDARD,
) -> None:
    if not block_policy(config, context).is_enabled(block_type):
        return
    if get_active_block(db, user_id, block_type):
        raise Blocked()


def record_violation(
    db: Session,
    user_id: int,
    block_type: BlockType,
    config: EngineConfig,
    reason: Optional[str] = None,
    context: BlockContext = BlockContext.STANDARD,
    now: Optional[datetime] = None,
) -> Optional[ExamBlock]:
    """
    Open or escalate the learner's block for ``block_type``.

    Returns None when blocking is switched off for this type and context.
    """
    if not block_policy(config, context).is_enabled(block_type):
        logger.info("Violation ignored user_id=%s type=%s context=%s", user_id, block_type.value, context.value)
        return None

    now = now or utcnow()

    for attempt in range(MAX_CREATE_RETRIES):
        values = {
            ExamBlock.violation_count: ExamBlock.violation_count + 1,
            ExamBlock.code: generate_code(),
            ExamBlock.blocked_at: now,
        }
        if reason is not None:
            values[ExamBlock.reason] = reason

        try:
            active = get_active_block(db, user_id, block_type)
            updated = 0
            if active:
                block_id = active.id
                updated = (
                    db.query(ExamBlock)
                    .filter(ExamBlock.id == block_id, ExamBlock.resolved_at.is_(None))
                    .update(values, synchronize_session=False)
                )
            if updated:
                db.commit()
                block = db.query(ExamBlock).filter(ExamBlock.id == block_id).one()
                logger.info(
                    "Exam block escalated id=%s user_id=%s type=%s count=%s",
                    block.id, user_id, block_type.value, block.violation_count,
                )
                return block

            block = ExamBlock(
                user_id=user_id,
                type=block_type.value,
                reason=reason,
                violation_count=1,
                code=generate_code(),
                blocked_at=now,
            )
            db.add(block)
            db.commit()
        except IntegrityError:
            # another report opened the block between our UPDATE and INSERT
            db.rollback()
            logger.warning(
                "Concurrent exam block creation user_id=%s type=%s, retrying (%s)",
                user_id, block_type.value, attempt + 1,
            )
            continue
        except Exception:
            db.rollback()
            raise

        db.refresh(block)
        logger.info("Exam block created id=%s user_id=%s type=%s", block.id, user_id, block_type.value)
        return block

    raise RuntimeError("Could not record exam violation after %d attempts" % MAX_CREATE_RETRIES)


def unlock(db: Session, user_id: int, block_type: BlockType, code: str, now: Optional[datetime] = None) -> None:
    block = get_active_block(db, user_id, block_type)
    if not block:
        raise NoActiveBlock()

    if not secrets.compare_digest(block.code, code.strip()):
        logger.warning("Rejected unlock code user_id=%s type=%s block_id=%s", user_id, block_type.value, block.id)
        raise InvalidCode()

    block.resolved_at = now or utcnow()
    # the used code must never open a later block
    block.code = generate_code()
    db.commit()
    logger.info("Exam block unlocked id=%s user_id=%s type=%s", block.id, user_id, block_type.value)


def resolve_block(db: Session, block_id: int, now: Optional[datetime] = None) -> ExamBlock:
    block = db.query(ExamBlock).filter(ExamBlock.id == block_id).first()
    if not block:
        raise NotFound("Exam block not found.")

    if block.resolved_at is None:
        block.resolved_at = now or utcnow()
        db.commit()
        db.refresh(block)
        logger.info("Exam block resolved by admin id=%s user_id=%s", block.id, block.user_id)
    return block


def regenerate_code(db: Session, block_id: int) -> ExamBlock:
    block = db.query(ExamBlock).filter(ExamBlock.id == block_id).first()
    if not block or block.resolved_at is not None:
        raise NotFound("Exam block not found or already resolved.")

    block.code = generate_code()
    db.commit()
    db.refresh(block)
    logger.info("Exam block code regenerated id=%s", block.id)
    return block


def list_user_blocks(
    db: Session,
    user_id: int,
    config: EngineConfig,
    context: BlockContext = BlockContext.STANDARD,
) -> List[ExamBlock]:
    policy = block_policy(config, context)
    if not policy.enabled_types:
        return []

    return (
        db.query(ExamBlock)
        .filter(
            ExamBlock.user_id == user_id,
            ExamBlock.resolved_at.is_(None),
            ExamBlock.type.in_([t.value for t in policy.enabled_types]),
        )
        .order_by(ExamBlock.blocked_at.desc())
        .all()
    )


def list_active_blocks(db: Session) -> List[ExamBlock]:
    return (
        db.query(ExamBlock)
        .filter(ExamBlock.resolved_at.is_(None))
        .order_by(ExamBlock.blocked_at.desc())
        .all()
    )


def serialize_block(block: ExamBlock, include_code: bool = False) -> Dict[str, Any]:
    data = {
        "id": block.id,
        "type": block.type,
        "reason": block.reason,
        "violationCount": block.violation_count,
        "blockedAt": block.blocked_at.isoformat(),
        "resolvedAt": block.resolved_at.isoformat() if block.resolved_at else None,
    }
    if include_code:
        data["userId"] = block.user_id
        data["code"] = block.code
    return data
