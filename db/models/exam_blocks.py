from datetime import datetime

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from db.database import Base

class ExamBlock(Base):
    __tablename__ = "exam_blocks"
    # at most one unresolved block per (user, type)
    __table_args__ = (
        Index(
            "uq_exam_blocks_active",
            "user_id",
            "type",
            unique=True,
            sqlite_where=text("resolved_at IS NULL"),
            postgresql_where=text("resolved_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # PRACTICE / TRYOUT
    reason = Column(String(500), nullable=True)
    violation_count = Column(Integer, nullable=False, default=1)
    code = Column(String(6), nullable=False)
    blocked_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)
