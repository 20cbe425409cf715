from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from db.database import Base

class Attempt(Base):
    __tablename__ = "attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)  # null = in progress
    score = Column(Float, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    # {"questions": [qid, ...], "options": {"qid": [oid, ...]}}
    paper_order = Column(JSON, nullable=True)

    assessment = relationship("Assessment")
    answers = relationship("AnswerRecord", back_populates="attempt", cascade="all, delete-orphan")


class AnswerRecord(Base):
    __tablename__ = "answer_records"
    __table_args__ = (UniqueConstraint("attempt_id", "question_id", name="uq_answer_records_attempt_question"),)

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(Integer, ForeignKey("attempts.id"), nullable=False, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False)
    option_id = Column(Integer, ForeignKey("options.id"), nullable=True)  # null = unanswered
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)

    attempt = relationship("Attempt", back_populates="answers")
