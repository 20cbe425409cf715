from sqlalchemy import Column, Integer, String, Float, DateTime, ForeignKey, JSON
from db.database import Base

class CermatAttempt(Base):
    __tablename__ = "cermat_attempts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    mode = Column(String(10), nullable=False)  # NUMBER / LETTER
    total_sessions = Column(Integer, nullable=False)
    question_count = Column(Integer, nullable=False)
    started_at = Column(DateTime, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    average_score = Column(Float, nullable=True)
    total_correct = Column(Integer, nullable=False, default=0)
    total_questions = Column(Integer, nullable=False, default=0)
    sessions = Column(JSON, nullable=False, default=list)
