from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from db.database import Base

# kind: TRYOUT / PRACTICE
class Assessment(Base):
    __tablename__ = "assessments"

    id = Column(Integer, primary_key=True, index=True)
    kind = Column(String(20), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, index=True, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    open_at = Column(DateTime, nullable=True)
    close_at = Column(DateTime, nullable=True)
    is_free = Column(Boolean, nullable=False, default=False)
    is_published = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    questions = relationship(
        "Question",
        back_populates="assessment",
        order_by="Question.order",
        cascade="all, delete-orphan",
    )


class Question(Base):
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    assessment_id = Column(Integer, ForeignKey("assessments.id"), nullable=False, index=True)
    order = Column(Integer, nullable=False)
    prompt = Column(Text, nullable=False)
    image_url = Column(String(500), nullable=True)
    explanation = Column(Text, nullable=True)
    explanation_image_url = Column(String(500), nullable=True)

    assessment = relationship("Assessment", back_populates="questions")
    options = relationship(
        "Option",
        back_populates="question",
        order_by="Option.order",
        cascade="all, delete-orphan",
    )


class Option(Base):
    __tablename__ = "options"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id"), nullable=False, index=True)
    order = Column(Integer, nullable=False, default=0)
    label = Column(Text, nullable=False)
    image_url = Column(String(500), nullable=True)
    is_correct = Column(Boolean, nullable=False, default=False)

    question = relationship("Question", back_populates="options")
