from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .cermat import CermatMode
from .exam_blocks import BlockType


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AnswerIn(CamelModel):
    question_id: int = Field(alias="questionId")
    option_id: Optional[int] = Field(default=None, alias="optionId")


class SubmitAttemptRequest(CamelModel):
    attempt_id: int = Field(alias="attemptId")
    answers: List[AnswerIn] = []


class ViolationRequest(BaseModel):
    type: BlockType
    reason: Optional[str] = Field(default=None, max_length=500)


class UnlockRequest(BaseModel):
    type: BlockType
    code: str = Field(min_length=6, max_length=6, pattern=r"^\d{6}$")


class CermatStartRequest(BaseModel):
    mode: CermatMode = CermatMode.NUMBER


class CermatAnswerIn(BaseModel):
    order: int
    value: Optional[str] = None


class CermatSubmitRequest(BaseModel):
    answers: List[CermatAnswerIn] = []


class BlockConfigRequest(CamelModel):
    practice_enabled: bool = Field(alias="practiceEnabled")
    tryout_enabled: bool = Field(alias="tryoutEnabled")
    exam_enabled: bool = Field(alias="examEnabled")
