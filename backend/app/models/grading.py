"""Grading result and split-unit models"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class HomeworkAnswer(BaseModel):
    """One question as read and judged by the model."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    question_number: str = Field(alias="questionNumber")
    student_answer: str = Field("", alias="studentAnswer")
    is_correct: Optional[bool] = Field(None, alias="isCorrect")
    correct_answer: Optional[str] = Field(None, alias="correctAnswer")
    correct_steps: Optional[str] = Field(None, alias="correctSteps")
    explanation: Optional[str] = None
    evaluation: Optional[str] = None
    suggestion: Optional[str] = None

    @field_validator("question_number", "student_answer", mode="before")
    @classmethod
    def _coerce_to_text(cls, value):
        # Models sometimes answer with bare numbers
        if isinstance(value, (int, float)):
            return str(value)
        return value


class GradingResult(BaseModel):
    """The structured verdict for one student document or image."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    answers: List[HomeworkAnswer]
    overall_score: Optional[Union[str, float]] = Field(None, alias="overallScore")
    feedback: str = ""

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)


class SplitUnit(BaseModel):
    """A contiguous page range belonging to one student."""
    source_path: str
    index: int
    start_page: int
    end_page: int
    output_path: str

    @property
    def page_count(self) -> int:
        return self.end_page - self.start_page + 1

    @property
    def pages(self) -> List[int]:
        return list(range(self.start_page, self.end_page + 1))
