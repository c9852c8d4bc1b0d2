"""Training journey schemas."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SOPAcknowledgementCreate(BaseModel):
    sop_id: str = Field(..., min_length=1, max_length=100)


class QuizQuestion(BaseModel):
    question: str
    options: List[str] = Field(default_factory=list)
    correct: Any


class QuizSubmission(BaseModel):
    """A completed module quiz. Answers are keyed by question index."""
    module_name: Optional[str] = Field(default=None, max_length=200)
    questions: List[QuizQuestion] = Field(..., min_length=1)
    answers: Dict[int, Any]


class QuizStatePayload(BaseModel):
    current_question: int = Field(default=0, ge=0)
    selected_answers: Dict[str, Any] = Field(default_factory=dict)
    show_results: bool = False
    score: float = 0.0
    quiz_started: bool = False
    quiz_passed: bool = False
