from enum import Enum
from typing import List, Optional, Dict, Any, Union

from pydantic import BaseModel, Field


class QuestionType(str, Enum):
    OPEN_ENDED = 'open_ended'
    MULTIPLE_CHOICE = 'multiple_choice'
    TRUE_FALSE = 'true_false'


class TestMode(str, Enum):
    FLASHCARD = 'flashcard'
    AI_QUESTIONS = 'ai_questions'


class TestSessionStatus(str, Enum):
    ACTIVE = 'active'
    COMPLETED = 'completed'
    ABANDONED = 'abandoned'


class CreateTestSessionData(BaseModel):
    deck_id: str
    test_mode: TestMode
    total_questions: int = Field(..., ge=1, le=100)
    session_name: Optional[str] = None
    difficulty_level: str = 'medium'


class UpdateTestSessionData(BaseModel):
    status: Optional[TestSessionStatus] = None
    questions_completed: Optional[int] = Field(None, ge=0)
    average_score: Optional[float] = Field(None, ge=0, le=100)
    time_spent_seconds: Optional[int] = Field(None, ge=0)
    completed_at: Optional[str] = None


class CreateTestResponseData(BaseModel):
    test_session_id: str
    flashcard_id: Optional[str] = None
    question_text: str = Field(..., min_length=1)
    question_type: QuestionType = QuestionType.OPEN_ENDED
    question_data: Optional[Dict[str, Any]] = None
    expected_answer: Optional[str] = None
    user_response: str = Field(..., min_length=1)
    user_answer_index: Optional[int] = None
    user_answer_boolean: Optional[bool] = None
    response_time_seconds: Optional[int] = None


class GradingResult(BaseModel):
    score: int = Field(..., ge=0, le=100)
    feedback: str
    is_correct: bool
    model_used: str


class TopicPerformance(BaseModel):
    topic: str
    performance: str = 'fair'  # excellent, good, fair, poor
    understanding_level: int = Field(50, ge=0, le=100)
    specific_gaps: List[str] = []
    strengths: List[str] = []


class ComprehensiveGradingResult(GradingResult):
    topic_analysis: List[TopicPerformance] = []
    improvement_suggestions: List[str] = []
    reasoning_chain: List[str] = []
    confidence_level: int = Field(50, ge=0, le=100)


class FlashcardInput(BaseModel):
    id: Optional[str] = None
    front_content: str
    back_content: str


class GenerateQuestionsData(BaseModel):
    flashcards: List[FlashcardInput] = Field(..., min_length=1)
    question_count: int = Field(..., ge=1, le=50)
    difficulty: str = 'medium'


class AnswerToGrade(BaseModel):
    """One answer submitted for grading.

    `correct_answer` is an option index for multiple choice and a boolean for
    true/false; open-ended answers are graded against `expected_answer`.
    """
    question_id: Optional[str] = None
    question: str
    user_answer: str = ''
    expected_answer: str = ''
    question_type: Optional[QuestionType] = None
    correct_answer: Optional[Union[bool, int]] = None
    options: Optional[List[str]] = None
    explanation: Optional[str] = None
