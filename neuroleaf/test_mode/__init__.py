"""Test mode: sessions, question generation, grading and history"""

from .schemas import (
    QuestionType,
    TestMode,
    TestSessionStatus,
    CreateTestSessionData,
    UpdateTestSessionData,
    CreateTestResponseData,
    GradingResult,
    TopicPerformance,
    ComprehensiveGradingResult,
    FlashcardInput,
    GenerateQuestionsData,
    AnswerToGrade,
)
from .objective_grading import (
    grade_multiple_choice,
    grade_true_false,
    grade_objective_question,
    can_grade_objectively,
    generate_objective_performance_summary,
)
from .ai_grading import (
    grade_response,
    grade_response_comprehensive,
    parse_grading_response,
    parse_comprehensive_response,
    fallback_grading,
    transform_to_progressive_disclosure,
)
from .ai_questions import generate_questions, fallback_questions
from .test_session_service import (
    TestSessionError,
    TestSessionNotFoundError,
    TestSessionValidationError,
    create_test_session,
    get_test_session,
    update_test_session,
    complete_test_session,
    submit_test_response,
    get_test_responses,
    generate_questions_for_deck,
    generate_questions_from_flashcards,
    get_user_test_sessions,
    grade_answers,
    grade_answers_optimized,
    grade_test_comprehensive,
    get_user_performance_analytics,
    get_test_session_analytics,
    grade_test_comprehensive_action,
    grade_answers_with_history,
    count_ai_graded,
)
from .test_history_service import (
    TestHistoryError,
    TestHistoryNotFoundError,
    SaveTestHistoryData,
    get_user_test_history,
    get_test_session_details,
    save_complete_test_session,
    get_test_statistics,
    get_performance_trends,
    get_deck_test_history,
    delete_test_session,
)

__all__ = [
    'QuestionType',
    'TestMode',
    'TestSessionStatus',
    'CreateTestSessionData',
    'UpdateTestSessionData',
    'CreateTestResponseData',
    'GradingResult',
    'TopicPerformance',
    'ComprehensiveGradingResult',
    'FlashcardInput',
    'GenerateQuestionsData',
    'AnswerToGrade',
    'grade_multiple_choice',
    'grade_true_false',
    'grade_objective_question',
    'can_grade_objectively',
    'generate_objective_performance_summary',
    'grade_response',
    'grade_response_comprehensive',
    'parse_grading_response',
    'parse_comprehensive_response',
    'fallback_grading',
    'transform_to_progressive_disclosure',
    'generate_questions',
    'fallback_questions',
    'TestSessionError',
    'TestSessionNotFoundError',
    'TestSessionValidationError',
    'create_test_session',
    'get_test_session',
    'update_test_session',
    'complete_test_session',
    'submit_test_response',
    'get_test_responses',
    'generate_questions_for_deck',
    'generate_questions_from_flashcards',
    'get_user_test_sessions',
    'grade_answers',
    'grade_answers_optimized',
    'grade_test_comprehensive',
    'get_user_performance_analytics',
    'get_test_session_analytics',
    'grade_test_comprehensive_action',
    'grade_answers_with_history',
    'count_ai_graded',
    'TestHistoryError',
    'TestHistoryNotFoundError',
    'SaveTestHistoryData',
    'get_user_test_history',
    'get_test_session_details',
    'save_complete_test_session',
    'get_test_statistics',
    'get_performance_trends',
    'get_deck_test_history',
    'delete_test_session',
]
