"""Direct grading for multiple choice and true/false questions, no LLM involved."""
import re
from typing import List, Optional, Any, Dict

from .schemas import GradingResult, QuestionType

MODEL_USED = 'objective_grading_v1'

TRUE_ANSWERS = ('true', 't', '1', 'yes', 'y')
FALSE_ANSWERS = ('false', 'f', '0', 'no', 'n')

_LETTER_RE = re.compile(r'^[A-Z]$')
_LEADING_INT_RE = re.compile(r'^\s*([+-]?\d+)')


def _with_explanation(feedback: str, explanation: Optional[str]) -> str:
    return f'{feedback} {explanation}' if explanation else feedback


def _parse_option_index(user_answer: str) -> Optional[int]:
    if _LETTER_RE.match(user_answer):
        return ord(user_answer) - 65
    m = _LEADING_INT_RE.match(user_answer)
    return int(m.group(1)) if m else None


def grade_multiple_choice(user_answer: str, correct_answer: int, options: Optional[List[str]] = None,
                          explanation: Optional[str] = None) -> GradingResult:
    options = options or []
    user_index = _parse_option_index(user_answer or '')
    if user_index is None or user_index < 0:
        return GradingResult(score=0, feedback='Invalid answer format. Please select a valid option.',
                             is_correct=False, model_used=MODEL_USED)

    is_correct = user_index == correct_answer
    correct_option = options[correct_answer] if 0 <= correct_answer < len(options) and options[correct_answer] else f'Option {correct_answer + 1}'
    user_option = options[user_index] if user_index < len(options) else f'Option {user_index + 1}'

    if is_correct:
        feedback = f'Correct! You selected "{user_option}".'
    else:
        feedback = f'Incorrect. You selected "{user_option}" but the correct answer is "{correct_option}".'
    return GradingResult(score=100 if is_correct else 0, feedback=_with_explanation(feedback, explanation),
                         is_correct=is_correct, model_used=MODEL_USED)


def grade_true_false(user_answer: str, correct_answer: bool, explanation: Optional[str] = None) -> GradingResult:
    normalized = (user_answer or '').strip().lower()
    if normalized in TRUE_ANSWERS:
        user_bool = True
    elif normalized in FALSE_ANSWERS:
        user_bool = False
    else:
        return GradingResult(score=0, feedback="Invalid answer format. Please answer with 'true' or 'false'.",
                             is_correct=False, model_used=MODEL_USED)

    is_correct = user_bool == correct_answer
    expected = 'true' if correct_answer else 'false'
    if is_correct:
        feedback = f'Correct! The statement is {expected}.'
    else:
        feedback = f"Incorrect. The statement is {expected}, not {'true' if user_bool else 'false'}."
    return GradingResult(score=100 if is_correct else 0, feedback=_with_explanation(feedback, explanation),
                         is_correct=is_correct, model_used=MODEL_USED)


def grade_objective_question(question_type: str, user_answer: str, correct_answer: Any,
                             options: Optional[List[str]] = None, explanation: Optional[str] = None) -> GradingResult:
    question_type = getattr(question_type, 'value', question_type)
    if question_type == QuestionType.MULTIPLE_CHOICE.value:
        return grade_multiple_choice(user_answer, int(correct_answer), options, explanation)
    if question_type == QuestionType.TRUE_FALSE.value:
        return grade_true_false(user_answer, bool(correct_answer), explanation)
    raise ValueError(f'Unsupported question type for objective grading: {question_type}')


def can_grade_objectively(question_type: Optional[str], correct_answer: Any) -> bool:
    question_type = getattr(question_type, 'value', question_type)
    # bool is a subclass of int, so the index check has to exclude it
    if question_type == QuestionType.MULTIPLE_CHOICE.value:
        return isinstance(correct_answer, int) and not isinstance(correct_answer, bool)
    if question_type == QuestionType.TRUE_FALSE.value:
        return isinstance(correct_answer, bool)
    return False


def generate_objective_performance_summary(results: List[GradingResult]) -> Dict[str, int]:
    total = len(results)
    correct = sum(1 for r in results if r.is_correct)
    return {
        'correct_count': correct,
        'total_count': total,
        'percentage': round(correct / total * 100) if total else 0,
        'average_score': round(sum(r.score for r in results) / total) if total else 0,
    }
