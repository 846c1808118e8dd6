"""LLM grading for open-ended answers plus the progressive disclosure view of test results."""
import re
import random
from typing import Optional, Dict, Any, List

from pydantic import ValidationError

from neuroleaf.ai import LLMClient, LLMError
from neuroleaf.ai.parsing import extract_json_object, has_json_object, strip_code_fences
from neuroleaf.utils import get_logger
from .schemas import GradingResult, ComprehensiveGradingResult, TopicPerformance

LOG = get_logger()

GRADING_MAX_TOKENS = 800
COMPREHENSIVE_MAX_TOKENS = 1500
PERFORMANCE_LEVELS = ('excellent', 'good', 'fair', 'poor')

_SCORE_RE = re.compile(r'score["\':\s]*(\d+)', re.IGNORECASE)

CELEBRATION_MESSAGES = {
    'A': ['Outstanding work!', 'Exceptional performance!', 'Excellence achieved!'],
    'B': ['Great job!', 'Well done!', 'Strong performance!'],
    'C': ['Good effort!', "You're learning!", 'Keep improving!'],
    'D': ['Nice try!', 'Growing stronger!', 'Learning in progress!'],
    'F': ['Ready to improve!', 'Every expert was once a beginner!', 'Learning journey continues!'],
}


def _clamp(value: Any, default: int = 0) -> int:
    try:
        v = int(round(float(value)))
    except (TypeError, ValueError):
        v = default
    return max(0, min(100, v))


def _performance_for(score: int) -> str:
    if score >= 80:
        return 'good'
    if score >= 60:
        return 'fair'
    return 'poor'


def build_grading_prompt(question: str, expected_answer: Optional[str], user_response: str,
                         context: Optional[str] = None) -> str:
    expected = f'EXPECTED ANSWER: {expected_answer}' if expected_answer else ''
    ctx = f'CONTEXT: {context}' if context else ''
    return f"""You are an expert tutor grading a student's response. Provide a score from 0-100 and constructive feedback.

QUESTION: {question}

{expected}

STUDENT'S RESPONSE: {user_response}

{ctx}

Please respond in the following JSON format:
{{
  "score": <number 0-100>,
  "feedback": "<constructive feedback explaining the score and how to improve>",
  "is_correct": <boolean>
}}

Grading Criteria:
- 90-100: Excellent understanding, complete and accurate
- 80-89: Good understanding, mostly correct with minor issues
- 70-79: Fair understanding, correct main points but missing details
- 60-69: Basic understanding, some correct elements but significant gaps
- 50-59: Limited understanding, major misconceptions
- 0-49: Incorrect or no meaningful understanding

Provide specific, actionable feedback that helps the student improve their understanding."""


def build_comprehensive_prompt(question: str, expected_answer: Optional[str], user_response: str,
                               context: Optional[str] = None) -> str:
    expected = f'EXPECTED RESPONSE: {expected_answer}' if expected_answer else ''
    ctx = f'CONTEXT: {context}' if context else ''
    return f"""You are an expert educator providing focused, learner-friendly assessment feedback.

QUESTION: {question}
{expected}
STUDENT'S ANSWER: {user_response}
{ctx}

ANALYSIS FRAMEWORK:
Provide clear, chunked feedback focusing on the 3 most important insights.

1. PERFORMANCE ASSESSMENT:
   - Evaluate accuracy and understanding depth
   - Assign score (0-100) with clear reasoning
   - Identify the ONE primary strength
   - Identify the ONE key improvement area

2. TOPIC UNDERSTANDING:
   - Focus on 2-3 main topics maximum
   - Rate understanding level for each topic (0-100)
   - Note specific gaps and strengths concisely

3. ACTIONABLE GUIDANCE:
   - Provide exactly 3 improvement suggestions
   - Lead with positive feedback
   - Focus on next steps, not comprehensive analysis

OUTPUT FORMAT (JSON):
{{
  "score": <0-100>,
  "feedback": "<concise, encouraging explanation of performance>",
  "is_correct": <boolean>,
  "topic_analysis": [
    {{
      "topic": "<main concept>",
      "performance": "<excellent|good|fair|poor>",
      "understanding_level": <0-100>,
      "specific_gaps": ["<most important gap>"],
      "strengths": ["<key strength>"]
    }}
  ],
  "improvement_suggestions": ["<actionable tip 1>", "<actionable tip 2>", "<actionable tip 3>"],
  "reasoning_chain": ["Assessment: <brief reasoning>", "Key insight: <main takeaway>", "Next step: <priority action>"],
  "confidence_level": <0-100>
}}

GRADING SCALE:
90-100: Excellent mastery  |  80-89: Good understanding  |  70-79: Fair grasp
60-69: Basic knowledge     |  50-59: Limited understanding |  0-49: Needs review

Use simple, clear language and limit feedback to 3-5 key points."""


def _text(value: Any, default: str) -> str:
    if isinstance(value, list):
        value = ' '.join(str(v) for v in value if v)
    if value is None or value == '':
        return default
    return str(value)


def _strings(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v) for v in value if v]


def _grading_error() -> Dict[str, Any]:
    return {'score': 0, 'feedback': 'Error processing AI response. Please try again.', 'is_correct': False}


def parse_grading_response(text: str) -> Dict[str, Any]:
    """Returns score, feedback and is_correct; model_used is added by the caller.

    A JSON object that fails to parse yields the error result. Only text
    without any object falls back to scraping a score from prose.
    """
    try:
        if has_json_object(text):
            parsed = extract_json_object(text)
            if not isinstance(parsed, dict):
                LOG.warning('grading_parse_failed', extra={'response_length': len(text)})
                return _grading_error()
            return {
                'score': _clamp(parsed.get('score') or 0),
                'feedback': _text(parsed.get('feedback'), 'No feedback provided.'),
                'is_correct': bool(parsed.get('is_correct')),
            }
        m = _SCORE_RE.search(text or '')
        score = _clamp(m.group(1)) if m else 0
        return {
            'score': score,
            'feedback': text if text else 'Unable to process response.',
            'is_correct': score >= 70,
        }
    except (TypeError, ValueError, AttributeError):
        LOG.exception('grading_parse_failed', exc_info=True)
        return _grading_error()


def _parse_topic(topic: Dict[str, Any]) -> TopicPerformance:
    performance = topic.get('performance')
    return TopicPerformance(
        topic=_text(topic.get('topic'), 'Unknown Topic'),
        performance=performance if performance in PERFORMANCE_LEVELS else 'fair',
        understanding_level=_clamp(topic.get('understanding_level') or 0),
        specific_gaps=_strings(topic.get('specific_gaps')) or [],
        strengths=_strings(topic.get('strengths')) or [],
    )


def _comprehensive_error() -> Dict[str, Any]:
    return {
        'score': 0,
        'feedback': 'Error processing comprehensive AI response. Please try again.',
        'is_correct': False,
        'topic_analysis': [TopicPerformance(topic='Error Analysis', performance='poor', understanding_level=0,
                                            specific_gaps=['System error occurred'], strengths=[])],
        'improvement_suggestions': ['Try again later', 'Contact support if issue persists'],
        'reasoning_chain': ['Error in AI response processing'],
        'confidence_level': 0,
    }


def parse_comprehensive_response(text: str) -> Dict[str, Any]:
    try:
        if has_json_object(text):
            parsed = extract_json_object(text)
            if not isinstance(parsed, dict):
                LOG.warning('comprehensive_parse_failed', extra={'response_length': len(text)})
                return _comprehensive_error()
            score = _clamp(parsed.get('score') or 0)
            if isinstance(parsed.get('topic_analysis'), list):
                topics = [_parse_topic(t) for t in parsed['topic_analysis'] if isinstance(t, dict)]
            else:
                topics = [TopicPerformance(
                    topic='General Knowledge',
                    performance=_performance_for(score),
                    understanding_level=score,
                    specific_gaps=['Analysis unavailable'],
                    strengths=['Shows understanding'] if score >= 70 else [],
                )]
            return {
                'score': score,
                'feedback': _text(parsed.get('feedback'), 'Comprehensive feedback unavailable.'),
                'is_correct': bool(parsed.get('is_correct')),
                'topic_analysis': topics,
                'improvement_suggestions': _strings(parsed.get('improvement_suggestions')) or ['Review the material and practice more'],
                'reasoning_chain': _strings(parsed.get('reasoning_chain')) or ['Basic analysis performed'],
                'confidence_level': _clamp(parsed.get('confidence_level') or 50, 50),
            }

        m = _SCORE_RE.search(text or '')
        score = _clamp(m.group(1)) if m else 0
        return {
            'score': score,
            'feedback': text if text else 'Unable to process comprehensive response.',
            'is_correct': score >= 70,
            'topic_analysis': [TopicPerformance(
                topic='General Knowledge',
                performance=_performance_for(score),
                understanding_level=score,
                specific_gaps=['Detailed analysis unavailable'],
                strengths=['Shows basic understanding'] if score >= 70 else [],
            )],
            'improvement_suggestions': ['Review the material thoroughly', 'Practice similar questions'],
            'reasoning_chain': ['Fallback analysis due to parsing error'],
            'confidence_level': 30,
        }
    except (TypeError, ValueError, AttributeError):
        LOG.exception('comprehensive_parse_failed', exc_info=True)
        return _comprehensive_error()


def text_similarity(a: str, b: str) -> float:
    """Jaccard overlap of whitespace separated words."""
    words_a = set(a.split())
    words_b = set(b.split())
    union = words_a | words_b
    return len(words_a & words_b) / len(union) if union else 0.0


def fallback_grading(expected_answer: Optional[str], user_response: Optional[str]) -> GradingResult:
    if not user_response or not user_response.strip():
        return GradingResult(score=0, feedback='No response provided.', is_correct=False, model_used='fallback')
    if not expected_answer:
        return GradingResult(score=50, feedback='Response recorded. Unable to grade automatically without expected answer.',
                             is_correct=False, model_used='fallback')
    similarity = text_similarity(expected_answer.lower(), user_response.lower())
    is_correct = similarity > 0.6
    feedback = ('Your response shows good understanding of the concept.' if is_correct
                else 'Your response needs improvement. Review the material and try to be more specific.')
    return GradingResult(score=round(similarity * 100), feedback=feedback, is_correct=is_correct, model_used='fallback')


def grade_response(question: str, expected_answer: Optional[str], user_response: str,
                   context: Optional[str] = None, request_id: Optional[str] = None) -> GradingResult:
    try:
        client = LLMClient.get_instance()
        result = client.generate(build_grading_prompt(question, expected_answer, user_response, context),
                                 max_tokens=GRADING_MAX_TOKENS, request_id=request_id)
        return GradingResult(model_used=result.model, **parse_grading_response(strip_code_fences(result.text)))
    except LLMError as e:
        LOG.warning('ai_grading_fallback', extra={'error': str(e)})
        return fallback_grading(expected_answer, user_response)
    except (ValidationError, ValueError, TypeError) as e:
        LOG.warning('ai_grading_invalid_result', extra={'error': str(e)})
        return fallback_grading(expected_answer, user_response)


def _comprehensive_from_basic(basic: GradingResult) -> ComprehensiveGradingResult:
    return ComprehensiveGradingResult(
        **basic.model_dump(),
        topic_analysis=[TopicPerformance(
            topic='General Knowledge',
            performance=_performance_for(basic.score),
            understanding_level=basic.score,
            specific_gaps=['Unable to analyze due to AI service error'],
            strengths=['Shows basic understanding'] if basic.score >= 70 else [],
        )],
        improvement_suggestions=['Review the material and try again'],
        reasoning_chain=['Fallback analysis due to service error'],
        confidence_level=50,
    )


def grade_response_comprehensive(question: str, expected_answer: Optional[str], user_response: str,
                                 context: Optional[str] = None, request_id: Optional[str] = None) -> ComprehensiveGradingResult:
    try:
        client = LLMClient.get_instance()
        result = client.generate(build_comprehensive_prompt(question, expected_answer, user_response, context),
                                 max_tokens=COMPREHENSIVE_MAX_TOKENS, request_id=request_id)
        return ComprehensiveGradingResult(model_used=result.model, **parse_comprehensive_response(strip_code_fences(result.text)))
    except LLMError as e:
        LOG.warning('comprehensive_grading_fallback', extra={'error': str(e)})
        return _comprehensive_from_basic(grade_response(question, expected_answer, user_response, context,
                                                        request_id=request_id))
    except (ValidationError, ValueError, TypeError) as e:
        # no second LLM call for a malformed answer
        LOG.warning('comprehensive_grading_invalid_result', extra={'error': str(e)})
        return _comprehensive_from_basic(fallback_grading(expected_answer, user_response))


# Progressive disclosure

def extract_key_insight(analysis: Dict[str, Any]) -> str:
    percentage = analysis.get('overall_percentage', 0)
    weaknesses = analysis.get('weaknesses_summary') or []
    strengths = analysis.get('strengths_summary') or []
    if percentage >= 90:
        return 'Excellent mastery demonstrated across all areas!'
    if percentage >= 80:
        return f"Strong performance with room to excel in {weaknesses[0] if weaknesses else 'advanced topics'}"
    if percentage >= 70:
        return f"Good foundation established. Focus on {weaknesses[0] if weaknesses else 'key concepts'}"
    if percentage >= 60:
        return f"Basic understanding shown. Strengthen {weaknesses[0] if weaknesses else 'fundamental concepts'}"
    return f"Great effort! Build confidence with {strengths[0] if strengths else 'consistent practice'}"


def celebration_message(grade: Optional[str]) -> str:
    messages = CELEBRATION_MESSAGES.get(grade or 'C', CELEBRATION_MESSAGES['C'])
    return random.choice(messages)


def topic_summary(topics: List[Dict[str, Any]]) -> str:
    if not topics:
        return 'Assessment completed successfully.'
    excellent = sum(1 for t in topics if t.get('performance') == 'excellent')
    good = sum(1 for t in topics if t.get('performance') == 'good')
    needs_work = sum(1 for t in topics if t.get('performance') in ('fair', 'poor'))
    if excellent > good + needs_work:
        tail = f'Focus on {needs_work} topics for improvement.' if needs_work else ''
        return f'Excellent understanding in {excellent} areas. {tail}'
    if good > 0:
        tail = f'{needs_work} areas need attention.' if needs_work else ''
        return f'Good grasp of {good} concepts. {tail}'
    return f'{len(topics)} topics reviewed. Focus on strengthening fundamental understanding.'


def transform_to_progressive_disclosure(results: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `results` with a `feedback_hierarchy` section added."""
    analysis = results['overall_analysis']
    questions = results.get('individual_questions', [])
    topics = [t.model_dump() if isinstance(t, TopicPerformance) else t for t in analysis.get('topic_breakdown', [])]
    strengths = analysis.get('strengths_summary') or []
    weaknesses = analysis.get('weaknesses_summary') or []

    hierarchy = {
        'primary': {
            'grade': analysis.get('overall_grade'),
            'percentage': analysis.get('overall_percentage'),
            'key_insight': extract_key_insight(analysis),
            'celebration_message': celebration_message(analysis.get('overall_grade')),
        },
        'at_glance': {
            'performance_summary': analysis.get('grade_explanation'),
            'primary_strength': strengths[0] if strengths else 'Completed the assessment',
            'primary_improvement': weaknesses[0] if weaknesses else 'Continue practicing',
            'quick_stats': {
                'strong_answers': sum(1 for q in questions if q.get('individual_score', 0) >= 80),
                'total_questions': len(questions),
                'confidence_level': analysis.get('confidence_assessment'),
            },
        },
        'topics': {
            'main_topics': topics[:5],
            'topic_summary': topic_summary(topics),
        },
        'growth_plan': {
            'priority_areas': (analysis.get('priority_study_areas') or [])[:3],
            'action_steps': (analysis.get('improvement_recommendations') or [])[:4],
            'study_tips': (analysis.get('study_plan_suggestions') or [])[:3],
        },
        'question_details': questions,
    }
    return {**results, 'feedback_hierarchy': hierarchy}
