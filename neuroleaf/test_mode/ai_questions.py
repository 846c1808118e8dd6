import re
import time
from typing import List, Dict, Any, Optional

from neuroleaf.ai import LLMClient, LLMError
from neuroleaf.ai.parsing import extract_json_object
from neuroleaf.storage import CacheManager
from neuroleaf.utils import get_logger, log_question_generation

LOG = get_logger()

QUESTIONS_MAX_TOKENS = 2000

DIFFICULTY_INSTRUCTIONS = {
    'easy': 'Focus on recall and basic understanding. Ask straightforward questions about the main concepts.',
    'medium': 'Focus on comprehension and application. Ask questions that require understanding relationships between concepts.',
    'hard': 'Focus on analysis and synthesis. Ask questions that require critical thinking, comparison, and deeper analysis.',
}

FALLBACK_TEMPLATES = [
    'Explain the concept of {front} in your own words.',
    "How does {front} relate to other concepts you've learned?",
    'What would happen if {front} was different? Explain your reasoning.',
    'Compare and contrast {front} with similar concepts.',
    'Provide an example of {front} and explain why it fits.',
    'What are the key characteristics of {front}?',
    'Describe a real-world application of {front}.',
    'What questions would you ask to better understand {front}?',
]

_NUMBERED_RE = re.compile(r'^\d+\.\s*')


def build_questions_prompt(flashcards: List[Dict[str, Any]], question_count: int, difficulty: str = 'medium') -> str:
    content = '\n\n'.join(
        f"{i + 1}. Q: {c.get('front_content', '')}\n   A: {c.get('back_content', '')}" for i, c in enumerate(flashcards)
    )
    instructions = DIFFICULTY_INSTRUCTIONS.get(difficulty, DIFFICULTY_INSTRUCTIONS['medium'])
    return f"""You are an expert educator creating {difficulty} level test questions from flashcard content.

FLASHCARD CONTENT:
{content}

INSTRUCTIONS:
- Generate exactly {question_count} thought-provoking questions
- {instructions}
- Questions should encourage critical thinking, not just memorization
- Make questions that test understanding of concepts, not exact wording
- Vary question types: analysis, application, comparison, synthesis
- Each question should be clear and specific

DIFFICULTY LEVEL: {difficulty.upper()}

Please respond in the following JSON format:
{{
  "questions": [
    {{
      "question": "Your question here",
      "suggested_answer": "Brief guidance on what a good answer should include",
      "difficulty": "{difficulty}"
    }}
  ]
}}

Generate {question_count} questions that promote deep understanding of the material."""


def extract_questions_from_text(text: str, count: int) -> List[Dict[str, Any]]:
    questions = []
    for line in (text or '').split('\n'):
        if len(questions) >= count:
            break
        line = line.strip()
        if not line or not (_NUMBERED_RE.match(line) or '?' in line):
            continue
        cleaned = _NUMBERED_RE.sub('', line).strip()
        if len(cleaned) > 10:
            questions.append({'question': cleaned, 'type': 'open_ended', 'difficulty': 'medium'})
    return questions


def parse_questions_response(text: str, expected_count: int) -> List[Dict[str, Any]]:
    parsed = extract_json_object(text)
    if isinstance(parsed, dict) and isinstance(parsed.get('questions'), list):
        questions = []
        for q in parsed['questions'][:expected_count]:
            if not isinstance(q, dict):
                continue
            questions.append({
                'question': q.get('question') or 'Generated question',
                'type': 'open_ended',
                'suggested_answer': q.get('suggested_answer'),
                'difficulty': q.get('difficulty') or 'medium',
            })
        return questions
    return extract_questions_from_text(text, expected_count)


def fallback_questions(flashcards: List[Dict[str, Any]], count: int) -> List[Dict[str, Any]]:
    """Cycle the templates over the cards: card i % n, template (i // n) % 8."""
    if not flashcards:
        return []
    n = len(flashcards)
    questions = []
    for i in range(min(count, n * len(FALLBACK_TEMPLATES))):
        card = flashcards[i % n]
        template = FALLBACK_TEMPLATES[(i // n) % len(FALLBACK_TEMPLATES)]
        questions.append({
            'question': template.replace('{front}', card.get('front_content', '')),
            'type': 'open_ended',
            'suggested_answer': f"Consider the definition: {card.get('back_content', '')}",
            'difficulty': 'medium',
        })
    return questions


def generate_questions(flashcards: List[Dict[str, Any]], question_count: int, difficulty: str = 'medium',
                       request_id: Optional[str] = None) -> List[Dict[str, Any]]:
    difficulty = difficulty or 'medium'
    start = time.time()
    cache = CacheManager.get_instance()
    cached = cache.get_questions(flashcards, question_count, difficulty)
    if cached is not None:
        log_question_generation(request_id, len(cached), difficulty, int((time.time() - start) * 1000), cache_hit=True)
        return cached

    try:
        result = LLMClient.get_instance().generate(build_questions_prompt(flashcards, question_count, difficulty),
                                                   max_tokens=QUESTIONS_MAX_TOKENS, request_id=request_id)
        questions = parse_questions_response(result.text, question_count)
    except LLMError as e:
        LOG.warning('question_generation_fallback', extra={'error': str(e)})
        questions = []

    if not questions:
        questions = fallback_questions(flashcards, question_count)
        log_question_generation(request_id, len(questions), difficulty, int((time.time() - start) * 1000), fallback=True)
        return questions

    cache.set_questions(flashcards, question_count, difficulty, questions)
    log_question_generation(request_id, len(questions), difficulty, int((time.time() - start) * 1000))
    return questions
