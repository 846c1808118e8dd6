import os
import re
import json
import time
from enum import Enum
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator

from neuroleaf.ai import LLMClient, LLMError
from neuroleaf.utils import get_logger, log_flashcard_generation

LOG = get_logger()

# Chunking
CHUNK_TARGET_SIZE = 8000
CHUNK_OVERLAP = 200
MIN_CHUNK_SIZE = 1500
LONG_DOCUMENT_THRESHOLD = 8000
MAX_CHUNKED_TARGET = 50
CHUNK_DELAY_SECONDS = float(os.getenv('FLASHCARD_CHUNK_DELAY', '0.5'))
GENERATION_MAX_TOKENS = int(os.getenv('FLASHCARD_MAX_TOKENS', '4000'))


# Exceptions
class FlashcardGeneratorError(Exception):
    pass


class GeneratorValidationError(FlashcardGeneratorError):
    pass


# Models
class ContentType(str, Enum):
    LECTURE_SLIDES = 'lecture_slides'
    ACADEMIC_PAPER = 'academic_paper'
    TEXTBOOK_CHAPTER = 'textbook_chapter'
    DOCUMENTATION = 'documentation'
    NOTES = 'notes'
    GENERAL_TEXT = 'general_text'


class GeneratedFlashcard(BaseModel):
    front: str
    back: str
    tags: List[str] = Field(default_factory=list)
    difficulty: str = 'medium'

    @field_validator('difficulty')
    @classmethod
    def clamp_difficulty(cls, v):
        if v not in ('easy', 'medium', 'hard'):
            return 'medium'
        return v


class EducationalConcept(BaseModel):
    concept: str
    definition: Optional[str] = None
    context: str = ''
    importance: str = 'low'
    type: str = 'definition'


class ContentMetadata(BaseModel):
    page_numbers: List[str] = Field(default_factory=list)
    table_of_contents: List[str] = Field(default_factory=list)
    author_info: List[str] = Field(default_factory=list)
    citations: List[str] = Field(default_factory=list)
    navigation_elements: List[str] = Field(default_factory=list)

    def element_count(self) -> int:
        return sum(len(v) for v in self.model_dump().values())


class ContentAnalysis(BaseModel):
    word_count: int
    char_count: int
    sentence_count: int
    paragraph_count: int
    complexity: str
    technical_terms: int
    numbers_and_stats: int
    lists: int
    recommended_card_count: int
    estimated_difficulty: str
    educational_concepts: List[EducationalConcept] = Field(default_factory=list)
    content_type: ContentType = ContentType.GENERAL_TEXT
    metadata: ContentMetadata = Field(default_factory=ContentMetadata)


class GenerationResult(BaseModel):
    flashcards: List[GeneratedFlashcard]
    content_analysis: Optional[ContentAnalysis] = None
    metadata: Dict[str, Any]


# Patterns
_FLAGS = re.IGNORECASE | re.MULTILINE

_DEFINITION_PATTERNS = [
    re.compile(r'(?:^|\n)\s*(.+?)\s+(?:is|are|means|refers to|defined as)\s+(.+?)(?:\.|$)', _FLAGS),
    re.compile(r'(?:^|\n)\s*(.+?):\s*(.+?)(?:\n|$)', re.MULTILINE),
    re.compile(r'Definition of (.+?):\s*(.+?)(?:\n|$)', _FLAGS),
    re.compile(r'(.+?)\s+can be defined as\s+(.+?)(?:\.|$)', _FLAGS),
]
_PROCESS_PATTERNS = [
    re.compile(r'(?:steps?|process|procedure|method|algorithm)(?:\s+(?:to|for|of))?\s+(.+?):\s*\n((?:\d+\.|[-*]\s).+?)(?:\n\n|$)', _FLAGS),
    re.compile(r'How to (.+?):\s*\n((?:\d+\.|[-*]\s).+?)(?:\n\n|$)', _FLAGS),
]
_RELATIONSHIP_PATTERNS = [
    re.compile(r'(.+?)\s+(?:causes?|leads? to|results? in|affects?)\s+(.+?)(?:\.|$)', _FLAGS),
    re.compile(r'(.+?)\s+(?:depends on|relies on|requires?)\s+(.+?)(?:\.|$)', _FLAGS),
    re.compile(r'The relationship between (.+?) and (.+?) is (.+?)(?:\.|$)', _FLAGS),
]
_EXAMPLE_PATTERNS = [
    re.compile(r'(?:for example|such as|including|like)\s+(.+?)(?:\.|,|$)', _FLAGS),
    re.compile(r'Examples?:\s*(.+?)(?:\n|$)', _FLAGS),
]
_METADATA_PATTERNS = [
    re.compile(r'^(?:page)\s*\d+', re.IGNORECASE),
    re.compile(r'^(?:lecture|slide)\s*\d+', re.IGNORECASE),
    re.compile(r'main topics covered', re.IGNORECASE),
    re.compile(r'overview of', re.IGNORECASE),
    re.compile(r'introduction to', re.IGNORECASE),
    re.compile(r'^topics?$', re.IGNORECASE),
    re.compile(r'^outline$', re.IGNORECASE),
    re.compile(r'^agenda$', re.IGNORECASE),
    re.compile(r'learning objectives', re.IGNORECASE),
    re.compile(r'what (?:are|is) the main', re.IGNORECASE),
    re.compile(r'(?:next|previous|back)', re.IGNORECASE),
]
_HIGH_IMPORTANCE_PATTERNS = [
    re.compile(r'(?:key|important|critical|essential|fundamental|core|primary)', re.IGNORECASE),
    re.compile(r'definition|principle|law|theory|concept', re.IGNORECASE),
    re.compile(r'formula|equation|theorem', re.IGNORECASE),
]
_GENERIC_TERMS = ('introduction', 'overview', 'summary', 'conclusion', 'definition', 'concept', 'topic', 'subject')
_IMPORTANCE_ORDER = {'high': 3, 'medium': 2, 'low': 1}

_META_QUESTION_PATTERNS = [
    re.compile(r'what (?:are )?the main topics covered'),
    re.compile(r'what topics (?:are )?(?:discussed|covered)'),
    re.compile(r'what is (?:the )?(?:main )?(?:focus|purpose) of'),
    re.compile(r'what (?:does )?this (?:lecture|document|text) cover'),
    re.compile(r'what (?:comes|happens) (?:after|before|next)'),
    re.compile(r'what is (?:the )?overview of'),
    re.compile(r'what is (?:the )?introduction to'),
    re.compile(r'what are (?:the )?learning objectives'),
    re.compile(r'what is (?:the )?structure of'),
    re.compile(r'what (?:page|slide) (?:discusses|covers)'),
]
_STRUCTURAL_PATTERNS = [
    re.compile(r'(?:page|slide)\s*\d+'),
    re.compile(r'table of contents'),
    re.compile(r'learning objectives'),
    re.compile(r'course outline'),
    re.compile(r'next topic'),
    re.compile(r'previous topic'),
]
_VAGUE_ANSWER_PATTERNS = [
    re.compile(r'^(?:various|different|multiple|several)\s+\w+$'),
    re.compile(r'^(?:many|some|few)\s+\w+$'),
    re.compile(r'concepts?$'),
    re.compile(r'topics?$'),
    re.compile(r'principles?$'),
    re.compile(r'^it (?:covers|discusses|explains)'),
]
_EDUCATIONAL_PATTERNS = [
    re.compile(r'what is\s+(?:the\s+)?(?:definition|meaning|purpose|function|role)\s+of'),
    re.compile(r'how (?:does|do|is|are)\s+\w+.*(?:work|function|operate|affect|influence)'),
    re.compile(r'why (?:does|do|is|are)\s+\w+.*(?:important|necessary|effective|used)'),
    re.compile(r'when (?:does|do|did|was|were)\s+\w+.*(?:occur|happen|develop|discovered)'),
    re.compile(r'where (?:does|do|is|are)\s+\w+.*(?:located|found|used|applied)'),
    re.compile(r'define\s+(?:the\s+term\s+)?\w+'),
    re.compile(r'calculate\s+(?:the\s+)?\w+'),
    re.compile(r'what\s+(?:is\s+the\s+)?formula\s+for'),
    re.compile(r'(?:give\s+an?\s+)?example\s+of'),
    re.compile(r'what\s+(?:are\s+the\s+)?steps\s+(?:to|for|in)'),
    re.compile(r'what\s+(?:is\s+the\s+)?relationship\s+between'),
    re.compile(r'what\s+(?:is\s+the\s+)?difference\s+between'),
    re.compile(r'according\s+to.*what\s+(?:is|are)'),
    re.compile(r'what.*(?:primary\s+function|main\s+purpose|key\s+role|primary\s+effect)'),
    re.compile(r'which.*(?:type\s+of|kind\s+of|method\s+of)'),
    re.compile(r'name\s+(?:the\s+)?(?:main\s+)?(?:components|parts|elements|factors)'),
    re.compile(r'list\s+(?:the\s+)?(?:main\s+)?(?:factors|reasons|steps|components)'),
]

_KV_PATTERNS_WITH_DIFFICULTY = [
    re.compile(r'"q":\s*"([^"]+)"\s*,\s*"a":\s*"([^"]+)"\s*,\s*"difficulty":\s*"([^"]+)"'),
    re.compile(r'"question":\s*"([^"]+)"\s*,\s*"answer":\s*"([^"]+)"\s*,\s*"difficulty":\s*"([^"]+)"'),
    re.compile(r'"front":\s*"([^"]+)"\s*,\s*"back":\s*"([^"]+)"\s*,\s*"difficulty":\s*"([^"]+)"'),
]
_KV_PATTERNS = [
    re.compile(r'"q":\s*"([^"]+)"\s*,\s*"a":\s*"([^"]+)"'),
    re.compile(r'"question":\s*"([^"]+)"\s*,\s*"answer":\s*"([^"]+)"'),
    re.compile(r'"front":\s*"([^"]+)"\s*,\s*"back":\s*"([^"]+)"'),
]
_Q_LINE = re.compile(r'^(?:Q|Question)\s*\d*\s*[:.)]\s*', re.IGNORECASE)
_A_LINE = re.compile(r'^(?:A|Answer)\s*\d*\s*[:.)]\s*', re.IGNORECASE)
_QUESTION_START = re.compile(r'^(what|who|when|where|why|how|which|define|explain)', re.IGNORECASE)

_CONTENT_TYPE_GUIDANCE = {
    ContentType.LECTURE_SLIDES: (
        'LECTURE SLIDES OPTIMIZATION:\n'
        '- Focus on key points from each slide, not slide numbers or navigation\n'
        '- Extract main concepts, definitions, and examples presented\n'
        '- Convert bullet points into question-answer pairs\n'
        '- Prioritize formulas, diagrams, and key takeaways'
    ),
    ContentType.ACADEMIC_PAPER: (
        'ACADEMIC PAPER OPTIMIZATION:\n'
        '- Extract key findings, methodologies, and conclusions\n'
        '- Focus on research results, not paper structure\n'
        '- Create cards for important statistics, dates, and figures\n'
        '- Include key terminology and theoretical concepts'
    ),
    ContentType.TEXTBOOK_CHAPTER: (
        'TEXTBOOK OPTIMIZATION:\n'
        '- Extract definitions, principles, and laws presented\n'
        '- Focus on examples and problem-solving methods\n'
        '- Create cards for formulas, equations, and key concepts\n'
        '- Convert exercises into learning questions about the concepts'
    ),
    ContentType.DOCUMENTATION: (
        'DOCUMENTATION OPTIMIZATION:\n'
        '- Focus on functionality, syntax, and usage patterns\n'
        '- Extract parameter definitions and return values\n'
        '- Create cards for code examples and implementation details\n'
        '- Include configuration options and best practices'
    ),
    ContentType.NOTES: (
        'NOTES OPTIMIZATION:\n'
        '- Extract key facts and important points highlighted\n'
        '- Focus on definitions and concepts noted\n'
        '- Convert informal explanations into formal Q&A\n'
        '- Include examples and clarifications provided'
    ),
}

_RULES = (
    'CRITICAL: AVOID META-QUESTIONS\n'
    'NEVER create flashcards about document structure, navigation elements, page numbers, '
    'tables of contents, learning objectives, course outlines, or "overview" and "introduction" concepts.\n\n'
    'ONLY create flashcards about EDUCATIONAL CONTENT:\n'
    '- Specific facts, definitions, and concepts\n'
    '- Formulas, equations, and calculations\n'
    '- Processes, procedures, and methods\n'
    '- Examples and applications\n'
    '- Historical facts, dates, and figures\n'
    '- Cause-and-effect relationships\n'
    '- Technical terminology and their meanings\n\n'
    'QUESTION TYPES:\n'
    '- Definition: "What is photosynthesis?"\n'
    '- Factual: "What year was the Declaration of Independence signed?"\n'
    '- Process: "What are the steps of cellular respiration?"\n'
    '- Application: "What is an example of a renewable energy source?"\n'
    '- Calculation: "How do you calculate acceleration?"\n\n'
    'QUALITY:\n'
    '- Each flashcard tests specific, verifiable knowledge\n'
    '- Answers are concrete, not vague\n\n'
    'EXAMPLES:\n'
    'BAD: {"q":"What topics are covered in Lecture 3?","a":"Various biology concepts","difficulty":"easy"}\n'
    'GOOD: {"q":"What is the primary function of mitochondria?","a":"To produce ATP (energy) for cellular processes","difficulty":"medium"}\n\n'
    'RESPONSE FORMAT:\n'
    'Respond ONLY with a JSON array in this exact format:\n'
    '[{"q":"question text","a":"answer text","difficulty":"easy|medium|hard"}]'
)


def is_metadata(text: str) -> bool:
    return any(p.search(text) for p in _METADATA_PATTERNS)


def assess_concept_importance(concept: str, definition: str, full_content: str) -> str:
    if any(p.search(concept) or p.search(definition) for p in _HIGH_IMPORTANCE_PATTERNS):
        return 'high'
    frequency = full_content.lower().count(concept.lower()) if concept else 0
    if frequency > 3:
        return 'high'
    if frequency > 1:
        return 'medium'
    return 'low'


def extract_educational_concepts(content: str) -> List[EducationalConcept]:
    """Find definitions, processes, relationships and examples worth a card.

    Only high and medium importance concepts survive, at most 30.
    """
    concepts: List[EducationalConcept] = []

    for pattern in _DEFINITION_PATTERNS:
        for m in pattern.finditer(content):
            concept, definition = (m.group(1) or '').strip(), (m.group(2) or '').strip()
            if concept and definition and not is_metadata(concept) and len(concept) > 2 and len(definition) > 10:
                concepts.append(EducationalConcept(
                    concept=concept, definition=definition, context=m.group(0).strip(),
                    importance=assess_concept_importance(concept, definition, content), type='definition'))

    for pattern in _PROCESS_PATTERNS:
        for m in pattern.finditer(content):
            concept, steps = (m.group(1) or '').strip(), (m.group(2) or '').strip()
            if concept and steps and not is_metadata(concept):
                concepts.append(EducationalConcept(
                    concept=f'How to {concept}', context=m.group(0).strip(), importance='medium', type='process'))

    for pattern in _RELATIONSHIP_PATTERNS:
        for m in pattern.finditer(content):
            first, second = (m.group(1) or '').strip(), (m.group(2) or '').strip()
            if first and second and not is_metadata(first) and not is_metadata(second):
                concepts.append(EducationalConcept(
                    concept=f'{first} and {second} relationship', context=m.group(0).strip(),
                    importance=assess_concept_importance(first, second, content), type='relationship'))

    for pattern in _EXAMPLE_PATTERNS:
        for m in pattern.finditer(content):
            example = (m.group(1) or '').strip()
            if example and not is_metadata(example) and len(example) > 5:
                concepts.append(EducationalConcept(
                    concept=f'Example: {example}', context=m.group(0).strip(), importance='low', type='example'))

    seen = set()
    unique = []
    for c in concepts:
        key = c.concept.lower()
        if key not in seen:
            seen.add(key)
            unique.append(c)

    quality = []
    for c in unique:
        if c.importance not in ('high', 'medium'):
            continue
        if c.type == 'definition' and (not c.definition or len(c.definition) < 15):
            continue
        if len(c.concept.split(' ')) < 2 and len(c.concept) < 8:
            continue
        if any(term in c.concept.lower() for term in _GENERIC_TERMS):
            continue
        quality.append(c)

    quality.sort(key=lambda c: _IMPORTANCE_ORDER[c.importance], reverse=True)
    return quality[:30]


def analyze_structure(content: str) -> Dict[str, int]:
    lines = content.split('\n')
    return {
        'bullet_points': len(re.findall(r'^\s*[-*•]\s', content, re.MULTILINE)),
        'numbered_lists': len(re.findall(r'^\s*\d+[.)]\s', content, re.MULTILINE)),
        'headings': len(re.findall(r'^#{1,6}\s|^[A-Z][^\n]*\n[=-]{3,}', content, re.MULTILINE)),
        'short_lines': sum(1 for line in lines if 0 < len(line.strip()) < 50),
        'long_paragraphs': len(re.findall(r'[^\n]{200,}', content)),
        'code_blocks': len(re.findall(r'```[\s\S]*?```|`[^`]+`', content)),
        'citations': len(re.findall(r'\[[0-9]+\]|\([0-9]{4}\)|et al\.', content)),
    }


def _count(pattern: str, text: str, flags: int = 0) -> int:
    return len(re.findall(pattern, text, flags))


def _score_lecture_slides(text: str, s: Dict[str, int]) -> int:
    score = 0
    if 'slide' in text:
        score += 3
    if 'lecture' in text:
        score += 2
    if re.search(r'\b(?:slide|page)\s+\d+', text):
        score += 2
    if s['short_lines'] > s['long_paragraphs'] * 2:
        score += 2
    if s['bullet_points'] > 5:
        score += 1
    if s['headings'] > 3:
        score += 1
    if 'objectives' in text or 'overview' in text:
        score += 1
    return score


def _score_academic_paper(text: str, s: Dict[str, int]) -> int:
    score = 0
    if 'abstract' in text:
        score += 3
    if 'methodology' in text or 'methods' in text:
        score += 2
    if 'references' in text or 'bibliography' in text:
        score += 2
    if 'conclusion' in text and 'introduction' in text:
        score += 2
    if _count(r'\b(?:hypothesis|research|study|analysis|findings|results)\b', text) > 3:
        score += 2
    if s['citations'] > 5:
        score += 2
    if s['long_paragraphs'] > s['short_lines']:
        score += 1
    if _count(r'\b(?:figure|table)\s+\d+', text, re.IGNORECASE) > 0:
        score += 1
    return score


def _score_textbook(text: str, s: Dict[str, int]) -> int:
    score = 0
    if 'exercises' in text or 'problems' in text:
        score += 3
    if 'unit' in text:
        score += 1
    if 'example' in text and 'solution' in text:
        score += 2
    if _count(r'\b(?:definition|theorem|principle|law)\b', text, re.IGNORECASE) > 2:
        score += 2
    if _count(r'\b(?:recall|remember|note that|important)\b', text, re.IGNORECASE) > 1:
        score += 1
    if s['numbered_lists'] > 2:
        score += 1
    if s['headings'] > 2 and s['bullet_points'] > 3:
        score += 1
    return score


def _score_documentation(text: str, s: Dict[str, int]) -> int:
    score = 0
    if 'api' in text or 'function' in text:
        score += 3
    if 'parameter' in text or 'returns' in text:
        score += 2
    if 'usage' in text or 'example' in text:
        score += 1
    if s['code_blocks'] > 2:
        score += 2
    if _count(r'\b(?:class|method|property|attribute)\b', text) > 3:
        score += 1
    if _count(r'\b(?:syntax|implementation|configuration|install)\b', text, re.IGNORECASE) > 1:
        score += 1
    return score


def _score_notes(text: str, s: Dict[str, int]) -> int:
    score = 0
    if 'notes' in text and len(text) < 2000:
        score += 2
    if s['bullet_points'] > s['long_paragraphs'] * 2:
        score += 2
    if _count(r'\b(?:remember|todo|note|important|key point)\b', text, re.IGNORECASE) > 2:
        score += 1
    if _count(r'(?:i\.e\.|e\.g\.|etc\.)', text, re.IGNORECASE) > 1:
        score += 1
    if s['short_lines'] > 10 and s['long_paragraphs'] < 3:
        score += 1
    return score


def detect_content_type(content: str) -> ContentType:
    lower = content.lower()
    structure = analyze_structure(content)
    scores = {
        ContentType.LECTURE_SLIDES: _score_lecture_slides(lower, structure),
        ContentType.ACADEMIC_PAPER: _score_academic_paper(lower, structure),
        ContentType.TEXTBOOK_CHAPTER: _score_textbook(lower, structure),
        ContentType.DOCUMENTATION: _score_documentation(lower, structure),
        ContentType.NOTES: _score_notes(lower, structure),
        ContentType.GENERAL_TEXT: 1,
    }
    detected = max(scores, key=scores.get)
    LOG.debug('content_type_detected', extra={'content_type': detected.value, 'scores': {k.value: v for k, v in scores.items()}})
    return detected


def extract_content_metadata(content: str) -> ContentMetadata:
    """Collect elements that must not become cards."""
    return ContentMetadata(
        page_numbers=[m.group(0) for m in re.finditer(r'(?:page|p\.)\s*\d+', content, _FLAGS)],
        table_of_contents=[m.group(0).strip() for m in re.finditer(r'^\s*\d+\.\s+[^.]+$', content, re.MULTILINE)],
        author_info=[m.group(1).strip() for m in re.finditer(r'(?:author|by|written by):\s*(.+?)(?:\n|$)', content, _FLAGS) if m.group(1).strip()],
        citations=[m.group(0) for m in re.finditer(r'\[\d+\]|\(\d{4}\)|et al\.', content)],
        navigation_elements=[m.group(0) for m in re.finditer(r'(?:next|previous|back to|continue to|see also)', content, _FLAGS)],
    )


def _apply_length_cap(count: float, word_count: int) -> float:
    if word_count > 2000:
        return min(count, 25)
    if word_count > 1000:
        return min(count, 20)
    if word_count > 500:
        return min(count, 15)
    return min(count, 12)


def calculate_optimal_card_count(word_count: int, sentence_count: int, paragraph_count: int,
                                 concepts: List[EducationalConcept]) -> int:
    high = sum(1 for c in concepts if c.importance == 'high')
    medium = sum(1 for c in concepts if c.importance == 'medium')
    concept_based = high * 1.5 + medium * 0.8
    fallback = max(word_count // 200, sentence_count // 5, int(paragraph_count * 0.8))
    recommended = _apply_length_cap(max(concept_based, fallback), word_count)
    return max(8, min(25, int(round(recommended))))


def analyze_content(content: str) -> ContentAnalysis:
    word_count = len(content.split())
    sentences = [s for s in re.split(r'[.!?]+', content) if s.strip()]
    paragraphs = [p for p in re.split(r'\n\s*\n', content) if p.strip()]
    technical_terms = _count(r'[A-Z][a-z]+(?:[A-Z][a-z]+)+|[a-z]+(?:-[a-z]+)+', content)
    numbers = _count(r'\d+(?:\.\d+)?%?|\$\d+', content)
    lists = _count(r'^\s*[-*•]\s+', content, re.MULTILINE)

    concepts = extract_educational_concepts(content)
    high_concepts = sum(1 for c in concepts if c.importance == 'high')
    score = sum([
        word_count > 500,
        technical_terms > 10,
        numbers > 5,
        len(paragraphs) > 5,
        high_concepts > 3,
    ])
    if score >= 4:
        complexity = 'complex'
    elif score >= 2:
        complexity = 'moderate'
    else:
        complexity = 'simple'

    analysis = ContentAnalysis(
        word_count=word_count,
        char_count=len(content),
        sentence_count=len(sentences),
        paragraph_count=len(paragraphs),
        complexity=complexity,
        technical_terms=technical_terms,
        numbers_and_stats=numbers,
        lists=lists,
        recommended_card_count=calculate_optimal_card_count(word_count, len(sentences), len(paragraphs), concepts),
        estimated_difficulty={'complex': 'hard', 'moderate': 'medium'}.get(complexity, 'easy'),
        educational_concepts=concepts,
        content_type=detect_content_type(content),
        metadata=extract_content_metadata(content),
    )
    LOG.debug('content_analyzed', extra={
        'word_count': word_count,
        'complexity': complexity,
        'content_type': analysis.content_type.value,
        'concepts': len(concepts),
        'recommended_card_count': analysis.recommended_card_count,
    })
    return analysis


# Parsing
def _to_card(front, back, difficulty='medium') -> GeneratedFlashcard:
    return GeneratedFlashcard(front=str(front).strip(), back=str(back).strip(), difficulty=difficulty or 'medium')


def _cards_from_items(items) -> List[GeneratedFlashcard]:
    cards = []
    for item in items:
        if not isinstance(item, dict):
            continue
        front = item.get('q') or item.get('question') or item.get('front') or ''
        back = item.get('a') or item.get('answer') or item.get('back') or ''
        if front and back:
            cards.append(_to_card(front, back, item.get('difficulty')))
    return cards


def parse_json_array(response: str) -> List[GeneratedFlashcard]:
    match = re.search(r'\[[\s\S]*\]', response) or re.search(r'\[[\s\S]*', response)
    if not match:
        return []
    text = re.sub(r'```json|```', '', match.group(0))
    text = re.sub(r',\s*([}\]])', r'\1', text).strip()
    try:
        parsed = json.loads(text)
    except ValueError:
        last = text.rfind('}')
        if last <= 0:
            return []
        try:
            parsed = json.loads(text[:last + 1] + ']')
        except ValueError:
            return []
    if not isinstance(parsed, list):
        return []
    return _cards_from_items(parsed)


def parse_key_values(response: str) -> List[GeneratedFlashcard]:
    cards = []
    for pattern in _KV_PATTERNS_WITH_DIFFICULTY:
        for m in pattern.finditer(response):
            cards.append(_to_card(m.group(1), m.group(2), m.group(3)))
    if not cards:
        for pattern in _KV_PATTERNS:
            for m in pattern.finditer(response):
                cards.append(_to_card(m.group(1), m.group(2)))
    return cards


def parse_qa_lines(response: str) -> List[GeneratedFlashcard]:
    cards = []
    question, answer = '', ''
    for line in (l.strip() for l in response.split('\n')):
        if not line:
            continue
        if _Q_LINE.match(line):
            if question and answer:
                cards.append(_to_card(question, answer))
            question, answer = _Q_LINE.sub('', line, count=1).strip(), ''
        elif _A_LINE.match(line):
            answer = _A_LINE.sub('', line, count=1).strip()
        elif question and not answer:
            question += ' ' + line
        elif answer:
            answer += ' ' + line
    if question and answer:
        cards.append(_to_card(question, answer))
    return cards


def parse_emergency(response: str) -> List[GeneratedFlashcard]:
    cards = []
    sentences = [s.strip() for s in re.split(r'[.!?]+', response) if s.strip()]
    for current, nxt in zip(sentences, sentences[1:]):
        if (current.endswith('?') or _QUESTION_START.match(current)) and len(nxt) > 10:
            cards.append(_to_card(re.sub(r'^\W*', '', current), re.sub(r'^\W*', '', nxt)))
    if not cards:
        lines = [l.strip() for l in response.split('\n') if len(l.strip()) > 20]
        for i in range(0, len(lines) - 1, 2):
            cards.append(_to_card(lines[i], lines[i + 1]))
    return cards[:5]


_PARSE_STRATEGIES = [parse_json_array, parse_key_values, parse_qa_lines, parse_emergency]


def parse_flashcards(response: str) -> List[GeneratedFlashcard]:
    for i, strategy in enumerate(_PARSE_STRATEGIES, start=1):
        cards = strategy(response or '')
        if cards:
            LOG.debug('flashcards_parsed', extra={'strategy': i, 'count': len(cards)})
            return cards
    LOG.warning('flashcard_parse_failed', extra={'response_length': len(response or '')})
    return []


# Quality
def validate_card(card: GeneratedFlashcard, analysis: Optional[ContentAnalysis] = None):
    """Return (is_valid, reason)."""
    question = card.front.lower()
    answer = card.back.lower()

    for p in _META_QUESTION_PATTERNS:
        if p.search(question):
            return False, f'Meta-question detected: {p.pattern}'
    for p in _STRUCTURAL_PATTERNS:
        if p.search(question) or p.search(answer):
            return False, f'Structural reference detected: {p.pattern}'
    for p in _VAGUE_ANSWER_PATTERNS:
        if p.search(answer.strip()):
            return False, f'Vague answer detected: {p.pattern}'
    if len(card.front.strip()) < 10:
        return False, 'Question too short'
    if len(card.back.strip()) < 5:
        return False, 'Answer too short'

    if not any(p.search(question) for p in _EDUCATIONAL_PATTERNS):
        concepts = analysis.educational_concepts[:5] if analysis else []
        referenced = any(
            len(word) > 3 and word in question
            for c in concepts for word in c.concept.lower().split(' ')
        )
        if not referenced:
            return False, 'No clear educational question pattern or concept reference'

    if len(answer) < 20 or len(answer.split(' ')) < 4:
        return False, 'Answer lacks sufficient detail or substance'
    if card.back.strip() == card.front.strip():
        return False, 'Question and answer are identical'
    return True, 'Valid educational flashcard'


def validate_flashcard_quality(cards: List[GeneratedFlashcard], analysis: Optional[ContentAnalysis] = None) -> List[GeneratedFlashcard]:
    valid, rejected = [], []
    for card in cards:
        ok, reason = validate_card(card, analysis)
        if ok:
            valid.append(card)
        else:
            rejected.append({'question': card.front[:60], 'reason': reason})
    if rejected:
        LOG.info('flashcards_rejected', extra={'rejected': len(rejected), 'total': len(cards), 'samples': rejected[:5]})
    return valid


def text_similarity(a: str, b: str) -> float:
    words_a = a.lower().split()
    words_b = b.lower().split()
    union = set(words_a) | set(words_b)
    if not union:
        return 0.0
    intersection = [w for w in words_a if w in words_b]
    return len(intersection) / len(union)


def score_card(card: GeneratedFlashcard, all_cards: List[GeneratedFlashcard]) -> float:
    score = 0.0
    q_len = len(card.front)
    if 20 <= q_len <= 100:
        score += 2
    elif 10 <= q_len <= 150:
        score += 1
    a_len = len(card.back)
    if 20 <= a_len <= 200:
        score += 2
    elif 10 <= a_len <= 300:
        score += 1
    if card.difficulty == 'medium':
        score += 1
    rare_tags = [t for t in card.tags if sum(1 for c in all_cards if t in c.tags) <= len(all_cards) * 0.3]
    score += len(rare_tags) * 0.5
    common = {'what', 'when', 'where', 'who', 'why', 'how', 'is', 'are', 'the', 'a', 'an'}
    unique_words = [w for w in card.front.lower().split() if w not in common]
    score += min(2, len(unique_words) * 0.1)
    return score


def ensure_difficulty_distribution(cards: List[GeneratedFlashcard], target: int) -> List[GeneratedFlashcard]:
    """Pick roughly 30% easy, 50% medium and 20% hard, then fill from the rest."""
    target_easy = int(round(target * 0.3))
    target_medium = int(round(target * 0.5))
    target_hard = target - target_easy - target_medium

    selected = [c for c in cards if c.difficulty == 'easy'][:target_easy]
    selected += [c for c in cards if c.difficulty == 'medium'][:target_medium]
    selected += [c for c in cards if c.difficulty == 'hard'][:max(target_hard, 0)]
    chosen = {id(c) for c in selected}
    remaining = [c for c in cards if id(c) not in chosen]
    selected += remaining[:target - len(selected)]
    return selected[:target]


def select_best_cards(cards: List[GeneratedFlashcard], target: int) -> List[GeneratedFlashcard]:
    ranked = sorted(cards, key=lambda c: score_card(c, cards), reverse=True)
    return ensure_difficulty_distribution(ranked, target)


def deduplicate_and_optimize(cards: List[GeneratedFlashcard], target: int) -> List[GeneratedFlashcard]:
    unique: List[GeneratedFlashcard] = []
    for card in cards:
        duplicate = any(
            text_similarity(card.front, existing.front) > 0.75 or text_similarity(card.back, existing.back) > 0.8
            for existing in unique
        )
        if not duplicate:
            unique.append(card)
    threshold = max(target * 1.5, 40)
    if len(unique) > threshold:
        return select_best_cards(unique, min(target, 30))
    return unique


# Chunking
def split_by_size(content: str) -> List[str]:
    chunks = []
    paragraphs = [p for p in re.split(r'\n\s*\n', content) if p.strip()]
    current = ''
    for paragraph in paragraphs:
        too_big = len(current) + len(paragraph) + CHUNK_OVERLAP > CHUNK_TARGET_SIZE
        if too_big and len(current) >= MIN_CHUNK_SIZE:
            chunks.append(current.strip())
            sentences = [s for s in re.split(r'[.!?]+', current) if s.strip()]
            overlap = '. '.join(sentences[-2:]) + ('.' if len(sentences) > 2 else '')
            current = overlap + '\n\n' + paragraph
        else:
            current += ('\n\n' if current else '') + paragraph
    if len(current.strip()) >= MIN_CHUNK_SIZE:
        chunks.append(current.strip())
    return chunks


def chunk_content(content: str) -> List[str]:
    return [c for c in split_by_size(content) if len(c) >= MIN_CHUNK_SIZE]


def calculate_chunk_card_count(analysis: ContentAnalysis, base_count: int, is_last_chunk: bool) -> int:
    count = max(base_count, 3)
    count = int(round(count * min(1.5, analysis.word_count / 300)))
    if analysis.complexity == 'complex':
        count = int(round(count * 1.2))
    count = max(3, min(12, count))
    if is_last_chunk and count < 5:
        count = min(count + 2, 8)
    return count


# Prompts
def _generation_hints(difficulty: Optional[str], language: str, subject: Optional[str]) -> str:
    hints = []
    if difficulty:
        hints.append(f'Target difficulty: {difficulty}.')
    if subject:
        hints.append(f'Subject context: {subject}.')
    if language and language != 'en':
        hints.append(f'Write every question and answer in {language}.')
    return ('\n' + '\n'.join(hints)) if hints else ''


def build_flashcard_prompt(content: str, number_of_cards: int, analysis: Optional[ContentAnalysis] = None,
                           difficulty: Optional[str] = None, language: str = 'en', subject: Optional[str] = None) -> str:
    analysis_info = ''
    guidance = ''
    concept_lines = ''
    if analysis:
        high = [c for c in analysis.educational_concepts if c.importance == 'high']
        analysis_info = (
            'Content Analysis:\n'
            f'- {analysis.word_count} words, {analysis.complexity} complexity, {analysis.estimated_difficulty} difficulty\n'
            f'- Content type: {analysis.content_type.value}\n'
            f'- Educational concepts found: {len(analysis.educational_concepts)} ({len(high)} high-priority)'
        )
        if analysis.content_type in _CONTENT_TYPE_GUIDANCE:
            guidance = '\n\n' + _CONTENT_TYPE_GUIDANCE[analysis.content_type]
        if high:
            listed = '\n'.join(f"- {c.concept}{' (definition)' if c.type == 'definition' else ''}" for c in high[:5])
            concept_lines = (
                f'\nPRIORITY EDUCATIONAL CONCEPTS IDENTIFIED:\n{listed}\n'
                'Focus primarily on these concepts when creating flashcards.'
            )
    return (
        'You are an expert educator creating high-quality flashcards for optimal learning. '
        f'Create exactly {number_of_cards} flashcards from the provided educational content.\n\n'
        f'{analysis_info}{concept_lines}{guidance}{_generation_hints(difficulty, language, subject)}\n\n'
        f'CONTENT TO ANALYZE:\n{content}\n\n'
        f'{_RULES}\n\n'
        f'Generate exactly {number_of_cards} high-quality, content-focused flashcards. Start your response with [ and end with ]'
    ).strip()


def build_chunk_prompt(chunk: str, number_of_cards: int, analysis: ContentAnalysis, index: int, total: int,
                       difficulty: Optional[str] = None, language: str = 'en', subject: Optional[str] = None) -> str:
    relevant = [c.concept for c in analysis.educational_concepts if c.concept.lower() in chunk.lower()][:3]
    concept_lines = ('\nKEY CONCEPTS IN THIS CONTENT:\n' + '\n'.join(f'- {c}' for c in relevant) + '\n') if relevant else ''
    return (
        'You are an expert educator creating high-quality flashcards for optimal learning. You are processing educational content.\n\n'
        f'Processing part {index} of {total} from a larger document\n'
        f'Content Analysis: {analysis.word_count} words, {analysis.complexity} complexity{concept_lines}'
        f'{_generation_hints(difficulty, language, subject)}\n\n'
        f'CONTENT:\n{chunk}\n\n'
        'Questions must be answerable entirely from the provided content.\n\n'
        f'{_RULES}\n\n'
        f'Generate exactly {number_of_cards} high-quality, content-focused flashcards from this content. Start your response with [ and end with ]'
    )


class FlashcardGenerator:
    def __init__(self, client: Optional[LLMClient] = None):
        self.client = client or LLMClient.get_instance()

    def generate(self, content: str, number_of_cards: int = 5, difficulty: Optional[str] = None,
                 language: str = 'en', subject: Optional[str] = None, request_id: Optional[str] = None) -> GenerationResult:
        if not content or not content.strip():
            raise GeneratorValidationError('content is required')
        if number_of_cards < 1:
            raise GeneratorValidationError('number_of_cards must be at least 1')
        start = time.time()
        if len(content) > LONG_DOCUMENT_THRESHOLD:
            result = self._generate_chunked(content, number_of_cards, difficulty, language, subject, request_id)
        else:
            result = self._generate_standard(content, number_of_cards, difficulty, language, subject, request_id)
        duration = int((time.time() - start) * 1000)
        result.metadata['processing_time'] = duration
        log_flashcard_generation(
            request_id=request_id,
            flashcard_count=len(result.flashcards),
            requested_count=number_of_cards,
            duration_ms=duration,
            chunked=result.metadata.get('chunked', False),
            content_type=result.content_analysis.content_type.value if result.content_analysis else None,
        )
        return result

    def _generate_standard(self, content, number_of_cards, difficulty, language, subject, request_id) -> GenerationResult:
        analysis = analyze_content(content)
        # the analysed count replaces the requested one
        count = analysis.recommended_card_count
        prompt = build_flashcard_prompt(content, count, analysis, difficulty, language, subject)
        res = self.client.generate(prompt, max_tokens=GENERATION_MAX_TOKENS, request_id=request_id)
        cards = validate_flashcard_quality(parse_flashcards(res.text), analysis)
        return GenerationResult(
            flashcards=cards,
            content_analysis=analysis,
            metadata={
                'tokens_used': res.tokens_used,
                'estimated_cost': res.estimated_cost,
                'model': res.model,
                'chunked': False,
                'target_count': count,
            },
        )

    def _generate_chunked(self, content, number_of_cards, difficulty, language, subject, request_id) -> GenerationResult:
        analysis = analyze_content(content)
        chunks = chunk_content(content)
        target = min(max(analysis.recommended_card_count, number_of_cards), MAX_CHUNKED_TARGET)
        base = max(5, target // max(len(chunks), 1))
        LOG.info('chunked_generation_start', extra={'content_length': len(content), 'chunks': len(chunks), 'target': target})

        collected: List[GeneratedFlashcard] = []
        tokens, cost, model = 0, 0.0, self.client.model
        for i, chunk in enumerate(chunks):
            try:
                chunk_analysis = analyze_content(chunk)
                count = calculate_chunk_card_count(chunk_analysis, base, i == len(chunks) - 1)
                prompt = build_chunk_prompt(chunk, count, chunk_analysis, i + 1, len(chunks), difficulty, language, subject)
                res = self.client.generate(prompt, max_tokens=GENERATION_MAX_TOKENS, request_id=request_id)
                collected.extend(parse_flashcards(res.text))
                tokens += res.tokens_used or 0
                cost += res.estimated_cost or 0
            except LLMError as e:
                LOG.warning('chunk_generation_failed', extra={'chunk': i + 1, 'error': str(e)})
                continue
            if CHUNK_DELAY_SECONDS and i < len(chunks) - 1:
                time.sleep(CHUNK_DELAY_SECONDS)

        validated = validate_flashcard_quality(collected, analysis)
        optimized = deduplicate_and_optimize(validated, target)
        metadata = {'tokens_used': tokens, 'estimated_cost': cost, 'model': model, 'chunked': True,
                    'chunks': len(chunks), 'target_count': target}

        if not optimized:
            LOG.warning('chunked_generation_empty', extra={'chunks': len(chunks), 'raw_cards': len(collected)})
            try:
                fallback_count = min(10, number_of_cards)
                res = self.client.generate(build_flashcard_prompt(content, fallback_count, analysis, difficulty, language, subject),
                                           max_tokens=GENERATION_MAX_TOKENS, request_id=request_id)
                fallback = parse_flashcards(res.text)
                if fallback:
                    metadata.update(tokens_used=tokens + (res.tokens_used or 0), estimated_cost=cost + (res.estimated_cost or 0), fallback=True)
                    return GenerationResult(flashcards=fallback, content_analysis=analysis, metadata=metadata)
            except LLMError:
                LOG.exception('chunked_generation_fallback_failed', exc_info=True)

        return GenerationResult(flashcards=optimized, content_analysis=analysis, metadata=metadata)


def generate_flashcards(content: str, number_of_cards: int = 5, difficulty: Optional[str] = None, language: str = 'en',
                        subject: Optional[str] = None, request_id: Optional[str] = None) -> GenerationResult:
    return FlashcardGenerator().generate(content, number_of_cards, difficulty, language, subject, request_id)
