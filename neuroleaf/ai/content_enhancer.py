import re
import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from neuroleaf.utils import get_logger
from .llm_client import LLMClient

LOG = get_logger()


class EnhancementType(str, Enum):
    EXPLANATION = 'explanation'
    EXAMPLES = 'examples'
    SIMPLIFY = 'simplify'
    ELABORATE = 'elaborate'


class TargetAudience(str, Enum):
    BEGINNER = 'beginner'
    INTERMEDIATE = 'intermediate'
    ADVANCED = 'advanced'


class ContentEnhancementRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=20000)
    enhancement_type: EnhancementType
    target_audience: Optional[TargetAudience] = None
    language: str = 'en'


class ContentEnhancementResponse(BaseModel):
    enhanced_content: str
    metadata: dict


_INSTRUCTIONS = {
    EnhancementType.EXPLANATION: 'Provide a clear, comprehensive explanation of the following content{aud}. Break down complex concepts and ensure understanding.',
    EnhancementType.EXAMPLES: 'Enhance the following content by adding relevant, practical examples and analogies{aud}. Make abstract concepts concrete and relatable.',
    EnhancementType.SIMPLIFY: 'Simplify the following content{aud}. Use plain language, shorter sentences, and avoid jargon while preserving the key information.',
    EnhancementType.ELABORATE: 'Elaborate on the following content{aud}. Add depth, context, and additional relevant information while maintaining clarity.',
}

_INTRO_PATTERNS = [
    re.compile(r"^(Here's|Here is).*?:\s*", re.IGNORECASE),
    re.compile(r'^Enhanced content:\s*', re.IGNORECASE),
    re.compile(r'^\*\*.*?\*\*:\s*', re.IGNORECASE),
]


def build_enhancement_prompt(req: ContentEnhancementRequest) -> str:
    audience = req.target_audience.value if req.target_audience else None
    aud = f' for a {audience} audience' if audience else ''
    requirements = [
        '- Maintain accuracy and factual correctness',
        '- Preserve the core meaning and intent',
        '- Use clear, engaging language',
        '- Structure the content logically',
    ]
    if req.language != 'en':
        requirements.append(f'- Respond in {req.language}')
    if audience:
        requirements.append(f'- Tailor complexity for {audience} level')
    return (
        f"{_INSTRUCTIONS[req.enhancement_type].format(aud=aud)}\n\n"
        f"ORIGINAL CONTENT:\n{req.content}\n\n"
        f"REQUIREMENTS:\n" + '\n'.join(requirements) + "\n\n"
        "Please provide the enhanced content:"
    )


def clean_enhanced_content(text: str) -> str:
    for pattern in _INTRO_PATTERNS:
        text = pattern.sub('', text, count=1)
    return text.strip()


def enhance_content(content: str, enhancement_type: str, target_audience: Optional[str] = None,
                    language: str = 'en', request_id: Optional[str] = None) -> ContentEnhancementResponse:
    req = ContentEnhancementRequest(content=content, enhancement_type=enhancement_type,
                                    target_audience=target_audience, language=language)
    start = time.time()
    result = LLMClient.get_instance().generate(build_enhancement_prompt(req), request_id=request_id)
    duration = int((time.time() - start) * 1000)
    LOG.info('content_enhanced', extra={'enhancement_type': req.enhancement_type.value, 'duration_ms': duration})
    return ContentEnhancementResponse(
        enhanced_content=clean_enhanced_content(result.text),
        metadata={
            'tokens_used': result.tokens_used,
            'estimated_cost': result.estimated_cost,
            'processing_time': duration,
            'model': result.model,
        },
    )


def explain_concept(concept: str, target_audience: str = 'intermediate', language: str = 'en') -> ContentEnhancementResponse:
    return enhance_content(concept, 'explanation', target_audience, language)


def add_examples(content: str, target_audience: str = 'intermediate', language: str = 'en') -> ContentEnhancementResponse:
    return enhance_content(content, 'examples', target_audience, language)


def simplify_text(content: str, language: str = 'en') -> ContentEnhancementResponse:
    return enhance_content(content, 'simplify', 'beginner', language)


def elaborate_content(content: str, target_audience: str = 'advanced', language: str = 'en') -> ContentEnhancementResponse:
    return enhance_content(content, 'elaborate', target_audience, language)
