"""LLM client and AI helper services"""

from .llm_client import (
    LLMClient,
    LLMResult,
    LLMError,
    LLMAPIError,
    LLMValidationError,
    LLMTimeoutError,
    generate_text,
)
from .content_enhancer import (
    EnhancementType,
    TargetAudience,
    ContentEnhancementRequest,
    ContentEnhancementResponse,
    enhance_content,
)
from .sample_answers import SampleAnswer, generate_sample_answer, generate_bulk_sample_answers
from . import token_usage, token_counting

__all__ = [
    'LLMClient',
    'LLMResult',
    'LLMError',
    'LLMAPIError',
    'LLMValidationError',
    'LLMTimeoutError',
    'generate_text',
    'EnhancementType',
    'TargetAudience',
    'ContentEnhancementRequest',
    'ContentEnhancementResponse',
    'enhance_content',
    'SampleAnswer',
    'generate_sample_answer',
    'generate_bulk_sample_answers',
    'token_usage',
    'token_counting',
]
