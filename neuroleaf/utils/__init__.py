"""Utility subpackage for Neuroleaf services"""

from .logger import (
    get_logger,
    log_request,
    log_error,
    log_llm_call,
    log_flashcard_generation,
    log_question_generation,
    log_grading,
    log_billing_event,
    log_usage_event,
    set_request_context,
    get_request_context,
)
from .timeutils import utcnow, utcnow_iso, month_start, month_key, parse_timestamp

__all__ = [
    'get_logger',
    'log_request',
    'log_error',
    'log_llm_call',
    'log_flashcard_generation',
    'log_question_generation',
    'log_grading',
    'log_billing_event',
    'log_usage_event',
    'set_request_context',
    'get_request_context',
    'utcnow',
    'utcnow_iso',
    'month_start',
    'month_key',
    'parse_timestamp',
]
