"""Structured logging for the neuroleaf API.

Every record carries the service name plus the request id and user id of the
request being served; routes set both through `set_request_context`.
"""
import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger

SERVICE_NAME = 'neuroleaf'

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str, user_id: str = None):
    _request_ctx_var.set({'request_id': request_id, 'user_id': user_id})


def get_request_context():
    return _request_ctx_var.get()


def _inject_request_context(record):
    # explicit extra={'request_id': ...} on a call wins over the ambient context
    ctx = get_request_context()
    if not getattr(record, 'request_id', None):
        record.request_id = ctx.get('request_id')
    if not getattr(record, 'user_id', None):
        record.user_id = ctx.get('user_id')
    return True


def _build_formatter(log_format: str) -> logging.Formatter:
    if log_format == 'json':
        return jsonlogger.JsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s %(user_id)s',
            rename_fields={'asctime': 'timestamp', 'levelname': 'level'},
            static_fields={'service': SERVICE_NAME},
        )
    return logging.Formatter('%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s')


def _file_handlers(log_dir: pathlib.Path, max_bytes: int, backups: int, fmt: logging.Formatter):
    """combined.log takes every record, error.log only ERROR and above."""
    if not log_dir.is_absolute():
        log_dir = pathlib.Path.cwd() / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    handlers = []
    for filename, level in (('combined.log', logging.NOTSET), ('error.log', logging.ERROR)):
        handler = RotatingFileHandler(log_dir / filename, maxBytes=max_bytes, backupCount=backups)
        handler.setLevel(level)
        handler.setFormatter(fmt)
        handlers.append(handler)
    return handlers


def get_logger(name: str = SERVICE_NAME):
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())
    fmt = _build_formatter(os.getenv('LOG_FORMAT', 'json'))

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(fmt)
    logger.addHandler(console)

    if os.getenv('LOG_TO_FILE', 'true').lower() in ('1', 'true', 'yes'):
        for handler in _file_handlers(pathlib.Path(os.getenv('LOG_FILE_PATH', 'logs')),
                                      int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024))),
                                      int(os.getenv('LOG_MAX_FILES', '7')), fmt):
            logger.addHandler(handler)

    f = logging.Filter()
    f.filter = _inject_request_context
    logger.addFilter(f)
    logger.propagate = False

    logging.captureWarnings(True)

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_error(error: Exception, context: dict = None):
    logger = get_logger()
    logger.exception('error', exc_info=True, extra=context or {})


def log_llm_call(request_id: str, model: str, prompt_tokens: int, completion_tokens: int, duration_ms: float, cost: float = None):
    logger = get_logger()
    logger.info('llm_call', extra={'request_id': request_id, 'model': model, 'prompt_tokens': prompt_tokens, 'completion_tokens': completion_tokens, 'duration_ms': duration_ms, 'cost': cost})


def log_flashcard_generation(request_id: str, flashcard_count: int, requested_count: int, duration_ms: float, chunked: bool = False, content_type: str = None):
    logger = get_logger()
    logger.info('flashcard_generation', extra={
        'request_id': request_id,
        'flashcard_count': flashcard_count,
        'requested_count': requested_count,
        'duration_ms': duration_ms,
        'chunked': chunked,
        'content_type': content_type,
    })


def log_question_generation(request_id: str, question_count: int, difficulty: str, duration_ms: float, cache_hit: bool = False, fallback: bool = False):
    logger = get_logger()
    logger.info('question_generation', extra={
        'request_id': request_id,
        'question_count': question_count,
        'difficulty': difficulty,
        'duration_ms': duration_ms,
        'cache_hit': cache_hit,
        'fallback': fallback,
    })


def log_grading(request_id: str, method: str, question_count: int, duration_ms: float, average_score: float = None):
    logger = get_logger()
    logger.info('grading', extra={
        'request_id': request_id,
        'method': method,
        'question_count': question_count,
        'duration_ms': duration_ms,
        'average_score': average_score,
    })


def log_billing_event(event_type: str, user_id: str = None, tier: str = None, status: str = None):
    logger = get_logger()
    logger.info('billing_event', extra={
        'event_type': event_type,
        'billing_user_id': user_id,
        'tier': tier,
        'status': status,
    })


def log_usage_event(user_id: str, kind: str, current: int, limit: int, allowed: bool):
    logger = get_logger()
    logger.info('usage_check', extra={
        'usage_user_id': user_id,
        'kind': kind,
        'current': current,
        'limit': limit,
        'allowed': allowed,
    })
