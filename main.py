import os
import time
import signal
import asyncio
from typing import Optional, List, Dict, Any

from fastapi import FastAPI, Request, Response, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings

from neuroleaf.ai import (
    LLMClient,
    LLMError,
    LLMValidationError,
    LLMTimeoutError,
    ContentEnhancementRequest,
    enhance_content,
    generate_sample_answer,
    token_usage,
)
from neuroleaf import billing
from neuroleaf.billing import (
    PRICING_PLANS,
    BillingError,
    StripeError,
    process_webhook,
)
from neuroleaf.decks import (
    DeckNotFoundError,
    DeckValidationError,
    CreateDeckData,
    UpdateDeckData,
    DeckFilters,
    DeckVisibility,
    get_deck_for_account,
    get_owned_deck,
    get_user_decks,
    get_public_decks,
    create_deck,
    update_deck,
    delete_deck,
    duplicate_deck,
    get_deck_stats,
)
from neuroleaf.flashcards import (
    FlashcardNotFoundError,
    FlashcardValidationError,
    FlashcardContent,
    CreateFlashcardData,
    UpdateFlashcardData,
    FlashcardFilters,
    Difficulty,
    ReorderItem,
    ExportValidationError,
    FlashcardGenerationError,
    GenerationValidationError,
    AIGenerationRequest,
    get_flashcards,
    get_owned_flashcard,
    create_flashcard,
    update_flashcard,
    delete_flashcard,
    bulk_delete_flashcards,
    duplicate_flashcards,
    reorder_flashcards,
    bulk_import_flashcards,
    export_flashcards,
    render_export,
    search_flashcards,
    get_deck_statistics,
    generate_flashcards_for_deck,
    friendly_generation_error,
)
from neuroleaf.flashcards.generator import GeneratorValidationError
from neuroleaf.storage import (
    Database,
    CacheManager,
    AccountNotFoundError,
    AccountValidationError,
    create_account,
    require_account,
)
from neuroleaf.subscription import (
    UsageLimitError,
    SubscriptionError,
    get_subscription_info,
    get_deck_card_limit_info,
    get_all_tier_configs,
    get_current_usage,
    require_ai_generation,
    increment_ai_generation,
)
from neuroleaf import test_mode
from neuroleaf.test_mode import (
    CreateTestSessionData,
    AnswerToGrade,
    FlashcardInput,
    QuestionType,
)
from neuroleaf.utils import get_logger, set_request_context, utcnow_iso

LOG = get_logger()

APP_URL = os.getenv('APP_URL', 'http://localhost:3000')


class Settings(BaseSettings):
    HOST: str = os.getenv('HOST', '0.0.0.0')
    PORT: int = int(os.getenv('PORT', '8000'))
    ENVIRONMENT: str = os.getenv('ENVIRONMENT', 'development')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    CORS_ORIGIN: str = os.getenv('CORS_ORIGIN', APP_URL)
    REDIS_REQUIRED_FOR_READY: bool = os.getenv('REDIS_REQUIRED_FOR_READY', 'false').lower() in ('1', 'true', 'yes')
    OPENAI_REQUIRED_FOR_READY: bool = os.getenv('OPENAI_REQUIRED_FOR_READY', 'false').lower() in ('1', 'true', 'yes')
    STRIPE_REQUIRED_FOR_READY: bool = os.getenv('STRIPE_REQUIRED_FOR_READY', 'false').lower() in ('1', 'true', 'yes')


settings = Settings()

app = FastAPI(title='Neuroleaf API', version='1.0.0', description='Flashcard learning service with AI generation, testing and billing')

# CORS config
origins = [o.strip() for o in settings.CORS_ORIGIN.split(',') if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class NotAuthenticatedError(Exception):
    pass


VALIDATION_ERRORS = (
    ValidationError,
    AccountValidationError,
    DeckValidationError,
    FlashcardValidationError,
    ExportValidationError,
    GenerationValidationError,
    GeneratorValidationError,
    LLMValidationError,
    SubscriptionError,
    test_mode.TestSessionValidationError,
)

NOT_FOUND_ERRORS = (
    AccountNotFoundError,
    DeckNotFoundError,
    FlashcardNotFoundError,
    test_mode.TestSessionNotFoundError,
    test_mode.TestHistoryNotFoundError,
)


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    # prefer incoming X-Request-ID header for cross-service tracing
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id, request.headers.get('x-user-id'))
    start = time.time()
    LOG.info('http_request_start', extra={'method': request.method, 'path': request.url.path, 'request_id': request_id, 'client': request.client.host if request.client else None})
    try:
        response: Response = await call_next(request)
    except Exception:
        LOG.exception('Unhandled exception in request', exc_info=True)
        body = {'success': False, 'error': {'message': 'Internal server error', 'request_id': request_id}}
        return JSONResponse(status_code=500, content=body, headers={'X-Request-ID': request_id})
    duration = int((time.time() - start) * 1000)
    LOG.info('http_request_end', extra={'method': request.method, 'path': request.url.path, 'status_code': response.status_code, 'duration_ms': duration, 'request_id': request_id})
    response.headers['X-Request-ID'] = request_id
    return response


def _request_id(fastapi_request: Request) -> str:
    return getattr(fastapi_request.state, 'request_id', None) or os.urandom(8).hex()


def _require_user(fastapi_request: Request) -> str:
    user_id = (fastapi_request.headers.get('x-user-id') or '').strip()
    if not user_id:
        raise NotAuthenticatedError('User not authenticated')
    return user_id


def _fail(status_code: int, error: str, request_id: str, details: Optional[str] = None) -> JSONResponse:
    content = {'success': False, 'error': error, 'request_id': request_id}
    if details is not None:
        content['details'] = details
    return JSONResponse(status_code=status_code, content=content)


def _error_response(e: Exception, request_id: str, event: str) -> JSONResponse:
    """Map a service exception onto the API error shape."""
    if isinstance(e, NotAuthenticatedError):
        return _fail(401, 'User not authenticated', request_id)
    if isinstance(e, UsageLimitError):
        LOG.warning(f'{event}_limit_reached', extra={'current': e.current, 'limit': e.limit})
        return JSONResponse(status_code=403, content={**e.to_dict(), 'request_id': request_id})
    if isinstance(e, VALIDATION_ERRORS):
        LOG.warning(f'{event}_validation_failed', extra={'error': str(e)})
        return _fail(422, 'Validation failed', request_id, str(e))
    if isinstance(e, NOT_FOUND_ERRORS):
        LOG.warning(f'{event}_not_found', extra={'error': str(e)})
        return _fail(404, str(e) or 'Not found', request_id)
    if isinstance(e, BillingError):
        LOG.warning(f'{event}_billing_failed', extra={'error': str(e)})
        return _fail(402, str(e), request_id)
    if isinstance(e, StripeError):
        LOG.exception(f'{event}_stripe_error', exc_info=True)
        return _fail(502, 'Payment provider error', request_id, str(e))
    if isinstance(e, FlashcardGenerationError):
        LOG.exception(f'{event}_generation_failed', exc_info=True)
        return _fail(500, friendly_generation_error(e), request_id)
    if isinstance(e, LLMTimeoutError):
        LOG.exception(f'{event}_llm_timeout', exc_info=True)
        return _fail(504, 'LLM timeout', request_id, str(e))
    if isinstance(e, LLMError):
        LOG.exception(f'{event}_llm_error', exc_info=True)
        return _fail(502, 'LLM API error', request_id, str(e))
    LOG.exception(f'{event}_failed', exc_info=True)
    return _fail(500, 'Internal server error', request_id)


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': utcnow_iso(), 'service': 'neuroleaf'}


def _check_database():
    try:
        return 'ok' if Database.get_instance().health_check() else 'error: database unreachable'
    except Exception as e:
        return f'error: {str(e)}'


def _check_redis():
    try:
        return CacheManager.get_instance().health_check()
    except Exception as e:
        return f'error: {str(e)}'


def _check_openai():
    try:
        key = os.getenv('OPENAI_API_KEY')
        if not key:
            if settings.OPENAI_REQUIRED_FOR_READY:
                return 'error: no openai key'
            return 'warn: no openai key'

        # lightweight connectivity check using the public models list endpoint
        import requests
        resp = requests.get('https://api.openai.com/v1/models', headers={'Authorization': f'Bearer {key}'}, timeout=5)
        if resp.status_code == 200:
            return 'ok'
        return f'error: openai status {resp.status_code}'
    except Exception as e:
        return f'error: {str(e)}'


def _check_stripe():
    if not os.getenv('STRIPE_SECRET_KEY'):
        if settings.STRIPE_REQUIRED_FOR_READY:
            return 'error: no stripe key'
        return 'warn: no stripe key'
    if not os.getenv('STRIPE_WEBHOOK_SECRET'):
        return 'warn: no webhook secret'
    return 'ok'


@app.get('/ready')
async def ready():
    database, redis_status, openai_status = await asyncio.gather(
        asyncio.to_thread(_check_database),
        asyncio.to_thread(_check_redis),
        asyncio.to_thread(_check_openai),
    )
    services = {
        'database': database,
        'redis': redis_status,
        'openai': openai_status,
        'stripe': _check_stripe(),
    }

    ready_ok = True
    if services['database'].startswith('error'):
        ready_ok = False
    if settings.REDIS_REQUIRED_FOR_READY and services['redis'].startswith('error'):
        ready_ok = False
    if settings.OPENAI_REQUIRED_FOR_READY and services['openai'].startswith('error'):
        ready_ok = False
    if settings.STRIPE_REQUIRED_FOR_READY and services['stripe'].startswith('error'):
        ready_ok = False

    status_code = 200 if ready_ok else 503
    return JSONResponse(status_code=status_code, content={'status': 'ready' if ready_ok else 'not ready', 'services': services})


# Request bodies

class CreateAccountRequest(BaseModel):
    email: str = Field(..., description='Account email')
    name: Optional[str] = None


class DuplicateDeckRequest(BaseModel):
    new_name: Optional[str] = Field(None, min_length=1, max_length=255)


class NewFlashcardRequest(FlashcardContent):
    position: Optional[int] = Field(None, ge=0)
    public_data: Dict[str, Any] = Field(default_factory=dict)


class BulkImportRequest(BaseModel):
    flashcards: List[FlashcardContent] = Field(..., min_length=1)
    overwrite_existing: bool = False


class ReorderRequest(BaseModel):
    positions: List[ReorderItem] = Field(..., min_length=1)


class BulkDeleteRequest(BaseModel):
    flashcard_ids: List[str] = Field(..., min_length=1)


class DuplicateFlashcardsRequest(BaseModel):
    flashcard_ids: List[str] = Field(..., min_length=1)
    target_deck_id: Optional[str] = None


class SampleAnswerRequest(BaseModel):
    question: str = Field(..., min_length=1)
    context: str = ''
    difficulty: str = 'medium'


class SubmitResponseRequest(BaseModel):
    flashcard_id: Optional[str] = None
    question_text: str = Field(..., min_length=1)
    question_type: QuestionType = QuestionType.OPEN_ENDED
    question_data: Optional[Dict[str, Any]] = None
    expected_answer: Optional[str] = None
    user_response: str = Field(..., min_length=1)
    user_answer_index: Optional[int] = None
    user_answer_boolean: Optional[bool] = None
    response_time_seconds: Optional[int] = None


class CompleteSessionRequest(BaseModel):
    time_spent_seconds: int = Field(0, ge=0)


class QuestionsRequest(BaseModel):
    deck_id: Optional[str] = None
    flashcards: Optional[List[FlashcardInput]] = None
    question_count: int = Field(10, ge=1, le=50)
    difficulty: str = 'medium'


class GradeRequest(BaseModel):
    answers: List[AnswerToGrade] = Field(..., min_length=1)


class ComprehensiveGradeRequest(BaseModel):
    test_session_id: str
    answers: List[AnswerToGrade] = Field(..., min_length=1)
    time_spent_minutes: float = Field(0, ge=0)


class GradeWithHistoryRequest(BaseModel):
    session_id: str
    answers: List[AnswerToGrade] = Field(..., min_length=1)
    analysis: Optional[Dict[str, Any]] = None


class TokenCheckRequest(BaseModel):
    question_count: int = Field(10, ge=1, le=100)


class CheckoutRequest(BaseModel):
    price_id: Optional[str] = None
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class PortalRequest(BaseModel):
    return_url: Optional[str] = None


def _graded_rows(results: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Per-answer {score, feedback} rows followed by the overall feedback row."""
    rows = [{'score': g['score'], 'feedback': g['feedback']} for g in results['individual_grades']]
    rows.append({'score': 0, 'feedback': results['overall_feedback']})
    return rows


# Accounts and subscription

@app.post('/accounts', status_code=201)
async def accounts_create(req: CreateAccountRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        account_id = (fastapi_request.headers.get('x-user-id') or '').strip() or None
        account = await asyncio.to_thread(create_account, req.email, req.name, account_id)
        return {'success': True, 'account': account, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'account_create')


@app.get('/accounts/me')
async def accounts_me(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        account = await asyncio.to_thread(require_account, _require_user(fastapi_request))
        return {'success': True, 'account': account, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'account_get')


@app.get('/subscription')
async def subscription_info(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        info = await asyncio.to_thread(get_subscription_info, _require_user(fastapi_request))
        if info is None:
            raise AccountNotFoundError('Account not found')
        return {'success': True, 'subscription': info.model_dump(), 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'subscription_info')


@app.get('/subscription/tiers')
async def subscription_tiers(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    tiers = {name: cfg.model_dump() for name, cfg in get_all_tier_configs().items()}
    return {'success': True, 'tiers': tiers, 'request_id': request_id}


@app.get('/subscription/usage')
async def subscription_usage(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        usage = await asyncio.to_thread(get_current_usage, _require_user(fastapi_request))
        return {'success': True, 'usage': usage, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'subscription_usage')


@app.get('/subscription/decks/{deck_id}/card-limit')
async def subscription_card_limit(deck_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        info = await asyncio.to_thread(get_deck_card_limit_info, _require_user(fastapi_request), deck_id)
        if info is None:
            raise DeckNotFoundError('Deck not found or access denied')
        return {'success': True, 'limit': info.model_dump(), 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'card_limit')


# Decks

@app.post('/decks', status_code=201)
async def decks_create(req: CreateDeckData, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        deck = await asyncio.to_thread(create_deck, req, _require_user(fastapi_request))
        return {'success': True, 'deck': deck, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_create')


@app.get('/decks')
async def decks_list(
    fastapi_request: Request,
    visibility: Optional[DeckVisibility] = None,
    tags: Optional[List[str]] = Query(None),
    search: Optional[str] = None,
    sort_by: str = 'updated_at',
    sort_order: str = 'desc',
    limit: int = 20,
    offset: int = 0,
):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        filters = DeckFilters(visibility=visibility, tags=tags, search=search, sort_by=sort_by,
                              sort_order=sort_order, limit=limit, offset=offset)
        result = await asyncio.to_thread(get_user_decks, user_id, filters)
        return {'success': True, **result, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_list')


@app.get('/decks/public')
async def decks_public(
    fastapi_request: Request,
    tags: Optional[List[str]] = Query(None),
    search: Optional[str] = None,
    sort_by: str = 'updated_at',
    sort_order: str = 'desc',
    limit: int = 20,
    offset: int = 0,
):
    request_id = _request_id(fastapi_request)
    try:
        filters = DeckFilters(tags=tags, search=search, sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset)
        result = await asyncio.to_thread(get_public_decks, filters)
        return {'success': True, **result, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_public')


@app.get('/decks/{deck_id}')
async def decks_get(deck_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        deck = await asyncio.to_thread(get_deck_for_account, deck_id, _require_user(fastapi_request))
        return {'success': True, 'deck': deck, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_get')


@app.patch('/decks/{deck_id}')
async def decks_update(deck_id: str, req: UpdateDeckData, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        deck = await asyncio.to_thread(update_deck, deck_id, req, _require_user(fastapi_request))
        return {'success': True, 'deck': deck, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_update')


@app.delete('/decks/{deck_id}')
async def decks_delete(deck_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(delete_deck, deck_id, _require_user(fastapi_request))
        return {'success': True, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_delete')


@app.post('/decks/{deck_id}/duplicate', status_code=201)
async def decks_duplicate(deck_id: str, req: DuplicateDeckRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        deck = await asyncio.to_thread(duplicate_deck, deck_id, _require_user(fastapi_request), req.new_name)
        return {'success': True, 'deck': deck, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_duplicate')


@app.get('/decks/{deck_id}/stats')
async def decks_stats(deck_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(get_deck_for_account, deck_id, _require_user(fastapi_request))
        stats = await asyncio.to_thread(get_deck_stats, deck_id)
        return {'success': True, 'stats': stats, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_stats')


# Flashcards within a deck

@app.get('/decks/{deck_id}/flashcards')
async def deck_flashcards_list(
    deck_id: str,
    fastapi_request: Request,
    search: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    difficulty: Optional[Difficulty] = None,
    ai_generated: Optional[bool] = None,
    sort_by: str = 'position',
    sort_order: str = 'asc',
    limit: int = 20,
    offset: int = 0,
):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(get_deck_for_account, deck_id, _require_user(fastapi_request))
        filters = FlashcardFilters(search=search, tags=tags, difficulty=difficulty, ai_generated=ai_generated,
                                   sort_by=sort_by, sort_order=sort_order, limit=limit, offset=offset)
        result = await asyncio.to_thread(get_flashcards, deck_id, filters)
        return {'success': True, **result, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_list')


@app.post('/decks/{deck_id}/flashcards', status_code=201)
async def deck_flashcards_create(deck_id: str, req: NewFlashcardRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        data = CreateFlashcardData(deck_id=deck_id, **req.model_dump())
        card = await asyncio.to_thread(create_flashcard, data, _require_user(fastapi_request))
        return {'success': True, 'flashcard': card, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_create')


@app.post('/decks/{deck_id}/flashcards/bulk-import', status_code=201)
async def deck_flashcards_import(deck_id: str, req: BulkImportRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        cards = await asyncio.to_thread(bulk_import_flashcards, deck_id, req.flashcards, _require_user(fastapi_request),
                                        overwrite_existing=req.overwrite_existing)
        return {'success': True, 'flashcards': cards, 'imported': len(cards), 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_import')


@app.post('/decks/{deck_id}/flashcards/reorder')
async def deck_flashcards_reorder(deck_id: str, req: ReorderRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(get_owned_deck, deck_id, _require_user(fastapi_request))
        await asyncio.to_thread(reorder_flashcards, deck_id, req.positions)
        return {'success': True, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_reorder')


@app.get('/decks/{deck_id}/flashcards/export')
async def deck_flashcards_export(
    deck_id: str,
    fastapi_request: Request,
    export_format: str = Query('json', alias='format'),
    include_tags: bool = True,
    include_difficulty: bool = True,
    include_metadata: bool = True,
):
    request_id = _request_id(fastapi_request)
    try:
        deck = await asyncio.to_thread(get_deck_for_account, deck_id, _require_user(fastapi_request))
        exported = await asyncio.to_thread(export_flashcards, deck_id, export_format)
        body, content_type, filename = render_export(deck, exported['flashcards'], export_format, include_tags,
                                                     include_difficulty, include_metadata)
        return Response(content=body, media_type=content_type,
                        headers={'Content-Disposition': f'attachment; filename="{filename}"'})
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_export')


@app.get('/decks/{deck_id}/flashcards/statistics')
async def deck_flashcards_statistics(deck_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(get_deck_for_account, deck_id, _require_user(fastapi_request))
        statistics = await asyncio.to_thread(get_deck_statistics, deck_id)
        return {'success': True, 'statistics': statistics, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_statistics')


@app.post('/decks/{deck_id}/flashcards/generate')
async def deck_flashcards_generate(deck_id: str, req: AIGenerationRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        result = await asyncio.to_thread(generate_flashcards_for_deck, user_id, deck_id, req.content, req.number_of_cards,
                                         req.difficulty, req.language, req.subject, request_id=request_id)
        return {'success': True, **result, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'ai_generation')


# Flashcards

@app.get('/flashcards/search')
async def flashcards_search(
    fastapi_request: Request,
    q: str = Query(..., min_length=1),
    deck_ids: Optional[List[str]] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    request_id = _request_id(fastapi_request)
    try:
        result = await asyncio.to_thread(search_flashcards, _require_user(fastapi_request), q, deck_ids, limit, offset)
        return {'success': True, **result, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_search')


def _require_owned_flashcards(flashcard_ids: List[str], user_id: str):
    for flashcard_id in flashcard_ids:
        get_owned_flashcard(flashcard_id, user_id)


@app.post('/flashcards/bulk-delete')
async def flashcards_bulk_delete(req: BulkDeleteRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        await asyncio.to_thread(_require_owned_flashcards, req.flashcard_ids, user_id)
        deleted = await asyncio.to_thread(bulk_delete_flashcards, req.flashcard_ids)
        return {'success': True, 'deleted': deleted, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_bulk_delete')


@app.post('/flashcards/duplicate', status_code=201)
async def flashcards_duplicate(req: DuplicateFlashcardsRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        await asyncio.to_thread(_require_owned_flashcards, req.flashcard_ids, user_id)
        if req.target_deck_id:
            await asyncio.to_thread(get_owned_deck, req.target_deck_id, user_id)
        cards = await asyncio.to_thread(duplicate_flashcards, req.flashcard_ids, req.target_deck_id)
        return {'success': True, 'flashcards': cards, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_duplicate')


@app.get('/flashcards/{flashcard_id}')
async def flashcards_get(flashcard_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        card = await asyncio.to_thread(get_owned_flashcard, flashcard_id, _require_user(fastapi_request))
        return {'success': True, 'flashcard': card, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_get')


@app.patch('/flashcards/{flashcard_id}')
async def flashcards_update(flashcard_id: str, req: UpdateFlashcardData, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(get_owned_flashcard, flashcard_id, _require_user(fastapi_request))
        card = await asyncio.to_thread(update_flashcard, flashcard_id, req)
        return {'success': True, 'flashcard': card, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_update')


@app.delete('/flashcards/{flashcard_id}')
async def flashcards_delete(flashcard_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(get_owned_flashcard, flashcard_id, _require_user(fastapi_request))
        await asyncio.to_thread(delete_flashcard, flashcard_id)
        return {'success': True, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'flashcard_delete')


# AI helpers

@app.post('/ai/enhance')
async def ai_enhance(req: ContentEnhancementRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        _require_user(fastapi_request)
        result = await asyncio.to_thread(enhance_content, req.content, req.enhancement_type.value,
                                         req.target_audience.value if req.target_audience else None,
                                         req.language, request_id=request_id)
        return {'success': True, **result.model_dump(), 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'content_enhancement')


@app.post('/ai/sample-answer')
async def ai_sample_answer(req: SampleAnswerRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        _require_user(fastapi_request)
        answer = await asyncio.to_thread(generate_sample_answer, req.question, req.context, req.difficulty,
                                         request_id=request_id)
        return {'success': True, 'data': answer.model_dump(), 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'sample_answer')


# Test mode

@app.post('/tests/sessions', status_code=201)
async def tests_create_session(req: CreateTestSessionData, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        session = await asyncio.to_thread(test_mode.create_test_session, req, _require_user(fastapi_request))
        return {'success': True, 'session': session, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_session_create')


@app.get('/tests/sessions')
async def tests_list_sessions(fastapi_request: Request, limit: int = Query(20, ge=1, le=100)):
    request_id = _request_id(fastapi_request)
    try:
        sessions = await asyncio.to_thread(test_mode.get_user_test_sessions, _require_user(fastapi_request), limit)
        return {'success': True, 'sessions': sessions, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_session_list')


@app.get('/tests/sessions/{session_id}')
async def tests_get_session(session_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        details = await asyncio.to_thread(test_mode.get_test_session_details, session_id, _require_user(fastapi_request))
        if details is None:
            raise test_mode.TestSessionNotFoundError('Test session not found or access denied')
        return {'success': True, 'session': details, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_session_get')


@app.delete('/tests/sessions/{session_id}')
async def tests_delete_session(session_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(test_mode.delete_test_session, session_id, _require_user(fastapi_request))
        return {'success': True, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_session_delete')


@app.post('/tests/sessions/{session_id}/responses', status_code=201)
async def tests_submit_response(session_id: str, req: SubmitResponseRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        data = test_mode.CreateTestResponseData(test_session_id=session_id, **req.model_dump())
        response = await asyncio.to_thread(test_mode.submit_test_response, data, _require_user(fastapi_request),
                                           request_id=request_id)
        return {'success': True, 'response': response, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_response_submit')


@app.post('/tests/sessions/{session_id}/complete')
async def tests_complete_session(session_id: str, req: CompleteSessionRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        session = await asyncio.to_thread(test_mode.complete_test_session, session_id, _require_user(fastapi_request),
                                          req.time_spent_seconds)
        return {'success': True, 'session': session, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_session_complete')


def _generate_questions(user_id: str, req: QuestionsRequest, request_id: str) -> List[Dict[str, Any]]:
    require_account(user_id)
    require_ai_generation(user_id)
    if req.deck_id:
        questions = test_mode.generate_questions_for_deck(req.deck_id, user_id, req.question_count, req.difficulty,
                                                          request_id=request_id)
    else:
        questions = test_mode.generate_questions_from_flashcards(req.flashcards, req.question_count, req.difficulty,
                                                                 request_id=request_id)
    increment_ai_generation(user_id, 'test_questions', deck_id=req.deck_id,
                            generated_content={'questions': questions})
    return questions


@app.post('/tests/questions')
async def tests_generate_questions(req: QuestionsRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        if not req.deck_id and not req.flashcards:
            raise test_mode.TestSessionValidationError('Either deck_id or flashcards is required')
        questions = await asyncio.to_thread(_generate_questions, user_id, req, request_id)
        return {'success': True, 'data': questions, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'question_generation')


def _grade(user_id: str, answers: List[AnswerToGrade], request_id: str) -> Dict[str, Any]:
    require_ai_generation(user_id, 'Please upgrade to Pro for more AI-powered features.', label='AI grading')
    return test_mode.grade_answers(answers, request_id=request_id)


def _grade_optimized(user_id: str, answers: List[AnswerToGrade], request_id: str) -> Dict[str, Any]:
    if test_mode.count_ai_graded(answers) > 0:
        require_ai_generation(user_id, 'Please upgrade to Pro for more AI-powered features.', label='AI grading')
    return test_mode.grade_answers_optimized(answers, request_id=request_id)


@app.post('/tests/grade')
async def tests_grade(req: GradeRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        results = await asyncio.to_thread(_grade, _require_user(fastapi_request), req.answers, request_id)
        return {'success': True, 'data': _graded_rows(results), 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'grading')


@app.post('/tests/grade-optimized')
async def tests_grade_optimized(req: GradeRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        results = await asyncio.to_thread(_grade_optimized, _require_user(fastapi_request), req.answers, request_id)
        return {'success': True, 'data': _graded_rows(results), 'metadata': results['grading_metadata'],
                'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'grading_optimized')


@app.post('/tests/grade-comprehensive')
async def tests_grade_comprehensive(req: ComprehensiveGradeRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        result = await asyncio.to_thread(test_mode.grade_test_comprehensive_action, user_id, req.test_session_id,
                                         req.answers, req.time_spent_minutes, request_id=request_id)
        return {'success': True, 'data': result['data'], 'fallback': result['fallback'], 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'grading_comprehensive')


@app.post('/tests/grade-with-history')
async def tests_grade_with_history(req: GradeWithHistoryRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        results = await asyncio.to_thread(test_mode.grade_answers_with_history, user_id, req.session_id, req.answers,
                                          req.analysis, request_id=request_id)
        return {'success': True, 'data': _graded_rows(results), 'metadata': results['grading_metadata'],
                'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'grading_with_history')


@app.get('/tests/history')
async def tests_history(fastapi_request: Request, limit: int = Query(20, ge=1, le=100), offset: int = Query(0, ge=0)):
    request_id = _request_id(fastapi_request)
    try:
        history = await asyncio.to_thread(test_mode.get_user_test_history, _require_user(fastapi_request), limit, offset)
        return {'success': True, 'history': history, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_history')


@app.get('/tests/statistics')
async def tests_statistics(fastapi_request: Request, deck_id: Optional[str] = None):
    request_id = _request_id(fastapi_request)
    try:
        stats = await asyncio.to_thread(test_mode.get_test_statistics, _require_user(fastapi_request), deck_id)
        return {'success': True, 'statistics': stats, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_statistics')


@app.get('/tests/trends')
async def tests_trends(fastapi_request: Request, deck_id: Optional[str] = None, days_back: int = Query(30, ge=1, le=365)):
    request_id = _request_id(fastapi_request)
    try:
        trends = await asyncio.to_thread(test_mode.get_performance_trends, _require_user(fastapi_request), deck_id, days_back)
        return {'success': True, 'trends': trends, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_trends')


@app.get('/tests/analytics')
async def tests_analytics(fastapi_request: Request, deck_id: Optional[str] = None):
    request_id = _request_id(fastapi_request)
    try:
        analytics = await asyncio.to_thread(test_mode.get_user_performance_analytics, _require_user(fastapi_request), deck_id)
        return {'success': True, 'analytics': analytics, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'test_analytics')


@app.get('/tests/decks/{deck_id}/analytics')
async def tests_deck_analytics(deck_id: str, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        analytics = await asyncio.to_thread(test_mode.get_test_session_analytics, deck_id, _require_user(fastapi_request))
        return {'success': True, 'analytics': analytics, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'deck_test_analytics')


# Token usage

@app.get('/usage/tokens')
async def usage_tokens(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        summary = await asyncio.to_thread(token_usage.get_current_usage_summary, _require_user(fastapi_request))
        return {'success': True, 'usage': summary, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'token_usage')


@app.post('/usage/tokens/check')
async def usage_tokens_check(req: TokenCheckRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        result = await asyncio.to_thread(token_usage.check_and_increment_usage, _require_user(fastapi_request),
                                         req.question_count)
        return {'success': result['allowed'], **result, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'token_usage_check')


# Billing

@app.get('/billing/plans')
async def billing_plans(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    return {'success': True, 'plans': [p.model_dump() for p in PRICING_PLANS], 'request_id': request_id}


@app.get('/billing/subscription')
async def billing_subscription(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        info = await asyncio.to_thread(billing.get_subscription_info, _require_user(fastapi_request))
        return {'success': True, 'subscription': info, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'billing_subscription')


@app.post('/billing/checkout')
async def billing_checkout(req: CheckoutRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        user_id = _require_user(fastapi_request)
        price_id = req.price_id or os.getenv('STRIPE_PRO_MONTHLY_PRICE_ID') or billing.plans.STRIPE_PRO_MONTHLY_PRICE_ID
        if not price_id:
            raise BillingError('No price configured for checkout')
        session = await asyncio.to_thread(
            billing.create_checkout_session,
            price_id,
            user_id,
            req.success_url or f'{APP_URL}/billing?success=true',
            req.cancel_url or f'{APP_URL}/billing?canceled=true',
        )
        return {'success': True, **session, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'billing_checkout')


@app.post('/billing/portal')
async def billing_portal(req: PortalRequest, fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        session = await asyncio.to_thread(billing.create_billing_portal_session, _require_user(fastapi_request),
                                          req.return_url or f'{APP_URL}/billing')
        return {'success': True, **session, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'billing_portal')


@app.post('/billing/cancel')
async def billing_cancel(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        await asyncio.to_thread(billing.cancel_subscription, _require_user(fastapi_request))
        return {'success': True, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'billing_cancel')


@app.post('/billing/reactivate')
async def billing_reactivate(fastapi_request: Request):
    request_id = _request_id(fastapi_request)
    try:
        result = await asyncio.to_thread(billing.reactivate_subscription, _require_user(fastapi_request))
        return {**result, 'request_id': request_id}
    except Exception as e:
        return _error_response(e, request_id, 'billing_reactivate')


@app.post('/billing/webhook')
async def billing_webhook(fastapi_request: Request):
    payload = await fastapi_request.body()
    status_code, body = await asyncio.to_thread(process_webhook, payload, fastapi_request.headers.get('stripe-signature'))
    return JSONResponse(status_code=status_code, content=body)


@app.on_event('startup')
async def on_startup():
    LOG.info('Neuroleaf service starting', extra={'env': settings.ENVIRONMENT})
    try:
        Database.get_instance()
        LOG.info('Database ready')
    except Exception:
        LOG.exception('Database init failed', exc_info=True)
    try:
        LLMClient.get_instance()
        LOG.info('LLMClient ready')
    except LLMError:
        LOG.warning('LLMClient not configured; AI features will use fallbacks')
    try:
        CacheManager.get_instance()
    except Exception:
        LOG.warning('CacheManager init failed; question caching disabled')
    if not os.getenv('STRIPE_SECRET_KEY'):
        LOG.warning('STRIPE_SECRET_KEY not set; billing endpoints will be unavailable')


@app.on_event('shutdown')
async def on_shutdown():
    LOG.info('Neuroleaf service shutting down')


def _install_signal_handlers(loop: Optional[asyncio.AbstractEventLoop] = None):
    if loop is None:
        loop = asyncio.get_event_loop()

    def _handler(signum, frame):
        LOG.info('Received shutdown signal', extra={'signal': signum})
        loop.call_soon_threadsafe(loop.stop)

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


if __name__ == '__main__':
    import uvicorn

    _install_signal_handlers()
    workers = int(os.getenv('WORKERS', '1'))
    # uvicorn does not support reload with multiple workers
    if settings.ENVIRONMENT == 'development':
        workers = 1
    reload_enabled = (settings.ENVIRONMENT == 'development') and (workers == 1)

    uvicorn.run(
        'main:app',
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=reload_enabled,
        workers=workers,
    )
