from typing import Dict, Any, Optional

from pydantic import BaseModel

from neuroleaf.storage import get_db, get_account, new_id, require_account, to_json
from neuroleaf.utils import get_logger, log_usage_event, month_start, utcnow_iso
from .tiers import UNLIMITED, SubscriptionTier, normalize_tier

LOG = get_logger()


class UsageLimitError(Exception):
    """Raised when an action would exceed the caller's tier limits."""

    def __init__(self, message: str, current: int = 0, limit: int = 0):
        super().__init__(message)
        self.message = message
        self.current = current
        self.limit = limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': False,
            'error': self.message,
            'limitReached': True,
            'usage': {'current': self.current, 'limit': self.limit},
        }


class UsageLimits(BaseModel):
    max_decks: int
    max_flashcards_per_deck: int
    max_ai_generations_per_month: int
    max_test_sessions_per_month: int
    has_unlimited_tests: bool


TIER_LIMITS: Dict[str, UsageLimits] = {
    SubscriptionTier.FREE.value: UsageLimits(
        max_decks=3,
        max_flashcards_per_deck=50,
        max_ai_generations_per_month=10,
        max_test_sessions_per_month=5,
        has_unlimited_tests=False,
    ),
    SubscriptionTier.PRO.value: UsageLimits(
        max_decks=UNLIMITED,
        max_flashcards_per_deck=UNLIMITED,
        max_ai_generations_per_month=UNLIMITED,
        max_test_sessions_per_month=UNLIMITED,
        has_unlimited_tests=True,
    ),
}


def get_tier_limits(tier) -> UsageLimits:
    return TIER_LIMITS[normalize_tier(tier)]


def _user_tier(user_id: str) -> str:
    account = get_account(user_id)
    return normalize_tier(account.get('subscription_tier') if account else None)


def _result(key: str, current: int, limit: int) -> Dict[str, Any]:
    allowed = limit == UNLIMITED or current < limit
    return {key: allowed, 'current': current, 'limit': limit}


def _count_decks(user_id: str) -> int:
    return get_db().fetch_value('SELECT COUNT(*) FROM decks WHERE user_id = ?', (user_id,), 0)


def _count_ai_generations(user_id: str) -> int:
    since = month_start().isoformat()
    return get_db().fetch_value(
        'SELECT COUNT(*) FROM ai_generations WHERE user_id = ? AND created_at >= ?', (user_id, since), 0)


def _count_test_sessions(user_id: str) -> int:
    since = month_start().isoformat()
    return get_db().fetch_value(
        'SELECT COUNT(*) FROM test_sessions WHERE user_id = ? AND created_at >= ?', (user_id, since), 0)


def check_deck_limit(user_id: str) -> Dict[str, Any]:
    limits = get_tier_limits(_user_tier(user_id))
    res = _result('can_create', _count_decks(user_id), limits.max_decks)
    log_usage_event(user_id, 'decks', res['current'], res['limit'], res['can_create'])
    return res


def check_flashcard_limit(user_id: str, deck_id: str) -> Dict[str, Any]:
    limits = get_tier_limits(_user_tier(user_id))
    current = get_db().fetch_value('SELECT COUNT(*) FROM flashcards WHERE deck_id = ?', (deck_id,), 0)
    res = _result('can_create', current, limits.max_flashcards_per_deck)
    log_usage_event(user_id, 'flashcards', res['current'], res['limit'], res['can_create'])
    return res


def check_ai_generation_limit(user_id: str) -> Dict[str, Any]:
    limits = get_tier_limits(_user_tier(user_id))
    res = _result('can_generate', _count_ai_generations(user_id), limits.max_ai_generations_per_month)
    log_usage_event(user_id, 'ai_generations', res['current'], res['limit'], res['can_generate'])
    return res


def check_test_session_limit(user_id: str) -> Dict[str, Any]:
    limits = get_tier_limits(_user_tier(user_id))
    res = _result('can_create', _count_test_sessions(user_id), limits.max_test_sessions_per_month)
    log_usage_event(user_id, 'test_sessions', res['current'], res['limit'], res['can_create'])
    return res


def require_ai_generation(user_id: str, suffix: str = 'Please upgrade to Pro for more AI generations.', label: str = 'AI generation'):
    """Raise UsageLimitError when the monthly AI budget is spent."""
    res = check_ai_generation_limit(user_id)
    if not res['can_generate']:
        raise UsageLimitError(f"{label} limit reached ({res['current']}/{res['limit']}). {suffix}", res['current'], res['limit'])
    return res


def increment_ai_generation(user_id: str, generation_type: str, deck_id: Optional[str] = None,
                            flashcard_id: Optional[str] = None, prompt: Optional[str] = None,
                            generated_content: Any = None, model_used: Optional[str] = None,
                            tokens_used: Optional[int] = None, generation_time_ms: Optional[int] = None) -> str:
    require_account(user_id)
    generation_id = new_id()
    get_db().execute(
        'INSERT INTO ai_generations (id, user_id, deck_id, flashcard_id, generation_type, prompt, generated_content, '
        'model_used, tokens_used, generation_time_ms, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
        (generation_id, user_id, deck_id, flashcard_id, generation_type, prompt, to_json(generated_content),
         model_used, tokens_used, generation_time_ms, utcnow_iso()),
    )
    LOG.info('ai_generation_recorded', extra={'generation_type': generation_type, 'deck_id': deck_id})
    return generation_id


def get_current_usage(user_id: str) -> Dict[str, Any]:
    tier = _user_tier(user_id)
    return {
        'tier': tier,
        'limits': get_tier_limits(tier).model_dump(),
        'usage': {
            'decks': _count_decks(user_id),
            'ai_generations': _count_ai_generations(user_id),
            'test_sessions': _count_test_sessions(user_id),
        },
    }
