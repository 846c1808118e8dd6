import math
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from neuroleaf.storage import get_db, get_account, new_id, require_account
from neuroleaf.utils import get_logger, month_key, month_start, utcnow, utcnow_iso

LOG = get_logger()

TOKENS_PER_QUESTION = 25
FREE_TIER_QUESTION_LIMIT = 100
FREE_TIER_TOKEN_LIMIT = FREE_TIER_QUESTION_LIMIT * TOKENS_PER_QUESTION


class TokenUsageError(Exception):
    pass


class TokenUsageData(BaseModel):
    current_usage: int
    limit: int
    can_consume_tokens: bool
    is_pro_tier: bool


def _user_tier(user_id: str) -> str:
    account = get_account(user_id)
    return (account or {}).get('subscription_tier') or 'free'


def _token_limit(tier: str) -> int:
    return -1 if tier == 'pro' else FREE_TIER_TOKEN_LIMIT


def days_until_reset(now=None) -> int:
    now = now or utcnow()
    start = month_start(now)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return math.ceil((next_month - now).total_seconds() / 86400)


def get_current_month_usage(user_id: str) -> int:
    return get_db().fetch_value(
        'SELECT tokens_used FROM ai_token_usage WHERE user_id = ? AND month_year = ?', (user_id, month_key()), 0)


def increment_token_usage(user_id: str, tokens_used: int) -> int:
    if tokens_used < 0:
        raise TokenUsageError('tokens_used must not be negative')
    require_account(user_id)
    now = utcnow_iso()
    db = get_db()
    db.execute(
        'INSERT INTO ai_token_usage (id, user_id, month_year, tokens_used, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?) '
        'ON CONFLICT(user_id, month_year) DO UPDATE SET tokens_used = tokens_used + excluded.tokens_used, updated_at = excluded.updated_at',
        (new_id(), user_id, month_key(), tokens_used, now, now),
    )
    total = get_current_month_usage(user_id)
    LOG.info('token_usage_incremented', extra={'tokens': tokens_used, 'monthly_total': total})
    return total


def get_usage_data(user_id: str, tier: Optional[str] = None, limit: Optional[int] = None) -> TokenUsageData:
    tier = tier or _user_tier(user_id)
    limit = _token_limit(tier) if limit is None else limit
    if tier == 'pro' or limit == -1:
        return TokenUsageData(current_usage=0, limit=-1, can_consume_tokens=True, is_pro_tier=True)
    current = get_current_month_usage(user_id)
    return TokenUsageData(current_usage=current, limit=limit, can_consume_tokens=current < limit, is_pro_tier=False)


def can_user_consume_tokens(user_id: str, tokens_requested: int, tier: Optional[str] = None,
                            limit: Optional[int] = None) -> Tuple[bool, Optional[str], Optional[int]]:
    """Return (allowed, reason, remaining_tokens). Remaining is None for unlimited users."""
    data = get_usage_data(user_id, tier, limit)
    if data.is_pro_tier:
        return True, None, None
    remaining = data.limit - data.current_usage
    if data.current_usage + tokens_requested > data.limit:
        return False, (
            f'This would exceed your monthly limit of {data.limit:,} tokens. '
            f'You have {remaining:,} tokens remaining this month.'
        ), remaining
    return True, None, remaining


def get_usage_stats(user_id: str, tier: Optional[str] = None, limit: Optional[int] = None) -> Dict[str, Any]:
    data = get_usage_data(user_id, tier, limit)
    reset_in = days_until_reset()
    if data.is_pro_tier:
        return {'current_usage': 0, 'limit': -1, 'percentage': 0, 'remaining_tokens': -1,
                'is_pro_tier': True, 'days_until_reset': reset_in}
    return {
        'current_usage': data.current_usage,
        'limit': data.limit,
        'percentage': round(data.current_usage / data.limit * 100) if data.limit else 0,
        'remaining_tokens': max(0, data.limit - data.current_usage),
        'is_pro_tier': False,
        'days_until_reset': reset_in,
    }


def estimate_tokens_from_text(text: str) -> int:
    if not text or not text.strip():
        return 0
    return math.ceil(math.ceil(len(text) / 4) * 1.2)


def estimate_tokens_for_question_generation(content_length: int, num_questions: int = 10) -> int:
    return math.ceil(content_length / 4) + num_questions * 50


def cleanup_old_records(months_to_keep: int = 12) -> int:
    now = utcnow()
    year, month = now.year, now.month - months_to_keep
    while month <= 0:
        month += 12
        year -= 1
    cutoff = f'{year:04d}-{month:02d}'
    deleted = get_db().execute('DELETE FROM ai_token_usage WHERE month_year < ?', (cutoff,))
    LOG.info('token_usage_cleanup', extra={'deleted': deleted, 'cutoff': cutoff})
    return deleted


def get_current_usage_summary(user_id: str) -> Dict[str, Any]:
    """Token usage expressed in questions, the unit the test screens show."""
    tier = _user_tier(user_id)
    data = get_usage_data(user_id, tier)
    reset_in = days_until_reset()
    if tier == 'pro':
        return {'current_usage': 0, 'limit': -1, 'can_consume_questions': True, 'remaining_questions': -1,
                'is_pro_tier': True, 'percentage': 0, 'days_until_reset': reset_in}
    used_questions = data.current_usage // TOKENS_PER_QUESTION
    return {
        'current_usage': used_questions,
        'limit': FREE_TIER_QUESTION_LIMIT,
        'can_consume_questions': data.can_consume_tokens,
        'remaining_questions': max(0, FREE_TIER_QUESTION_LIMIT - used_questions),
        'is_pro_tier': data.is_pro_tier,
        'percentage': round(used_questions / FREE_TIER_QUESTION_LIMIT * 100),
        'days_until_reset': reset_in,
    }


def check_and_increment_usage(user_id: str, question_count: int = 10) -> Dict[str, Any]:
    tier = _user_tier(user_id)
    tokens = question_count * TOKENS_PER_QUESTION
    allowed, reason, _ = can_user_consume_tokens(user_id, tokens, tier)
    if not allowed:
        return {'allowed': False, 'reason': reason}
    new_usage = 0
    if tier != 'pro':
        new_usage = increment_token_usage(user_id, tokens)
    return {'allowed': True, 'new_usage': new_usage, 'questions_used': question_count}
