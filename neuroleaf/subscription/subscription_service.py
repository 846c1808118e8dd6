from typing import Optional, Dict, Any, List, Tuple

from pydantic import BaseModel

from neuroleaf.storage import get_db, get_account, update_account
from neuroleaf.utils import get_logger
from .tiers import TIER_CONFIGS, TierConfig, is_unlimited, normalize_tier

LOG = get_logger()


class SubscriptionError(Exception):
    pass


class SubscriptionInfo(BaseModel):
    tier: str
    deck_limit: int
    current_deck_count: int
    can_create_deck: bool
    remaining_decks: int
    accessible_deck_ids: Optional[List[str]] = None
    flashcard_limit_per_deck: int


class DeckCardLimitInfo(BaseModel):
    deck_id: str
    current_card_count: int
    card_limit: int
    can_create_cards: bool
    remaining_cards: int


def get_subscription_info(account_id: str) -> Optional[SubscriptionInfo]:
    account = get_account(account_id)
    if not account:
        return None
    db = get_db()
    tier = normalize_tier(account.get('subscription_tier'))
    deck_limit = account.get('deck_limit') or 0
    current = db.fetch_value('SELECT COUNT(*) FROM decks WHERE user_id = ?', (account_id,), 0)
    unlimited = is_unlimited(deck_limit)

    accessible = None
    if not unlimited and current > deck_limit:
        # over the limit after a downgrade: only the oldest decks stay open
        rows = db.fetch_all('SELECT id FROM decks WHERE user_id = ? ORDER BY created_at ASC LIMIT ?', (account_id, deck_limit))
        accessible = [r['id'] for r in rows]

    return SubscriptionInfo(
        tier=tier,
        deck_limit=deck_limit,
        current_deck_count=current,
        can_create_deck=unlimited or current < deck_limit,
        remaining_decks=-1 if unlimited else max(0, deck_limit - current),
        accessible_deck_ids=accessible,
        flashcard_limit_per_deck=account.get('flashcard_limit_per_deck') or 50,
    )


def can_create_deck(account_id: str) -> bool:
    info = get_subscription_info(account_id)
    return bool(info and info.can_create_deck)


def can_access_deck(account_id: str, deck_id: str) -> Dict[str, Any]:
    info = get_subscription_info(account_id)
    if not info:
        return {'can_access': False, 'reason': 'Unable to verify subscription info'}
    if info.accessible_deck_ids is not None and deck_id not in info.accessible_deck_ids:
        return {
            'can_access': False,
            'reason': f'Deck access limited to your {info.deck_limit} oldest decks. Upgrade to access all decks.',
        }
    return {'can_access': True, 'reason': None}


def get_deck_card_limit_info(account_id: str, deck_id: str) -> Optional[DeckCardLimitInfo]:
    info = get_subscription_info(account_id)
    if not info:
        return None
    current = get_db().fetch_value('SELECT COUNT(*) FROM flashcards WHERE deck_id = ?', (deck_id,), 0)
    limit = info.flashcard_limit_per_deck
    unlimited = is_unlimited(limit)
    return DeckCardLimitInfo(
        deck_id=deck_id,
        current_card_count=current,
        card_limit=limit,
        can_create_cards=unlimited or current < limit,
        remaining_cards=-1 if unlimited else max(0, limit - current),
    )


def can_create_cards(account_id: str, deck_id: str, requested: int) -> Tuple[bool, int, Optional[str]]:
    """Return (can_create, max_allowed, reason) for adding `requested` cards to a deck."""
    info = get_deck_card_limit_info(account_id, deck_id)
    if not info:
        return False, 0, 'Unable to verify card limits'
    if is_unlimited(info.card_limit):
        return True, requested, None
    available = info.remaining_cards
    if requested <= available:
        return True, requested, None
    return False, available, (
        f'Card limit reached. You can create {available} more cards '
        f'({info.current_card_count}/{info.card_limit} used).'
    )


def update_subscription_tier(account_id: str, tier: str) -> Dict[str, Any]:
    if tier not in TIER_CONFIGS:
        raise SubscriptionError(f'Unknown subscription tier: {tier}')
    cfg = TIER_CONFIGS[tier]
    account = update_account(
        account_id,
        subscription_tier=tier,
        deck_limit=cfg.deck_limit,
        flashcard_limit_per_deck=cfg.flashcard_limit_per_deck,
    )
    LOG.info('subscription_tier_updated', extra={'account_id': account_id, 'tier': tier})
    return account


def get_all_tier_configs() -> Dict[str, TierConfig]:
    return dict(TIER_CONFIGS)
