import pytest

from neuroleaf.decks import CreateDeckData, create_deck
from neuroleaf.storage import get_db, update_account
from neuroleaf.subscription import (
    SubscriptionError,
    UsageLimitError,
    can_access_deck,
    can_create_cards,
    can_create_deck,
    check_ai_generation_limit,
    check_deck_limit,
    check_test_session_limit,
    get_all_tier_configs,
    get_current_usage,
    get_deck_card_limit_info,
    get_subscription_info,
    get_tier_config,
    get_tier_limits,
    increment_ai_generation,
    is_unlimited,
    require_ai_generation,
    update_subscription_tier,
)


def test_tier_configs():
    assert get_tier_config('free').deck_limit == 3
    assert is_unlimited(get_tier_config('pro').flashcard_limit_per_deck)
    # unknown tiers fall back to free
    assert get_tier_config('enterprise').name == 'Free'
    assert set(get_all_tier_configs()) == {'free', 'pro'}


def test_tier_limits():
    free = get_tier_limits('free')
    assert free.max_ai_generations_per_month == 10
    assert free.max_test_sessions_per_month == 5
    assert get_tier_limits('pro').has_unlimited_tests is True


def test_subscription_info_for_new_account(account):
    info = get_subscription_info(account['id'])
    assert info.tier == 'free'
    assert info.current_deck_count == 0
    assert info.remaining_decks == 3
    assert info.can_create_deck is True
    assert info.accessible_deck_ids is None
    assert get_subscription_info('missing') is None


def test_deck_limit_enforced_for_free_tier(account):
    for i in range(3):
        create_deck(CreateDeckData(name=f'Deck {i}'), account['id'])
    assert can_create_deck(account['id']) is False
    assert check_deck_limit(account['id']) == {'can_create': False, 'current': 3, 'limit': 3}
    with pytest.raises(UsageLimitError) as exc:
        create_deck(CreateDeckData(name='One too many'), account['id'])
    assert exc.value.to_dict()['limitReached'] is True
    assert exc.value.to_dict()['usage'] == {'current': 3, 'limit': 3}


def test_downgrade_limits_access_to_oldest_decks(pro_account):
    decks = [create_deck(CreateDeckData(name=f'Deck {i}'), pro_account['id']) for i in range(4)]
    update_subscription_tier(pro_account['id'], 'free')
    info = get_subscription_info(pro_account['id'])
    assert info.remaining_decks == 0
    assert len(info.accessible_deck_ids) == 3
    assert can_access_deck(pro_account['id'], decks[0]['id'])['can_access'] is True
    blocked = can_access_deck(pro_account['id'], decks[3]['id'])
    assert blocked['can_access'] is False
    assert 'oldest decks' in blocked['reason']


def test_card_limits(deck_with_cards, account):
    deck, cards = deck_with_cards
    info = get_deck_card_limit_info(account['id'], deck['id'])
    assert info.current_card_count == len(cards)
    assert info.remaining_cards == 50 - len(cards)
    assert can_create_cards(account['id'], deck['id'], 5) == (True, 5, None)
    ok, allowed, reason = can_create_cards(account['id'], deck['id'], 100)
    assert ok is False
    assert allowed == 50 - len(cards)
    assert 'Card limit reached' in reason


def test_pro_has_unlimited_cards(pro_account, deck):
    assert can_create_cards(pro_account['id'], deck['id'], 10_000) == (True, 10_000, None)
    assert get_deck_card_limit_info(pro_account['id'], deck['id']).remaining_cards == -1


def test_update_subscription_tier_rejects_unknown(account):
    with pytest.raises(SubscriptionError):
        update_subscription_tier(account['id'], 'platinum')


def test_ai_generation_budget(account):
    for _ in range(10):
        increment_ai_generation(account['id'], 'flashcard')
    res = check_ai_generation_limit(account['id'])
    assert res == {'can_generate': False, 'current': 10, 'limit': 10}
    with pytest.raises(UsageLimitError) as exc:
        require_ai_generation(account['id'], label='AI grading')
    assert str(exc.value).startswith('AI grading limit reached (10/10).')


def test_ai_generations_from_previous_month_are_not_counted(account):
    increment_ai_generation(account['id'], 'flashcard')
    get_db().execute("UPDATE ai_generations SET created_at = '2000-01-15T00:00:00+00:00'")
    assert check_ai_generation_limit(account['id'])['current'] == 0


def test_pro_tier_never_hits_ai_limit(pro_account):
    for _ in range(12):
        increment_ai_generation(pro_account['id'], 'flashcard')
    assert require_ai_generation(pro_account['id'])['can_generate'] is True


def test_test_session_limit_and_usage(deck, account):
    assert check_test_session_limit(account['id'])['can_create'] is True
    usage = get_current_usage(account['id'])
    assert usage['tier'] == 'free'
    assert usage['usage'] == {'decks': 1, 'ai_generations': 0, 'test_sessions': 0}
    assert usage['limits']['max_decks'] == 3


def test_limits_follow_account_fields(account):
    update_account(account['id'], deck_limit=1)
    assert get_subscription_info(account['id']).deck_limit == 1
