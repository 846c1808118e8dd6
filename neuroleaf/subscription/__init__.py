"""Subscription tiers, usage limits and deck access rules"""

from .tiers import (
    UNLIMITED,
    SubscriptionTier,
    TierConfig,
    TIER_CONFIGS,
    is_unlimited,
    get_tier_config,
)
from .usage_limits import (
    UsageLimitError,
    UsageLimits,
    TIER_LIMITS,
    get_tier_limits,
    check_deck_limit,
    check_flashcard_limit,
    check_ai_generation_limit,
    check_test_session_limit,
    require_ai_generation,
    increment_ai_generation,
    get_current_usage,
)
from .subscription_service import (
    SubscriptionError,
    SubscriptionInfo,
    DeckCardLimitInfo,
    get_subscription_info,
    can_create_deck,
    can_access_deck,
    get_deck_card_limit_info,
    can_create_cards,
    update_subscription_tier,
    get_all_tier_configs,
)

__all__ = [
    'UNLIMITED',
    'SubscriptionTier',
    'TierConfig',
    'TIER_CONFIGS',
    'is_unlimited',
    'get_tier_config',
    'UsageLimitError',
    'UsageLimits',
    'TIER_LIMITS',
    'get_tier_limits',
    'check_deck_limit',
    'check_flashcard_limit',
    'check_ai_generation_limit',
    'check_test_session_limit',
    'require_ai_generation',
    'increment_ai_generation',
    'get_current_usage',
    'SubscriptionError',
    'SubscriptionInfo',
    'DeckCardLimitInfo',
    'get_subscription_info',
    'can_create_deck',
    'can_access_deck',
    'get_deck_card_limit_info',
    'can_create_cards',
    'update_subscription_tier',
    'get_all_tier_configs',
]
