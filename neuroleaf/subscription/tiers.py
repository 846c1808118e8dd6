from enum import Enum
from typing import Dict, List

from pydantic import BaseModel

UNLIMITED = -1


class SubscriptionTier(str, Enum):
    FREE = 'free'
    PRO = 'pro'


class TierConfig(BaseModel):
    name: str
    deck_limit: int
    flashcard_limit_per_deck: int
    description: str
    features: List[str]


TIER_CONFIGS: Dict[str, TierConfig] = {
    SubscriptionTier.FREE.value: TierConfig(
        name='Free',
        deck_limit=3,
        flashcard_limit_per_deck=50,
        description='Perfect for getting started',
        features=[
            'Up to 3 decks',
            '50 cards per deck',
            'AI-powered card generation',
            'Basic flashcard creation',
            'Study progress tracking',
        ],
    ),
    SubscriptionTier.PRO.value: TierConfig(
        name='Pro',
        deck_limit=UNLIMITED,
        flashcard_limit_per_deck=UNLIMITED,
        description='For serious learners',
        features=[
            'Unlimited decks',
            'Unlimited cards per deck',
            'Advanced study features',
            'File upload support',
            'AI test mode',
            'Study analytics',
        ],
    ),
}


def is_unlimited(limit) -> bool:
    return limit == UNLIMITED


def normalize_tier(tier) -> str:
    value = getattr(tier, 'value', tier)
    return value if value in TIER_CONFIGS else SubscriptionTier.FREE.value


def get_tier_config(tier) -> TierConfig:
    return TIER_CONFIGS[normalize_tier(tier)]
