import os
from typing import Dict, List, Optional, Tuple, Any

from pydantic import BaseModel

STRIPE_PRO_MONTHLY_PRICE_ID = os.getenv('STRIPE_PRO_MONTHLY_PRICE_ID', os.getenv('STRIPE_PRICE_ID', ''))
STRIPE_PRO_YEARLY_PRICE_ID = os.getenv('STRIPE_PRO_YEARLY_PRICE_ID', '')


class PlanPrice(BaseModel):
    monthly: float
    yearly: Optional[float] = None


class PricingPlan(BaseModel):
    id: str
    name: str
    description: str
    price: PlanPrice
    stripe_price_id: Optional[str] = None
    features: List[str]
    limits: Dict[str, int]
    popular: bool = False


class PlanLimits(BaseModel):
    decks: int
    cards_per_deck: int
    has_file_upload: bool = False
    has_rich_text_editor: bool = False
    has_advanced_study: bool = False


PRICING_PLANS: List[PricingPlan] = [
    PricingPlan(
        id='free',
        name='Free',
        description='Perfect for getting started with flashcards',
        price=PlanPrice(monthly=0, yearly=0),
        features=[
            '3 flashcard decks',
            '50 cards per deck',
            'Manual card creation',
            'Basic study mode',
            'Basic progress tracking',
        ],
        limits={'decks': 3, 'cardsPerDeck': 50},
    ),
    PricingPlan(
        id='pro',
        name='Pro',
        description='AI-powered testing and unlimited learning',
        price=PlanPrice(monthly=9.99),
        stripe_price_id=STRIPE_PRO_MONTHLY_PRICE_ID or None,
        features=[
            'Unlimited decks & cards',
            'File upload (PDF, DOCX, TXT)',
            'Rich text editing',
            'Advanced study features',
            'Priority support',
        ],
        limits={'decks': -1, 'cardsPerDeck': -1},
        popular=True,
    ),
]

PLAN_LIMITS: Dict[str, PlanLimits] = {
    'free': PlanLimits(decks=3, cards_per_deck=50),
    'pro': PlanLimits(decks=-1, cards_per_deck=-1, has_file_upload=True, has_rich_text_editor=True, has_advanced_study=True),
}

FEATURE_FLAGS = ('has_file_upload', 'has_rich_text_editor', 'has_advanced_study')


class UsageSnapshot(BaseModel):
    deck_count: int = 0
    max_cards_in_deck: int = 0
    wants_test_mode: bool = False
    wants_analytics: bool = False


def get_plan_by_id(plan_id: str) -> Optional[PricingPlan]:
    for plan in PRICING_PLANS:
        if plan.id == plan_id:
            return plan
    return None


def get_plan_limits(plan_id: str) -> PlanLimits:
    return PLAN_LIMITS.get(plan_id, PLAN_LIMITS['free'])


def get_plan_features(plan_id: str) -> List[str]:
    plan = get_plan_by_id(plan_id)
    return list(plan.features) if plan else []


def can_access_feature(plan_id: str, feature: str) -> bool:
    if feature not in FEATURE_FLAGS:
        return False
    return bool(getattr(get_plan_limits(plan_id), feature))


def format_price(amount: float, currency: str = 'USD') -> str:
    """Format a price the way the pricing page shows it: $9.99, $0, $10."""
    symbols = {'USD': '$', 'EUR': '€', 'GBP': '£'}
    symbol = symbols.get(currency.upper(), currency.upper() + ' ')
    if float(amount).is_integer():
        return f'{symbol}{int(amount)}'
    return f'{symbol}{amount:.2f}'


def calculate_yearly_discount(monthly: float, yearly: float) -> int:
    full = monthly * 12
    if full <= 0:
        return 0
    return round((full - yearly) / full * 100)


def can_create_deck(plan_id: str, current_deck_count: int) -> bool:
    limit = get_plan_limits(plan_id).decks
    return limit == -1 or current_deck_count < limit


def can_add_card_to_deck(plan_id: str, current_card_count: int) -> bool:
    limit = get_plan_limits(plan_id).cards_per_deck
    return limit == -1 or current_card_count < limit


def get_upgrade_suggestion(plan_id: str, usage: UsageSnapshot) -> Tuple[bool, str]:
    if plan_id == 'pro':
        return False, 'Already on highest plan'
    limits = get_plan_limits(plan_id)
    if limits.decks != -1 and usage.deck_count >= limits.decks:
        return True, 'Upgrade to Pro for unlimited decks'
    if limits.cards_per_deck != -1 and usage.max_cards_in_deck >= limits.cards_per_deck:
        return True, 'Upgrade to Pro for unlimited cards per deck'
    if usage.wants_test_mode:
        return True, 'Upgrade to Pro to unlock AI test mode'
    if usage.wants_analytics:
        return True, 'Upgrade to Pro for detailed study analytics'
    return False, 'Current plan meets your needs'


def format_usage_stats(plan_id: str, deck_count: int, total_cards: int) -> Dict[str, Any]:
    limits = get_plan_limits(plan_id)
    unlimited_decks = limits.decks == -1
    return {
        'decks': {
            'used': deck_count,
            'limit': 'Unlimited' if unlimited_decks else limits.decks,
            'percentage': 0 if unlimited_decks else round(deck_count / limits.decks * 100),
        },
        'cards': {
            'used': total_cards,
            'limit': 'Unlimited per deck' if limits.cards_per_deck == -1 else f'{limits.cards_per_deck} per deck',
        },
    }
